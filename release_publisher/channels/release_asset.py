"""Attach the built package to the GitHub release record as a downloadable asset.

Conflict policy for an asset name already present on the release (re-runs):

  - ``fail`` (default): raise :class:`AssetExistsError`; nothing is replaced.
  - ``overwrite``: delete the existing asset, then upload the new one.
"""

from __future__ import annotations

import sys
import time
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

from ..config import ReleaseAssetSettings, RetrySettings, asset_name_for
from ..errors import AssetExistsError, UploadError
from ..models import BuildArtifact, VersionSpec
from ..utils.time import Deadline
from .http import HttpSession, default_session, github_headers, is_transient_status, json_body, response_error, send
from .retry import call_with_retries


STEP = "upload_asset"


def _asset_meta(a: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "asset_id": str(a.get("id") or ""),
        "asset_name": str(a.get("name") or ""),
        "download_url": str(a.get("browser_download_url") or ""),
        "bytes": a["size"] if isinstance(a.get("size"), int) else 0,
    }


class ReleaseAssetUploader:
    def __init__(
        self,
        *,
        settings: ReleaseAssetSettings,
        token: str,
        retry: RetrySettings,
        session: Optional[HttpSession] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.retry = retry
        self.session = default_session(session)
        self.sleep = sleep
        self._token = token

    def _redact(self, text: str) -> str:
        return text.replace(self._token, "***") if self._token else text

    def _call(self, method: str, url: str, deadline: Deadline, **kwargs: Any):
        headers = github_headers(self._token)
        headers.update(kwargs.pop("headers", {}) or {})
        return send(
            self.session,
            method,
            url,
            error_cls=UploadError,
            step=STEP,
            deadline=deadline,
            redact=self._redact,
            headers=headers,
            **kwargs,
        )

    def _fail(self, what: str, resp) -> UploadError:
        code, message = response_error(resp)
        detail = {"status_code": resp.status_code, "code": code, "message": self._redact(message)}
        return UploadError(
            f"{what}: HTTP {resp.status_code} {code} {self._redact(message)}".strip(),
            status_code=resp.status_code,
            detail=detail,
            retryable=is_transient_status(resp.status_code),
        )

    def _retrying(self, fn: Callable[[], Any], deadline: Deadline) -> Any:
        return call_with_retries(fn, policy=self.retry, step=STEP, deadline=deadline, sleep=self.sleep)

    def get_release(self, release_id: str, deadline: Deadline) -> Dict[str, Any]:
        url = f"{self.settings.api_url}/repos/{self.settings.repository}/releases/{release_id}"

        def _once() -> Dict[str, Any]:
            resp = self._call("GET", url, deadline)
            if resp.status_code != 200:
                raise self._fail(f"cannot read release {release_id}", resp)
            return json_body(resp, error_cls=UploadError, step=STEP, what=f"release {release_id}")

        return self._retrying(_once, deadline)

    def delete_asset(self, asset_id: str, deadline: Deadline) -> None:
        url = f"{self.settings.api_url}/repos/{self.settings.repository}/releases/assets/{asset_id}"

        def _once() -> None:
            resp = self._call("DELETE", url, deadline)
            if resp.status_code not in (204, 404):
                raise self._fail(f"cannot delete existing asset {asset_id}", resp)

        self._retrying(_once, deadline)

    def attach_to_release(
        self,
        release_id: str,
        artifact: BuildArtifact,
        *,
        version: VersionSpec,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Upload ``artifact`` as a named asset on release ``release_id``.

        Returns the created asset's metadata.

        Raises:
            AssetExistsError: the asset name is taken and the policy is ``fail``.
            UploadError: any other failure, after bounded retries for
                transient ones.
        """
        deadline = Deadline(timeout if timeout is not None else self.settings.timeout_seconds)
        name = asset_name_for(self.settings, package_name=artifact.package_name, version=version.render())

        release = self.get_release(release_id, deadline)
        assets: List[Dict[str, Any]] = [a for a in (release.get("assets") or []) if isinstance(a, dict)]
        existing = next((a for a in assets if a.get("name") == name), None)
        if existing is not None:
            if self.settings.on_conflict != "overwrite":
                raise AssetExistsError(
                    f"release {release_id} already has an asset named {name!r}",
                    detail=_asset_meta(existing),
                )
            print(f"[release-asset] replacing existing asset {name} (id={existing.get('id')})", file=sys.stderr)
            self.delete_asset(str(existing.get("id")), deadline)

        upload_url_template = str(release.get("upload_url") or "")
        if not upload_url_template:
            raise UploadError(f"release {release_id} has no upload_url")
        # upload_url looks like https://uploads.github.com/repos/o/r/releases/1/assets{?name,label}
        url = f"{upload_url_template.split('{', 1)[0]}?name={quote(name)}"
        data = artifact.file_path.read_bytes()

        def _once() -> Dict[str, Any]:
            resp = self._call(
                "POST",
                url,
                deadline,
                headers={"Content-Type": "application/octet-stream"},
                data=data,
            )
            if resp.status_code in (200, 201):
                return json_body(resp, error_cls=UploadError, step=STEP, what=f"upload of {name}")
            code, message = response_error(resp)
            if resp.status_code == 422 and code == "already_exists":
                raise AssetExistsError(
                    f"release {release_id} already has an asset named {name!r}",
                    status_code=resp.status_code,
                    detail={"code": code, "message": message},
                )
            raise self._fail(f"upload of {name} failed", resp)

        created = self._retrying(_once, deadline)
        meta = _asset_meta(created)
        print(f"[release-asset] uploaded {name} to release {release_id}", file=sys.stderr)
        return meta
