"""Homebrew formula bump.

Mirrors what a formula-bump automation does for a new tag: checksum the
release source tarball, rewrite the formula's ``url``/``sha256``/``version``
stanzas, push the change to a ``<formula>-<version>`` branch and open a pull
request against the formula repository.
"""

from __future__ import annotations

import base64
import re
import sys
import time
from typing import Any, Callable, Iterable, Optional, Tuple

import requests

from ..artifacts.checksums import sha256_chunks
from ..config import FormulaSettings, RetrySettings
from ..errors import ConfigError, FormulaError
from ..models import VersionSpec
from ..utils.time import Deadline
from ..versioning import TAG_REF_PREFIX
from .http import HttpSession, default_session, github_headers, is_transient_status, json_body, response_error, send
from .retry import call_with_retries


STEP = "bump_formula"
CONFLICT = "formula_conflict"

_URL_RE = re.compile(r'^(\s*url\s+)"[^"]*"', re.MULTILINE)
_SHA256_RE = re.compile(r'^(\s*sha256\s+)"[0-9A-Fa-f]*"', re.MULTILINE)
_VERSION_RE = re.compile(r'^(\s*version\s+)"[^"]*"', re.MULTILINE)


def rewrite_formula(text: str, *, url: str, sha256: str, version: str) -> str:
    """Point the formula's first ``url``/``sha256`` pair at a new release.

    Bottle checksums (``sha256 cellar: ...``) are left alone. An explicit
    ``version`` stanza is updated when present.
    """
    if not _URL_RE.search(text):
        raise FormulaError("formula has no url stanza")
    if not _SHA256_RE.search(text):
        raise FormulaError("formula has no sha256 stanza")

    out = _URL_RE.sub(lambda m: f'{m.group(1)}"{url}"', text, count=1)
    out = _SHA256_RE.sub(lambda m: f'{m.group(1)}"{sha256}"', out, count=1)
    if _VERSION_RE.search(out):
        out = _VERSION_RE.sub(lambda m: f'{m.group(1)}"{version}"', out, count=1)
    return out


def _owner(repository: str) -> str:
    owner, _, name = repository.partition("/")
    if not owner or not name:
        raise ConfigError(f"repository must be 'owner/name': {repository!r}")
    return owner


class HomebrewFormulaUpdater:
    def __init__(
        self,
        *,
        settings: FormulaSettings,
        token: str,
        source_repository: str,
        retry: RetrySettings,
        session: Optional[HttpSession] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.source_repository = source_repository
        self.retry = retry
        self.session = default_session(session)
        self.sleep = sleep
        self._token = token

    def _redact(self, text: str) -> str:
        return text.replace(self._token, "***") if self._token else text

    def _retrying(self, fn: Callable[[], Any], deadline: Deadline) -> Any:
        return call_with_retries(fn, policy=self.retry, step=STEP, deadline=deadline, sleep=self.sleep)

    def _api(
        self,
        method: str,
        path: str,
        deadline: Deadline,
        *,
        ok: Tuple[int, ...] = (200,),
        conflict: Tuple[int, ...] = (),
        what: str = "",
        expect: type = dict,
        **kwargs: Any,
    ) -> Any:
        url = f"{self.settings.api_url}{path}"

        def _once() -> Any:
            resp = send(
                self.session,
                method,
                url,
                error_cls=FormulaError,
                step=STEP,
                deadline=deadline,
                redact=self._redact,
                headers=github_headers(self._token),
                **kwargs,
            )
            if resp.status_code in ok:
                return json_body(resp, error_cls=FormulaError, step=STEP, what=what or path, expect=expect)
            code, message = response_error(resp)
            message = self._redact(message)
            raise FormulaError(
                f"{what or path}: HTTP {resp.status_code} {code} {message}".strip(),
                status_code=resp.status_code,
                code=CONFLICT if resp.status_code in conflict else "",
                detail={"status_code": resp.status_code, "code": code, "message": message},
                retryable=is_transient_status(resp.status_code),
            )

        return self._retrying(_once, deadline)

    def fetch_sha256(self, url: str, deadline: Deadline) -> str:
        """Download ``url`` and return its SHA-256 without keeping it on disk."""

        def _once() -> str:
            resp = send(
                self.session,
                "GET",
                url,
                error_cls=FormulaError,
                step=STEP,
                deadline=deadline,
                redact=self._redact,
                stream=True,
                headers={"User-Agent": "release-publisher"},
            )
            try:
                if resp.status_code != 200:
                    raise FormulaError(
                        f"cannot download {url}: HTTP {resp.status_code}",
                        status_code=resp.status_code,
                        retryable=is_transient_status(resp.status_code),
                    )
                chunks: Iterable[bytes] = resp.iter_content(chunk_size=64 * 1024)
                return sha256_chunks(chunks)
            except requests.RequestException as e:
                raise FormulaError(f"download of {url} interrupted: {type(e).__name__}", retryable=True) from None
            finally:
                resp.close()

        return self._retrying(_once, deadline)

    def default_branch(self, repository: str, deadline: Deadline) -> str:
        data = self._api("GET", f"/repos/{repository}", deadline, what=f"cannot read {repository}")
        branch = str(data.get("default_branch") or "")
        if not branch:
            raise FormulaError(f"{repository} reports no default branch")
        return branch

    def read_formula(self, repository: str, path: str, ref: str, deadline: Deadline) -> Tuple[str, str]:
        data = self._api(
            "GET",
            f"/repos/{repository}/contents/{path}",
            deadline,
            params={"ref": ref},
            what=f"cannot read {path} from {repository}",
        )
        content = str(data.get("content") or "")
        blob_sha = str(data.get("sha") or "")
        if not content or not blob_sha:
            raise FormulaError(f"{path} in {repository} has no content")
        try:
            text = base64.b64decode(content).decode("utf-8")
        except ValueError:
            raise FormulaError(f"{path} in {repository} is not base64-encoded UTF-8 text") from None
        return text, blob_sha

    def find_open_pull(self, repository: str, head: str, deadline: Deadline) -> Optional[str]:
        pulls = self._api(
            "GET",
            f"/repos/{repository}/pulls",
            deadline,
            params={"state": "open", "head": head},
            what="cannot list open pull requests",
            expect=list,
        )
        if pulls:
            first = pulls[0] if isinstance(pulls[0], dict) else {}
            return str(first.get("html_url") or "")
        return None

    def bump_formula(
        self,
        formula_name: str,
        release_version: VersionSpec,
        *,
        timeout: Optional[float] = None,
    ) -> str:
        """Open a pull request bumping ``formula_name`` to ``release_version``.

        Returns the pull request URL.

        Raises:
            FormulaError: code ``formula_conflict`` when the formula already
                points at this release or a bump PR for it is already open;
                ``formula_failed`` for everything else.
        """
        s = self.settings
        deadline = Deadline(timeout if timeout is not None else s.timeout_seconds)
        version = release_version.render()
        tag = release_version.raw
        if tag.startswith(TAG_REF_PREFIX):
            tag = tag[len(TAG_REF_PREFIX):]

        try:
            download_url = s.download_url.format(
                repository=self.source_repository,
                tag=tag,
                version=version,
                formula_name=formula_name,
            )
        except (KeyError, IndexError) as e:
            raise ConfigError(f"homebrew.download_url has unknown placeholder {e}")

        repo = s.formula_repository
        push_repo = s.resolved_push_repository()
        path = s.formula_path or f"Formula/{formula_name}.rb"
        branch = f"{formula_name}-{version}"
        head = f"{_owner(push_repo)}:{branch}"

        sha256 = self.fetch_sha256(download_url, deadline)
        print(f"[homebrew] {download_url} sha256={sha256}", file=sys.stderr)

        base = s.base_branch or self.default_branch(repo, deadline)
        current, blob_sha = self.read_formula(repo, path, base, deadline)
        updated = rewrite_formula(current, url=download_url, sha256=sha256, version=version)
        if updated == current:
            raise FormulaError(f"{path} already points at {version}", code=CONFLICT)

        open_pr = self.find_open_pull(repo, head, deadline)
        if open_pr is not None:
            raise FormulaError(f"a pull request for {formula_name} {version} is already open: {open_pr}", code=CONFLICT)

        ref = self._api(
            "GET",
            f"/repos/{push_repo}/git/ref/heads/{base}",
            deadline,
            what=f"cannot resolve {base} in {push_repo}",
        )
        target = ref.get("object")
        base_sha = str(target.get("sha") or "") if isinstance(target, dict) else ""
        if not base_sha:
            raise FormulaError(f"cannot resolve {base} in {push_repo}")

        self._api(
            "POST",
            f"/repos/{push_repo}/git/refs",
            deadline,
            ok=(201,),
            conflict=(422,),
            json={"ref": f"refs/heads/{branch}", "sha": base_sha},
            what=f"cannot create branch {branch}",
        )

        message = f"{formula_name} {version}"
        self._api(
            "PUT",
            f"/repos/{push_repo}/contents/{path}",
            deadline,
            ok=(200, 201),
            conflict=(409,),
            json={
                "message": message,
                "content": base64.b64encode(updated.encode("utf-8")).decode("ascii"),
                "sha": blob_sha,
                "branch": branch,
            },
            what=f"cannot commit {path}",
        )

        pr = self._api(
            "POST",
            f"/repos/{repo}/pulls",
            deadline,
            ok=(201,),
            conflict=(422,),
            json={
                "title": message,
                "head": head,
                "base": base,
                "body": f"Bump {formula_name} to {version} for release {tag}.",
                "maintainer_can_modify": True,
            },
            what="cannot open pull request",
        )
        pr_url = str(pr.get("html_url") or "")
        print(f"[homebrew] opened {pr_url}", file=sys.stderr)
        return pr_url
