from __future__ import annotations

import sys
import time
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote, urlsplit, urlunsplit

from ..config import AptRepoSettings, RetrySettings
from ..errors import ConfigError, PublishError
from ..models import BuildArtifact
from ..utils.time import Deadline
from .http import HttpSession, default_session, is_transient_status, send
from .retry import call_with_retries


STEP = "publish_repository"


def push_url_with_token(push_url: str, token: str) -> str:
    """Embed ``token`` as the userinfo of ``push_url`` (Gemfury push style)."""
    parts = urlsplit(push_url)
    if not parts.hostname:
        raise ConfigError(f"apt_repo.push_url has no host: {push_url!r}")
    host = parts.hostname
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, f"{quote(token, safe='')}@{host}", parts.path, parts.query, parts.fragment))


class AptRepoPublisher:
    """Pushes the package to the APT repository's ingestion endpoint.

    The push token lives only inside the request URL; every message this class
    produces is redacted before it leaves.
    """

    def __init__(
        self,
        *,
        settings: AptRepoSettings,
        token: str,
        retry: RetrySettings,
        session: Optional[HttpSession] = None,
        sleep: Callable[[float], None] = time.sleep,
        redact: Optional[Callable[[str], str]] = None,
    ):
        self.settings = settings
        self.retry = retry
        self.session = default_session(session)
        self.sleep = sleep
        self._token = token
        self._extra_redact = redact

    def redact(self, text: str) -> str:
        out = str(text)
        if self._token:
            out = out.replace(quote(self._token, safe=""), "***").replace(self._token, "***")
        if self._extra_redact is not None:
            out = self._extra_redact(out)
        return out

    def publish(self, artifact: BuildArtifact, *, timeout: Optional[float] = None) -> Dict[str, Any]:
        """POST the artifact as multipart field ``package``.

        Returns ``{"status_code", "body"}`` of the accepting response.

        Raises:
            PublishError: on any non-2xx response (body surfaced verbatim,
                redacted) or transport failure, after bounded retries for
                transient ones.
        """
        deadline = Deadline(timeout if timeout is not None else self.settings.timeout_seconds)
        url = push_url_with_token(self.settings.push_url, self._token)

        def _once() -> Dict[str, Any]:
            with artifact.file_path.open("rb") as fh:
                resp = send(
                    self.session,
                    "POST",
                    url,
                    error_cls=PublishError,
                    step=STEP,
                    deadline=deadline,
                    redact=self.redact,
                    files={"package": (artifact.file_path.name, fh, "application/octet-stream")},
                )
            body = self.redact(resp.text or "")
            if 200 <= resp.status_code < 300:
                return {"status_code": resp.status_code, "body": body}
            raise PublishError(
                f"repository push rejected: HTTP {resp.status_code}: {body[:500]}",
                status_code=resp.status_code,
                body=body,
                detail={"status_code": resp.status_code, "body": body},
                retryable=is_transient_status(resp.status_code),
            )

        receipt = call_with_retries(_once, policy=self.retry, step=STEP, deadline=deadline, sleep=self.sleep)
        print(
            f"[apt-repo] pushed {artifact.file_path.name} to {self.settings.push_url} HTTP {receipt['status_code']}",
            file=sys.stderr,
        )
        return receipt
