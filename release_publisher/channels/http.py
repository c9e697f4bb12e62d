from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Protocol, Tuple, Type

import requests

from ..errors import ReleasePublishError
from ..utils.time import Deadline


USER_AGENT = "release-publisher"


class HttpSession(Protocol):
    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        ...


def github_headers(token: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
        "User-Agent": USER_AGENT,
    }


def is_transient_status(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


def response_error(resp: requests.Response) -> Tuple[str, str]:
    """Extract ``(code, message)`` from an API error body.

    Handles ``{code, message}`` as well as GitHub's
    ``{message, errors: [{code, ...}]}``; falls back to the raw body text.
    """
    try:
        data = resp.json()
    except ValueError:
        data = None

    if isinstance(data, dict):
        code = str(data.get("code") or "")
        message = str(data.get("message") or "")
        errors = data.get("errors")
        if not code and isinstance(errors, list):
            for err in errors:
                if isinstance(err, dict) and err.get("code"):
                    code = str(err.get("code"))
                    break
        if code or message:
            return code, message
    return "", (resp.text or "")[:2000]


def json_body(
    resp: requests.Response,
    *,
    error_cls: Type[ReleasePublishError],
    step: str,
    what: str,
    expect: type = dict,
) -> Any:
    """Decode a success response body, requiring a JSON ``expect`` (dict or list).

    An empty body decodes to an empty ``expect``. Anything else (an HTML page
    from a proxy, a list where an object was expected) raises ``error_cls``.
    """
    if not resp.content:
        return expect()
    try:
        data = resp.json()
    except ValueError:
        raise error_cls(f"{what}: HTTP {resp.status_code} response is not JSON", step=step) from None
    if not isinstance(data, expect):
        raise error_cls(
            f"{what}: expected a JSON {expect.__name__}, got {type(data).__name__}",
            step=step,
        )
    return data


def send(
    session: HttpSession,
    method: str,
    url: str,
    *,
    error_cls: Type[ReleasePublishError],
    step: str,
    deadline: Deadline,
    redact: Callable[[str], str] = str,
    **kwargs: Any,
) -> requests.Response:
    """Send one request bounded by ``deadline``.

    Transport failures become ``error_cls`` (retryable, or ``timed_out`` for
    timeouts). Messages pass through ``redact`` and the original exception is
    dropped, since its text can carry credentials embedded in ``url``.
    """
    timeout = deadline.require(error_cls, step)
    try:
        return session.request(method, url, timeout=timeout, **kwargs)
    except requests.Timeout as e:
        msg = redact(f"{step}: request timed out: {e}")
        raise error_cls(msg, step=step, timed_out=True) from None
    except requests.RequestException as e:
        msg = redact(f"{step}: request failed: {type(e).__name__}: {e}")
        raise error_cls(msg, step=step, retryable=True) from None


def default_session(session: Optional[HttpSession]) -> HttpSession:
    if session is not None:
        return session
    s = requests.Session()
    s.headers["User-Agent"] = USER_AGENT
    return s
