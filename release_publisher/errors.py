from __future__ import annotations

from typing import Any, Optional


class ReleasePublishError(Exception):
    """Base class for release publication errors.

    Every error carries a stable ``code`` so reports can tell failure kinds
    apart without parsing messages. ``retryable`` marks transient network-class
    failures; a ``timed_out`` error is never retryable.
    """

    code = "release_publish_failed"

    def __init__(
        self,
        message: str,
        *,
        step: str = "",
        code: str = "",
        detail: Any = None,
        retryable: bool = False,
        timed_out: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.step = step
        if code:
            self.code = code
        elif timed_out:
            self.code = f"{type(self).code}_timeout"
        self.detail = detail
        self.timed_out = timed_out
        self.retryable = bool(retryable) and not timed_out
        self.attempts = 1


class ConfigError(ReleasePublishError):
    """Raised when the publish config or the injected secrets are unusable."""

    code = "invalid_config"


class EventError(ReleasePublishError):
    """Raised when the trigger payload is not a usable release event."""

    code = "invalid_event"


class ValidationError(ReleasePublishError):
    """Raised when a release tag fails version validation."""

    code = "invalid_version"

    def __init__(self, message: str, *, token: str = "", **kwargs: Any):
        kwargs.setdefault("step", "validate")
        super().__init__(message, **kwargs)
        self.token = token


class BuildError(ReleasePublishError):
    """Raised when the package build fails or produces no single artifact."""

    code = "build_failed"

    def __init__(self, message: str, *, exit_code: Optional[int] = None, **kwargs: Any):
        kwargs.setdefault("step", "build")
        super().__init__(message, **kwargs)
        self.exit_code = exit_code


class UploadError(ReleasePublishError):
    """Raised when attaching the artifact to the release record fails."""

    code = "upload_failed"

    def __init__(self, message: str, *, status_code: Optional[int] = None, **kwargs: Any):
        kwargs.setdefault("step", "upload_asset")
        super().__init__(message, **kwargs)
        self.status_code = status_code


class AssetExistsError(UploadError):
    """Raised when the release already carries an asset with the same name."""

    code = "asset_already_exists"

    def __init__(self, message: str, **kwargs: Any):
        kwargs["retryable"] = False
        super().__init__(message, **kwargs)


class PublishError(ReleasePublishError):
    """Raised when the package repository rejects or fails the push."""

    code = "publish_failed"

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: str = "", **kwargs: Any):
        kwargs.setdefault("step", "publish_repository")
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.body = body


class FormulaError(ReleasePublishError):
    """Raised when the formula bump pull request cannot be produced."""

    code = "formula_failed"

    def __init__(self, message: str, *, status_code: Optional[int] = None, **kwargs: Any):
        kwargs.setdefault("step", "bump_formula")
        super().__init__(message, **kwargs)
        self.status_code = status_code
