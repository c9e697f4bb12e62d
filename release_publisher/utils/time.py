from __future__ import annotations

import datetime as _dt
import time
from typing import Callable, Type

from ..errors import ReleasePublishError


def utcnow_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class Deadline:
    """Time budget for one step, shared across its calls and retries."""

    def __init__(self, seconds: float, *, clock: Callable[[], float] = time.monotonic):
        self.seconds = float(seconds)
        self._clock = clock
        self._ends_at = clock() + self.seconds

    def remaining(self) -> float:
        return max(0.0, self._ends_at - self._clock())

    def require(self, error_cls: Type[ReleasePublishError], step: str) -> float:
        """Return the remaining budget, or raise ``error_cls`` as a timeout."""
        left = self.remaining()
        if left <= 0:
            raise error_cls(f"{step} timed out after {self.seconds:g}s", step=step, timed_out=True)
        return left
