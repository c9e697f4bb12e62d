from __future__ import annotations

import sys
import time
from typing import Callable, Optional, TypeVar

from ..config import RetrySettings
from ..errors import ReleasePublishError
from ..utils.time import Deadline


T = TypeVar("T")


def backoff_delay(policy: RetrySettings, attempt: int) -> float:
    """Delay before retrying after ``attempt`` (1-based) failed: 1s, 2s, 4s, ..."""
    return min(policy.backoff_seconds * (2 ** (attempt - 1)), policy.max_backoff_seconds)


def call_with_retries(
    fn: Callable[[], T],
    *,
    policy: RetrySettings,
    step: str,
    deadline: Optional[Deadline] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds or fails with a non-retryable error.

    Only errors flagged ``retryable`` (network, 5xx, 429) are retried, at most
    ``policy.attempts`` calls in total. A retry that would outlive ``deadline``
    is not attempted. The raised error records how many attempts were made.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except ReleasePublishError as e:
            e.attempts = attempt
            if not e.retryable or attempt >= policy.attempts:
                raise
            delay = backoff_delay(policy, attempt)
            if deadline is not None and deadline.remaining() <= delay:
                raise
            print(
                f"[retry] {step} attempt {attempt}/{policy.attempts} failed ({e.code}); retrying in {delay:g}s",
                file=sys.stderr,
            )
            sleep(delay)
