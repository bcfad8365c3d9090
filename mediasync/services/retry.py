"""Generic retry combinator used at every I/O boundary.

``with_retry`` re-runs an operation with exponential backoff
``min(base * 2**attempt, cap)``.  Permanent errors are raised immediately;
rate-limit errors wait at least the server-supplied ``retry_after``.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import TypeVar

from mediasync.core.config import settings
from mediasync.core.exceptions import PermanentError, RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_retryable(exc: BaseException) -> bool:
    return not isinstance(exc, PermanentError)


def parse_retry_after(value: object) -> float:
    """Seconds to wait from a ``Retry-After`` value: delta-seconds or an HTTP date.

    Anything unparseable counts as no hint (0).
    """
    if value is None or value == "":
        return 0.0
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        pass
    else:
        return seconds if math.isfinite(seconds) and seconds > 0 else 0.0
    try:
        when = parsedate_to_datetime(str(value))
    except (TypeError, ValueError):
        return 0.0
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try and how long to wait in between."""

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    retryable: Callable[[BaseException], bool] = _is_retryable
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)

    @classmethod
    def from_settings(cls, **overrides) -> RetryPolicy:
        values = {
            "max_attempts": settings.MAX_RETRY_ATTEMPTS,
            "base_delay": settings.RETRY_BACKOFF_BASE_MS / 1000,
            "max_delay": settings.RETRY_BACKOFF_CAP_MS / 1000,
        }
        values.update(overrides)
        return cls(**values)

    def delay_for(self, retry_count: int) -> float:
        """Backoff before the attempt following *retry_count* failures."""
        return min(self.base_delay * (2 ** retry_count), self.max_delay)


def with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    *,
    start_attempt: int = 0,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
) -> T:
    """Run *operation* until it succeeds or ``policy.max_attempts`` is reached.

    *start_attempt* is the number of failures already recorded elsewhere
    (e.g. a persisted ``retry_count``); it counts against the attempt cap and
    drives the backoff exponent.  The last exception is re-raised once
    attempts are exhausted.
    """
    attempt = start_attempt
    while True:
        try:
            return operation()
        except Exception as exc:
            attempt += 1
            if not policy.retryable(exc) or attempt >= policy.max_attempts:
                raise

            delay = policy.delay_for(attempt - 1)
            if isinstance(exc, RateLimitError):
                delay = max(delay, exc.retry_after)

            logger.warning(
                "retry_scheduled",
                extra={
                    "attempt": attempt,
                    "max_attempts": policy.max_attempts,
                    "delay_seconds": delay,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            policy.sleep(delay)
