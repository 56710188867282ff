"""Talent Radar — Resilience Utilities.

Backoff policy and cooperative deadlines shared by the page fetcher and
the run scheduler.

Usage:
    policy = BackoffPolicy(base_delay=2.0, max_delay=60.0, jitter=0.25)
    await asyncio.sleep(policy.delay(attempt))

    deadline = Deadline.after(900)
    if deadline.expired:
        ...
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with additive jitter.

    delay = min(base_delay * 2^(attempt-1), max_delay) + U(0, delay * jitter)

    Attributes:
        base_delay: Delay before the first retry, in seconds.
        max_delay: Cap applied before jitter.
        jitter: Fraction of the delay added as random jitter.
        throttle_multiplier: Extension factor for throttling responses
            (HTTP 429/503).
    """

    base_delay: float = 2.0
    max_delay: float = 60.0
    jitter: float = 0.25
    throttle_multiplier: float = 3.0

    def delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        raw = min(self.base_delay * (2 ** max(attempt - 1, 0)), self.max_delay)
        if self.jitter > 0 and raw > 0:
            raw += random.uniform(0, raw * self.jitter)
        return raw

    def throttled_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Extended delay after a 429/503, honoring Retry-After if longer."""
        extended = self.delay(attempt) * self.throttle_multiplier
        if retry_after is not None:
            return max(extended, retry_after)
        return extended


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header (delta-seconds or HTTP-date).

    Returns:
        Seconds to wait, or None if the header is absent or unparseable.
    """
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


@dataclass(frozen=True)
class Deadline:
    """An absolute point on the monotonic clock.

    Passed by value into every I/O call of a run. ``None`` expiry means
    no deadline.
    """

    expires_at: Optional[float] = None

    @classmethod
    def after(cls, seconds: Optional[float]) -> "Deadline":
        if seconds is None or seconds <= 0:
            return cls(None)
        return cls(time.monotonic() + seconds)

    @classmethod
    def never(cls) -> "Deadline":
        return cls(None)

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at

    def remaining(self) -> Optional[float]:
        """Seconds left, 0.0 once expired, None when unbounded."""
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    def clamp(self, seconds: float) -> float:
        """Cap a timeout or sleep so it never outlives the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return seconds
        return min(seconds, remaining)
