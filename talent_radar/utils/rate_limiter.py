"""Talent Radar — Async Rate Limiter.

Token-bucket limiter shared by every fetch issued for one source. The
bucket holds up to ``max_calls`` tokens and refills continuously at
``max_calls / period`` tokens per second. Coroutine-safe via asyncio.Lock.
"""

from __future__ import annotations

import asyncio
import time

from talent_radar.utils.logger import get_logger

logger = get_logger(__name__)


class AsyncRateLimiter:
    """Async token-bucket rate limiter.

    Attributes:
        max_calls: Bucket capacity (burst size).
        period: Seconds needed to refill a full bucket.
    """

    def __init__(self, max_calls: int, period_seconds: float) -> None:
        """Initialize the rate limiter with a full bucket.

        Args:
            max_calls: Maximum number of calls allowed per time period.
            period_seconds: Length of the refill window in seconds.
        """
        if max_calls < 1:
            raise ValueError(f"max_calls must be >= 1, got {max_calls}")
        self.max_calls = max_calls
        self.period = max(0.0, period_seconds)
        self._tokens = float(max_calls)
        self._updated = time.monotonic()
        self._lock = asyncio.Lock()

        logger.debug(
            "Rate limiter initialized: %d calls / %.1f seconds",
            max_calls,
            period_seconds,
        )

    @property
    def rate(self) -> float:
        """Tokens added per second (infinite when period is zero)."""
        if self.period == 0:
            return float("inf")
        return self.max_calls / self.period

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._updated
        self._updated = now
        if self.period == 0:
            self._tokens = float(self.max_calls)
            return
        self._tokens = min(float(self.max_calls), self._tokens + elapsed * self.rate)

    @property
    def available_tokens(self) -> float:
        """Approximate number of tokens currently in the bucket."""
        self._refill()
        return self._tokens

    async def acquire(self) -> None:
        """Take one token, sleeping until the bucket has refilled enough.

        Waiters are served in arrival order because the lock is held
        across the sleep.
        """
        async with self._lock:
            self._refill()
            if self._tokens < 1:
                wait_time = (1 - self._tokens) / self.rate
                logger.debug("Rate limit reached. Waiting %.2f seconds...", wait_time)
                await asyncio.sleep(wait_time)
                self._refill()
            self._tokens = max(0.0, self._tokens - 1)

    async def __aenter__(self) -> "AsyncRateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, *args: object) -> None:
        pass

    def __repr__(self) -> str:
        return f"AsyncRateLimiter(max_calls={self.max_calls}, period={self.period}s)"
