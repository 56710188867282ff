"""Talent Radar — Async Page Fetcher.

Provides a rate-limited, retrying async HTTP client for listing pages.
Built on httpx.AsyncClient with:
  - User-agent rotation from config
  - Exponential backoff with jitter (timeouts, connection errors, 5xx)
  - Extended delay on throttling (429/503), honoring Retry-After
  - Per-source rate limiting via AsyncRateLimiter
  - Deadline-aware timeouts and sleeps
"""

from __future__ import annotations

import asyncio
import random
from typing import Optional

import httpx

from talent_radar.config import ScraperConfig
from talent_radar.errors import (
    DeadlineExceededError,
    FetchError,
    FetchTimeoutError,
    HttpStatusError,
    NetworkError,
)
from talent_radar.utils.logger import get_logger
from talent_radar.utils.rate_limiter import AsyncRateLimiter
from talent_radar.utils.resilience import BackoffPolicy, Deadline, parse_retry_after

logger = get_logger(__name__)

# ── Browser-like headers common to all requests ──────────
_COMMON_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en,bg;q=0.9",
    "Connection": "keep-alive",
}

THROTTLE_STATUSES = (429, 503)


class PageFetcher:
    """Async HTTP page fetcher with retry and rate limiting.

    Attributes:
        config: Scraper configuration from settings.yaml.
        backoff: Backoff policy derived from the config.
        total_requests: Count of successful fetches this session.
    """

    def __init__(
        self,
        config: ScraperConfig,
        rate_limiter: Optional[AsyncRateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            config: ScraperConfig instance loaded from settings.yaml.
            rate_limiter: Limiter to acquire before every attempt. Shared
                by all fetchers of one source.
            transport: Optional httpx transport (tests use MockTransport).
        """
        self.config = config
        self.backoff = BackoffPolicy(
            base_delay=config.backoff_base_seconds,
            max_delay=config.backoff_max_seconds,
            jitter=config.backoff_jitter,
            throttle_multiplier=config.throttle_multiplier,
        )
        self.total_requests: int = 0
        self._rate_limiter = rate_limiter
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        """Lazily create the httpx.AsyncClient."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={**_COMMON_HEADERS, "User-Agent": self._pick_ua()},
                follow_redirects=True,
                timeout=httpx.Timeout(self.config.timeout_seconds),
                transport=self._transport,
            )
        return self._client

    def _pick_ua(self) -> str:
        if not self.config.user_agents:
            return "Mozilla/5.0 (compatible; TalentRadar/1.0)"
        return random.choice(self.config.user_agents)

    async def fetch(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
        deadline: Optional[Deadline] = None,
    ) -> str:
        """Fetch a page and return its body.

        Retry strategy (up to 1 + max_retries attempts):
          - 429 / 503: max(backoff × throttle_multiplier, Retry-After)
          - other 5xx, timeouts, connection errors: exponential backoff
          - other 4xx: no retry

        Args:
            url: Absolute page URL.
            headers: Extra request headers (source-specific).
            timeout: Per-attempt timeout; defaults to config.timeout_seconds.
            deadline: Run deadline; caps timeouts and stops retrying once hit.

        Returns:
            Response body as text.

        Raises:
            FetchTimeoutError, HttpStatusError, NetworkError: After the last
                attempt (or a non-retryable status).
            DeadlineExceededError: The deadline expired, or left less time
                than the next backoff wait.
        """
        deadline = deadline or Deadline.never()
        client = self._get_client()
        attempts = 1 + max(0, self.config.max_retries)
        per_attempt = timeout if timeout is not None else self.config.timeout_seconds

        last_error: Optional[FetchError] = None
        for attempt in range(1, attempts + 1):
            if deadline.expired:
                raise DeadlineExceededError(url, last_error)

            if self._rate_limiter is not None:
                await self._rate_limiter.acquire()
            client.headers["User-Agent"] = self._pick_ua()

            wait: float
            try:
                resp = await client.get(
                    url,
                    headers=headers or None,
                    timeout=deadline.clamp(per_attempt),
                )
            except httpx.TimeoutException:
                last_error = FetchTimeoutError(url)
                wait = self.backoff.delay(attempt)
                logger.warning(
                    "Timeout on attempt %d/%d for %s", attempt, attempts, url,
                )
            except httpx.TransportError as e:
                last_error = NetworkError(url, str(e) or type(e).__name__)
                wait = self.backoff.delay(attempt)
                logger.warning(
                    "Connection error on attempt %d/%d for %s: %s",
                    attempt, attempts, url, e,
                )
            else:
                status = resp.status_code
                if status < 400:
                    self.total_requests += 1
                    return resp.text

                last_error = HttpStatusError(url, status)
                if status in THROTTLE_STATUSES:
                    retry_after = parse_retry_after(resp.headers.get("Retry-After"))
                    wait = self.backoff.throttled_delay(attempt, retry_after)
                    logger.warning(
                        "Throttled (%d) on attempt %d/%d for %s",
                        status, attempt, attempts, url,
                    )
                elif status >= 500:
                    wait = self.backoff.delay(attempt)
                    logger.warning(
                        "Server error %d on attempt %d/%d for %s",
                        status, attempt, attempts, url,
                    )
                else:
                    logger.error("HTTP %d for %s (not retried)", status, url)
                    raise last_error

            if attempt < attempts:
                remaining = deadline.remaining()
                if remaining is not None and remaining <= wait:
                    logger.warning(
                        "Deadline too close to retry %s (%.1fs left, %.1fs wait)",
                        url, remaining, wait,
                    )
                    raise DeadlineExceededError(url, last_error)
                logger.debug("Waiting %.2fs before retrying %s", wait, url)
                await asyncio.sleep(wait)

        if deadline.expired:
            raise DeadlineExceededError(url, last_error)
        logger.error("Giving up on %s: %s", url, last_error)
        raise last_error

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.debug("HTTP client closed (total requests: %d)", self.total_requests)

    async def __aenter__(self) -> "PageFetcher":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
