"""Talent Radar — Run Executor.

Executes one ScrapeRun end-to-end: fetch paginated listing pages,
extract candidates, resolve them against storage and accumulate the
run counters. Status transitions of the run happen here and nowhere
else while it is owned by a worker.
"""

from __future__ import annotations

import time
from typing import Optional

import httpx

from talent_radar.config import ScraperConfig, SchedulerConfig, Source
from talent_radar.database import queries
from talent_radar.database.db import Database
from talent_radar.database.models import RunStatus, ScrapeRun
from talent_radar.errors import (
    DeadlineExceededError,
    FetchError,
    LowConfidenceExtraction,
    PersistenceError,
    RunFatalError,
)
from talent_radar.scraper.client import PageFetcher
from talent_radar.scraper.dedup import Deduplicator
from talent_radar.scraper.extractor import Extractor
from talent_radar.utils.logger import get_logger
from talent_radar.utils.rate_limiter import AsyncRateLimiter
from talent_radar.utils.resilience import Deadline

logger = get_logger(__name__)


class RunExecutor:
    """Database-integrated scrape run executor.

    Owns one AsyncRateLimiter per source, shared by every fetch issued
    for that source across runs.

    Attributes:
        scraper_config: Fetcher tuning (retries, timeouts, user agents).
        scheduler_config: Run limits (max_run_seconds).
        db: Active database instance.
    """

    def __init__(
        self,
        scraper_config: ScraperConfig,
        scheduler_config: SchedulerConfig,
        db: Database,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        extractor: Optional[Extractor] = None,
    ) -> None:
        self.scraper_config = scraper_config
        self.scheduler_config = scheduler_config
        self.db = db
        self._transport = transport
        self._extractor = extractor or Extractor()
        self._dedup = Deduplicator(db)
        self._limiters: dict[str, AsyncRateLimiter] = {}

    def limiter_for(self, source: Source) -> AsyncRateLimiter:
        limiter = self._limiters.get(source.id)
        if limiter is None:
            limiter = AsyncRateLimiter(
                max_calls=source.rate_limit.max_requests,
                period_seconds=source.rate_limit.period_seconds,
            )
            self._limiters[source.id] = limiter
        return limiter

    async def execute(self, run: ScrapeRun, source: Source) -> ScrapeRun:
        """Run the pipeline for ``source`` and finalize ``run``.

        Never raises for scrape failures: fatal conditions and unexpected
        exceptions end as a ``failed`` run with the reason in ``errors``.

        Raises:
            PersistenceError: If the run record itself cannot be written.
        """
        start_time = time.monotonic()
        run.mark_running()
        await queries.update_run(self.db, run)

        logger.info(
            "═══ Run %s starting: %s (attempt %d, %s) ═══",
            run.id[:8], source.id, run.attempt, run.trigger,
        )

        deadline = Deadline.after(self.scheduler_config.max_run_seconds)
        status = RunStatus.COMPLETED
        try:
            await self._scrape(run, source, deadline)
        except RunFatalError as e:
            logger.error("Run %s failed: %s", run.id[:8], e)
            run.add_error(str(e))
            status = RunStatus.FAILED
        except PersistenceError:
            raise
        except Exception as e:
            logger.exception("Unexpected error in run %s", run.id[:8])
            run.add_error(f"Unexpected {type(e).__name__}: {e}")
            status = RunStatus.FAILED

        run.finish(status)
        await queries.update_run(self.db, run)

        c = run.counts
        logger.info(
            "═══ Run %s %s: %s in %.1fs — pages=%d fetched=%d created=%d "
            "updated=%d unchanged=%d skipped=%d failed=%d%s ═══",
            run.id[:8], status.value, source.id, time.monotonic() - start_time,
            run.pages, c.fetched, c.created, c.updated, c.unchanged, c.skipped,
            c.failed, " (cancelled)" if run.cancelled else "",
        )
        return run

    async def _scrape(self, run: ScrapeRun, source: Source, deadline: Deadline) -> None:
        seen: set[str] = set()
        accepted = 0

        async with PageFetcher(
            self.scraper_config,
            rate_limiter=self.limiter_for(source),
            transport=self._transport,
        ) as fetcher:
            for page in range(1, source.max_pages + 1):
                if deadline.expired:
                    logger.warning("Run %s hit its deadline before page %d", run.id[:8], page)
                    run.cancelled = True
                    break

                url = source.page_url(page)
                try:
                    html = await fetcher.fetch(url, headers=source.headers, deadline=deadline)
                except DeadlineExceededError as e:
                    logger.warning("Run %s stopped at page %d: %s", run.id[:8], page, e)
                    run.cancelled = True
                    break
                except FetchError as e:
                    if page == 1:
                        raise RunFatalError(f"First page fetch failed: {e}") from e
                    run.add_error(f"page {page}: {e}")
                    logger.warning("Stopping pagination for %s: %s", source.id, e)
                    break

                run.pages += 1
                extraction = self._extractor.extract_listings(html, source.selectors)
                if extraction.parse_errors:
                    logger.warning(
                        "%d listings on page %d of %s could not be parsed",
                        len(extraction.parse_errors), page, source.id,
                    )
                    run.counts.failed += len(extraction.parse_errors)

                if extraction.found == 0:
                    logger.info("Page %d of %s is empty; stopping", page, source.id)
                    break
                run.counts.fetched += extraction.found

                duplicates = 0
                for listing in extraction.listings:
                    try:
                        record = listing.to_record(source)
                    except LowConfidenceExtraction as e:
                        logger.debug("Rejected listing on page %d: %s", page, e)
                        run.counts.failed += 1
                        continue

                    accepted += 1
                    if record.identity_key in seen:
                        duplicates += 1
                        run.counts.skipped += 1
                        continue
                    seen.add(record.identity_key)

                    try:
                        resolution = await self._dedup.resolve(record)
                    except PersistenceError as e:
                        logger.warning("Could not persist %s: %s", record.identity_key, e)
                        run.counts.failed += 1
                        continue
                    run.counts.record(resolution)

                # Commit partial progress so in-flight readers see it
                await queries.update_run(self.db, run)

                if extraction.listings and duplicates == len(extraction.listings):
                    logger.info(
                        "Page %d of %s only repeats listings already seen; stopping",
                        page, source.id,
                    )
                    break

        if accepted == 0 and run.cancelled:
            logger.warning("Run %s cancelled before any listing was extracted", run.id[:8])
        elif accepted == 0:
            raise RunFatalError(f"No listings extracted from {source.id} ({run.pages} pages)")
