"""Talent Radar — Main Orchestrator.

Ties all components together: config, database, run executor, run
scheduler (worker pool), stats reporter and the REST adapter.

Runs on a schedule with APScheduler:
  - One interval job per enabled source with ``schedule_minutes`` set;
    each job queues a run through the scheduler like a manual trigger.

Usage:
    python -m talent_radar.main
    python scripts/run.py
    talent-radar
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import Optional

from aiohttp import web
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from talent_radar.api import create_app
from talent_radar.config import AppConfig, load_config
from talent_radar.database import queries
from talent_radar.database.db import Database
from talent_radar.errors import RunRejectedError, UnknownSourceError
from talent_radar.scheduler.queue import RunScheduler
from talent_radar.scheduler.stats import StatsBook, StatsReporter
from talent_radar.scraper.pipeline import RunExecutor
from talent_radar.utils.logger import get_logger, set_level

logger = get_logger(__name__)


class TalentRadar:
    """Main application orchestrator.

    Manages startup (config → database → workers → interval jobs → API),
    the keep-alive loop and graceful shutdown.

    Attributes:
        config: Full application configuration.
        db: Active database instance.
        scheduler: Run queue and worker pool.
        reporter: Stats and health read side.
    """

    def __init__(self, config: Optional[AppConfig] = None) -> None:
        """Initialize with default state. Call start() to run."""
        self.config = config
        self.db: Optional[Database] = None
        self.scheduler: Optional[RunScheduler] = None
        self.reporter: Optional[StatsReporter] = None
        self._jobs: Optional[AsyncIOScheduler] = None
        self._api_runner: Optional[web.AppRunner] = None

        self._running = False

    async def start(self) -> None:
        """Full application startup sequence, then the keep-alive loop.

        1. Load config
        2. Initialize database and sync sources
        3. Build executor, stats and scheduler; recover queued runs
        4. Start workers
        5. Setup APScheduler with one job per scheduled source
        6. Start the REST API
        7. Enter keep-alive loop
        """
        self._running = True

        try:
            await self.setup()

            logger.info("═══ Entering main loop ═══")
            while self._running:
                await asyncio.sleep(1)

        except Exception:
            logger.exception("Fatal error")
        finally:
            await self.shutdown()

    async def setup(self) -> None:
        # ── 1. Config ────────────────────────────────
        if self.config is None:
            logger.info("═══ Loading configuration ═══")
            self.config = load_config()
        set_level(self.config.log_level)

        # ── 2. Database ──────────────────────────────
        logger.info("═══ Initializing database ═══")
        self.db = Database(self.config.database_path)
        await self.db.initialize()
        await queries.sync_sources(self.db, self.config.sources)
        sources = await queries.list_sources(self.db)
        logger.info("Database ready: %s (%d enabled sources)", self.config.database_path, len(sources))

        # ── 3. Components ────────────────────────────
        logger.info("═══ Initializing components ═══")
        executor = RunExecutor(self.config.scraper, self.config.scheduler, self.db)
        book = StatsBook(window=self.config.scheduler.stats_window)
        book.load(await queries.get_terminal_runs(self.db))
        self.scheduler = RunScheduler(self.config.scheduler, self.db, executor, book, sources)
        self.reporter = StatsReporter(book, self.scheduler)
        await self.scheduler.recover()

        # ── 4. Workers ───────────────────────────────
        self.scheduler.start()

        # ── 5. Interval jobs ─────────────────────────
        logger.info("═══ Setting up scheduler ═══")
        self._jobs = AsyncIOScheduler()
        for source in sources:
            if source.schedule_minutes <= 0:
                continue
            self._jobs.add_job(
                self.trigger_scheduled,
                IntervalTrigger(minutes=source.schedule_minutes),
                args=[source.id],
                id=f"scrape_{source.id}",
                max_instances=1,
                misfire_grace_time=60,
                name=f"Scrape {source.id} (every {source.schedule_minutes}m)",
            )
        self._jobs.start()
        logger.info("Scheduler started with %d jobs", len(self._jobs.get_jobs()))

        # ── 6. API ───────────────────────────────────
        if self.config.api.enabled:
            self._api_runner = web.AppRunner(create_app(self.reporter))
            await self._api_runner.setup()
            site = web.TCPSite(self._api_runner, self.config.api.host, self.config.api.port)
            await site.start()
            logger.info("API listening on http://%s:%d", self.config.api.host, self.config.api.port)

    async def trigger_scheduled(self, source_id: str) -> None:
        """APScheduler job body: queue a scheduled run, skipping busy sources."""
        if self.scheduler is None:
            return
        try:
            await self.scheduler.enqueue(source_id, trigger="scheduled")
        except (RunRejectedError, UnknownSourceError) as e:
            logger.info("Scheduled run for %s skipped: %s", source_id, e)

    async def shutdown(self) -> None:
        """Graceful shutdown: stop jobs, API, workers, then the database."""
        logger.info("═══ Shutting down ═══")
        self._running = False

        if self._jobs and self._jobs.running:
            self._jobs.shutdown(wait=False)
            logger.info("Interval jobs stopped")

        if self._api_runner is not None:
            await self._api_runner.cleanup()
            self._api_runner = None
            logger.info("API stopped")

        if self.scheduler is not None:
            await self.scheduler.stop()

        if self.db:
            await self.db.close()

        logger.info("Shutdown complete")

    def stop(self) -> None:
        """Ask the keep-alive loop to exit."""
        self._running = False


def main() -> None:
    """Application entry point."""
    Path("data").mkdir(exist_ok=True)
    Path("logs").mkdir(exist_ok=True)

    app = TalentRadar()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def _signal_handler(sig, frame):
        logger.info("Signal %s received, shutting down...", sig)
        app.stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.close()


if __name__ == "__main__":
    main()
