"""Talent Radar — Run Scheduler.

Durable run queue drained by a bounded pool of asyncio worker tasks.

  - One active (pending or running) run per source. The lock is claimed
    synchronously in ``enqueue`` before the first await, so two triggers
    for the same source can never both get through.
  - Every accepted run is written to ``scrape_runs`` before it is queued;
    ``recover()`` re-queues pending runs after a restart and fails runs
    that were interrupted mid-flight.
  - A failed run is retried up to ``max_run_retries`` times as a new run
    (attempt + 1). The source lock stays held through the backoff.
  - A pending run (queued or waiting out a retry backoff) can be
    cancelled; it is finalized at once and skipped when a worker reaches it.
"""

from __future__ import annotations

import asyncio
import time
from typing import Iterable, Optional

from talent_radar.config import SchedulerConfig, Source
from talent_radar.database import queries
from talent_radar.database.db import Database
from talent_radar.database.models import RunStatus, ScrapeRun
from talent_radar.errors import (
    RunAlreadyActiveError,
    RunNotPendingError,
    RunRejectedError,
    UnknownRunError,
    UnknownSourceError,
)
from talent_radar.scheduler.stats import StatsBook
from talent_radar.scraper.pipeline import RunExecutor
from talent_radar.utils.logger import get_logger
from talent_radar.utils.resilience import BackoffPolicy

logger = get_logger(__name__)


class RunScheduler:
    """Per-source locking, durable queueing and the worker pool.

    Attributes:
        config: Worker count, queue bound and retry policy.
        db: Database holding the ``scrape_runs`` table.
        sources: Configured sources by id.
    """

    def __init__(
        self,
        config: SchedulerConfig,
        db: Database,
        executor: RunExecutor,
        book: StatsBook,
        sources: Iterable[Source],
    ) -> None:
        self.config = config
        self.db = db
        self.sources: dict[str, Source] = {s.id: s for s in sources}
        self._executor = executor
        self._book = book
        self._backoff = BackoffPolicy(
            base_delay=config.retry_base_seconds,
            max_delay=config.retry_max_seconds,
        )

        self._queue: asyncio.Queue[ScrapeRun] = asyncio.Queue()
        # source_id → the run currently holding that source's lock
        self._active: dict[str, ScrapeRun] = {}
        # Accepted runs not yet picked up by a worker (bounded by queue_size)
        self._waiting: set[str] = set()
        # Subset of _waiting sleeping out a retry backoff
        self._delayed: set[str] = set()
        self._workers: list[asyncio.Task] = []
        self._retry_tasks: set[asyncio.Task] = set()
        self._accepting = True
        self.started_at: Optional[float] = None

    # ── Introspection ────────────────────────────────────

    @property
    def queue_depth(self) -> int:
        return len(self._waiting)

    @property
    def workers_alive(self) -> int:
        return sum(1 for task in self._workers if not task.done())

    @property
    def is_running(self) -> bool:
        return bool(self._workers) and self.workers_alive > 0

    def active_run(self, source_id: str) -> Optional[ScrapeRun]:
        """Snapshot of the run holding ``source_id``'s lock, if any."""
        run = self._active.get(source_id)
        return run.snapshot() if run is not None else None

    def in_flight(self) -> dict[str, ScrapeRun]:
        return {source_id: run.snapshot() for source_id, run in self._active.items()}

    async def find_run(self, run_id: str) -> Optional[ScrapeRun]:
        """Live state for active runs, stored state for everything else."""
        for run in self._active.values():
            if run.id == run_id:
                return run.snapshot()
        return await queries.get_run(self.db, run_id)

    # ── Enqueue ──────────────────────────────────────────

    async def enqueue(self, source_id: str, trigger: str = "manual") -> ScrapeRun:
        """Create a pending run for ``source_id`` and queue it.

        Raises:
            UnknownSourceError: The source is not configured.
            RunAlreadyActiveError: The source already has a pending or
                running run.
            RunRejectedError: The queue is full or the scheduler is stopping.
        """
        if source_id not in self.sources:
            raise UnknownSourceError(source_id)
        if not self._accepting:
            raise RunRejectedError("Scheduler is shutting down")
        current = self._active.get(source_id)
        if current is not None:
            raise RunAlreadyActiveError(source_id, current.id)
        if len(self._waiting) >= self.config.queue_size:
            raise RunRejectedError(
                f"Run queue is full ({self.config.queue_size} waiting)"
            )

        run = ScrapeRun(source_id=source_id, trigger=trigger)
        self._active[source_id] = run
        self._waiting.add(run.id)
        try:
            await queries.insert_run(self.db, run)
        except Exception:
            self._waiting.discard(run.id)
            self._release(run)
            raise

        self._queue.put_nowait(run)
        logger.info(
            "Queued run %s for %s (%s, depth=%d)",
            run.id[:8], source_id, trigger, self.queue_depth,
        )
        return run.snapshot()

    # ── Cancel ───────────────────────────────────────────

    async def cancel(self, run_id: str) -> ScrapeRun:
        """Cancel a pending run and release its source.

        The run is finalized as ``completed`` with ``cancelled`` set and no
        counts. Running runs cannot be cancelled; they end at their deadline.

        Raises:
            UnknownRunError: No run has this id.
            RunNotPendingError: The run is running or already finished.
        """
        run = next((r for r in self._active.values() if r.id == run_id), None)
        if run is None:
            stored = await queries.get_run(self.db, run_id)
            if stored is None:
                raise UnknownRunError(run_id)
            raise RunNotPendingError(run_id, stored.status.value)
        if run.status is not RunStatus.PENDING:
            raise RunNotPendingError(run_id, run.status.value)

        run.cancelled = True
        run.add_error("Cancelled before start")
        run.finish(RunStatus.COMPLETED)
        self._waiting.discard(run.id)
        self._delayed.discard(run.id)
        self._release(run)
        await queries.update_run(self.db, run)
        logger.info("Cancelled pending run %s for %s", run.id[:8], run.source_id)
        return run.snapshot()

    async def queue_stats(self) -> dict[str, int]:
        """Live queue counts next to stored run totals.

        ``waiting`` runs are queued for a worker, ``delayed`` ones are
        waiting out a retry backoff and ``running`` ones hold a worker.
        """
        running = sum(1 for r in self._active.values() if r.status is RunStatus.RUNNING)
        totals = await queries.count_runs_by_status(self.db)
        return {
            "waiting": len(self._waiting - self._delayed),
            "delayed": len(self._delayed),
            "running": running,
            "completed": totals[RunStatus.COMPLETED.value],
            "failed": totals[RunStatus.FAILED.value],
            "cancelled": totals["cancelled"],
        }

    # ── Lifecycle ────────────────────────────────────────

    async def recover(self) -> int:
        """Restore the queue from ``scrape_runs`` after a restart.

        Runs left ``running`` were interrupted and are marked failed;
        ``pending`` runs are queued again in creation order.

        Returns:
            Number of runs re-queued.
        """
        for run in await queries.get_runs_by_status(self.db, RunStatus.RUNNING):
            run.add_error("Interrupted before completion")
            run.finish(RunStatus.FAILED)
            await queries.update_run(self.db, run)
            self._book.record_run(run)
            logger.warning("Run %s for %s was interrupted; marked failed", run.id[:8], run.source_id)

        requeued = 0
        for run in await queries.get_runs_by_status(self.db, RunStatus.PENDING):
            reason = None
            if run.source_id not in self.sources:
                reason = "Source is no longer configured"
            elif run.source_id in self._active:
                reason = "Superseded by another pending run for this source"
            if reason is not None:
                run.add_error(reason)
                run.finish(RunStatus.FAILED)
                await queries.update_run(self.db, run)
                self._book.record_run(run)
                logger.warning("Dropped pending run %s: %s", run.id[:8], reason)
                continue

            self._active[run.source_id] = run
            self._waiting.add(run.id)
            self._queue.put_nowait(run)
            requeued += 1

        if requeued:
            logger.info("Recovered %d pending runs", requeued)
        return requeued

    def start(self) -> None:
        """Spawn the worker tasks. Must be called from a running loop."""
        if self._workers:
            return
        self._accepting = True
        self.started_at = time.monotonic()
        for index in range(max(1, self.config.workers)):
            task = asyncio.create_task(self._worker(index), name=f"scrape-worker-{index}")
            self._workers.append(task)
        logger.info("Started %d scrape workers", len(self._workers))

    async def drain(self) -> None:
        """Wait until every queued run and scheduled retry has finished."""
        while True:
            await self._queue.join()
            if not self._retry_tasks:
                return
            await asyncio.wait(set(self._retry_tasks))

    async def stop(self) -> None:
        """Stop accepting runs and cancel workers and pending retries.

        Runs still pending stay in ``scrape_runs`` and are picked up by
        ``recover()`` on the next start.
        """
        self._accepting = False
        tasks = [*self._retry_tasks, *self._workers]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._retry_tasks.clear()
        logger.info("Scrape workers stopped")

    # ── Workers ──────────────────────────────────────────

    async def _worker(self, index: int) -> None:
        logger.debug("Worker %d ready", index)
        while True:
            run = await self._queue.get()
            try:
                await self._process(run)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Worker %d crashed on run %s", index, run.id[:8])
                self._release(run)
            finally:
                self._queue.task_done()

    async def _process(self, run: ScrapeRun) -> None:
        self._waiting.discard(run.id)
        if run.is_terminal:
            logger.debug("Skipping cancelled run %s", run.id[:8])
            return
        source = self.sources.get(run.source_id)
        if source is None:
            run.add_error("Source is no longer configured")
            run.finish(RunStatus.FAILED)
            await queries.update_run(self.db, run)
            self._release(run)
            return

        finished = await self._executor.execute(run, source)
        self._book.record_run(finished)

        if (
            finished.status is RunStatus.FAILED
            and finished.attempt <= self.config.max_run_retries
            and self._accepting
        ):
            await self._schedule_retry(finished)
        else:
            self._release(finished)

    async def _schedule_retry(self, failed: ScrapeRun) -> None:
        retry = failed.retry()
        self._active[retry.source_id] = retry
        try:
            await queries.insert_run(self.db, retry)
        except Exception:
            self._release(retry)
            raise

        self._waiting.add(retry.id)
        self._delayed.add(retry.id)
        delay = self._backoff.delay(failed.attempt)
        logger.info(
            "Retrying %s in %.1fs (attempt %d of %d)",
            retry.source_id, delay, retry.attempt, self.config.max_run_retries + 1,
        )
        task = asyncio.create_task(self._queue_later(retry, delay))
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)

    async def _queue_later(self, run: ScrapeRun, delay: float) -> None:
        await asyncio.sleep(delay)
        self._delayed.discard(run.id)
        self._queue.put_nowait(run)

    def _release(self, run: ScrapeRun) -> None:
        current = self._active.get(run.source_id)
        if current is not None and current.id == run.id:
            del self._active[run.source_id]
