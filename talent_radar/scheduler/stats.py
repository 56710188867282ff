"""Talent Radar — Run Statistics and Health.

StatsBook keeps one versioned, immutable SourceStats per source. Only
the worker finishing a run writes (``record_run``); every write builds a
new SourceStats with ``version + 1`` and swaps a new mapping in, so
``snapshot()`` readers never see a half-applied update and need no lock.

StatsReporter is the read side used by the REST adapter: stats rows,
in-flight runs, run lookup, queue counts and health. Manual triggers,
cancels and bulk retries are delegated to the scheduler. It has no
write access to vacancies or sources.

Usage:
    book = StatsBook(window=20)
    book.load(await queries.get_terminal_runs(db))
    reporter = StatsReporter(book, scheduler)
    rows = reporter.get_stats()
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Iterable, Optional

from talent_radar.database.models import RunStatus, ScrapeRun
from talent_radar.errors import RunRejectedError
from talent_radar.utils.logger import get_logger

if TYPE_CHECKING:
    from talent_radar.scheduler.queue import RunScheduler

logger = get_logger(__name__)


@dataclass(frozen=True)
class SourceStats:
    """Aggregate over the run history of one source.

    ``window`` holds (succeeded, fetched) for the most recent runs, oldest
    first; the rolling rates are computed over it. Totals are cumulative.
    """

    source_id: str
    version: int = 0
    runs: int = 0
    failed_runs: int = 0
    last_run_id: Optional[str] = None
    last_run_at: Optional[str] = None
    last_status: Optional[str] = None
    total_scraped: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    window: tuple[tuple[bool, int], ...] = ()

    @property
    def success_rate(self) -> float:
        if not self.window:
            return 0.0
        return sum(1 for ok, _ in self.window if ok) / len(self.window)

    @property
    def avg_listings(self) -> float:
        if not self.window:
            return 0.0
        return sum(fetched for _, fetched in self.window) / len(self.window)

    @property
    def degraded(self) -> bool:
        return self.last_status == RunStatus.FAILED.value

    def with_run(self, run: ScrapeRun, window_size: int) -> "SourceStats":
        succeeded = run.status is RunStatus.COMPLETED
        window = (self.window + ((succeeded, run.counts.fetched),))[-window_size:]
        return replace(
            self,
            version=self.version + 1,
            runs=self.runs + 1,
            failed_runs=self.failed_runs + (0 if succeeded else 1),
            last_run_id=run.id,
            last_run_at=run.finished_at or run.started_at or run.created_at,
            last_status=run.status.value,
            total_scraped=self.total_scraped + run.counts.fetched,
            created=self.created + run.counts.created,
            updated=self.updated + run.counts.updated,
            failed=self.failed + run.counts.failed,
            window=window,
        )


class StatsBook:
    """Copy-on-write store of SourceStats, keyed by source id."""

    def __init__(self, window: int = 20) -> None:
        self.window = max(1, window)
        self._stats: dict[str, SourceStats] = {}

    def record_run(self, run: ScrapeRun) -> SourceStats:
        """Fold a terminal run into its source's aggregate.

        Runs cancelled before they started are not part of the history.
        """
        if not run.is_terminal:
            raise ValueError(f"Run {run.id} is still {run.status.value}")
        current = self._stats.get(run.source_id) or SourceStats(source_id=run.source_id)
        if run.cancelled and run.started_at is None:
            return current
        updated = current.with_run(run, self.window)
        self._stats = {**self._stats, run.source_id: updated}
        return updated

    def load(self, runs: Iterable[ScrapeRun]) -> int:
        """Rebuild from stored history (oldest first). Returns runs folded."""
        self._stats = {}
        count = 0
        for run in runs:
            if run.is_terminal:
                self.record_run(run)
                count += 1
        logger.info("Stats rebuilt from %d finished runs", count)
        return count

    def get(self, source_id: str) -> SourceStats:
        return self._stats.get(source_id) or SourceStats(source_id=source_id)

    def snapshot(self) -> dict[str, SourceStats]:
        return self._stats


class StatsReporter:
    """Read-only view over StatsBook and the scheduler's live state.

    Attributes:
        book: Aggregates per source.
        scheduler: Scheduler for in-flight runs and manual triggers.
    """

    def __init__(self, book: StatsBook, scheduler: "RunScheduler") -> None:
        self.book = book
        self.scheduler = scheduler
        self._start_time = time.monotonic()

    def get_stats(self) -> list[dict[str, Any]]:
        """One row per configured source, in configuration order."""
        snapshot = self.book.snapshot()
        rows = []
        for source_id in self.scheduler.sources:
            stats = snapshot.get(source_id) or SourceStats(source_id=source_id)
            active = self.scheduler.active_run(source_id)
            rows.append({
                "source": source_id,
                "lastRunAt": stats.last_run_at,
                "status": stats.last_status,
                "totalScraped": stats.total_scraped,
                "created": stats.created,
                "updated": stats.updated,
                "failed": stats.failed,
                "failedRuns": stats.failed_runs,
                "runs": stats.runs,
                "successRate": round(stats.success_rate, 3),
                "avgListings": round(stats.avg_listings, 1),
                "inFlight": active.to_api_dict() if active else None,
                "version": stats.version,
            })
        return rows

    def in_flight(self) -> list[dict[str, Any]]:
        return [run.to_api_dict() for run in self.scheduler.in_flight().values()]

    async def get_run(self, run_id: str) -> Optional[dict[str, Any]]:
        run = await self.scheduler.find_run(run_id)
        return run.to_api_dict() if run is not None else None

    async def trigger_manual(self, source_id: str) -> ScrapeRun:
        """Queue a manual run.

        Raises:
            UnknownSourceError, RunAlreadyActiveError, RunRejectedError:
                Propagated from the scheduler.
        """
        return await self.scheduler.enqueue(source_id, trigger="manual")

    async def cancel_run(self, run_id: str) -> ScrapeRun:
        """Cancel a pending run.

        Raises:
            UnknownRunError, RunNotPendingError: Propagated from the scheduler.
        """
        return await self.scheduler.cancel(run_id)

    async def retry_failed(self) -> dict[str, Any]:
        """Queue a fresh run for every source whose last run failed.

        Sources that already have an active run, or that the scheduler
        rejects, are reported under ``skipped`` with the reason.
        """
        snapshot = self.book.snapshot()
        queued: list[dict[str, str]] = []
        skipped: dict[str, str] = {}
        for source_id in self.scheduler.sources:
            stats = snapshot.get(source_id)
            if stats is None or not stats.degraded:
                continue
            try:
                run = await self.scheduler.enqueue(source_id, trigger="retry")
            except RunRejectedError as e:
                skipped[source_id] = str(e)
                continue
            queued.append({"source": source_id, "runId": run.id})
        if queued or skipped:
            logger.info("Bulk retry: %d queued, %d skipped", len(queued), len(skipped))
        return {"queued": queued, "skipped": skipped}

    async def queue_stats(self) -> dict[str, int]:
        return await self.scheduler.queue_stats()

    def health(self) -> dict[str, Any]:
        """Queue, worker and per-source health summary."""
        uptime_s = time.monotonic() - self._start_time
        snapshot = self.book.snapshot()
        degraded = sorted(sid for sid, s in snapshot.items() if s.degraded and sid in self.scheduler.sources)
        workers = self.scheduler.config.workers
        alive = self.scheduler.workers_alive

        status = "ok"
        if alive < workers or degraded:
            status = "degraded"

        return {
            "status": status,
            "uptime": self._format_uptime(uptime_s),
            "uptimeSeconds": round(uptime_s, 1),
            "queueDepth": self.scheduler.queue_depth,
            "workers": {"configured": workers, "alive": alive},
            "inFlight": len(self.scheduler.in_flight()),
            "degradedSources": degraded,
            "memoryMb": round(self._get_memory_mb(), 1),
        }

    @staticmethod
    def _get_memory_mb() -> float:
        """Current process RSS in MB (0.0 where /proc is unavailable)."""
        try:
            with open("/proc/self/status") as f:
                for line in f:
                    if line.startswith("VmRSS:"):
                        return int(line.split()[1]) / 1024  # kB → MB
        except (OSError, ValueError, IndexError):
            pass
        return 0.0

    @staticmethod
    def _format_uptime(seconds: float) -> str:
        hours = int(seconds // 3600)
        mins = int((seconds % 3600) // 60)
        if hours >= 24:
            return f"{hours // 24}d {hours % 24}h {mins}m"
        if hours:
            return f"{hours}h {mins}m"
        return f"{mins}m"
