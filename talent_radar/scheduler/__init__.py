"""Talent Radar — Scheduler Package.

  - RunScheduler: per-source locking, durable run queue, worker pool
  - StatsBook / StatsReporter: run aggregates, health and manual triggers
"""

from talent_radar.scheduler.stats import SourceStats, StatsBook, StatsReporter
from talent_radar.scheduler.queue import RunScheduler

__all__ = [
    "RunScheduler",
    "SourceStats",
    "StatsBook",
    "StatsReporter",
]
