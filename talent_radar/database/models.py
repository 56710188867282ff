"""Talent Radar — Data Models.

Dataclasses for the entities the pipeline writes: normalized vacancy
records and scrape runs with their counters.

Each persisted dataclass includes:
  - to_db_dict(): converts to a dict suitable for SQLite insertion
  - from_db_row(row): classmethod to reconstruct from a DB row dict
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utcnow() -> str:
    """Current UTC time as an ISO-8601 string (second precision)."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


def _json_list(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
        return list(parsed) if isinstance(parsed, list) else []
    return list(value)


# ═══════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (RunStatus.PENDING, RunStatus.RUNNING)


class Resolution(str, Enum):
    """Outcome of resolving a candidate against storage."""

    NEW = "new"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


# ═══════════════════════════════════════════════════════════
# Vacancy Records
# ═══════════════════════════════════════════════════════════


@dataclass
class VacancyRecord:
    """A normalized job posting.

    Attributes:
        id: Internal id, assigned on first insert and never changed.
        source_id: Source the posting was scraped from.
        identity_key: Stable key within the source (see normalize.identity_key).
        external_id: The board's own posting id, when exposed.
        extraction_confidence: 0-100 completeness score.
        raw_content_hash: Hash of the normalized payload, used to detect updates.
    """

    source_id: str
    identity_key: str
    title: str
    company: str
    id: str = ""
    external_id: Optional[str] = None
    url: str = ""
    location: str = ""
    work_model: str = ""
    salary_min: Optional[float] = None
    salary_max: Optional[float] = None
    currency: str = ""
    technologies: list[str] = field(default_factory=list)
    responsibilities: list[str] = field(default_factory=list)
    requirements: list[str] = field(default_factory=list)
    benefits: list[str] = field(default_factory=list)
    extraction_confidence: int = 0
    raw_content_hash: str = ""
    first_seen_at: str = ""
    updated_at: str = ""

    def to_db_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for SQLite insertion (lists as JSON)."""
        d = {f.name: getattr(self, f.name) for f in fields(self)}
        for key in ("technologies", "responsibilities", "requirements", "benefits"):
            d[key] = json.dumps(d[key], ensure_ascii=False)
        return d

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> "VacancyRecord":
        return cls(
            id=row["id"],
            source_id=row["source_id"],
            identity_key=row["identity_key"],
            external_id=row.get("external_id"),
            url=row.get("url") or "",
            title=row["title"],
            company=row["company"],
            location=row.get("location") or "",
            work_model=row.get("work_model") or "",
            salary_min=row.get("salary_min"),
            salary_max=row.get("salary_max"),
            currency=row.get("currency") or "",
            technologies=_json_list(row.get("technologies")),
            responsibilities=_json_list(row.get("responsibilities")),
            requirements=_json_list(row.get("requirements")),
            benefits=_json_list(row.get("benefits")),
            extraction_confidence=row.get("extraction_confidence", 0),
            raw_content_hash=row.get("raw_content_hash") or "",
            first_seen_at=row.get("first_seen_at") or "",
            updated_at=row.get("updated_at") or "",
        )


# ═══════════════════════════════════════════════════════════
# Scrape Runs
# ═══════════════════════════════════════════════════════════

MAX_RUN_ERRORS = 50


@dataclass
class RunCounts:
    """Per-run listing counters."""

    fetched: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0

    def record(self, resolution: Resolution) -> None:
        if resolution is Resolution.NEW:
            self.created += 1
        elif resolution is Resolution.UPDATED:
            self.updated += 1
        else:
            self.unchanged += 1

    def to_dict(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class ScrapeRun:
    """One execution of the pipeline against one source.

    Status transitions belong to the worker executing the run; a run is
    terminal once completed or failed. A retry is a new run pointing back
    through ``retry_of``.
    """

    source_id: str
    id: str = field(default_factory=new_id)
    trigger: str = "manual"
    attempt: int = 1
    retry_of: Optional[str] = None
    status: RunStatus = RunStatus.PENDING
    created_at: str = field(default_factory=utcnow)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    counts: RunCounts = field(default_factory=RunCounts)
    pages: int = 0
    cancelled: bool = False
    errors: list[str] = field(default_factory=list)
    version: int = 0

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    @property
    def is_terminal(self) -> bool:
        return not self.status.is_active

    def add_error(self, message: str) -> None:
        if len(self.errors) < MAX_RUN_ERRORS:
            self.errors.append(message[:300])

    def mark_running(self) -> None:
        if self.status is not RunStatus.PENDING:
            raise ValueError(f"Run {self.id} cannot start from {self.status.value}")
        self.status = RunStatus.RUNNING
        self.started_at = utcnow()

    def finish(self, status: RunStatus) -> None:
        if self.is_terminal:
            raise ValueError(f"Run {self.id} is already {self.status.value}")
        if status.is_active:
            raise ValueError(f"{status.value} is not a terminal status")
        self.status = status
        self.finished_at = utcnow()

    def retry(self) -> "ScrapeRun":
        """A fresh pending run for the next attempt."""
        return ScrapeRun(
            source_id=self.source_id,
            trigger=self.trigger,
            attempt=self.attempt + 1,
            retry_of=self.id,
        )

    def snapshot(self) -> "ScrapeRun":
        """Detached copy for readers outside the owning worker."""
        return replace(self, counts=replace(self.counts), errors=list(self.errors))

    def to_db_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "triggered_by": self.trigger,
            "attempt": self.attempt,
            "retry_of": self.retry_of,
            "status": self.status.value,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            **self.counts.to_dict(),
            "pages": self.pages,
            "cancelled": int(self.cancelled),
            "errors": json.dumps(self.errors, ensure_ascii=False),
            "version": self.version,
        }

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "runId": self.id,
            "source": self.source_id,
            "trigger": self.trigger,
            "attempt": self.attempt,
            "retryOf": self.retry_of,
            "status": self.status.value,
            "createdAt": self.created_at,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "counts": self.counts.to_dict(),
            "pages": self.pages,
            "cancelled": self.cancelled,
            "errors": list(self.errors),
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> "ScrapeRun":
        return cls(
            id=row["id"],
            source_id=row["source_id"],
            trigger=row.get("triggered_by") or "manual",
            attempt=row.get("attempt", 1),
            retry_of=row.get("retry_of"),
            status=RunStatus(row["status"]),
            created_at=row.get("created_at") or "",
            started_at=row.get("started_at"),
            finished_at=row.get("finished_at"),
            counts=RunCounts(
                fetched=row.get("fetched", 0),
                created=row.get("created", 0),
                updated=row.get("updated", 0),
                unchanged=row.get("unchanged", 0),
                skipped=row.get("skipped", 0),
                failed=row.get("failed", 0),
            ),
            pages=row.get("pages", 0),
            cancelled=bool(row.get("cancelled", 0)),
            errors=_json_list(row.get("errors")),
            version=row.get("version", 0),
        )
