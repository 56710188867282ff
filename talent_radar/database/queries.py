"""Talent Radar — Database Query Operations.

All async database read/write operations. Every function:
  - Uses parameterized queries (? placeholders, never f-strings for values)
  - Handles connection via the Database instance
  - Commits after writes
  - Returns models or clean dictionaries (converts Row objects)
  - Logs operations at DEBUG level
  - Wraps driver failures in PersistenceError
"""

from __future__ import annotations

import json
import sqlite3
from typing import Any, Optional

from talent_radar.config import Source, build_source
from talent_radar.database.db import Database
from talent_radar.database.models import RunStatus, ScrapeRun, VacancyRecord, utcnow
from talent_radar.errors import PersistenceError
from talent_radar.utils.logger import get_logger

logger = get_logger(__name__)

_VACANCY_COLUMNS = (
    "id", "source_id", "identity_key", "external_id", "url", "title",
    "company", "location", "work_model", "salary_min", "salary_max",
    "currency", "technologies", "responsibilities", "requirements",
    "benefits", "extraction_confidence", "raw_content_hash",
    "first_seen_at", "updated_at",
)
# Never rewritten by an upsert
_IMMUTABLE_VACANCY_COLUMNS = ("id", "source_id", "identity_key", "first_seen_at")

_RUN_COLUMNS = (
    "id", "source_id", "triggered_by", "attempt", "retry_of", "status",
    "created_at", "started_at", "finished_at", "fetched", "created",
    "updated", "unchanged", "skipped", "failed", "pages", "cancelled",
    "errors", "version",
)


def _row_to_dict(row: Any) -> dict[str, Any]:
    """Convert an aiosqlite Row to a plain dictionary."""
    return dict(row)


# ═══════════════════════════════════════════════════════════
# Source Operations
# ═══════════════════════════════════════════════════════════


async def sync_sources(db: Database, sources: tuple[Source, ...] | list[Source]) -> None:
    """Insert or refresh every configured source.

    Sources removed from settings are disabled rather than deleted so
    their run history stays attached.
    """
    conn = await db.get_connection()
    now = utcnow()
    try:
        await conn.execute("UPDATE sources SET enabled = 0")
        for source in sources:
            await conn.execute(
                """
                INSERT INTO sources (id, name, base_url, enabled, config, synced_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    base_url = excluded.base_url,
                    enabled = excluded.enabled,
                    config = excluded.config,
                    synced_at = excluded.synced_at
                """,
                (
                    source.id, source.name, source.base_url, int(source.enabled),
                    json.dumps(source.to_dict(), ensure_ascii=False), now,
                ),
            )
        await conn.commit()
    except sqlite3.Error as e:
        await conn.rollback()
        raise PersistenceError(f"Failed to sync sources: {e}") from e
    logger.debug("Synced %d sources", len(sources))


async def list_sources(db: Database, enabled_only: bool = True) -> list[Source]:
    """Return configured sources rebuilt from their stored settings."""
    conn = await db.get_connection()
    sql = "SELECT config FROM sources"
    if enabled_only:
        sql += " WHERE enabled = 1"
    cursor = await conn.execute(sql + " ORDER BY id")
    rows = await cursor.fetchall()
    return [build_source(json.loads(row["config"])) for row in rows]


# ═══════════════════════════════════════════════════════════
# Vacancy Operations
# ═══════════════════════════════════════════════════════════


async def find_by_identity(
    db: Database, source_id: str, identity_key: str,
) -> Optional[VacancyRecord]:
    """Look up a vacancy by its identity within a source.

    Returns:
        The stored VacancyRecord, or None if not found.
    """
    conn = await db.get_connection()
    try:
        cursor = await conn.execute(
            "SELECT * FROM vacancies WHERE source_id = ? AND identity_key = ?",
            (source_id, identity_key),
        )
        row = await cursor.fetchone()
    except sqlite3.Error as e:
        raise PersistenceError(f"Lookup failed for {source_id}/{identity_key}: {e}") from e
    logger.debug("find_by_identity(%s, %s) = %s", source_id, identity_key, row is not None)
    if row is None:
        return None
    return VacancyRecord.from_db_row(_row_to_dict(row))


async def upsert_vacancy(db: Database, record: VacancyRecord) -> None:
    """Insert a vacancy, or update every mutable column of an existing one.

    The (source_id, identity_key) unique constraint is the conflict
    target; id and first_seen_at of an existing row are kept.
    """
    conn = await db.get_connection()
    d = record.to_db_dict()
    columns = ", ".join(_VACANCY_COLUMNS)
    placeholders = ", ".join("?" for _ in _VACANCY_COLUMNS)
    updates = ", ".join(
        f"{col} = excluded.{col}"
        for col in _VACANCY_COLUMNS
        if col not in _IMMUTABLE_VACANCY_COLUMNS
    )
    try:
        await conn.execute(
            f"""
            INSERT INTO vacancies ({columns}) VALUES ({placeholders})
            ON CONFLICT(source_id, identity_key) DO UPDATE SET {updates}
            """,
            tuple(d[col] for col in _VACANCY_COLUMNS),
        )
        await conn.commit()
    except sqlite3.Error as e:
        raise PersistenceError(f"Upsert failed for {record.identity_key}: {e}") from e
    logger.debug("Upserted vacancy %s — %s", record.identity_key, record.title[:40])


async def count_vacancies(db: Database, source_id: Optional[str] = None) -> int:
    conn = await db.get_connection()
    if source_id is None:
        cursor = await conn.execute("SELECT COUNT(*) FROM vacancies")
    else:
        cursor = await conn.execute(
            "SELECT COUNT(*) FROM vacancies WHERE source_id = ?", (source_id,),
        )
    row = await cursor.fetchone()
    return row[0] if row else 0


async def get_vacancies(db: Database, source_id: str, limit: int = 100) -> list[VacancyRecord]:
    """Most recently updated vacancies of a source."""
    conn = await db.get_connection()
    cursor = await conn.execute(
        "SELECT * FROM vacancies WHERE source_id = ? ORDER BY updated_at DESC, id LIMIT ?",
        (source_id, limit),
    )
    rows = await cursor.fetchall()
    return [VacancyRecord.from_db_row(_row_to_dict(r)) for r in rows]


# ═══════════════════════════════════════════════════════════
# Scrape Run Operations
# ═══════════════════════════════════════════════════════════


async def insert_run(db: Database, run: ScrapeRun) -> None:
    """Persist a new run (normally pending)."""
    conn = await db.get_connection()
    d = run.to_db_dict()
    try:
        await conn.execute(
            f"INSERT INTO scrape_runs ({', '.join(_RUN_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in _RUN_COLUMNS)})",
            tuple(d[col] for col in _RUN_COLUMNS),
        )
        await conn.commit()
    except sqlite3.Error as e:
        raise PersistenceError(f"Failed to insert run {run.id}: {e}") from e
    logger.debug("Inserted run %s for %s (attempt %d)", run.id, run.source_id, run.attempt)


async def update_run(db: Database, run: ScrapeRun) -> None:
    """Write the run's current state, guarded by its version.

    On success ``run.version`` is incremented to match the stored row.

    Raises:
        PersistenceError: If the stored version moved on (another writer)
            or the row does not exist.
    """
    conn = await db.get_connection()
    d = run.to_db_dict()
    mutable = [c for c in _RUN_COLUMNS if c not in ("id", "version")]
    assignments = ", ".join(f"{col} = ?" for col in mutable)
    try:
        cursor = await conn.execute(
            f"UPDATE scrape_runs SET {assignments}, version = version + 1 "
            "WHERE id = ? AND version = ?",
            (*(d[col] for col in mutable), run.id, run.version),
        )
        await conn.commit()
    except sqlite3.Error as e:
        raise PersistenceError(f"Failed to update run {run.id}: {e}") from e
    if cursor.rowcount != 1:
        raise PersistenceError(
            f"Stale update for run {run.id} (version {run.version})"
        )
    run.version += 1
    logger.debug("Run %s → %s (v%d)", run.id, run.status.value, run.version)


async def get_run(db: Database, run_id: str) -> Optional[ScrapeRun]:
    conn = await db.get_connection()
    cursor = await conn.execute("SELECT * FROM scrape_runs WHERE id = ?", (run_id,))
    row = await cursor.fetchone()
    if row is None:
        return None
    return ScrapeRun.from_db_row(_row_to_dict(row))


async def get_runs_by_status(db: Database, *statuses: RunStatus) -> list[ScrapeRun]:
    """Runs in any of the given statuses, oldest first."""
    if not statuses:
        return []
    conn = await db.get_connection()
    placeholders = ", ".join("?" for _ in statuses)
    cursor = await conn.execute(
        f"SELECT * FROM scrape_runs WHERE status IN ({placeholders}) "
        "ORDER BY created_at, rowid",
        tuple(s.value for s in statuses),
    )
    rows = await cursor.fetchall()
    return [ScrapeRun.from_db_row(_row_to_dict(r)) for r in rows]


async def get_recent_runs(
    db: Database, source_id: Optional[str] = None, limit: int = 50,
) -> list[ScrapeRun]:
    """Most recent runs, newest first, optionally for one source."""
    conn = await db.get_connection()
    if source_id is None:
        cursor = await conn.execute(
            "SELECT * FROM scrape_runs ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (limit,),
        )
    else:
        cursor = await conn.execute(
            "SELECT * FROM scrape_runs WHERE source_id = ? "
            "ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (source_id, limit),
        )
    rows = await cursor.fetchall()
    return [ScrapeRun.from_db_row(_row_to_dict(r)) for r in rows]


async def get_terminal_runs(db: Database) -> list[ScrapeRun]:
    """All finished runs, oldest first (used to rebuild stats)."""
    conn = await db.get_connection()
    cursor = await conn.execute(
        "SELECT * FROM scrape_runs WHERE status IN (?, ?) ORDER BY created_at, rowid",
        (RunStatus.COMPLETED.value, RunStatus.FAILED.value),
    )
    rows = await cursor.fetchall()
    return [ScrapeRun.from_db_row(_row_to_dict(r)) for r in rows]


async def count_runs_by_status(db: Database) -> dict[str, int]:
    """Stored run counts per status, plus how many of them were cancelled."""
    conn = await db.get_connection()
    cursor = await conn.execute(
        "SELECT status, SUM(cancelled) AS cancelled, COUNT(*) AS n "
        "FROM scrape_runs GROUP BY status"
    )
    rows = await cursor.fetchall()
    counts = {status.value: 0 for status in RunStatus}
    counts["cancelled"] = 0
    for row in rows:
        counts[row["status"]] = row["n"]
        counts["cancelled"] += row["cancelled"] or 0
    return counts
