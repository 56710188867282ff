"""Talent Radar — SQLite Connection Manager.

Provides async SQLite database connection management using aiosqlite.
Handles database initialization, schema creation, indexes, and
connection lifecycle.
"""

from __future__ import annotations

import aiosqlite
from pathlib import Path

from talent_radar.utils.logger import get_logger

logger = get_logger(__name__)

# ── Schema Definitions ────────────────────────────────────
SCHEMA_SQL = """
-- ═══ Sources Table ═══
-- Configured job boards, synced from settings.yaml at startup.
CREATE TABLE IF NOT EXISTS sources (
    id          TEXT    PRIMARY KEY,
    name        TEXT    NOT NULL,
    base_url    TEXT    NOT NULL,
    enabled     INTEGER DEFAULT 1,
    config      TEXT    NOT NULL DEFAULT '{}',
    synced_at   TEXT    NOT NULL
);

-- ═══ Vacancies Table ═══
-- One row per (source, identity key). Rows are never deleted here.
CREATE TABLE IF NOT EXISTS vacancies (
    id                    TEXT    PRIMARY KEY,
    source_id             TEXT    NOT NULL,
    identity_key          TEXT    NOT NULL,
    external_id           TEXT,
    url                   TEXT    DEFAULT '',
    title                 TEXT    NOT NULL,
    company               TEXT    NOT NULL,
    location              TEXT    DEFAULT '',
    work_model            TEXT    DEFAULT '',
    salary_min            REAL,
    salary_max            REAL,
    currency              TEXT    DEFAULT '',
    technologies          TEXT    DEFAULT '[]',
    responsibilities      TEXT    DEFAULT '[]',
    requirements          TEXT    DEFAULT '[]',
    benefits              TEXT    DEFAULT '[]',
    extraction_confidence INTEGER DEFAULT 0,
    raw_content_hash      TEXT    NOT NULL,
    first_seen_at         TEXT    NOT NULL,
    updated_at            TEXT    NOT NULL,
    UNIQUE (source_id, identity_key)
);

-- ═══ Scrape Runs Table ═══
-- Durable run queue and history. version bumps on every update.
CREATE TABLE IF NOT EXISTS scrape_runs (
    id          TEXT    PRIMARY KEY,
    source_id   TEXT    NOT NULL,
    triggered_by TEXT   DEFAULT 'manual',
    attempt     INTEGER DEFAULT 1,
    retry_of    TEXT,
    status      TEXT    NOT NULL,
    created_at  TEXT    NOT NULL,
    started_at  TEXT,
    finished_at TEXT,
    fetched     INTEGER DEFAULT 0,
    created     INTEGER DEFAULT 0,
    updated     INTEGER DEFAULT 0,
    unchanged   INTEGER DEFAULT 0,
    skipped     INTEGER DEFAULT 0,
    failed      INTEGER DEFAULT 0,
    pages       INTEGER DEFAULT 0,
    cancelled   INTEGER DEFAULT 0,
    errors      TEXT    DEFAULT '[]',
    version     INTEGER DEFAULT 0
);

-- ═══ Performance Indexes ═══
CREATE INDEX IF NOT EXISTS idx_vacancies_source      ON vacancies(source_id);
CREATE INDEX IF NOT EXISTS idx_vacancies_updated     ON vacancies(updated_at);
CREATE INDEX IF NOT EXISTS idx_runs_source_created   ON scrape_runs(source_id, created_at);
CREATE INDEX IF NOT EXISTS idx_runs_status           ON scrape_runs(status);
"""


class Database:
    """Async SQLite database connection manager.

    Manages the database lifecycle including initialization, schema creation,
    and a persistent connection with WAL mode enabled.

    Attributes:
        db_path: Resolved absolute path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the database manager.

        Args:
            db_path: Relative or absolute path to the SQLite database file.
                     Parent directories will be created if they don't exist.
        """
        self.db_path = Path(db_path).resolve()
        self._connection: aiosqlite.Connection | None = None
        logger.debug("Database manager initialized with path: %s", self.db_path)

    async def initialize(self) -> None:
        """Open the connection, set pragmas and create the schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Connecting to database: %s", self.db_path)
        self._connection = await aiosqlite.connect(str(self.db_path))

        # WAL lets the stats reader run alongside run writes
        await self._connection.execute("PRAGMA journal_mode=WAL")
        self._connection.row_factory = aiosqlite.Row

        await self._connection.executescript(SCHEMA_SQL)
        await self._connection.commit()

        logger.info("Database initialized — all tables ready")

    async def get_connection(self) -> aiosqlite.Connection:
        """Get the active database connection, initializing if necessary."""
        if self._connection is None:
            await self.initialize()
        return self._connection

    async def close(self) -> None:
        """Close the database connection. Safe to call repeatedly."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    async def __aenter__(self) -> "Database":
        await self.initialize()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
