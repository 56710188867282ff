"""Talent Radar — Deduplicator.

Resolves a candidate VacancyRecord against storage by its identity key:
  - absent            → NEW       (insert with a fresh id)
  - different content → UPDATED   (keep id and first_seen_at)
  - same content      → UNCHANGED (no write)

Records are never deleted here.
"""

from __future__ import annotations

from talent_radar.database import queries
from talent_radar.database.db import Database
from talent_radar.database.models import Resolution, VacancyRecord, new_id, utcnow
from talent_radar.utils.logger import get_logger

logger = get_logger(__name__)


class Deduplicator:
    """Insert-or-update gate in front of the vacancies table."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def resolve(self, record: VacancyRecord) -> Resolution:
        """Persist ``record`` if it is new or changed.

        On return ``record.id``, ``first_seen_at`` and ``updated_at``
        reflect the stored row.

        Raises:
            PersistenceError: If the lookup or the write fails.
        """
        existing = await queries.find_by_identity(self.db, record.source_id, record.identity_key)

        if existing is None:
            now = utcnow()
            record.id = new_id()
            record.first_seen_at = now
            record.updated_at = now
            await queries.upsert_vacancy(self.db, record)
            logger.debug("NEW %s — %s @ %s", record.identity_key, record.title, record.company)
            return Resolution.NEW

        record.id = existing.id
        record.first_seen_at = existing.first_seen_at

        if existing.raw_content_hash == record.raw_content_hash:
            record.updated_at = existing.updated_at
            return Resolution.UNCHANGED

        record.updated_at = utcnow()
        await queries.upsert_vacancy(self.db, record)
        logger.debug("UPDATED %s — %s", record.identity_key, record.title)
        return Resolution.UPDATED
