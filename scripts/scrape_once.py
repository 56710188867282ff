"""Talent Radar — Single Source Scrape.

Runs one scrape of one configured source through the real pipeline and
prints the run counters, the extraction quality per field, and a few of
the stored vacancies:
  1. Loads real config
  2. Executes one run for the source (no worker pool, no retries)
  3. Prints run counts and errors
  4. Prints database contents for the source
  5. Reports field fill rates

Run: python scripts/scrape_once.py <source_id> [--db data/scrape_once.db]
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from talent_radar.config import load_config
from talent_radar.database import queries
from talent_radar.database.db import Database
from talent_radar.database.models import RunStatus, ScrapeRun, VacancyRecord
from talent_radar.scraper.pipeline import RunExecutor
from talent_radar.utils.logger import get_logger

logger = get_logger(__name__)

REPORT_FIELDS = (
    "external_id", "url", "location", "work_model", "salary_max",
    "technologies", "responsibilities", "requirements", "benefits",
)


def _print_separator(char: str = "═", width: int = 70) -> None:
    logger.info(char * width)


def _print_vacancy(record: VacancyRecord, index: int) -> None:
    """Pretty-print one stored vacancy.

    Args:
        record: Vacancy loaded from the database.
        index: Display index.
    """
    logger.info("  ── Vacancy #%d ──────────────────────────────", index)
    logger.info("  Key:         %s", record.identity_key)
    logger.info("  Title:       %s", record.title)
    logger.info("  Company:     %s", record.company)
    logger.info("  Location:    %s", record.location or "—")
    logger.info("  Work model:  %s", record.work_model or "—")
    if record.salary_max is not None:
        logger.info(
            "  Salary:      %s - %s %s",
            record.salary_min if record.salary_min is not None else "?",
            record.salary_max, record.currency,
        )
    logger.info("  Tech:        %s", ", ".join(record.technologies) or "—")
    logger.info("  URL:         %s", record.url or "—")
    logger.info("  Confidence:  %d", record.extraction_confidence)


async def scrape_once(source_id: str, db_path: str) -> int:
    """Run one scrape and print the report. Returns a process exit code."""
    logger.info("╔══════════════════════════════════════════════════════╗")
    logger.info("║  Talent Radar — Single Source Scrape                ║")
    logger.info("╚══════════════════════════════════════════════════════╝")

    config = load_config()
    source = config.get_source(source_id)
    if source is None:
        logger.error("Unknown source '%s' (configured: %s)",
                     source_id, ", ".join(s.id for s in config.sources))
        return 2

    async with Database(db_path) as db:
        await queries.sync_sources(db, config.sources)

        # ── Run ──────────────────────────────────────────
        _print_separator()
        logger.info("  STEP 1: Scraping %s (%s)", source.name, source.base_url)
        _print_separator()

        run = ScrapeRun(source_id=source.id, trigger="script")
        await queries.insert_run(db, run)
        executor = RunExecutor(config.scraper, config.scheduler, db)
        run = await executor.execute(run, source)

        logger.info("  Status:  %s%s", run.status.value, " (cancelled)" if run.cancelled else "")
        logger.info("  Pages:   %d", run.pages)
        for key, value in run.counts.to_dict().items():
            logger.info("    %-10s %d", key, value)
        for error in run.errors:
            logger.info("  ⚠️  %s", error)

        # ── Stored vacancies ─────────────────────────────
        _print_separator()
        logger.info("  STEP 2: Database Contents — %s", source.id)
        _print_separator()

        vacancies = await queries.get_vacancies(db, source.id, limit=200)
        logger.info("  Total vacancies in DB: %d", await queries.count_vacancies(db, source.id))
        for i, record in enumerate(vacancies[:5], 1):
            _print_vacancy(record, i)
            logger.info("")

        # ── Extraction quality report ────────────────────
        _print_separator()
        logger.info("  STEP 3: Extraction Quality Report")
        _print_separator()

        for field in REPORT_FIELDS:
            filled = sum(1 for v in vacancies if getattr(v, field) not in (None, "", []))
            pct = (filled / len(vacancies) * 100) if vacancies else 0
            status = "✅" if pct == 100 else "⚠️" if pct >= 50 else "❌"
            logger.info("  %s %-18s %d/%d (%.0f%%)", status, field, filled, len(vacancies), pct)

    return 0 if run.status is RunStatus.COMPLETED else 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Scrape one configured source once.")
    parser.add_argument("source_id", help="Source id from config/settings.yaml")
    parser.add_argument(
        "--db",
        default=str(PROJECT_ROOT / "data" / "scrape_once.db"),
        help="SQLite database path (default: data/scrape_once.db)",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(scrape_once(args.source_id, args.db)))


if __name__ == "__main__":
    main()
