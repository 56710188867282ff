"""Talent Radar — Scraper Package.

Fetch → extract → deduplicate pipeline for job-board listing pages:
  - PageFetcher: async HTTP client with retry and rate limiting
  - Extractor: selector-cascade listing extraction
  - Deduplicator: insert-or-update by identity key
  - RunExecutor: executes one ScrapeRun end-to-end
"""

from talent_radar.scraper.client import PageFetcher
from talent_radar.scraper.extractor import Extraction, Extractor, PageExtraction
from talent_radar.scraper.dedup import Deduplicator
from talent_radar.scraper.pipeline import RunExecutor

__all__ = [
    "PageFetcher",
    "Extraction",
    "Extractor",
    "PageExtraction",
    "Deduplicator",
    "RunExecutor",
]
