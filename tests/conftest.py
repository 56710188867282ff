"""Shared pytest fixtures for the talent_radar test suite.

Provides:
    scraper_config   -- fetcher config with zero backoff (no real sleeps)
    scheduler_config -- one worker, no run retries
    db               -- initialized aiosqlite Database under tmp_path
    make_source      -- factory for Source objects with test selectors
    listing_html     -- helper that renders job-list-item markup
    mock_transport   -- factory for httpx.MockTransport serving fixed pages
"""

import os
import tempfile

# Keep test log files out of the project logs/ directory
os.environ.setdefault("TALENT_RADAR_LOG_DIR", tempfile.mkdtemp(prefix="talent_radar_logs_"))

import httpx
import pytest
import pytest_asyncio

from talent_radar.config import SchedulerConfig, ScraperConfig, build_source
from talent_radar.database.db import Database


# ---------------------------------------------------------------------------
# Configuration fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def scraper_config() -> ScraperConfig:
    return ScraperConfig(
        max_retries=2,
        timeout_seconds=5.0,
        backoff_base_seconds=0.0,
        backoff_max_seconds=0.0,
        backoff_jitter=0.0,
        throttle_multiplier=3.0,
        user_agents=("TestAgent/1.0", "TestAgent/2.0"),
    )


@pytest.fixture()
def scheduler_config() -> SchedulerConfig:
    return SchedulerConfig(
        workers=1,
        max_run_seconds=30.0,
        max_run_retries=0,
        retry_base_seconds=0.0,
        retry_max_seconds=0.0,
        queue_size=10,
        stats_window=5,
    )


# ---------------------------------------------------------------------------
# Database fixture
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def db(tmp_path):
    """Yield an initialized Database in a temporary directory."""
    database = Database(str(tmp_path / "radar.db"))
    await database.initialize()
    yield database
    await database.close()


# ---------------------------------------------------------------------------
# Source factory
# ---------------------------------------------------------------------------

BASE_URL = "https://jobs.example.com/java/"

DEFAULT_FIELDS = {
    "title": [".job-title", "h2"],
    "company": [".company-name"],
    "location": [".location"],
}


def _source_dict(
    source_id: str = "example",
    fields: dict | None = None,
    containers: list[str] | None = None,
    max_pages: int = 1,
    stable_external_ids: bool = False,
    **overrides,
) -> dict:
    data = {
        "id": source_id,
        "name": f"Example ({source_id})",
        "base_url": BASE_URL,
        "stable_external_ids": stable_external_ids,
        "pagination": {
            "strategy": "path" if max_pages > 1 else "none",
            "template": "{base_url}page/{page}/",
            "max_pages": max_pages,
        },
        "rate_limit": {"max_requests": 100, "period_seconds": 0},
        "selectors": {
            "containers": containers or [".job-list-item", "article.job"],
            "fields": fields or DEFAULT_FIELDS,
        },
    }
    data.update(overrides)
    return data


@pytest.fixture()
def make_source():
    """Return a factory: make_source(**overrides) -> Source."""
    def _make(**kwargs):
        return build_source(_source_dict(**kwargs))
    return _make


# ---------------------------------------------------------------------------
# HTML helpers
# ---------------------------------------------------------------------------

def render_listings(items: list[dict], container_class: str = "job-list-item", tag: str = "div") -> str:
    """Render listing markup. Each item may carry title/company/location/salary/tech/href/id."""
    blocks = []
    for item in items:
        cls = f' class="{container_class}"' if container_class else ""
        parts = [f"<{tag}{cls} data-id=\"{item.get('id', '')}\">"]
        if "title" in item:
            parts.append(f'<h6 class="job-title">{item["title"]}</h6>')
        if "company" in item:
            parts.append(f'<span class="company-name">{item["company"]}</span>')
        if "location" in item:
            parts.append(f'<span class="location">{item["location"]}</span>')
        if "salary" in item:
            parts.append(f'<span class="salary">{item["salary"]}</span>')
        if "work_model" in item:
            parts.append(f'<span class="badge">{item["work_model"]}</span>')
        for tech in item.get("tech", []):
            parts.append(f'<img src="/t.png" title="{tech}">')
        if "href" in item:
            parts.append(f'<a class="overlay-link" href="{item["href"]}">Open</a>')
        parts.append(f"</{tag}>")
        blocks.append("".join(parts))
    return "<html><body><main>" + "\n".join(blocks) + "</main></body></html>"


@pytest.fixture()
def listing_html():
    return render_listings


@pytest.fixture()
def mock_transport():
    """Return a factory: mock_transport(pages) where pages maps URL → body or status.

    A value that is an int is returned as an empty response with that
    status; a string is returned as a 200 HTML page. Unknown URLs get 404.
    Every request URL is appended to ``transport.calls``.
    """
    def _make(pages: dict):
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            url = str(request.url)
            calls.append(url)
            body = pages.get(url, 404)
            if isinstance(body, int):
                return httpx.Response(body)
            return httpx.Response(200, text=body, headers={"Content-Type": "text/html"})

        transport = httpx.MockTransport(handler)
        transport.calls = calls
        return transport
    return _make
