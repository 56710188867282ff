"""Tests for the aiohttp REST adapter, wired to a real scheduler and database."""

import pytest
import pytest_asyncio
from aiohttp import test_utils

from talent_radar.api import create_app
from talent_radar.database.models import RunStatus, ScrapeRun
from talent_radar.scheduler.queue import RunScheduler
from talent_radar.scheduler.stats import StatsBook, StatsReporter
from talent_radar.scraper.pipeline import RunExecutor

BASE = "https://jobs.example.com/java/"


@pytest.fixture()
def scheduler(db, scraper_config, scheduler_config, make_source, listing_html, mock_transport):
    transport = mock_transport({BASE: listing_html([{"title": "Java Developer", "company": "Acme"}])})
    executor = RunExecutor(scraper_config, scheduler_config, db, transport=transport)
    return RunScheduler(scheduler_config, db, executor, StatsBook(), [make_source()])


@pytest_asyncio.fixture()
async def client(scheduler):
    reporter = StatsReporter(scheduler._book, scheduler)
    async with test_utils.TestClient(test_utils.TestServer(create_app(reporter))) as test_client:
        yield test_client
    await scheduler.stop()


@pytest.mark.asyncio
async def test_manual_trigger_accepted(client):
    resp = await client.post("/scraper/example/manual")
    assert resp.status == 202
    body = await resp.json()
    assert body["status"] == "pending"
    assert body["runId"]


@pytest.mark.asyncio
async def test_manual_trigger_conflict_while_active(client):
    first = await client.post("/scraper/example/manual")
    run_id = (await first.json())["runId"]

    resp = await client.post("/scraper/example/manual")

    assert resp.status == 409
    assert (await resp.json())["runId"] == run_id


@pytest.mark.asyncio
async def test_manual_trigger_unknown_source(client):
    resp = await client.post("/scraper/nope/manual")
    assert resp.status == 404


@pytest.mark.asyncio
async def test_manual_trigger_rejected_when_stopped(client, scheduler):
    await scheduler.stop()
    resp = await client.post("/scraper/example/manual")
    assert resp.status == 503


@pytest.mark.asyncio
async def test_trigger_then_poll_run(client, scheduler):
    scheduler.start()
    resp = await client.post("/scraper/example/manual")
    run_id = (await resp.json())["runId"]
    await scheduler.drain()

    resp = await client.get(f"/scraper/runs/{run_id}")
    assert resp.status == 200
    run = await resp.json()
    assert run["status"] == "completed"
    assert run["counts"]["created"] == 1

    resp = await client.get("/scraper/stats")
    rows = await resp.json()
    assert rows[0]["source"] == "example"
    assert rows[0]["created"] == 1
    assert rows[0]["inFlight"] is None


@pytest.mark.asyncio
async def test_unknown_run(client):
    resp = await client.get("/scraper/runs/does-not-exist")
    assert resp.status == 404


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status == 200
    body = await resp.json()
    assert "queueDepth" in body
    assert body["workers"]["configured"] == 1


@pytest.mark.asyncio
async def test_cancel_pending_run(client):
    resp = await client.post("/scraper/example/manual")
    run_id = (await resp.json())["runId"]

    resp = await client.delete(f"/scraper/runs/{run_id}")
    assert resp.status == 200
    body = await resp.json()
    assert body["status"] == "completed"
    assert body["cancelled"] is True

    resp = await client.delete(f"/scraper/runs/{run_id}")
    assert resp.status == 409
    assert (await resp.json())["runStatus"] == "completed"

    # The source accepts a new trigger once its pending run is cancelled
    resp = await client.post("/scraper/example/manual")
    assert resp.status == 202


@pytest.mark.asyncio
async def test_cancel_unknown_run(client):
    resp = await client.delete("/scraper/runs/does-not-exist")
    assert resp.status == 404


@pytest.mark.asyncio
async def test_queue_counts(client):
    await client.post("/scraper/example/manual")
    resp = await client.get("/scraper/queue")
    assert resp.status == 200
    body = await resp.json()
    assert body["waiting"] == 1
    assert body["running"] == 0


@pytest.mark.asyncio
async def test_retry_failed_requeues_degraded_source(client, scheduler):
    failed = ScrapeRun(source_id="example")
    failed.mark_running()
    failed.finish(RunStatus.FAILED)
    scheduler._book.record_run(failed)

    resp = await client.post("/scraper/retry-failed")
    assert resp.status == 202
    body = await resp.json()
    assert [r["source"] for r in body["queued"]] == ["example"]
    assert scheduler.active_run("example").trigger == "retry"

    resp = await client.post("/scraper/retry-failed")
    assert list((await resp.json())["skipped"]) == ["example"]
