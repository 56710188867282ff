"""Talent Radar — REST Adapter.

Thin aiohttp.web layer over StatsReporter:

    POST   /scraper/{source}/manual   queue a manual run      → 202 {runId, status}
    POST   /scraper/retry-failed      re-queue failed sources → 202 {queued, skipped}
    GET    /scraper/stats             per-source aggregates   → 200 [...]
    GET    /scraper/queue             run counts by state     → 200 {...}
    GET    /scraper/runs/{run_id}     run state (poll)        → 200 {...}
    DELETE /scraper/runs/{run_id}     cancel a pending run    → 200 {...}
    GET    /health                    queue / worker health   → 200 {...}

Scheduler rejections map to 409 (source busy, run not pending), 404
(unknown source or run) and 503 (queue full or shutting down).
"""

from __future__ import annotations

from aiohttp import web

from talent_radar.errors import (
    RunAlreadyActiveError,
    RunNotPendingError,
    RunRejectedError,
    UnknownRunError,
    UnknownSourceError,
)
from talent_radar.scheduler.stats import StatsReporter
from talent_radar.utils.logger import get_logger

logger = get_logger(__name__)

REPORTER_KEY = web.AppKey("reporter", StatsReporter)


def _error(status: int, message: str, **extra: object) -> web.Response:
    return web.json_response({"error": message, **extra}, status=status)


async def trigger_manual(request: web.Request) -> web.Response:
    reporter = request.app[REPORTER_KEY]
    source_id = request.match_info["source"]
    try:
        run = await reporter.trigger_manual(source_id)
    except UnknownSourceError as e:
        return _error(404, str(e))
    except RunAlreadyActiveError as e:
        return _error(409, str(e), runId=e.run_id)
    except RunRejectedError as e:
        logger.warning("Manual trigger for %s rejected: %s", source_id, e)
        return _error(503, str(e))

    logger.info("Manual run %s queued for %s", run.id[:8], source_id)
    return web.json_response({"runId": run.id, "status": run.status.value}, status=202)


async def get_stats(request: web.Request) -> web.Response:
    return web.json_response(request.app[REPORTER_KEY].get_stats())


async def get_run(request: web.Request) -> web.Response:
    run_id = request.match_info["run_id"]
    run = await request.app[REPORTER_KEY].get_run(run_id)
    if run is None:
        return _error(404, f"Unknown run '{run_id}'")
    return web.json_response(run)


async def cancel_run(request: web.Request) -> web.Response:
    run_id = request.match_info["run_id"]
    try:
        run = await request.app[REPORTER_KEY].cancel_run(run_id)
    except UnknownRunError as e:
        return _error(404, str(e))
    except RunNotPendingError as e:
        return _error(409, str(e), runStatus=e.status)
    return web.json_response(run.to_api_dict())


async def retry_failed(request: web.Request) -> web.Response:
    result = await request.app[REPORTER_KEY].retry_failed()
    return web.json_response(result, status=202)


async def get_queue(request: web.Request) -> web.Response:
    return web.json_response(await request.app[REPORTER_KEY].queue_stats())


async def health(request: web.Request) -> web.Response:
    return web.json_response(request.app[REPORTER_KEY].health())


def create_app(reporter: StatsReporter) -> web.Application:
    """Build the aiohttp application bound to ``reporter``."""
    app = web.Application()
    app[REPORTER_KEY] = reporter
    app.add_routes([
        web.post("/scraper/{source}/manual", trigger_manual),
        web.get("/scraper/stats", get_stats),
        web.post("/scraper/retry-failed", retry_failed),
        web.get("/scraper/queue", get_queue),
        web.get("/scraper/runs/{run_id}", get_run),
        web.delete("/scraper/runs/{run_id}", cancel_run),
        web.get("/health", health),
    ])
    return app
