"""API routes for check status, process health and the account cache.

Endpoints:
  GET  /status/current        — latest history record
  GET  /status/history        — records in [from, to], or one stream's series
  POST /status/check          — run the API check now and append it
  GET  /health                — uptime, last run, last error
  GET  /cache                 — cached items (to pick hashes for streams.json)
  GET  /cache/instant?hash=   — raw instant-availability response, for debugging
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from src.config import load_settings

logger = logging.getLogger(__name__)

status_router = APIRouter()

NO_TOKEN = {"error": "REAL_DEBRID_API_KEY not set"}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# ── Status ───────────────────────────────────────────────────────────────────


@status_router.get("/status/current", response_model=None)
def status_current(request: Request) -> dict[str, Any] | JSONResponse:
    """Most recent cycle record."""
    latest = request.app.state.history_store.latest()
    if latest is None:
        return _error(404, "no data yet")
    return latest.to_dict()


@status_router.get("/status/history")
def status_history(
    request: Request,
    start: str | None = Query(default=None, alias="from"),
    end: str | None = Query(default=None, alias="to"),
    stream_id: str | None = Query(default=None, alias="streamId"),
) -> list[dict[str, Any]]:
    """History in append order; with streamId, a flat series for that stream."""
    store = request.app.state.history_store
    if stream_id and stream_id.strip():
        return store.stream_points(stream_id.strip(), start, end)
    return [r.to_dict() for r in store.query(start, end)]


@status_router.post("/status/check", response_model=None)
async def status_check(request: Request) -> dict[str, Any] | JSONResponse:
    """On-demand API availability check, appended to history."""
    outcome = await request.app.state.scheduler.run_one_off_api_check()
    if outcome is None:
        return JSONResponse(status_code=401, content=NO_TOKEN)
    return outcome.to_dict()


@status_router.get("/health")
def health(request: Request) -> dict[str, Any]:
    return request.app.state.scheduler.snapshot().to_dict()


# ── Cache ────────────────────────────────────────────────────────────────────


@status_router.get("/cache", response_model=None)
async def cache_list(request: Request) -> dict[str, Any] | JSONResponse:
    client = request.app.state.client_factory(load_settings())
    if client is None:
        return JSONResponse(status_code=401, content=NO_TOKEN)

    result = await asyncio.get_running_loop().run_in_executor(None, client.list_cache)
    if not result.success:
        return _error(result.http_status or 500, result.error or "Failed to fetch cache list")
    return {
        "items": [item.model_dump() for item in result.data or []],
        "hint": (
            "Copy 'hash' from any item into streams.json (id, type: \"hash\", hash). "
            "Prefer status 'downloaded'."
        ),
    }


@status_router.get("/cache/instant", response_model=None)
async def cache_instant(
    request: Request, content_hash: str = Query(default="", alias="hash"),
) -> dict[str, Any] | JSONResponse:
    client = request.app.state.client_factory(load_settings())
    if client is None:
        return JSONResponse(status_code=401, content=NO_TOKEN)
    if len(content_hash) < 10:
        return _error(400, "Query param hash= required (info hash)")

    result = await asyncio.get_running_loop().run_in_executor(
        None, client.instant_availability_raw, content_hash,
    )
    return {
        "hash": content_hash,
        "httpStatus": result.http_status,
        "raw": result.data,
        "error": result.error,
        "hint": "If raw is {} or missing your hash key, that hash is not in the instant cache.",
    }
