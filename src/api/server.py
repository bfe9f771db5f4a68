"""FastAPI server: status API + optional dashboard from frontend/dist."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from src.api.status_routes import status_router
from src.config import settings
from src.health.history import HistoryStore
from src.health.scheduler import CycleScheduler, default_client_factory
from src.streams.registry import StreamRegistry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire storage, stream registry and scheduler; stop gracefully on shutdown."""
    store = HistoryStore(settings.resolved_storage_path)
    store.ensure_dir()
    app.state.history_store = store
    app.state.client_factory = default_client_factory

    registry = StreamRegistry(settings.streams_config_path)
    scheduler = CycleScheduler(store, registry, client_factory=default_client_factory)
    app.state.scheduler = scheduler

    try:
        await scheduler.start()
    except Exception:
        logger.exception("Cycle scheduler failed to start")

    logger.info("History at %s, streams from %s", store.path, registry.path)

    yield

    # Shutdown: let an in-flight cycle finish writing its record
    await scheduler.stop()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Debrid Monitor",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(status_router)

    # Dashboard build, when present; API routes above take precedence
    dist = Path(settings.frontend_dist_path)
    if dist.is_dir():
        app.mount("/", StaticFiles(directory=str(dist), html=True), name="dashboard")
    else:
        logger.debug("No dashboard build at %s", dist)

    return app


app = create_app()
