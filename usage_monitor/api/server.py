"""FastAPI server exposing the usage monitor to presentation surfaces."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from usage_monitor import __version__
from usage_monitor.api.events import EventHub
from usage_monitor.api.usage_routes import usage_router
from usage_monitor.monitor.service import create_usage_monitor_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the usage monitor on startup, tear it down on shutdown."""
    hub: EventHub = app.state.event_hub
    service = create_usage_monitor_service(hub.broadcast_to_all)
    app.state.usage_monitor = service

    try:
        await service.start()
    except Exception:
        logger.exception("Usage monitor failed to start")

    yield

    # Shutdown
    await service.stop()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Claude Usage Monitor",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.event_hub = EventHub()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(usage_router, prefix="/api")

    return app


app = create_app()
