"""API routes for the usage monitor.

Endpoints:
  GET  /api/usage-monitor/enabled   whether the widget should render
  GET  /api/usage-monitor/snapshot  freshly computed usage snapshot
  GET  /api/usage-monitor/config    plan + derived limits
  PUT  /api/usage-monitor/config    update plan and/or base limit
  GET  /api/usage-monitor/stream    SSE stream of stats/config changes
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)

usage_router = APIRouter()


class ConfigUpdateRequest(BaseModel):
    # Bad values are coerced by the store, not rejected
    plan: Any = None
    pro_limit: Any = None


@usage_router.get("/usage-monitor/enabled")
def get_enabled(request: Request) -> dict[str, Any]:
    return {"enabled": request.app.state.usage_monitor.is_enabled()}


@usage_router.get("/usage-monitor/snapshot")
async def get_snapshot(request: Request) -> dict[str, Any]:
    snapshot = await request.app.state.usage_monitor.get_snapshot()
    return snapshot.to_dict()


@usage_router.get("/usage-monitor/config")
def get_config(request: Request) -> dict[str, Any]:
    return request.app.state.usage_monitor.config_payload()


@usage_router.put("/usage-monitor/config")
def update_config(body: ConfigUpdateRequest, request: Request) -> dict[str, Any]:
    """Persist plan/limit changes and notify open surfaces."""
    service = request.app.state.usage_monitor
    store = service.config_store
    if body.plan is not None:
        store.set_plan(body.plan)
    if body.pro_limit is not None:
        store.set_pro_limit(body.pro_limit)
    payload = service.broadcast_config_changed()
    logger.info("Usage monitor config updated: plan=%s pro=%s",
                payload["plan"], payload["limits"]["pro"])
    return payload


# ── SSE stream ───────────────────────────────────────────────────────────────


@usage_router.get("/usage-monitor/stream")
async def usage_stream(request: Request) -> StreamingResponse:
    """Server-Sent Events stream of snapshot and config changes."""
    hub = request.app.state.event_hub

    async def event_generator():
        queue = hub.subscribe()
        try:
            snapshot = await request.app.state.usage_monitor.get_snapshot()
            yield f"event: init\ndata: {json.dumps(snapshot.to_dict())}\n\n"

            while True:
                if await request.is_disconnected():
                    break

                try:
                    channel, data = await asyncio.wait_for(queue.get(), timeout=30)
                    yield f"event: {channel}\ndata: {json.dumps(data)}\n\n"
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
        finally:
            hub.unsubscribe(queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
