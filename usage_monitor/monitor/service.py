"""Usage monitor service: wires loader, config, freshness and broadcast."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from usage_monitor.config import settings
from usage_monitor.monitor.broadcaster import (
    USAGE_MONITOR_CONFIG_CHANGED,
    BroadcastFn,
    ChangeBroadcaster,
)
from usage_monitor.monitor.freshness import FreshnessController, FreshnessMode
from usage_monitor.monitor.watcher import WatchFactory, watch_directory
from usage_monitor.plan_config import UsageConfigStore
from usage_monitor.token_tracker.session_blocks import BlockLoader, SessionBlockLoader
from usage_monitor.token_tracker.snapshot import SnapshotComputer, UsageSnapshot

logger = logging.getLogger(__name__)


class UsageMonitorService:
    """Keeps the usage snapshot fresh and broadcasts it on change.

    The loader is an explicit capability handed in at construction; the
    service never reaches for a process-wide handle.
    """

    def __init__(
        self,
        loader: BlockLoader,
        config_store: UsageConfigStore,
        broadcast: BroadcastFn,
        watch_factory: WatchFactory = watch_directory,
        poll_interval: float | None = None,
        debounce: float | None = None,
        enabled: bool | None = None,
    ) -> None:
        self._loader = loader
        self._config_store = config_store
        self._broadcast = broadcast
        self._enabled = settings.usage_monitor_enabled if enabled is None else enabled

        self.computer = SnapshotComputer(loader, config_store)
        self.broadcaster = ChangeBroadcaster(self.computer, broadcast)
        self.controller = FreshnessController(
            resolve_log_dirs=self.computer.resolve_log_dirs,
            refresh=self.refresh_and_broadcast,
            watch_factory=watch_factory,
            poll_interval=settings.poll_interval_seconds if poll_interval is None else poll_interval,
            debounce=settings.debounce_ms / 1000 if debounce is None else debounce,
        )
        self._initial_refresh: asyncio.Task[bool] | None = None

    @property
    def config_store(self) -> UsageConfigStore:
        return self._config_store

    @property
    def mode(self) -> FreshnessMode:
        return self.controller.mode

    def is_enabled(self) -> bool:
        return self._enabled

    async def start(self) -> None:
        """Broadcast an initial snapshot, then start watching or polling."""
        self._initial_refresh = asyncio.get_running_loop().create_task(
            self._safe_refresh(), name="usage-monitor-initial-refresh"
        )
        await self.controller.start()
        logger.info("Usage monitor started (mode=%s)", self.controller.mode.value)

    async def stop(self) -> None:
        await self.controller.stop()
        if self._initial_refresh is not None and not self._initial_refresh.done():
            self._initial_refresh.cancel()
            await asyncio.gather(self._initial_refresh, return_exceptions=True)
        self._initial_refresh = None
        logger.info("Usage monitor stopped")

    async def get_snapshot(self) -> UsageSnapshot:
        return await self.computer.compute()

    async def refresh_and_broadcast(self) -> bool:
        return await self.broadcaster.refresh_and_broadcast()

    async def _safe_refresh(self) -> bool:
        try:
            return await self.refresh_and_broadcast()
        except Exception:
            logger.exception("Initial usage refresh failed")
            return False

    def config_payload(self) -> dict[str, Any]:
        config = self._config_store.load()
        return {
            "enabled": self._enabled,
            "plan": config.plan,
            "limits": config.derived_limits(),
        }

    def broadcast_config_changed(self) -> dict[str, Any]:
        """Tell open surfaces the plan/limit changed without a recompute."""
        payload = self.config_payload()
        try:
            self._broadcast(USAGE_MONITOR_CONFIG_CHANGED, payload)
        except Exception:
            logger.exception("Usage config broadcast error")
        return payload


def create_usage_monitor_service(broadcast: BroadcastFn) -> UsageMonitorService:
    """Build the service with the default loader, store and watcher."""
    return UsageMonitorService(
        loader=SessionBlockLoader(),
        config_store=UsageConfigStore(),
        broadcast=broadcast,
    )
