"""Recompute the snapshot and push it downstream only when it changed."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from usage_monitor.token_tracker.snapshot import SnapshotComputer, UsageSnapshot, snapshot_key

logger = logging.getLogger(__name__)

USAGE_MONITOR_STATS_CHANGED = "usage-monitor:stats-changed"
USAGE_MONITOR_CONFIG_CHANGED = "usage-monitor:config-changed"

BroadcastFn = Callable[[str, dict[str, Any]], None]


class ChangeBroadcaster:
    """Deduplicates snapshots by their canonical key before broadcasting."""

    def __init__(
        self,
        computer: SnapshotComputer,
        broadcast: BroadcastFn,
        key: Callable[[UsageSnapshot], str] = snapshot_key,
    ) -> None:
        self._computer = computer
        self._broadcast = broadcast
        self._key = key
        self._last_key: str | None = None
        self.broadcast_count = 0

    @property
    def last_key(self) -> str | None:
        return self._last_key

    async def refresh_and_broadcast(self) -> bool:
        """Returns True when a new snapshot was emitted."""
        snapshot = await self._computer.compute()
        key = self._key(snapshot)
        if key == self._last_key:
            return False

        logger.debug("Usage snapshot changed: %s %d/%s", snapshot.status.value,
                     snapshot.total_tokens, snapshot.limit)
        try:
            self._broadcast(USAGE_MONITOR_STATS_CHANGED, snapshot.to_dict())
        except Exception:
            # Key left unset so the next refresh retries this snapshot
            logger.exception("Usage snapshot broadcast error")
            return False

        self._last_key = key
        self.broadcast_count += 1
        return True
