"""Decides when the usage snapshot is recomputed.

Two mutually exclusive strategies:

- WATCHING: recursive change notification on every ``projects`` directory.
  Relevant events are debounced so a burst of appends yields one refresh.
- POLLING: a single fixed-interval loop. Used when no log directory exists
  yet, or once watching has failed.

The only transition between them is WATCHING -> POLLING on a watch error.
A running controller never goes back to watching.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from pathlib import Path

from usage_monitor.monitor.watcher import WatchFactory, WatchHandle, watch_directory
from usage_monitor.token_tracker.session_blocks import LOG_SUFFIX

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 30.0
DEBOUNCE_SECONDS = 0.2


class FreshnessMode(str, Enum):
    IDLE = "idle"
    WATCHING = "watching"
    POLLING = "polling"
    STOPPED = "stopped"


def is_relevant_change(filename: str | None) -> bool:
    """Events without a filename count; named files must be session logs."""
    if not filename:
        return True
    return filename.endswith(LOG_SUFFIX)


class FreshnessController:
    """Drives ``refresh`` from filesystem events, or from a poll timer."""

    def __init__(
        self,
        resolve_log_dirs: Callable[[], list[Path]],
        refresh: Callable[[], Awaitable[object]],
        watch_factory: WatchFactory = watch_directory,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        debounce: float = DEBOUNCE_SECONDS,
    ) -> None:
        self._resolve_log_dirs = resolve_log_dirs
        self._refresh = refresh
        self._watch_factory = watch_factory
        self.poll_interval = poll_interval
        self.debounce = debounce

        self.mode = FreshnessMode.IDLE
        self._watchers: list[WatchHandle] = []
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._refresh_tasks: set[asyncio.Task[None]] = set()

    @property
    def watcher_count(self) -> int:
        return len(self._watchers)

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None

    @property
    def refresh_pending(self) -> bool:
        return self._debounce_handle is not None

    # -- lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Watch the log directories if any exist, otherwise poll."""
        if self.mode is not FreshnessMode.IDLE:
            return

        try:
            log_dirs = self._resolve_log_dirs()
        except Exception:
            logger.warning("Could not resolve log directories; polling instead", exc_info=True)
            self.start_polling()
            return

        if not log_dirs:
            logger.info("No Claude projects directory found; polling every %ss", self.poll_interval)
            self.start_polling()
            return

        try:
            for log_dir in log_dirs:
                self._watchers.append(
                    self._watch_factory(log_dir, self._on_change, self._on_watch_error)
                )
        except Exception:
            logger.warning("Could not watch %s; polling instead", log_dirs, exc_info=True)
            self._close_watchers()
            self.start_polling()
            return

        self.mode = FreshnessMode.WATCHING
        logger.info("Watching %d projects director%s for session changes",
                    len(log_dirs), "y" if len(log_dirs) == 1 else "ies")

    async def stop(self) -> None:
        """Close watchers and cancel every timer; nothing fires afterwards."""
        self.mode = FreshnessMode.STOPPED
        self._close_watchers()

        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

        tasks = list(self._refresh_tasks)
        if self._poll_task is not None:
            tasks.append(self._poll_task)
            self._poll_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._refresh_tasks.clear()

    # -- polling ---------------------------------------------------------------

    def start_polling(self) -> None:
        """Enter POLLING. A second call while a timer exists is a no-op."""
        if self.mode is FreshnessMode.STOPPED or self._poll_task is not None:
            return
        self.mode = FreshnessMode.POLLING
        self._poll_task = asyncio.get_running_loop().create_task(
            self._poll_loop(), name="usage-monitor-poll"
        )

    async def _poll_loop(self) -> None:
        while self.mode is FreshnessMode.POLLING:
            await asyncio.sleep(self.poll_interval)
            if self.mode is not FreshnessMode.POLLING:
                break
            # A hung refresh must not hold up the next tick
            self._spawn_refresh()

    # -- watching --------------------------------------------------------------

    def _on_change(self, filename: str | None) -> None:
        if self.mode is not FreshnessMode.WATCHING:
            return
        if not is_relevant_change(filename):
            return
        self.schedule_refresh()

    def _on_watch_error(self, exc: BaseException) -> None:
        if self.mode is not FreshnessMode.WATCHING:
            return
        logger.warning("Session watcher failed (%s); falling back to polling", exc)
        self._close_watchers()
        self.start_polling()

    def _close_watchers(self) -> None:
        for watcher in self._watchers:
            try:
                watcher.close()
            except Exception:
                logger.debug("Error closing watcher", exc_info=True)
        self._watchers = []

    # -- debounce --------------------------------------------------------------

    def schedule_refresh(self) -> None:
        """(Re)arm the debounce timer; only the last event in a burst counts."""
        if self.mode is FreshnessMode.STOPPED:
            return
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(self.debounce, self._fire_debounced)

    def _fire_debounced(self) -> None:
        self._debounce_handle = None
        if self.mode is FreshnessMode.STOPPED:
            return
        self._spawn_refresh()

    def _spawn_refresh(self) -> None:
        task = asyncio.get_running_loop().create_task(self._run_refresh())
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _run_refresh(self) -> None:
        try:
            await self._refresh()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Usage refresh failed")
