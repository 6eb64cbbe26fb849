"""Recursive directory watcher backed by watchfiles.

Each watcher owns one asyncio task iterating ``watchfiles.awatch``. Changed
paths are reported one at a time. A failure of the underlying notifier is
reported once through ``on_error`` and ends the watch.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from watchfiles import awatch

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str | None], None]
ErrorCallback = Callable[[BaseException], None]


class WatchHandle(Protocol):
    def close(self) -> None: ...


WatchFactory = Callable[[Path, ChangeCallback, ErrorCallback], WatchHandle]


class DirectoryWatcher:
    """Watches ``path`` recursively until closed or the notifier fails."""

    def __init__(
        self,
        path: Path,
        on_change: ChangeCallback,
        on_error: ErrorCallback,
        debounce_ms: int = 50,
    ) -> None:
        self.path = path
        self._on_change = on_change
        self._on_error = on_error
        self._debounce_ms = debounce_ms
        self._stop_event = asyncio.Event()
        self._closed = False
        self._task: asyncio.Task[None] = asyncio.get_running_loop().create_task(
            self._run(), name=f"watch-{path}"
        )

    @property
    def closed(self) -> bool:
        return self._closed

    async def _run(self) -> None:
        try:
            async for changes in awatch(
                self.path,
                stop_event=self._stop_event,
                recursive=True,
                debounce=self._debounce_ms,
            ):
                for _change, changed_path in changes:
                    if self._closed:
                        return
                    self._on_change(Path(changed_path).name or None)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._fail(exc)
            return
        # awatch only returns on its own when the notifier died
        self._fail(RuntimeError(f"watch on {self.path} ended"))

    def _fail(self, exc: BaseException) -> None:
        if self._closed:
            return
        logger.warning("Watcher for %s failed: %s", self.path, exc)
        self._on_error(exc)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stop_event.set()
        self._task.cancel()


def watch_directory(
    path: Path,
    on_change: ChangeCallback,
    on_error: ErrorCallback,
) -> DirectoryWatcher:
    """Default watch factory: start watching ``path`` on the running loop."""
    return DirectoryWatcher(path, on_change, on_error)
