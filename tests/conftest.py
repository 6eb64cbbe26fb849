"""Shared test fixtures."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from usage_monitor.plan_config import UsageConfigStore


class FakeLoader:
    """Stands in for the session block loader capability."""

    def __init__(
        self,
        paths: list[Path],
        result: Any = None,
        error: Exception | None = None,
    ) -> None:
        self.paths = paths
        self.result = [] if result is None else result
        self.error = error
        self.load_calls = 0

    def get_claude_paths(self) -> list[Path]:
        return self.paths

    def load_session_block_data(self) -> Any:
        self.load_calls += 1
        if self.error is not None:
            raise self.error
        return self.result


class FakeWatcher:
    def __init__(self, path: Path, on_change, on_error) -> None:
        self.path = path
        self.on_change = on_change
        self.on_error = on_error
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeWatchFactory:
    """Records watchers instead of touching the real filesystem notifier."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.watchers: list[FakeWatcher] = []

    def __call__(self, path: Path, on_change, on_error) -> FakeWatcher:
        if self.fail:
            raise OSError("recursive watch not supported")
        watcher = FakeWatcher(path, on_change, on_error)
        self.watchers.append(watcher)
        return watcher


class BroadcastRecorder:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def __call__(self, channel: str, payload: dict[str, Any]) -> None:
        self.events.append((channel, payload))


@pytest.fixture
def config_store(tmp_path: Path) -> UsageConfigStore:
    return UsageConfigStore(tmp_path / "config" / "usage-monitor.json")


@pytest.fixture
def claude_dir(tmp_path: Path) -> Path:
    """A fake Claude data directory with an empty projects folder."""
    base = tmp_path / ".claude"
    (base / "projects").mkdir(parents=True)
    return base


@pytest.fixture
def recorder() -> BroadcastRecorder:
    return BroadcastRecorder()


@pytest.fixture
def watch_factory() -> FakeWatchFactory:
    return FakeWatchFactory()


def write_session(path: Path, entries: list[dict[str, Any]]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for entry in entries:
            f.write(json.dumps(entry) + "\n")
    return path


def assistant_entry(
    timestamp: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    cache_creation: int = 0,
    cache_read: int = 0,
    model: str = "claude-sonnet-4-6",
    message_id: str | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "type": "assistant",
        "timestamp": timestamp,
        "message": {
            "role": "assistant",
            "model": model,
            "content": [{"type": "text", "text": "ok"}],
            "usage": {
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cache_creation_input_tokens": cache_creation,
                "cache_read_input_tokens": cache_read,
            },
        },
    }
    if message_id:
        entry["message"]["id"] = message_id
    if request_id:
        entry["requestId"] = request_id
    return entry
