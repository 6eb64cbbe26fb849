"""Reduce the loader's accounting blocks to one presentation-ready snapshot.

Blocks are treated as untrusted records: a block may be a mapping with
camelCase keys or an object with snake_case attributes, and the field
layout differs between loader versions. Every value is read through a helper
below that tries an explicit, ordered list of names and shapes.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from usage_monitor.plan_config import UsageConfigStore
from usage_monitor.token_tracker.session_blocks import BlockLoader, projects_dirs_for

logger = logging.getLogger(__name__)

WINDOW_MS = 5 * 60 * 60 * 1000

_START_FIELDS = ("blockStart", "startTime", "start_time")
_END_FIELDS = ("blockEnd", "endTime", "end_time")
_RESET_FIELDS = ("usageLimitResetTime", "usage_limit_reset_time")

# (camelCase, snake_case) pairs for the structured breakdown and entry usage
_BREAKDOWN_FIELDS = (
    ("inputTokens", "input_tokens"),
    ("outputTokens", "output_tokens"),
    ("cacheCreationInputTokens", "cache_creation_input_tokens"),
    ("cacheReadInputTokens", "cache_read_input_tokens"),
)
# Flat counters some loader versions put directly on the block
_FLAT_FIELDS = (
    ("inputTokens", "input_tokens"),
    ("outputTokens", "output_tokens"),
    ("cacheCreationTokens", "cache_creation_tokens"),
    ("cacheReadTokens", "cache_read_tokens"),
)


class SnapshotStatus(str, Enum):
    MISSING = "missing"  # no Claude data directory at all
    UNAVAILABLE = "unavailable"  # directory exists but logs can't be read
    OK = "ok"


@dataclass(frozen=True)
class UsageSnapshot:
    """Point-in-time usage against the active 5-hour window."""

    status: SnapshotStatus
    total_tokens: int
    window_ms: int
    oldest_timestamp_ms: int | None
    reset_at_ms: int | None
    plan: str
    limit: int | float

    @classmethod
    def empty(cls, status: SnapshotStatus, plan: str, limit: int | float) -> UsageSnapshot:
        return cls(
            status=status,
            total_tokens=0,
            window_ms=WINDOW_MS,
            oldest_timestamp_ms=None,
            reset_at_ms=None,
            plan=plan,
            limit=limit,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


def snapshot_key(snapshot: UsageSnapshot) -> str:
    """Canonical comparable form used to suppress duplicate broadcasts."""
    return json.dumps(snapshot.to_dict(), sort_keys=True)


# -- Field access --------------------------------------------------------------


def _field(record: Any, name: str) -> Any:
    if record is None:
        return None
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _first_field(record: Any, names: tuple[str, ...]) -> Any:
    for name in names:
        value = _field(record, name)
        if value is not None:
            return value
    return None


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _number(value: Any) -> int | float:
    return value if _is_number(value) else 0


def _sum_pairs(record: Any, pairs: tuple[tuple[str, str], ...]) -> int | float:
    return sum(_number(_first_field(record, pair)) for pair in pairs)


def parse_block_timestamp_ms(value: Any) -> int | None:
    """Epoch milliseconds for a datetime or ISO-8601 string; None if unparseable."""
    if isinstance(value, datetime):
        ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return int(ts.timestamp() * 1000)
    if isinstance(value, str) and value:
        try:
            ts = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return int(ts.timestamp() * 1000)
    return None


def _first_timestamp_ms(block: Any, names: tuple[str, ...]) -> int | None:
    for name in names:
        parsed = parse_block_timestamp_ms(_field(block, name))
        if parsed is not None:
            return parsed
    return None


def get_block_start_ms(block: Any) -> int | None:
    return _first_timestamp_ms(block, _START_FIELDS)


def get_block_end_ms(block: Any) -> int | None:
    return _first_timestamp_ms(block, _END_FIELDS)


def get_block_reset_ms(block: Any) -> int | None:
    """Explicit usage-limit reset if the block has one, else the block end."""
    explicit = _first_timestamp_ms(block, _RESET_FIELDS)
    return explicit if explicit is not None else get_block_end_ms(block)


def get_block_token_total(block: Any) -> int:
    """Total tokens for a block, trying each known shape in turn."""
    total = _first_field(block, ("totalTokens", "total_tokens"))
    if _is_number(total):
        return int(total)

    token_counts = _first_field(block, ("tokenCounts", "token_counts"))
    if token_counts is not None:
        return int(_sum_pairs(token_counts, _BREAKDOWN_FIELDS))

    flat_total = _sum_pairs(block, _FLAT_FIELDS)
    if flat_total > 0:
        return int(flat_total)

    entries = _field(block, "entries")
    if isinstance(entries, (list, tuple)):
        entries_total: int | float = 0
        for entry in entries:
            usage = _field(entry, "usage")
            if usage is None:
                continue
            entries_total += _sum_pairs(usage, _BREAKDOWN_FIELDS)
        return int(entries_total)

    return 0


def _flag(block: Any, camel: str, snake: str) -> bool:
    return bool(_first_field(block, (camel, snake)))


def select_active_block(blocks: list[Any]) -> Any:
    """Pick the block currently accruing usage.

    First active non-gap block, else first non-gap block, else the last one.
    ``blocks`` must be non-empty.
    """
    for block in blocks:
        if _flag(block, "isActive", "is_active") and not _flag(block, "isGap", "is_gap"):
            return block
    for block in blocks:
        if not _flag(block, "isGap", "is_gap"):
            return block
    return blocks[-1]


def extract_blocks(result: Any) -> list[Any] | None:
    """The block list from a loader result, or None if it isn't list-shaped."""
    if isinstance(result, (list, tuple)):
        return list(result)
    if result is None or isinstance(result, (str, bytes)):
        return None
    for wrapper in ("blocks", "data"):
        candidate = _field(result, wrapper)
        if isinstance(candidate, (list, tuple)):
            return list(candidate)
    return None


# -- Computer ------------------------------------------------------------------


class SnapshotComputer:
    """Computes a fresh UsageSnapshot from the loader and the stored plan."""

    def __init__(self, loader: BlockLoader, config_store: UsageConfigStore) -> None:
        self._loader = loader
        self._config_store = config_store

    def resolve_log_dirs(self) -> list[Path]:
        """Existing ``projects`` directories under the loader's base dirs."""
        return projects_dirs_for(Path(p) for p in self._loader.get_claude_paths())

    async def compute(self) -> UsageSnapshot:
        """Never raises; every failure path degrades to a status."""
        config = self._config_store.load()
        plan, limit = config.plan, config.limit

        try:
            base_dirs = [Path(p) for p in self._loader.get_claude_paths()]
        except Exception:
            logger.warning("Could not resolve Claude data directories", exc_info=True)
            return UsageSnapshot.empty(SnapshotStatus.UNAVAILABLE, plan, limit)

        if not any(base.exists() for base in base_dirs):
            return UsageSnapshot.empty(SnapshotStatus.MISSING, plan, limit)

        if not projects_dirs_for(base_dirs):
            return UsageSnapshot.empty(SnapshotStatus.UNAVAILABLE, plan, limit)

        try:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, self._loader.load_session_block_data)
        except Exception:
            logger.warning("Session block loader failed", exc_info=True)
            return UsageSnapshot.empty(SnapshotStatus.UNAVAILABLE, plan, limit)

        blocks = extract_blocks(result)
        if blocks is None:
            logger.warning("Unexpected loader result type: %s", type(result).__name__)
            return UsageSnapshot.empty(SnapshotStatus.UNAVAILABLE, plan, limit)

        if not blocks:
            return UsageSnapshot.empty(SnapshotStatus.OK, plan, limit)

        active = select_active_block(blocks)
        return UsageSnapshot(
            status=SnapshotStatus.OK,
            total_tokens=get_block_token_total(active),
            window_ms=WINDOW_MS,
            oldest_timestamp_ms=get_block_start_ms(active),
            reset_at_ms=get_block_reset_ms(active),
            plan=plan,
            limit=limit,
        )
