"""Group Claude Code session usage into 5-hour accounting blocks.

Reads the JSONL session files that Claude Code writes under
``<config dir>/projects/`` and buckets every assistant response into the
rolling billing window it counted against. A block opens at the hour the
first message landed in and lasts five hours; silence longer than a full
window produces an explicit gap block between two real ones.

This is the default ``BlockLoader``; the snapshot computer treats whatever a
loader returns as untrusted, so nothing downstream depends on these exact
types.
"""

from __future__ import annotations

import json
import logging
import math
import os
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Protocol

from usage_monitor.config import settings

logger = logging.getLogger(__name__)

PROJECTS_DIRNAME = "projects"
LOG_SUFFIX = ".jsonl"
DEFAULT_SESSION_HOURS = 5

_USAGE_LIMIT_RE = re.compile(r"Claude AI usage limit reached\|(\d+)")


class BlockLoader(Protocol):
    """The two loader operations the usage monitor consumes."""

    def get_claude_paths(self) -> list[Path]: ...

    def load_session_block_data(self) -> Any: ...


@dataclass
class TokenCounts:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0

    @property
    def total(self) -> int:
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_creation_input_tokens
            + self.cache_read_input_tokens
        )

    def add(self, other: TokenCounts) -> None:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.cache_creation_input_tokens += other.cache_creation_input_tokens
        self.cache_read_input_tokens += other.cache_read_input_tokens


@dataclass
class UsageEntry:
    """A single assistant response that consumed tokens."""

    timestamp: datetime
    usage: TokenCounts
    model: str = "unknown"
    usage_limit_reset_time: datetime | None = None


@dataclass
class SessionBlock:
    """One accounting window (or the gap between two of them)."""

    id: str
    start_time: datetime
    end_time: datetime
    actual_end_time: datetime | None = None
    is_active: bool = False
    is_gap: bool = False
    entries: list[UsageEntry] = field(default_factory=list)
    token_counts: TokenCounts = field(default_factory=TokenCounts)
    models: list[str] = field(default_factory=list)
    usage_limit_reset_time: datetime | None = None

    @property
    def total_tokens(self) -> int:
        return self.token_counts.total


# -- JSONL reading -------------------------------------------------------------


def _iter_file_lines(path: Path) -> Iterator[str]:
    """Yield non-empty lines from a file, silently handling errors."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    yield line
    except OSError as e:
        logger.debug("Could not read %s: %s", path, e)
        return


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def _int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value):
        return 0
    return int(value)


def _usage_limit_reset(entry: dict[str, Any]) -> datetime | None:
    """Reset time announced by an API error entry, if this is one."""
    if not entry.get("isApiErrorMessage"):
        return None
    content = entry.get("message", {}).get("content")
    texts: list[str] = []
    if isinstance(content, str):
        texts.append(content)
    elif isinstance(content, list):
        texts.extend(
            block.get("text", "") for block in content
            if isinstance(block, dict) and isinstance(block.get("text"), str)
        )
    for text in texts:
        match = _USAGE_LIMIT_RE.search(text)
        if match:
            try:
                return datetime.fromtimestamp(int(match.group(1)), tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                return None
    return None


def parse_usage_entry(entry: dict[str, Any]) -> UsageEntry | None:
    """Turn one decoded JSONL line into a UsageEntry, or None if it carries no usage."""
    message = entry.get("message")
    if not isinstance(message, dict):
        return None
    ts = _parse_timestamp(entry.get("timestamp"))
    if ts is None:
        return None

    # Limit notices are synthetic and carry no usage, but they do carry the reset time.
    reset_time = _usage_limit_reset(entry)
    usage = message.get("usage")
    model = message.get("model") or "unknown"
    if reset_time is None and (not isinstance(usage, dict) or model == "<synthetic>"):
        return None
    if not isinstance(usage, dict) or model == "<synthetic>":
        usage = {}

    return UsageEntry(
        timestamp=ts,
        usage=TokenCounts(
            input_tokens=_int(usage.get("input_tokens")),
            output_tokens=_int(usage.get("output_tokens")),
            cache_creation_input_tokens=_int(usage.get("cache_creation_input_tokens")),
            cache_read_input_tokens=_int(usage.get("cache_read_input_tokens")),
        ),
        model=model,
        usage_limit_reset_time=reset_time,
    )


def load_usage_entries(projects_dirs: Iterable[Path]) -> list[UsageEntry]:
    """Read every session file below the given projects directories.

    Streaming responses are logged more than once; entries sharing a
    message id + request id are only counted the first time.
    """
    entries: list[UsageEntry] = []
    seen: set[str] = set()

    for projects_dir in projects_dirs:
        try:
            files = sorted(projects_dir.rglob(f"*{LOG_SUFFIX}"))
        except OSError as e:
            logger.debug("Could not list %s: %s", projects_dir, e)
            continue

        for jsonl_file in files:
            for line in _iter_file_lines(jsonl_file):
                try:
                    raw = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if not isinstance(raw, dict):
                    continue

                message = raw.get("message")
                message_id = message.get("id") if isinstance(message, dict) else None
                request_id = raw.get("requestId")
                if message_id and request_id:
                    key = f"{message_id}:{request_id}"
                    if key in seen:
                        continue
                    seen.add(key)

                parsed = parse_usage_entry(raw)
                if parsed is not None:
                    entries.append(parsed)

    return entries


# -- Block grouping ------------------------------------------------------------


def _floor_to_hour(ts: datetime) -> datetime:
    return ts.replace(minute=0, second=0, microsecond=0)


def _create_block(
    start: datetime,
    entries: list[UsageEntry],
    now: datetime,
    session: timedelta,
) -> SessionBlock:
    end = start + session
    actual_end = entries[-1].timestamp if entries else None
    is_active = actual_end is not None and (now - actual_end) < session and now < end

    counts = TokenCounts()
    models: list[str] = []
    reset_time: datetime | None = None
    for entry in entries:
        counts.add(entry.usage)
        if entry.model not in models and entry.model != "<synthetic>":
            models.append(entry.model)
        if entry.usage_limit_reset_time is not None:
            reset_time = entry.usage_limit_reset_time

    return SessionBlock(
        id=start.isoformat(),
        start_time=start,
        end_time=end,
        actual_end_time=actual_end,
        is_active=is_active,
        entries=list(entries),
        token_counts=counts,
        models=models,
        usage_limit_reset_time=reset_time,
    )


def _create_gap_block(
    last_activity: datetime,
    next_activity: datetime,
    session: timedelta,
) -> SessionBlock | None:
    if next_activity - last_activity <= session:
        return None
    gap_start = last_activity + session
    return SessionBlock(
        id=f"gap-{gap_start.isoformat()}",
        start_time=gap_start,
        end_time=next_activity,
        is_gap=True,
    )


def identify_session_blocks(
    entries: Iterable[UsageEntry],
    session_hours: int = DEFAULT_SESSION_HOURS,
    now: datetime | None = None,
) -> list[SessionBlock]:
    """Bucket usage entries into chronological accounting blocks."""
    ordered = sorted(entries, key=lambda e: e.timestamp)
    if not ordered:
        return []

    now = now or datetime.now(timezone.utc)
    session = timedelta(hours=session_hours)
    blocks: list[SessionBlock] = []
    block_start: datetime | None = None
    block_entries: list[UsageEntry] = []

    for entry in ordered:
        if block_start is None:
            block_start = _floor_to_hour(entry.timestamp)
            block_entries = [entry]
            continue

        since_start = entry.timestamp - block_start
        since_last = entry.timestamp - block_entries[-1].timestamp
        if since_start > session or since_last > session:
            blocks.append(_create_block(block_start, block_entries, now, session))
            if since_last > session:
                gap = _create_gap_block(block_entries[-1].timestamp, entry.timestamp, session)
                if gap is not None:
                    blocks.append(gap)
            block_start = _floor_to_hour(entry.timestamp)
            block_entries = [entry]
        else:
            block_entries.append(entry)

    if block_start is not None:
        blocks.append(_create_block(block_start, block_entries, now, session))

    return blocks


# -- Loader --------------------------------------------------------------------


def default_claude_paths(env_value: str | None = None) -> list[Path]:
    """Candidate Claude data directories, in lookup order."""
    raw = settings.claude_config_dir if env_value is None else env_value
    raw = raw or os.environ.get("CLAUDE_CONFIG_DIR", "")
    if raw.strip():
        return [Path(p.strip()).expanduser() for p in raw.split(",") if p.strip()]
    home = Path.home()
    return [home / ".config" / "claude", home / ".claude"]


def projects_dirs_for(base_dirs: Iterable[Path]) -> list[Path]:
    """Subset of ``base/projects`` directories that actually exist."""
    return [base / PROJECTS_DIRNAME for base in base_dirs if (base / PROJECTS_DIRNAME).is_dir()]


class SessionBlockLoader:
    """Reads session logs from the Claude data directories into blocks."""

    def __init__(
        self,
        paths: list[Path] | None = None,
        session_hours: int | None = None,
    ) -> None:
        self._paths = paths
        self._session_hours = session_hours or settings.session_window_hours

    def get_claude_paths(self) -> list[Path]:
        return list(self._paths) if self._paths is not None else default_claude_paths()

    def load_session_block_data(self) -> list[SessionBlock]:
        projects = projects_dirs_for(self.get_claude_paths())
        entries = load_usage_entries(projects)
        blocks = identify_session_blocks(entries, session_hours=self._session_hours)
        logger.debug("Loaded %d usage entries into %d blocks", len(entries), len(blocks))
        return blocks
