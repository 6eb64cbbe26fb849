"""Terminal rendering of a usage snapshot."""

from __future__ import annotations

import math
import time

from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from usage_monitor.token_tracker.snapshot import SnapshotStatus, UsageSnapshot

_LEVEL_STYLE = {"ok": "green", "warning": "yellow", "critical": "red"}


def usage_percent(snapshot: UsageSnapshot) -> int:
    """Whole-number share of the limit used, clamped to 0..100."""
    if snapshot.limit <= 0:
        return 0
    raw = snapshot.total_tokens / snapshot.limit * 100
    return min(100, max(0, math.floor(raw + 0.5)))


def usage_level(percent: int) -> str:
    if percent > 90:
        return "critical"
    if percent >= 70:
        return "warning"
    return "ok"


def format_time_remaining(ms: int | float) -> str:
    total_minutes = max(0, int(ms // 60_000))
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours} hr {minutes} min"


def reset_label(snapshot: UsageSnapshot, now_ms: int | None = None) -> str:
    if snapshot.reset_at_ms is None:
        return "--:--"
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    return format_time_remaining(max(0, snapshot.reset_at_ms - now_ms))


def render_snapshot(snapshot: UsageSnapshot, now_ms: int | None = None) -> Panel:
    title = f"Usage [{snapshot.plan.upper()}]"

    if snapshot.status is SnapshotStatus.MISSING:
        return Panel(Text("No usage data found", style="dim"), title=title)

    percent = usage_percent(snapshot)
    style = _LEVEL_STYLE[usage_level(percent)]

    grid = Table.grid(padding=(0, 1))
    grid.add_column()
    grid.add_row(ProgressBar(total=100, completed=percent, width=40, complete_style=style))
    if snapshot.status is SnapshotStatus.UNAVAILABLE:
        grid.add_row(Text("Usage unavailable", style="dim"))
    else:
        grid.add_row(Text(
            f"{percent}% Used - Resets in {reset_label(snapshot, now_ms)}",
            style=style,
        ))
        grid.add_row(Text(f"{snapshot.total_tokens:,} / {int(snapshot.limit):,} tokens", style="dim"))

    return Panel(grid, title=title)
