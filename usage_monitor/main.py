"""Entry point for the Claude usage monitor."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel

from usage_monitor.config import settings
from usage_monitor.display import render_snapshot
from usage_monitor.plan_config import PLANS, UsageConfigStore
from usage_monitor.token_tracker.session_blocks import SessionBlockLoader
from usage_monitor.token_tracker.snapshot import SnapshotComputer

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)


def run_server() -> None:
    """Start the FastAPI server."""
    console.print(Panel("Starting Usage Monitor API Server", style="bold green"))
    uvicorn.run(
        "usage_monitor.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def run_status() -> None:
    """Compute one snapshot and print it."""
    if not settings.usage_monitor_enabled:
        console.print("[dim]Usage monitor is disabled[/dim]")
        return
    computer = SnapshotComputer(SessionBlockLoader(), UsageConfigStore())
    snapshot = asyncio.run(computer.compute())
    console.print(render_snapshot(snapshot))


def run_config(plan: str | None, pro_limit: float | None) -> None:
    store = UsageConfigStore()
    if plan is not None:
        store.set_plan(plan)
    if pro_limit is not None:
        store.set_pro_limit(pro_limit)

    config = store.load()
    limits = config.derived_limits()
    console.print(f"[bold]Plan:[/bold] {config.plan}")
    for tier in PLANS:
        console.print(f"  {tier:<6} {int(limits[tier]):>14,} tokens")
    console.print(f"[dim]{store.path}[/dim]")


def main() -> None:
    parser = argparse.ArgumentParser(description="Claude Usage Monitor")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Start the API server")
    sub.add_parser("status", help="Print current usage against the active window")

    config_parser = sub.add_parser("config", help="Show or change plan and limits")
    config_parser.add_argument("--plan", choices=PLANS)
    config_parser.add_argument("--pro-limit", type=float, help="Base (pro) token limit")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "status":
        run_status()
    elif args.command == "config":
        run_config(args.plan, args.pro_limit)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
