"""Entry point for the Debrid stream monitor."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from src.config import settings
from src.health.history import HistoryStore
from src.health.outcomes import HistoryRecord, StreamFailure, describe_step
from src.health.scheduler import CycleScheduler
from src.streams.registry import StreamRegistry

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)


def run_server() -> None:
    """Start the API server with the scheduler attached."""
    console.print(Panel("Starting Debrid Monitor", style="bold green"))
    uvicorn.run(
        "src.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def _render(record: HistoryRecord) -> Table:
    table = Table(title=f"Check @ {record.timestamp}")
    table.add_column("Target")
    table.add_column("Result")
    table.add_column("HTTP")
    table.add_column("Timing")
    table.add_column("Detail")

    if record.api_health is not None:
        api = record.api_health
        table.add_row(
            "API /user",
            "[green]ok[/green]" if api.success else "[red]fail[/red]",
            str(api.http_status),
            f"{api.response_time_ms}ms",
            api.error or "",
        )
    for stream_id, outcome in (record.streams or {}).items():
        if isinstance(outcome, StreamFailure):
            table.add_row(
                stream_id, "[red]fail[/red]", str(outcome.http_status or ""),
                "", f"{describe_step(outcome.failure_step)} ({outcome.error_kind.value})",
            )
        else:
            table.add_row(
                stream_id, "[green]ok[/green]", str(outcome.http_status),
                f"resolve {outcome.resolution_time_ms}ms / ttfb {outcome.ttfb_ms}ms",
                outcome.cdn_host,
            )
    return table


def run_check() -> int:
    """Run a single cycle, append it to history and print the outcome."""
    store = HistoryStore(settings.resolved_storage_path)
    scheduler = CycleScheduler(store, StreamRegistry(settings.streams_config_path))

    with console.status("[bold green]Checking..."):
        record = asyncio.run(scheduler.run_cycle())

    if record is None:
        console.print(f"[red]Check failed:[/red] {scheduler.snapshot().last_error}")
        return 1
    console.print(_render(record))
    ok, failed = record.stream_counts()
    console.print(f"\n[dim]Streams: {ok} ok / {failed} failed | history: {store.path}[/dim]")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Debrid stream health monitor")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Start the API server and check scheduler")
    sub.add_parser("check", help="Run one check cycle and print the result")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "check":
        sys.exit(run_check())
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
