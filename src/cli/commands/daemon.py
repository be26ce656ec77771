"""Daemon CLI commands."""

import asyncio
import signal
from typing import Optional

import click
import structlog
from rich.console import Console

from cli.utils import open_components, run_async
from observability import log_run_summary

console = Console()
logger = structlog.get_logger()


async def run_daemon(
    interval_minutes: Optional[float] = None,
    run_immediately: bool = True,
    stop_event: Optional[asyncio.Event] = None,
) -> None:
    """Run the evaluation scheduler until SIGINT/SIGTERM (or ``stop_event``)."""
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            pass  # not supported on this platform/thread

    async with open_components() as c:
        evaluator = c["service"].evaluator
        interval = interval_minutes or c["config"]["predictions"]["evaluation_interval_minutes"]
        evaluator.start(interval_minutes=interval, run_immediately=run_immediately)
        try:
            await stop_event.wait()
        finally:
            # a sweep that is already running must finish before the store closes
            await evaluator.shutdown()
            log_run_summary()


@click.group()
def daemon():
    """Manage the background evaluation scheduler."""
    pass


@daemon.command("start")
@click.option("--interval", type=float, default=None, help="Minutes between sweeps")
@click.option("--no-initial-run", is_flag=True, help="Wait one interval before the first sweep")
def daemon_start(interval: Optional[float], no_initial_run: bool):
    """Sweep expired predictions on a fixed interval until stopped."""
    console.print("[green]Started[/] evaluation scheduler. Press Ctrl+C to stop")
    run_async(run_daemon(interval, run_immediately=not no_initial_run))
    console.print("\n[yellow]Stopped[/]")
