"""Prediction and leaderboard CLI commands."""

from datetime import timedelta

import click
from rich.console import Console
from rich.table import Table

from cli.utils import format_accuracy, open_components, run_async
from errors import NotFoundError
from shared_types import Direction

console = Console()

_STATUS_STYLE = {"correct": "green", "incorrect": "red", "pending": "yellow"}


@click.command("predict")
@click.argument("user")
@click.argument("token")
@click.argument("direction", type=click.Choice([d.value for d in Direction], case_sensitive=False))
@click.option("--window-hours", type=float, default=None, help="Shorter window than the default")
def predict(user: str, token: str, direction: str, window_hours):
    """Record a directional call on TOKEN for USER."""

    async def _run():
        async with open_components() as c:
            window = timedelta(hours=window_hours) if window_hours else None
            return await c["service"].record_prediction(user, token, direction, window=window)

    p = run_async(_run())
    console.print(
        f"[green]Recorded[/] {p.direction} on [bold]{p.token_id}[/] for {p.user_id} "
        f"(id {p.id}, resolves {p.expires_at:%Y-%m-%d %H:%M} UTC)"
    )


@click.command("leaderboard")
@click.option("--limit", "-n", default=10, help="Rows to show")
def leaderboard(limit: int):
    """Show the top predictors."""

    async def _run():
        async with open_components() as c:
            return await c["service"].get_leaderboard(limit)

    rows = run_async(_run())
    if not rows:
        console.print("[yellow]No predictions yet.[/]")
        return

    table = Table(show_header=True, title="Top Alpha Hunters")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("User")
    table.add_column("Score", justify="right", style="bold")
    table.add_column("Predictions", justify="right")
    table.add_column("Correct", justify="right")
    table.add_column("Accuracy", justify="right")
    for r in rows:
        s = r.stats
        table.add_row(
            str(r.rank),
            s.user_id,
            str(s.total_score),
            str(s.total_predictions),
            str(s.correct_predictions),
            format_accuracy(s.accuracy),
        )
    console.print(table)


@click.command("rank")
@click.argument("user")
def rank(user: str):
    """Show USER's leaderboard rank and stats."""

    async def _run():
        async with open_components() as c:
            service = c["service"]
            position = await service.get_user_rank(user)
            stats = await service.get_user_stats(user)
            if position is None or stats is None:
                raise NotFoundError(f"No predictions recorded for {user}.")
            return position, stats

    position, stats = run_async(_run())

    console.print(f"[bold]{stats.user_id}[/] is ranked [cyan]#{position}[/]")
    console.print(
        f"  Score: {stats.total_score}  |  Predictions: {stats.total_predictions}  |  "
        f"Accuracy: {format_accuracy(stats.accuracy)}"
    )


@click.command("history")
@click.argument("user")
@click.option("--limit", "-n", default=10)
def history(user: str, limit: int):
    """List USER's most recent predictions."""

    async def _run():
        async with open_components() as c:
            return await c["service"].get_user_predictions(user, limit)

    rows = run_async(_run())
    if not rows:
        console.print("[yellow]No predictions found.[/]")
        return

    table = Table(show_header=True, title=f"Predictions: {user}")
    table.add_column("Created", style="cyan", width=16)
    table.add_column("Token", style="green")
    table.add_column("Call")
    table.add_column("Expires", style="dim", width=16)
    table.add_column("Move", justify="right")
    table.add_column("Status")
    table.add_column("Score", justify="right")
    for p in rows:
        status = str(p.status)
        move = f"{p.price_change:+.2f}%" if p.price_change is not None else "-"
        table.add_row(
            f"{p.created_at:%Y-%m-%d %H:%M}",
            p.token_id,
            str(p.direction),
            f"{p.expires_at:%Y-%m-%d %H:%M}",
            move,
            f"[{_STATUS_STYLE[status]}]{status}[/]",
            str(p.score) if not p.is_pending else "-",
        )
    console.print(table)


@click.command("stats")
def stats():
    """Show global prediction stats."""

    async def _run():
        async with open_components() as c:
            return await c["service"].get_leaderboard_stats()

    s = run_async(_run())
    console.print(f"\n[bold]Users:[/] {s['total_users']}")
    console.print(f"[bold]Total predictions:[/] {s['total_predictions']}")
    console.print(f"[bold]Pending:[/] {s['pending_predictions']}")
    console.print(f"[bold]Resolved:[/] {s['resolved_predictions']}")
    console.print(f"[bold]Overall accuracy:[/] {format_accuracy(s['overall_accuracy'])}")


@click.command("evaluate")
def evaluate():
    """Run one evaluation sweep over expired predictions now."""

    async def _run():
        async with open_components() as c:
            return await c["service"].run_evaluation_tick()

    summary = run_async(_run())
    if "error" in summary:
        console.print(f"[red]Sweep aborted:[/] {summary['error']}")
        raise SystemExit(1)
    console.print(
        f"Evaluated {summary['candidates']} expired predictions: "
        f"[green]{summary['correct']} correct[/], [red]{summary['incorrect']} incorrect[/], "
        f"{summary['unknown']} unresolved, {summary['failed']} failed"
    )
