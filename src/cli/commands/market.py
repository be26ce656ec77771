"""Market snapshot CLI commands."""

import click
from rich.console import Console
from rich.table import Table

from cli.utils import open_components, run_async
from errors import TransientFetchError
from market.service import AlertThresholds
from shared_types import AlertKind, MoverDirection

console = Console()


def _fetch(method_name: str, *args, **kwargs):
    async def _run():
        async with open_components() as c:
            return await getattr(c["market"], method_name)(*args, **kwargs)

    try:
        return run_async(_run())
    except TransientFetchError as e:
        console.print(f"[red]Market data unavailable:[/] {e}")
        raise SystemExit(1)


@click.group()
def market():
    """Live market snapshots (cached)."""
    pass


@market.command("movers")
@click.option("--losers", is_flag=True, help="Show top losers instead of gainers")
@click.option("--limit", "-n", default=10)
def market_movers(losers: bool, limit: int):
    """Top 24h gainers or losers."""
    direction = MoverDirection.LOSERS if losers else MoverDirection.GAINERS
    coins = _fetch("top_movers", direction, limit)
    if not coins:
        console.print("[yellow]No movers found.[/]")
        return

    table = Table(show_header=True, title=f"Top {direction}")
    table.add_column("Coin", style="cyan")
    table.add_column("Price", justify="right")
    table.add_column("24h", justify="right")
    table.add_column("Rank", justify="right", style="dim")
    for coin in coins:
        change = coin.get("price_change_percentage_24h") or 0
        style = "green" if change > 0 else "red"
        table.add_row(
            f"{coin.get('name')} ({str(coin.get('symbol', '')).upper()})",
            f"${coin.get('current_price') or 0:,.4f}",
            f"[{style}]{change:+.2f}%[/]",
            str(coin.get("market_cap_rank")),
        )
    console.print(table)


@market.command("overview")
def market_overview():
    """Global market cap, volume and dominance."""
    o = _fetch("market_overview")
    console.print(f"[bold]Total market cap:[/] ${o.get('total_market_cap') or 0:,.0f}")
    console.print(f"[bold]24h volume:[/] ${o.get('total_volume') or 0:,.0f}")
    change = o.get("market_cap_change_24h")
    if change is not None:
        console.print(f"[bold]24h change:[/] {change:+.2f}%")
    dominance = o.get("market_cap_percentage") or {}
    for symbol in ("btc", "eth"):
        if symbol in dominance:
            console.print(f"[bold]{symbol.upper()} dominance:[/] {dominance[symbol]:.1f}%")


@market.command("mining")
@click.option("--min-profitability", type=float, default=None)
@click.option("--coin", default=None, help="Show raw WhatToMine stats for one coin instead")
def market_mining(min_profitability, coin):
    """Most profitable coins to mine right now."""
    from cli.config import load_config

    if coin:
        data = _fetch("coin_mining_data", coin)
        if data is None:
            console.print(f"[yellow]No mining data for {coin}.[/]")
            raise SystemExit(1)
        for key in ("name", "tag", "algorithm", "difficulty", "block_reward", "nethash", "profitability"):
            if data.get(key) is not None:
                console.print(f"[bold]{key}:[/] {data[key]}")
        return

    threshold = (
        min_profitability
        if min_profitability is not None
        else load_config()["market"]["min_mining_profitability"]
    )
    coins = _fetch("mining_opportunities", threshold)
    if not coins:
        console.print("[yellow]No profitable coins found.[/]")
        return

    table = Table(show_header=True, title="Mining Opportunities")
    table.add_column("Coin", style="cyan")
    table.add_column("Algorithm")
    table.add_column("Profitability", justify="right")
    table.add_column("ROI", justify="right")
    for coin in coins:
        roi = f"{coin['roi']:.1f}%" if coin.get("roi") is not None else "-"
        table.add_row(
            f"{coin['name']} ({coin.get('tag')})",
            str(coin.get("algorithm")),
            str(coin["profitability"]),
            roi,
        )
    console.print(table)


def _pct(value) -> str:
    if value is None:
        return "-"
    style = "green" if value > 0 else "red"
    return f"[{style}]{value:+.2f}%[/]"


def _usd(value, places: int = 2) -> str:
    return f"${value:,.{places}f}" if value is not None else "-"


@market.command("token")
@click.argument("token")
def market_token(token: str):
    """Price, market cap and recent moves for TOKEN."""
    data = _fetch("token_data", token)
    if data is None:
        console.print(f"[yellow]Token not found: {token}[/]")
        raise SystemExit(1)

    console.print(f"[bold cyan]{data['name']}[/] ({str(data.get('symbol') or '').upper()})")
    console.print(f"[bold]Price:[/] {_usd(data.get('current_price'), 4)}")
    console.print(f"[bold]Market cap:[/] {_usd(data.get('market_cap'), 0)}")
    console.print(f"[bold]Rank:[/] {data.get('market_cap_rank') or '-'}")
    console.print(f"[bold]24h volume:[/] {_usd(data.get('total_volume'), 0)}")
    console.print(
        f"[bold]Change:[/] 24h {_pct(data.get('price_change_percentage_24h'))}  "
        f"7d {_pct(data.get('price_change_percentage_7d'))}  "
        f"30d {_pct(data.get('price_change_percentage_30d'))}"
    )
    console.print(
        f"[bold]ATH:[/] {_usd(data.get('ath'), 4)}  [bold]ATL:[/] {_usd(data.get('atl'), 4)}"
    )
    if data.get("homepage"):
        console.print(f"[dim]{data['homepage']}[/]")


@market.command("trending")
def market_trending():
    """Coins trending on CoinGecko search."""
    coins = _fetch("trending")
    if not coins:
        console.print("[yellow]Nothing trending right now.[/]")
        return

    table = Table(show_header=True, title="Trending")
    table.add_column("Coin", style="cyan")
    table.add_column("Rank", justify="right", style="dim")
    for coin in coins:
        table.add_row(
            f"{coin.get('name')} ({str(coin.get('symbol') or '').upper()})",
            str(coin.get("market_cap_rank") or "-"),
        )
    console.print(table)


@market.command("alerts")
@click.argument("tokens", nargs=-1, required=True)
@click.option("--pump", type=float, default=None, help="24h gain (%) that counts as a pump")
@click.option("--dump", type=float, default=None, help="24h loss (%) that counts as a dump")
def market_alerts(tokens, pump, dump):
    """Flag TOKENS whose 24h move crossed the pump or dump threshold."""
    from cli.config import load_config

    market_cfg = load_config()["market"]
    thresholds = AlertThresholds(
        pump=pump if pump is not None else market_cfg["pump_threshold"],
        dump=dump if dump is not None else market_cfg["dump_threshold"],
    )
    alerts = _fetch("price_alerts", list(tokens), thresholds)
    if not alerts:
        console.print("[green]No alerts.[/]")
        return
    for alert in alerts:
        style = "green" if alert.kind == AlertKind.PUMP else "red"
        console.print(f"[{style}]{alert.kind.upper()}[/] {alert.message}")
