"""CLI entry point for alphascroll."""

import sys
from pathlib import Path

import click

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from cli.commands import daemon, evaluate, history, leaderboard, market, predict, rank, stats
from cli.config import get_paths, load_config
from cli.logging_config import setup_logging


@click.group()
@click.version_option(version="0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("--json-logs", is_flag=True, help="Emit JSON log lines (for daemons)")
def cli(verbose: bool, json_logs: bool):
    """AlphaScroll - crypto prediction ledger and leaderboard."""
    config = load_config()
    log_cfg = config["logging"]
    setup_logging(
        json_mode=json_logs or log_cfg["json_logs"],
        level="DEBUG" if verbose else log_cfg["level"],
        log_file=get_paths(config)["log_file"],
    )


cli.add_command(predict)
cli.add_command(leaderboard)
cli.add_command(rank)
cli.add_command(history)
cli.add_command(stats)
cli.add_command(evaluate)
cli.add_command(daemon)
cli.add_command(market)


if __name__ == "__main__":
    cli()
