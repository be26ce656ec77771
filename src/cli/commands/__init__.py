"""CLI command modules."""

from .daemon import daemon
from .market import market
from .predictions import evaluate, history, leaderboard, predict, rank, stats

__all__ = [
    "predict",
    "leaderboard",
    "rank",
    "history",
    "stats",
    "evaluate",
    "daemon",
    "market",
]
