"""Aggregate leaderboard stats."""

from .store import StorageAdapter


class LeaderboardStats:
    @staticmethod
    async def compute(store: StorageAdapter) -> dict:
        """Global totals and overall accuracy; delegates to store.get_global_stats()."""
        return await store.get_global_stats()
