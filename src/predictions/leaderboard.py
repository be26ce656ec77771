"""Leaderboard rankings derived from stored user stats."""

from typing import Optional

from .models import RankedUser
from .store import StorageAdapter


class LeaderboardRanker:
    """Computes ranks on demand; nothing rank-related is stored, so it can't drift.

    ``top_n`` numbers rows by position, while ``rank_of`` uses competition
    ranking (users tied on score share a rank).
    """

    def __init__(self, store: StorageAdapter):
        self.store = store

    async def top_n(self, limit: int = 10) -> list[RankedUser]:
        users = await self.store.rank_users(limit)
        return [RankedUser(rank=i, stats=u) for i, u in enumerate(users, start=1)]

    async def rank_of(self, user_id: str) -> Optional[int]:
        user = await self.store.get_user(user_id)
        if user is None:
            return None
        return await self.store.count_strictly_greater_score(user.total_score) + 1
