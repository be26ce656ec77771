"""Caller-facing core API used by the chat, HTTP and CLI adapters."""

from datetime import datetime, timedelta
from typing import Optional

import structlog

from .evaluator import EvaluationScheduler, PriceChangeSource
from .leaderboard import LeaderboardRanker
from .ledger import PredictionLedger, normalize_id
from .models import Prediction, RankedUser, UserStats
from .stats import LeaderboardStats
from .store import StorageAdapter

logger = structlog.get_logger()


class PredictionService:
    """Facade over ledger, evaluator and ranker sharing one store."""

    def __init__(
        self,
        store: StorageAdapter,
        ledger: PredictionLedger,
        evaluator: EvaluationScheduler,
        ranker: LeaderboardRanker,
        leaderboard_size: int = 100,
    ):
        self.store = store
        self.ledger = ledger
        self.evaluator = evaluator
        self.ranker = ranker
        self.leaderboard_size = leaderboard_size

    async def record_prediction(
        self,
        user_id: str,
        token_id: str,
        direction: str,
        now: Optional[datetime] = None,
        window: Optional[timedelta] = None,
    ) -> Prediction:
        """Raises ValidationError or PersistenceError."""
        return await self.ledger.record(user_id, token_id, direction, now=now, window=window)

    async def get_leaderboard(self, limit: int = 10) -> list[RankedUser]:
        return await self.ranker.top_n(max(0, min(limit, self.leaderboard_size)))

    async def get_user_rank(self, user_id: str) -> Optional[int]:
        return await self.ranker.rank_of(normalize_id(user_id))

    async def get_user_stats(self, user_id: str) -> Optional[UserStats]:
        return await self.store.get_user(normalize_id(user_id))

    async def get_user_predictions(self, user_id: str, limit: int = 10) -> list[Prediction]:
        return await self.store.get_user_predictions(normalize_id(user_id), limit)

    async def get_leaderboard_stats(self) -> dict:
        return await LeaderboardStats.compute(self.store)

    async def run_evaluation_tick(self, now: Optional[datetime] = None) -> dict:
        return await self.evaluator.run_tick(now)


def build_service(
    store: StorageAdapter,
    prices: PriceChangeSource,
    config: Optional[dict] = None,
) -> PredictionService:
    """Wire the core components from the ``predictions`` config section."""
    cfg = (config or {}).get("predictions", {})
    window = timedelta(hours=cfg.get("window_hours", 24))
    evaluator = EvaluationScheduler(
        store,
        prices,
        window=window,
        moon_threshold=cfg.get("moon_threshold", 15.0),
        max_time_bonus=cfg.get("max_time_bonus", 5),
        fetch_timeout=cfg.get("fetch_timeout_seconds", 15.0),
        concurrency=cfg.get("evaluation_concurrency", 5),
    )
    return PredictionService(
        store=store,
        ledger=PredictionLedger(store, window=window),
        evaluator=evaluator,
        ranker=LeaderboardRanker(store),
        leaderboard_size=cfg.get("leaderboard_size", 100),
    )
