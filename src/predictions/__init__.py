"""Prediction ledger: records calls, scores outcomes, ranks users."""

from .evaluator import EvaluationScheduler, classify
from .leaderboard import LeaderboardRanker
from .ledger import PredictionLedger
from .models import Prediction, RankedUser, UserStats
from .scoring import compute_score
from .service import PredictionService, build_service
from .stats import LeaderboardStats
from .store import (
    InMemoryPredictionStore,
    SQLitePredictionStore,
    StorageAdapter,
    open_store,
)

__all__ = [
    "Prediction",
    "UserStats",
    "RankedUser",
    "StorageAdapter",
    "SQLitePredictionStore",
    "InMemoryPredictionStore",
    "open_store",
    "PredictionLedger",
    "compute_score",
    "classify",
    "EvaluationScheduler",
    "LeaderboardRanker",
    "LeaderboardStats",
    "PredictionService",
    "build_service",
]
