"""Prediction and user-stats records."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from shared_types import Direction, PredictionStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(ts: datetime) -> datetime:
    """Normalize a timestamp to aware UTC; naive values are taken as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


@dataclass
class Prediction:
    user_id: str
    token_id: str
    direction: Direction
    created_at: datetime
    expires_at: datetime
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: PredictionStatus = PredictionStatus.PENDING
    score: int = 0
    evaluated_at: Optional[datetime] = None
    price_change: Optional[float] = None

    @property
    def window_seconds(self) -> float:
        return (self.expires_at - self.created_at).total_seconds()

    @property
    def is_pending(self) -> bool:
        return self.status == PredictionStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "token_id": self.token_id,
            "direction": str(self.direction),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "status": str(self.status),
            "score": self.score,
            "evaluated_at": self.evaluated_at.isoformat() if self.evaluated_at else None,
            "price_change": self.price_change,
        }


@dataclass
class UserStats:
    user_id: str
    joined_at: datetime
    last_active: datetime
    total_predictions: int = 0
    correct_predictions: int = 0
    total_score: int = 0

    @property
    def accuracy(self) -> Optional[float]:
        """Fraction of predictions judged correct; None before the first prediction."""
        if self.total_predictions <= 0:
            return None
        return self.correct_predictions / self.total_predictions

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "total_predictions": self.total_predictions,
            "correct_predictions": self.correct_predictions,
            "total_score": self.total_score,
            "accuracy": self.accuracy,
            "joined_at": self.joined_at.isoformat(),
            "last_active": self.last_active.isoformat(),
        }


@dataclass
class RankedUser:
    """UserStats annotated with a 1-based leaderboard position."""

    rank: int
    stats: UserStats

    @property
    def user_id(self) -> str:
        return self.stats.user_id

    @property
    def total_score(self) -> int:
        return self.stats.total_score

    def to_dict(self) -> dict:
        return {"rank": self.rank, **self.stats.to_dict()}
