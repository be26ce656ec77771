"""Creates and validates new predictions."""

from datetime import datetime, timedelta
from typing import Optional

import structlog

from errors import ValidationError
from observability import metrics
from shared_types import Direction

from .models import Prediction, as_utc, utcnow
from .store import StorageAdapter

logger = structlog.get_logger().bind(source="ledger")

VALID_DIRECTIONS = {d.value for d in Direction}


def normalize_id(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def parse_direction(value: Optional[str]) -> Direction:
    normalized = normalize_id(value)
    if normalized not in VALID_DIRECTIONS:
        raise ValidationError(
            f"Invalid direction: {value!r}. Must be one of {sorted(VALID_DIRECTIONS)}"
        )
    return Direction(normalized)


class PredictionLedger:
    """Validates prediction requests and persists them with the owner's stats."""

    def __init__(self, store: StorageAdapter, window: timedelta = timedelta(hours=24)):
        if window <= timedelta(0):
            raise ValueError("prediction window must be positive")
        self.store = store
        self.window = window

    async def record(
        self,
        user_id: str,
        token_id: str,
        direction: str,
        now: Optional[datetime] = None,
        window: Optional[timedelta] = None,
    ) -> Prediction:
        """Validate and store a new pending prediction.

        Args:
            user_id: Predicting user (address or handle); normalized to lowercase.
            token_id: Asset identifier; must be non-empty.
            direction: One of up/down/moon/dump.
            now: Creation time; defaults to the current UTC time.
            window: Optional shorter window; defaults to the configured one.

        Raises:
            ValidationError: bad direction, empty token/user, or bad window.
            PersistenceError: storage unavailable.
        """
        parsed_direction = parse_direction(direction)
        token = normalize_id(token_id)
        if not token:
            raise ValidationError("token_id must be non-empty")
        user = normalize_id(user_id)
        if not user:
            raise ValidationError("user_id must be non-empty")

        span = self.window if window is None else window
        if span <= timedelta(0) or span > self.window:
            raise ValidationError(
                f"window must be positive and at most {self.window}, got {span}"
            )

        created_at = as_utc(now or utcnow())
        prediction = Prediction(
            user_id=user,
            token_id=token,
            direction=parsed_direction,
            created_at=created_at,
            expires_at=created_at + span,
        )
        await self.store.insert_prediction(prediction)

        metrics.counter("predictions_recorded")
        logger.info(
            "prediction_recorded",
            prediction_id=prediction.id,
            user_id=user,
            token_id=token,
            direction=str(parsed_direction),
            expires_at=prediction.expires_at.isoformat(),
        )
        return prediction
