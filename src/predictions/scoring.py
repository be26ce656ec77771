"""Point deltas for resolved predictions."""

import math
from datetime import timedelta

from shared_types import Direction

from .models import Prediction

# Directional calls vs extreme-move calls
RISK_TIER_BASE = {
    Direction.UP: 10,
    Direction.DOWN: 10,
    Direction.MOON: 25,
    Direction.DUMP: 25,
}

INCORRECT_PENALTY = -10
DEFAULT_MAX_TIME_BONUS = 5


def base_score(direction: Direction) -> int:
    return RISK_TIER_BASE[Direction(direction)]


def time_bonus(
    prediction: Prediction,
    full_window: timedelta,
    max_bonus: int = DEFAULT_MAX_TIME_BONUS,
) -> int:
    """Bonus for committing to the whole window rather than a short rebet.

    ``floor(window / full_window * max_bonus)`` where ``window`` is the span the
    prediction was actually given at creation. A prediction on the default
    window earns the full bonus.
    """
    full = full_window.total_seconds()
    if full <= 0:
        return 0
    fraction = min(prediction.window_seconds, full) / full
    return math.floor(max(fraction, 0.0) * max_bonus)


def compute_score(
    prediction: Prediction,
    outcome_correct: bool,
    full_window: timedelta = timedelta(hours=24),
    max_bonus: int = DEFAULT_MAX_TIME_BONUS,
) -> int:
    """Score delta for a resolved prediction.

    Correct: risk-tier base plus time bonus. Incorrect: flat penalty regardless
    of tier. Clamping the user's total at zero is the store's job.
    """
    if not outcome_correct:
        return INCORRECT_PENALTY
    return base_score(prediction.direction) + time_bonus(prediction, full_window, max_bonus)
