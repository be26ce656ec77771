"""Tests for score computation."""

from datetime import timedelta

import pytest

from predictions.models import Prediction
from predictions.scoring import INCORRECT_PENALTY, base_score, compute_score, time_bonus
from shared_types import Direction


def _prediction(direction, now, hours=24.0):
    return Prediction(
        user_id="alice",
        token_id="bitcoin",
        direction=direction,
        created_at=now,
        expires_at=now + timedelta(hours=hours),
    )


class TestBaseScore:
    @pytest.mark.parametrize(
        "direction,expected",
        [(Direction.UP, 10), (Direction.DOWN, 10), (Direction.MOON, 25), (Direction.DUMP, 25)],
    )
    def test_risk_tiers(self, direction, expected):
        assert base_score(direction) == expected

    def test_accepts_string_direction(self):
        assert base_score("moon") == 25


class TestTimeBonus:
    def test_full_window_gets_max_bonus(self, now):
        assert time_bonus(_prediction(Direction.UP, now), timedelta(hours=24)) == 5

    def test_half_window_gets_floor_of_half(self, now):
        p = _prediction(Direction.UP, now, hours=12)
        assert time_bonus(p, timedelta(hours=24)) == 2

    def test_tiny_window_gets_nothing(self, now):
        p = _prediction(Direction.UP, now, hours=1)
        assert time_bonus(p, timedelta(hours=24)) == 0

    def test_window_longer_than_full_is_capped(self, now):
        p = _prediction(Direction.UP, now, hours=48)
        assert time_bonus(p, timedelta(hours=24)) == 5

    def test_custom_max_bonus(self, now):
        assert time_bonus(_prediction(Direction.UP, now), timedelta(hours=24), max_bonus=0) == 0
        assert time_bonus(_prediction(Direction.UP, now), timedelta(hours=24), max_bonus=8) == 8


class TestComputeScore:
    def test_correct_up_default_window(self, now):
        assert compute_score(_prediction(Direction.UP, now), True) == 15

    def test_correct_moon_default_window(self, now):
        assert compute_score(_prediction(Direction.MOON, now), True) == 30

    def test_correct_dump_short_window(self, now):
        p = _prediction(Direction.DUMP, now, hours=12)
        assert compute_score(p, True) == 27

    @pytest.mark.parametrize("direction", list(Direction))
    def test_incorrect_is_flat_penalty(self, direction, now):
        assert compute_score(_prediction(direction, now), False) == INCORRECT_PENALTY == -10

    def test_correct_always_beats_incorrect(self, now):
        for direction in Direction:
            p = _prediction(direction, now, hours=0.5)
            assert compute_score(p, True) > compute_score(p, False)
