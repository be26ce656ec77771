"""Tests for LeaderboardRanker and LeaderboardStats."""

from datetime import timedelta

import pytest

from predictions.leaderboard import LeaderboardRanker
from predictions.models import Prediction
from predictions.stats import LeaderboardStats
from shared_types import Direction, PredictionStatus


async def _seed(store, now, scores: dict[str, int]):
    """Give each user one resolved prediction worth ``score``, joining in dict order."""
    for i, (user, score) in enumerate(scores.items()):
        created = now - timedelta(hours=48) + timedelta(minutes=i)
        p = Prediction(
            user_id=user,
            token_id="bitcoin",
            direction=Direction.UP,
            created_at=created,
            expires_at=created + timedelta(hours=24),
        )
        await store.insert_prediction(p)
        status = PredictionStatus.CORRECT if score > 0 else PredictionStatus.INCORRECT
        await store.update_prediction_and_user(p.id, status, score)


@pytest.mark.asyncio
async def test_top_n_ordered_by_score(store, now):
    await _seed(store, now, {"a": 50, "b": 30, "c": 70})
    top = await LeaderboardRanker(store).top_n(2)

    assert [r.user_id for r in top] == ["c", "a"]
    assert [r.rank for r in top] == [1, 2]
    assert [r.total_score for r in top] == [70, 50]


@pytest.mark.asyncio
async def test_top_n_tie_goes_to_earlier_joiner(store, now):
    await _seed(store, now, {"early": 30, "late": 30})
    top = await LeaderboardRanker(store).top_n(10)
    assert [r.user_id for r in top] == ["early", "late"]


@pytest.mark.asyncio
async def test_top_n_empty(store):
    assert await LeaderboardRanker(store).top_n(10) == []


@pytest.mark.asyncio
async def test_rank_of_uses_competition_ranking(store, now):
    await _seed(store, now, {"a": 50, "b": 30, "c": 30})
    ranker = LeaderboardRanker(store)

    assert [await ranker.rank_of(u) for u in ("a", "b", "c")] == [1, 2, 2]


@pytest.mark.asyncio
async def test_rank_of_zero_score_users(store, now):
    await _seed(store, now, {"a": 15, "b": -10, "c": -10})
    ranker = LeaderboardRanker(store)

    assert await ranker.rank_of("a") == 1
    assert await ranker.rank_of("b") == 2
    assert await ranker.rank_of("c") == 2


@pytest.mark.asyncio
async def test_rank_of_unknown_user(store):
    assert await LeaderboardRanker(store).rank_of("nobody") is None


@pytest.mark.asyncio
async def test_ranked_user_to_dict(store, now):
    await _seed(store, now, {"a": 15})
    (row,) = await LeaderboardRanker(store).top_n(1)
    data = row.to_dict()
    assert data["rank"] == 1
    assert data["user_id"] == "a"
    assert data["accuracy"] == 1.0


@pytest.mark.asyncio
async def test_stats_compute(store, now):
    await _seed(store, now, {"a": 15, "b": -10})
    stats = await LeaderboardStats.compute(store)

    assert stats["total_users"] == 2
    assert stats["total_predictions"] == 2
    assert stats["correct_predictions"] == 1
    assert stats["overall_accuracy"] == pytest.approx(0.5)
