"""End-to-end tests for PredictionService wiring."""

from datetime import timedelta

import pytest

from errors import ValidationError
from predictions.service import build_service
from shared_types import PredictionStatus


@pytest.mark.asyncio
async def test_record_evaluate_rank_flow(store, fake_prices, now):
    service = build_service(store, fake_prices)
    start = now - timedelta(hours=25)

    await service.record_prediction("Alice", "bitcoin", "moon", now=start)
    await service.record_prediction("bob", "bitcoin", "up", now=start)
    await service.record_prediction("carol", "ethereum", "down", now=start)
    fake_prices.changes.update({"bitcoin": 20.0, "ethereum": 1.0})

    summary = await service.run_evaluation_tick(now)
    assert summary["correct"] == 2
    assert summary["incorrect"] == 1

    board = await service.get_leaderboard(10)
    assert [(r.user_id, r.total_score) for r in board] == [
        ("alice", 30),
        ("bob", 15),
        ("carol", 0),
    ]
    assert await service.get_user_rank("ALICE") == 1
    assert await service.get_user_rank("carol") == 3
    assert await service.get_user_rank("ghost") is None

    alice = await service.get_user_stats(" alice ")
    assert alice.accuracy == 1.0
    assert (await service.get_user_stats("ghost")) is None

    history = await service.get_user_predictions("alice")
    assert len(history) == 1
    assert history[0].status == PredictionStatus.CORRECT

    stats = await service.get_leaderboard_stats()
    assert stats["total_users"] == 3
    assert stats["pending_predictions"] == 0


@pytest.mark.asyncio
async def test_invalid_direction_propagates(store, fake_prices, now):
    service = build_service(store, fake_prices)
    with pytest.raises(ValidationError):
        await service.record_prediction("alice", "bitcoin", "sideways", now=now)
    assert await service.get_user_stats("alice") is None


@pytest.mark.asyncio
async def test_leaderboard_limit_clamped_to_configured_size(store, fake_prices, now):
    service = build_service(store, fake_prices, {"predictions": {"leaderboard_size": 2}})
    for user in ("a", "b", "c"):
        await service.record_prediction(user, "bitcoin", "up", now=now)

    assert len(await service.get_leaderboard(10)) == 2
    assert await service.get_leaderboard(-5) == []


@pytest.mark.asyncio
async def test_config_controls_window_and_threshold(store, fake_prices, now):
    config = {"predictions": {"window_hours": 2, "moon_threshold": 5.0, "max_time_bonus": 10}}
    service = build_service(store, fake_prices, config)

    p = await service.record_prediction("alice", "bitcoin", "moon", now=now - timedelta(hours=3))
    assert p.expires_at - p.created_at == timedelta(hours=2)
    with pytest.raises(ValidationError):
        await service.record_prediction(
            "alice", "bitcoin", "up", now=now, window=timedelta(hours=3)
        )

    fake_prices.changes["bitcoin"] = 6.0
    await service.run_evaluation_tick(now)
    assert (await service.get_user_stats("alice")).total_score == 35
