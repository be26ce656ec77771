"""Shared test fixtures for alphascroll."""

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import pytest
import pytest_asyncio

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from observability import metrics  # noqa: E402
from predictions.store import InMemoryPredictionStore, SQLitePredictionStore  # noqa: E402


@pytest.fixture
def now():
    """Fixed reference time for deterministic windows."""
    return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest_asyncio.fixture(params=["sqlite", "memory"])
async def store(request, tmp_path):
    """Open store, once per backend. Both must behave identically."""
    if request.param == "sqlite":
        s = SQLitePredictionStore(tmp_path / "alpha.db")
    else:
        s = InMemoryPredictionStore()
    await s.open()
    yield s
    await s.close()


class FakePrices:
    """Price-resolution collaborator returning canned percentage moves.

    Values may be a float, None (unknown) or an exception instance to raise.
    """

    def __init__(self, changes: Optional[dict] = None):
        self.changes = dict(changes or {})
        self.calls: list[tuple[str, datetime]] = []

    async def get_price_change_since(self, token_id: str, since: datetime):
        self.calls.append((token_id, since))
        value = self.changes.get(token_id)
        if isinstance(value, BaseException):
            raise value
        return value


@pytest.fixture
def fake_prices():
    return FakePrices()
