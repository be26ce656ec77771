"""Tests for the single-flight TTL cache."""

import asyncio

import pytest

from errors import TransientFetchError
from market.cache import CacheEntry, TTLCache, make_key
from observability import metrics


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class CountingProducer:
    """Producer that blocks on a gate so callers can pile up behind it."""

    def __init__(self, value="v", gated=False):
        self.value = value
        self.calls = 0
        self.gate = asyncio.Event()
        if not gated:
            self.gate.set()

    async def __call__(self):
        self.calls += 1
        await self.gate.wait()
        if isinstance(self.value, BaseException):
            raise self.value
        return self.value


def test_entry_freshness():
    entry = CacheEntry(key="k", value=1, stored_at=100.0, ttl=10.0)
    assert entry.is_fresh(109.9)
    assert not entry.is_fresh(110.0)


def test_make_key_is_stable_and_param_order_independent():
    a = make_key("top_movers", direction="gainers", limit=10)
    b = make_key("top_movers", limit=10, direction="gainers")
    assert a == b
    assert a.startswith("top_movers:")
    assert a != make_key("top_movers", direction="losers", limit=10)


@pytest.mark.asyncio
async def test_fresh_entry_skips_producer():
    clock = FakeClock()
    cache = TTLCache(clock=clock)
    producer = CountingProducer("price")

    assert await cache.get("k", 60, producer) == "price"
    clock.now += 59
    assert await cache.get("k", 60, producer) == "price"

    assert producer.calls == 1
    assert metrics.count("cache_hit") == 1
    assert metrics.count("cache_miss") == 1


@pytest.mark.asyncio
async def test_expired_entry_reproduces():
    clock = FakeClock()
    cache = TTLCache(clock=clock)
    producer = CountingProducer("price")

    await cache.get("k", 60, producer)
    clock.now += 60
    assert cache.peek("k") is None
    await cache.get("k", 60, producer)

    assert producer.calls == 2


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_call():
    cache = TTLCache()
    producer = CountingProducer("shared", gated=True)

    waiters = [asyncio.create_task(cache.get("k", 60, producer)) for _ in range(10)]
    await asyncio.sleep(0)
    assert cache.in_flight("k")

    producer.gate.set()
    results = await asyncio.gather(*waiters)

    assert results == ["shared"] * 10
    assert producer.calls == 1
    assert metrics.count("cache_coalesced") == 9
    assert not cache.in_flight("k")
    assert cache.peek("k") == "shared"


@pytest.mark.asyncio
async def test_failure_propagates_to_all_waiters_and_is_not_cached():
    cache = TTLCache()
    failing = CountingProducer(TransientFetchError("upstream down"), gated=True)

    waiters = [asyncio.create_task(cache.get("k", 60, failing)) for _ in range(3)]
    await asyncio.sleep(0)
    failing.gate.set()
    results = await asyncio.gather(*waiters, return_exceptions=True)

    assert all(isinstance(r, TransientFetchError) for r in results)
    assert failing.calls == 1
    assert not cache.in_flight("k")
    assert cache.peek("k") is None
    assert metrics.count("cache_producer_failure") == 1

    ok = CountingProducer("recovered")
    assert await cache.get("k", 60, ok) == "recovered"
    assert ok.calls == 1


@pytest.mark.asyncio
async def test_waiter_timeout_raises_transient_and_producer_continues():
    cache = TTLCache()
    producer = CountingProducer("late", gated=True)

    with pytest.raises(TransientFetchError):
        await cache.get("k", 60, producer, timeout=0.01)
    assert cache.in_flight("k")

    # a patient caller joins the same call rather than starting another
    patient = asyncio.create_task(cache.get("k", 60, producer))
    await asyncio.sleep(0)
    producer.gate.set()
    assert await patient == "late"
    assert producer.calls == 1


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_shared_call():
    cache = TTLCache()
    producer = CountingProducer("ok", gated=True)

    first = asyncio.create_task(cache.get("k", 60, producer))
    second = asyncio.create_task(cache.get("k", 60, producer))
    await asyncio.sleep(0)
    first.cancel()
    await asyncio.sleep(0)

    producer.gate.set()
    assert await second == "ok"
    assert first.cancelled()


@pytest.mark.asyncio
async def test_distinct_keys_are_independent():
    cache = TTLCache()
    a = CountingProducer("a")
    b = CountingProducer("b")

    assert await asyncio.gather(cache.get("a", 60, a), cache.get("b", 60, b)) == ["a", "b"]
    assert (a.calls, b.calls) == (1, 1)


@pytest.mark.asyncio
async def test_invalidate_and_clear_expired():
    clock = FakeClock()
    cache = TTLCache(clock=clock)

    await cache.get("short", 10, CountingProducer(1))
    await cache.get("long", 100, CountingProducer(2))
    await cache.get("gone", 100, CountingProducer(3))
    cache.invalidate("gone")
    assert cache.peek("gone") is None

    clock.now += 50
    assert cache.clear_expired() == 1
    assert cache.stats() == {"entries": 1, "in_flight": 0}
    assert cache.peek("long") == 2


@pytest.mark.asyncio
async def test_get_sweeps_out_keys_never_requested_again():
    clock = FakeClock()
    cache = TTLCache(clock=clock, sweep_interval=60)
    for i in range(500):
        await cache.get(("price_change", "btc", i), 3600, CountingProducer(i))
    assert cache.stats()["entries"] == 500

    clock.now += 10 * 86400
    await cache.get("fresh", 3600, CountingProducer("x"))

    assert cache.stats() == {"entries": 1, "in_flight": 0}


@pytest.mark.asyncio
async def test_sweep_runs_at_most_once_per_interval():
    clock = FakeClock()
    cache = TTLCache(clock=clock, sweep_interval=60)

    await cache.get("short", 10, CountingProducer(1))
    clock.now += 30
    await cache.get("long", 100, CountingProducer(2))
    # "short" is stale but the last sweep was too recent
    assert cache.stats()["entries"] == 2

    clock.now += 30
    assert await cache.get("long", 100, CountingProducer(2)) == 2
    assert cache.stats()["entries"] == 1
