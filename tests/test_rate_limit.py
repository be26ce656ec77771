"""Tests for token bucket rate limiter."""

import asyncio
from unittest.mock import patch

import pytest

from cli.rate_limit import TokenBucketRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _sleep_advancing(clock: FakeClock):
    async def sleep(delay):
        clock.now += delay

    return sleep


class TestTokenBucketRateLimiter:
    """Test token bucket behavior."""

    @pytest.mark.asyncio
    async def test_initial_burst(self):
        """Burst tokens available immediately, the next one waits."""
        clock = FakeClock()
        limiter = TokenBucketRateLimiter(requests_per_second=1.0, burst=3, clock=clock)
        with patch("cli.rate_limit.asyncio.sleep", side_effect=_sleep_advancing(clock)) as sleep:
            for _ in range(3):
                await limiter.acquire()
            sleep.assert_not_awaited()

            await limiter.acquire()
        sleep.assert_awaited_once_with(pytest.approx(1.0))
        assert clock.now == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_token_refill_capped_at_burst(self):
        clock = FakeClock()
        limiter = TokenBucketRateLimiter(requests_per_second=2.0, burst=2, clock=clock)
        with patch("cli.rate_limit.asyncio.sleep", side_effect=_sleep_advancing(clock)) as sleep:
            await limiter.acquire()
            await limiter.acquire()
            clock.now += 10
            # a long idle gap refills only up to the burst size
            await limiter.acquire()
            await limiter.acquire()
            sleep.assert_not_awaited()

            await limiter.acquire()
        sleep.assert_awaited_once_with(pytest.approx(0.5))

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            TokenBucketRateLimiter(requests_per_second=0)

    @pytest.mark.asyncio
    async def test_acquire_waits_when_empty(self):
        limiter = TokenBucketRateLimiter(requests_per_second=50.0, burst=1)
        await limiter.acquire()
        loop = asyncio.get_running_loop()
        start = loop.time()
        await limiter.acquire()
        assert loop.time() - start >= 0.01

    @pytest.mark.asyncio
    async def test_concurrent_access(self):
        """Multiple coroutines can use limiter safely."""
        limiter = TokenBucketRateLimiter(requests_per_second=100.0, burst=10)
        results = []

        async def worker(i):
            await limiter.acquire()
            results.append(i)

        await asyncio.gather(*[worker(i) for i in range(10)])
        assert len(results) == 10

    def test_from_config(self):
        limiter = TokenBucketRateLimiter.from_config({"requests_per_second": 0.5, "burst": 2})
        assert limiter.rate == 0.5
        assert limiter.max_tokens == 2

    def test_from_config_defaults(self):
        limiter = TokenBucketRateLimiter.from_config({})
        assert limiter.rate == 2.0
        assert limiter.max_tokens == 5
