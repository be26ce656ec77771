"""Token-bucket rate limiter for market-data API calls."""

import asyncio
import time
from typing import Callable


class TokenBucketRateLimiter:
    """Async token bucket: allows bursts up to bucket size, then a steady rate."""

    def __init__(
        self,
        requests_per_second: float = 2.0,
        burst: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.rate = requests_per_second
        self.max_tokens = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        self._tokens = min(self.max_tokens, self._tokens + elapsed * self.rate)
        self._last_refill = now

    async def acquire(self) -> None:
        """Take a token, sleeping until one is available."""
        async with self._lock:
            self._refill()
            while self._tokens < 1.0:
                await asyncio.sleep((1.0 - self._tokens) / self.rate)
                self._refill()
            self._tokens -= 1.0

    @classmethod
    def from_config(cls, cfg: dict) -> "TokenBucketRateLimiter":
        return cls(
            requests_per_second=cfg.get("requests_per_second", 2.0),
            burst=cfg.get("burst", 5),
        )
