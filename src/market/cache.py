"""In-process TTL cache with single-flight producers for external lookups."""

import asyncio
import hashlib
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Hashable, Optional

import structlog

from errors import TransientFetchError
from observability import metrics

logger = structlog.get_logger().bind(source="ttl_cache")

Producer = Callable[[], Awaitable[Any]]


@dataclass
class CacheEntry:
    key: Hashable
    value: Any
    stored_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.stored_at < self.ttl


def make_key(kind: str, **params) -> str:
    """Stable key for a lookup kind and its parameters."""
    payload = json.dumps({"kind": kind, **params}, sort_keys=True, default=str)
    return f"{kind}:{hashlib.sha256(payload.encode()).hexdigest()[:16]}"


def _consume_exception(task: asyncio.Task) -> None:
    # Keeps asyncio quiet when every waiter timed out before the producer failed.
    if not task.cancelled():
        task.exception()


class TTLCache:
    """Memoize async producers per key for ``ttl`` seconds.

    Concurrent misses for the same key share one producer call. A failed
    producer propagates its error to every waiter on that call and leaves
    nothing cached, so the next get() tries again. A key holds either a
    resolved entry or an in-flight producer, never both. Stale entries are
    swept out by get() at most once per ``sweep_interval`` seconds, so keys
    that are never asked for again do not accumulate.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_interval: float = 60.0):
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._last_sweep = clock()
        self._entries: dict[Hashable, CacheEntry] = {}
        self._in_flight: dict[Hashable, asyncio.Task] = {}

    async def get(
        self,
        key: Hashable,
        ttl: float,
        producer: Producer,
        timeout: Optional[float] = None,
    ) -> Any:
        """Return the cached value for ``key`` or produce it once.

        Args:
            key: Cache key.
            ttl: Freshness window in seconds.
            producer: Zero-arg coroutine function computing the value.
            timeout: Max seconds this caller waits. On expiry the caller gets
                TransientFetchError; the shared producer keeps running for
                other waiters.
        """
        now = self._clock()
        if now - self._last_sweep >= self._sweep_interval:
            self._last_sweep = now
            self.clear_expired()

        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(now):
            metrics.counter("cache_hit")
            return entry.value

        task = self._in_flight.get(key)
        if task is None:
            metrics.counter("cache_miss")
            self._entries.pop(key, None)
            task = asyncio.ensure_future(self._produce(key, ttl, producer))
            task.add_done_callback(_consume_exception)
            self._in_flight[key] = task
        else:
            metrics.counter("cache_coalesced")

        # shield: a cancelled or timed-out waiter must not cancel the shared call
        waiter = asyncio.shield(task)
        if timeout is None:
            return await waiter
        try:
            return await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError as e:
            logger.warning("cache_wait_timeout", key=str(key), timeout=timeout)
            raise TransientFetchError(f"timed out after {timeout}s waiting for {key}") from e

    async def _produce(self, key: Hashable, ttl: float, producer: Producer) -> Any:
        try:
            async with metrics.async_timer("cache_producer"):
                value = await producer()
        except Exception as e:
            metrics.counter("cache_producer_failure")
            logger.warning(
                "cache_producer_failed",
                key=str(key),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise
        else:
            self._entries[key] = CacheEntry(key=key, value=value, stored_at=self._clock(), ttl=ttl)
            return value
        finally:
            self._in_flight.pop(key, None)

    def peek(self, key: Hashable) -> Any:
        """Fresh cached value or None, without producing."""
        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(self._clock()):
            return entry.value
        return None

    def in_flight(self, key: Hashable) -> bool:
        return key in self._in_flight

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear_expired(self) -> int:
        """Drop stale entries; returns how many were removed."""
        now = self._clock()
        stale = [k for k, e in self._entries.items() if not e.is_fresh(now)]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def stats(self) -> dict:
        return {"entries": len(self._entries), "in_flight": len(self._in_flight)}
