"""Cached market-data lookups shared by the scheduler and user-facing commands."""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

import structlog

from errors import TransientFetchError
from shared_types import AlertKind, MoverDirection

from .cache import TTLCache, make_key
from .coingecko import CoinGeckoClient
from .mining import WhatToMineClient

logger = structlog.get_logger().bind(source="market_data")


async def _get_known(cache: TTLCache, key, ttl: float, producer, timeout: Optional[float]):
    value = await cache.get(key, ttl, producer, timeout=timeout)
    if value is None:
        # unknown results are retried on the next lookup
        cache.invalidate(key)
    return value


@dataclass(frozen=True)
class AlertThresholds:
    """24h move (percent) at or beyond which a token raises an alert."""

    pump: float = 15.0
    dump: float = -15.0


@dataclass
class PriceAlert:
    kind: AlertKind
    token: dict
    change: float

    @property
    def message(self) -> str:
        name = self.token.get("name") or self.token.get("id")
        if self.kind == AlertKind.PUMP:
            return f"{name} is up {self.change:.2f}% in 24h"
        return f"{name} is down {abs(self.change):.2f}% in 24h"


class PriceResolver:
    """Price-resolution collaborator backed by CoinGecko through the TTL cache.

    A prediction's price change is cached per ``(token_id, since)``; the
    token-to-coin-id mapping is cached separately for much longer.
    """

    def __init__(
        self,
        coingecko: CoinGeckoClient,
        cache: TTLCache,
        price_ttl: float = 3600,
        coin_id_ttl: float = 86400,
        timeout: Optional[float] = None,
    ):
        self.coingecko = coingecko
        self.cache = cache
        self.price_ttl = price_ttl
        self.coin_id_ttl = coin_id_ttl
        self.timeout = timeout

    async def resolve_coin_id(self, token_id: str) -> Optional[str]:
        return await _get_known(
            self.cache,
            ("coin_id", token_id),
            self.coin_id_ttl,
            lambda: self.coingecko.resolve_coin_id(token_id),
            self.timeout,
        )

    async def get_price_change_since(self, token_id: str, since: datetime) -> Optional[float]:
        """Percentage change for ``token_id`` since ``since``; None if unresolvable."""

        async def produce() -> Optional[float]:
            coin_id = await self.resolve_coin_id(token_id)
            if coin_id is None:
                logger.info("coin_not_found", token_id=token_id)
                return None
            return await self.coingecko.get_price_change_since(coin_id, since)

        return await _get_known(
            self.cache,
            ("price_change", token_id, since.isoformat()),
            self.price_ttl,
            produce,
            self.timeout,
        )


class MarketDataService:
    """Market snapshots for the outer layers, each memoized in the shared cache."""

    def __init__(
        self,
        coingecko: CoinGeckoClient,
        mining: WhatToMineClient,
        cache: TTLCache,
        ttl: float = 300,
        timeout: Optional[float] = None,
    ):
        self.coingecko = coingecko
        self.mining = mining
        self.cache = cache
        self.ttl = ttl
        self.timeout = timeout

    async def top_movers(
        self, direction: MoverDirection = MoverDirection.GAINERS, limit: int = 10
    ) -> list[dict]:
        direction = MoverDirection(direction)
        return await self.cache.get(
            make_key("top_movers", direction=str(direction), limit=limit),
            self.ttl,
            lambda: self.coingecko.get_top_movers(direction, limit),
            timeout=self.timeout,
        )

    async def trending(self) -> list[dict]:
        return await self.cache.get(
            make_key("trending"), self.ttl, self.coingecko.get_trending, timeout=self.timeout
        )

    async def market_overview(self) -> dict:
        return await self.cache.get(
            make_key("market_overview"),
            self.ttl,
            self.coingecko.get_market_overview,
            timeout=self.timeout,
        )

    async def token_data(self, token: str) -> Optional[dict]:
        """Detail snapshot for one token; None if CoinGecko does not know it."""
        token = token.strip().lower()
        return await _get_known(
            self.cache,
            make_key("token_data", token=token),
            self.ttl,
            lambda: self.coingecko.get_token_data(token),
            self.timeout,
        )

    async def mining_opportunities(self, min_profitability: float = 0.0) -> list[dict]:
        return await self.cache.get(
            make_key("mining", min_profitability=min_profitability),
            self.ttl,
            lambda: self.mining.get_mining_opportunities(min_profitability),
            timeout=self.timeout,
        )

    async def coin_mining_data(self, coin: str) -> Optional[dict]:
        return await _get_known(
            self.cache,
            make_key("coin_mining", coin=coin),
            self.ttl,
            lambda: self.mining.get_coin_mining_data(coin),
            self.timeout,
        )

    async def price_alerts(
        self,
        tokens: Iterable[str],
        thresholds: AlertThresholds = AlertThresholds(),
        overrides: Optional[dict[str, AlertThresholds]] = None,
    ) -> list[PriceAlert]:
        """Pump and dump alerts for ``tokens`` based on their 24h move.

        ``overrides`` maps a token to its own thresholds. Tokens that are
        unknown or whose lookup fails transiently are skipped.
        """
        tokens = list(dict.fromkeys(t.strip().lower() for t in tokens))
        overrides = {k.strip().lower(): v for k, v in (overrides or {}).items()}
        results = await asyncio.gather(
            *(self.token_data(t) for t in tokens), return_exceptions=True
        )

        alerts = []
        for token, result in zip(tokens, results):
            if isinstance(result, TransientFetchError):
                logger.warning("price_alert_lookup_failed", token=token, error=str(result))
                continue
            if isinstance(result, BaseException):
                raise result
            if result is None:
                continue
            change = result.get("price_change_percentage_24h")
            if change is None:
                continue
            limits = overrides.get(token, thresholds)
            if change >= limits.pump:
                alerts.append(PriceAlert(AlertKind.PUMP, result, change))
            elif change <= limits.dump:
                alerts.append(PriceAlert(AlertKind.DUMP, result, change))
        logger.debug("price_alerts", checked=len(tokens), raised=len(alerts))
        return alerts

    async def close(self):
        await self.coingecko.close()
        await self.mining.close()
