"""CoinGecko client: price resolution and market snapshots."""

from datetime import datetime, timedelta
from typing import Any, Optional

import httpx
import structlog

from cli.rate_limit import TokenBucketRateLimiter
from cli.retry import http_retry
from errors import TransientFetchError
from shared_types import MoverDirection

logger = structlog.get_logger().bind(source="coingecko")

# Largest acceptable gap between a requested time and the nearest price sample
HISTORY_LOOKAROUND = timedelta(hours=1)
MAX_MARKET_CAP_RANK = 1000
DESCRIPTION_MAX_CHARS = 500


class RetryableStatusError(TransientFetchError):
    """429 or 5xx from the upstream API."""


class MarketHTTPClient:
    """Shared plumbing for JSON market APIs: rate limit, retry, error mapping.

    404 maps to None (unknown resource). Transport errors, timeouts, 429 and
    5xx are retried, then surface as TransientFetchError.
    """

    source = "market"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        headers: Optional[dict] = None,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        max_attempts: int = 3,
        min_wait: float = 1.0,
        max_wait: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"User-Agent": "AlphaScroll/1.0", **(headers or {})},
        )
        self.rate_limiter = rate_limiter
        self._fetch = http_retry(
            max_attempts=max_attempts,
            min_wait=min_wait,
            max_wait=max_wait,
            exceptions=(httpx.TransportError, RetryableStatusError),
        )(self._fetch_once)

    async def _fetch_once(self, path: str, params: Optional[dict]) -> Any:
        if self.rate_limiter:
            await self.rate_limiter.acquire()
        response = await self.client.get(path, params=params)
        if response.status_code == 404:
            return None
        if response.status_code == 429 or response.status_code >= 500:
            raise RetryableStatusError(f"HTTP {response.status_code} from {path}")
        response.raise_for_status()
        return response.json()

    async def get_json(self, path: str, params: Optional[dict] = None) -> Any:
        try:
            return await self._fetch(path, params)
        except TransientFetchError:
            raise
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                "market_fetch_failed",
                source=self.source,
                path=path,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise TransientFetchError(f"{self.source} {path}: {e}") from e

    async def close(self):
        """Close the async client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def _token_summary(data: dict, vs_currency: str) -> dict:
    """Flatten a /coins/{id} payload into the fields the token view shows."""
    md = data.get("market_data") or {}

    def quoted(field_name):
        return (md.get(field_name) or {}).get(vs_currency)

    links = data.get("links") or {}
    description = ((data.get("description") or {}).get("en") or "").strip()
    if len(description) > DESCRIPTION_MAX_CHARS:
        description = description[:DESCRIPTION_MAX_CHARS].rstrip() + "..."
    return {
        "id": data.get("id"),
        "name": data.get("name"),
        "symbol": data.get("symbol"),
        "current_price": quoted("current_price"),
        "market_cap": quoted("market_cap"),
        "market_cap_rank": data.get("market_cap_rank"),
        "total_volume": quoted("total_volume"),
        "price_change_percentage_24h": md.get("price_change_percentage_24h"),
        "price_change_percentage_7d": md.get("price_change_percentage_7d"),
        "price_change_percentage_30d": md.get("price_change_percentage_30d"),
        "ath": quoted("ath"),
        "atl": quoted("atl"),
        "description": description or None,
        "homepage": next((u for u in links.get("homepage") or [] if u), None),
        "blockchain_sites": [u for u in links.get("blockchain_site") or [] if u],
        "image": (data.get("image") or {}).get("large"),
    }


def _nearest_price(prices: list, at_ms: float) -> Optional[float]:
    """Price from ``[[ms, price], ...]`` whose timestamp is closest to ``at_ms``."""
    if not prices:
        return None
    ts, price = min(prices, key=lambda p: abs(p[0] - at_ms))
    if abs(ts - at_ms) > HISTORY_LOOKAROUND.total_seconds() * 1000:
        return None
    return price


class CoinGeckoClient(MarketHTTPClient):
    """Async CoinGecko API client."""

    source = "coingecko"
    DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        vs_currency: str = "usd",
        **kwargs,
    ):
        headers = {"x-cg-pro-api-key": api_key} if api_key else {}
        super().__init__(base_url or self.DEFAULT_BASE_URL, headers=headers, **kwargs)
        self.vs_currency = vs_currency

    async def resolve_coin_id(self, token: str) -> Optional[str]:
        """Map a user-supplied token (id, symbol or name) to a CoinGecko coin id."""
        data = await self.get_json("/search", {"query": token})
        coins = (data or {}).get("coins", [])
        needle = token.strip().lower()
        for field_name in ("id", "symbol", "name"):
            for coin in coins:
                if str(coin.get(field_name, "")).lower() == needle:
                    return coin["id"]
        return None

    async def get_current_price(self, coin_id: str) -> Optional[float]:
        data = await self.get_json(
            "/simple/price", {"ids": coin_id, "vs_currencies": self.vs_currency}
        )
        return (data or {}).get(coin_id, {}).get(self.vs_currency)

    async def get_price_at(self, coin_id: str, at: datetime) -> Optional[float]:
        """Historical price nearest ``at``; None if no sample is close enough."""
        start = at - HISTORY_LOOKAROUND
        end = at + HISTORY_LOOKAROUND
        data = await self.get_json(
            f"/coins/{coin_id}/market_chart/range",
            {
                "vs_currency": self.vs_currency,
                "from": int(start.timestamp()),
                "to": int(end.timestamp()),
            },
        )
        return _nearest_price((data or {}).get("prices", []), at.timestamp() * 1000)

    async def get_price_change_since(self, coin_id: str, since: datetime) -> Optional[float]:
        """Percentage move from the price at ``since`` to now.

        Returns None (unknown) when either price cannot be resolved.
        """
        then = await self.get_price_at(coin_id, since)
        if not then or then <= 0:
            logger.info("price_history_unavailable", coin_id=coin_id, since=since.isoformat())
            return None
        current = await self.get_current_price(coin_id)
        if current is None:
            logger.info("current_price_unavailable", coin_id=coin_id)
            return None
        return (current - then) / then * 100.0

    async def get_top_movers(
        self, direction: MoverDirection = MoverDirection.GAINERS, limit: int = 10
    ) -> list[dict]:
        """Largest 24h gainers or losers among reasonably sized coins."""
        direction = MoverDirection(direction)
        order = "desc" if direction == MoverDirection.GAINERS else "asc"
        data = await self.get_json(
            "/coins/markets",
            {
                "vs_currency": self.vs_currency,
                "order": f"price_change_percentage_24h_{order}",
                "per_page": limit,
                "page": 1,
                "sparkline": "false",
                "price_change_percentage": "24h,7d",
            },
        )
        movers = []
        for coin in data or []:
            change = coin.get("price_change_percentage_24h")
            rank = coin.get("market_cap_rank")
            if change is None or rank is None or rank > MAX_MARKET_CAP_RANK:
                continue
            if (direction == MoverDirection.GAINERS and change > 0) or (
                direction == MoverDirection.LOSERS and change < 0
            ):
                movers.append(coin)
        return movers

    async def get_trending(self) -> list[dict]:
        data = await self.get_json("/search/trending")
        return [c["item"] for c in (data or {}).get("coins", []) if "item" in c]

    async def get_market_overview(self) -> dict:
        data = await self.get_json("/global")
        g = (data or {}).get("data", {})
        return {
            "total_market_cap": g.get("total_market_cap", {}).get(self.vs_currency),
            "total_volume": g.get("total_volume", {}).get(self.vs_currency),
            "market_cap_percentage": g.get("market_cap_percentage", {}),
            "market_cap_change_24h": g.get("market_cap_change_percentage_24h_usd"),
            "active_cryptocurrencies": g.get("active_cryptocurrencies"),
            "markets": g.get("markets"),
            "updated_at": g.get("updated_at"),
        }

    async def get_token_data(self, token: str) -> Optional[dict]:
        """Price, market cap, rank, 24h/7d/30d change and ATH/ATL for ``token``.

        None when the token does not resolve to a CoinGecko coin.
        """
        coin_id = await self.resolve_coin_id(token)
        if coin_id is None:
            return None
        data = await self.get_json(
            f"/coins/{coin_id}",
            {
                "localization": "false",
                "tickers": "false",
                "market_data": "true",
                "community_data": "false",
                "developer_data": "false",
                "sparkline": "false",
            },
        )
        if not data:
            return None
        return _token_summary(data, self.vs_currency)
