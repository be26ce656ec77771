"""WhatToMine client for mining profitability."""

from typing import Optional

import structlog

from .coingecko import MarketHTTPClient

logger = structlog.get_logger().bind(source="whattomine")

MAX_OPPORTUNITIES = 20


def _roi(profit, cost) -> Optional[float]:
    try:
        profit, cost = float(profit), float(cost)
    except (TypeError, ValueError):
        return None
    if cost <= 0:
        return None
    return round(profit / cost * 100, 2)


class WhatToMineClient(MarketHTTPClient):
    source = "whattomine"
    DEFAULT_BASE_URL = "https://whattomine.com"

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url or self.DEFAULT_BASE_URL, **kwargs)

    async def get_mining_opportunities(
        self, min_profitability: float = 0.0, limit: int = MAX_OPPORTUNITIES
    ) -> list[dict]:
        """Profitable coins, most profitable first."""
        data = await self.get_json("/coins.json")
        coins = (data or {}).get("coins", {})
        opportunities = []
        for key, coin in coins.items():
            profitability = coin.get("profitability") or 0
            if profitability <= 0 or profitability < min_profitability:
                continue
            opportunities.append(
                {
                    "id": key,
                    "name": key,
                    "tag": coin.get("tag"),
                    "algorithm": coin.get("algorithm"),
                    "profitability": profitability,
                    "profitability24": coin.get("profitability24"),
                    "difficulty": coin.get("difficulty"),
                    "block_time": coin.get("block_time"),
                    "block_reward": coin.get("block_reward"),
                    "estimated_rewards": coin.get("estimated_rewards"),
                    "nethash": coin.get("nethash"),
                    "exchange_rate": coin.get("exchange_rate"),
                    "btc_revenue": coin.get("btc_revenue"),
                    "lagging": coin.get("lagging", False),
                    "roi": _roi(coin.get("profit"), coin.get("cost")),
                }
            )
        opportunities.sort(key=lambda o: o["profitability"], reverse=True)
        logger.debug("mining_opportunities", found=len(opportunities))
        return opportunities[:limit]

    async def get_coin_mining_data(self, coin: str) -> Optional[dict]:
        """Raw WhatToMine stats for one coin (``/coins/{coin}.json``); None if unknown."""
        return await self.get_json(f"/coins/{coin}.json")
