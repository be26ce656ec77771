"""Market-data collaborators and the single-flight TTL cache in front of them."""

from .cache import CacheEntry, TTLCache, make_key
from .coingecko import CoinGeckoClient
from .mining import WhatToMineClient
from .service import AlertThresholds, MarketDataService, PriceAlert, PriceResolver

__all__ = [
    "CacheEntry",
    "TTLCache",
    "make_key",
    "CoinGeckoClient",
    "WhatToMineClient",
    "MarketDataService",
    "AlertThresholds",
    "PriceAlert",
    "PriceResolver",
]
