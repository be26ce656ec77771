"""Shared CLI utilities: component wiring and async entry helpers."""

import asyncio
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Coroutine, Optional

import structlog
from rich.console import Console

from errors import NotFoundError, PersistenceError, ValidationError

console = Console()
logger = structlog.get_logger()


@asynccontextmanager
async def open_components(config: Optional[dict] = None) -> AsyncIterator[dict]:
    """Build and own every core component for the duration of a command.

    The store is opened once here and closed on exit; nothing else holds it.
    """
    from cli.config import get_paths, load_config
    from cli.rate_limit import TokenBucketRateLimiter
    from market import CoinGeckoClient, MarketDataService, PriceResolver, TTLCache, WhatToMineClient
    from predictions import build_service, open_store

    config = config or load_config()
    paths = get_paths(config)
    market_cfg = config["market"]
    cache_cfg = config["cache"]
    retry_cfg = config["retry"]
    rate_cfg = config["rate_limits"]
    fetch_timeout = config["predictions"]["fetch_timeout_seconds"]

    store = await open_store(
        config["storage"]["backend"],
        paths["db_path"],
        fallback_to_memory=config["storage"]["fallback_to_memory"],
    )

    http_kwargs = {
        "timeout": market_cfg["request_timeout_seconds"],
        "max_attempts": retry_cfg["max_attempts"],
        "min_wait": retry_cfg["min_wait"],
        "max_wait": retry_cfg["max_wait"],
    }
    coingecko = CoinGeckoClient(
        base_url=market_cfg["coingecko_base_url"],
        api_key=market_cfg["coingecko_api_key"],
        rate_limiter=TokenBucketRateLimiter.from_config(rate_cfg["coingecko"]),
        **http_kwargs,
    )
    mining = WhatToMineClient(
        base_url=market_cfg["whattomine_base_url"],
        rate_limiter=TokenBucketRateLimiter.from_config(rate_cfg["whattomine"]),
        **http_kwargs,
    )

    cache = TTLCache()
    prices = PriceResolver(
        coingecko,
        cache,
        price_ttl=cache_cfg["price_ttl_seconds"],
        coin_id_ttl=cache_cfg["coin_id_ttl_seconds"],
    )
    market = MarketDataService(
        coingecko, mining, cache, ttl=cache_cfg["default_ttl_seconds"], timeout=fetch_timeout
    )
    service = build_service(store, prices, config)

    try:
        yield {
            "config": config,
            "paths": paths,
            "store": store,
            "cache": cache,
            "market": market,
            "service": service,
        }
    finally:
        await market.close()
        await store.close()


def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run a coroutine for a CLI command, mapping core errors to exit codes."""
    try:
        return asyncio.run(coro)
    except ValidationError as e:
        console.print(f"[red]Invalid input:[/] {e}")
        sys.exit(2)
    except NotFoundError as e:
        console.print(f"[yellow]{e}[/]")
        sys.exit(1)
    except PersistenceError as e:
        logger.error("persistence_error", error=str(e))
        console.print(f"[red]Storage unavailable:[/] {e}")
        sys.exit(1)


def format_accuracy(accuracy: Optional[float]) -> str:
    return f"{accuracy:.1%}" if accuracy is not None else "-"
