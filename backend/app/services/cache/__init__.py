"""
Cache module for MarketDesk.

Provides a TTL cache (Redis with in-memory fallback) for exchange data.
"""

from app.services.cache.redis_client import (
    MarketCache,
    get_market_cache,
    init_redis,
    close_redis,
)
from app.services.cache.ttl import CacheTTL

__all__ = [
    "MarketCache",
    "CacheTTL",
    "get_market_cache",
    "init_redis",
    "close_redis",
]
