"""
Redis cache client for exchange responses.

Key-value store with per-key TTL. Expiry is absolute (set at write time);
an expired key reads as absent. When Redis is unavailable every call falls
back to an in-process store with the same semantics.
"""

import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

import redis.asyncio as redis

from app.core.config import settings

logger = logging.getLogger(__name__)

# Global Redis connection pool
_redis_pool: Optional[redis.Redis] = None


async def init_redis() -> Optional[redis.Redis]:
    """
    Initialize Redis connection pool.
    Called on application startup.
    """
    global _redis_pool

    if _redis_pool is not None:
        return _redis_pool

    try:
        _redis_pool = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        # Test connection
        await _redis_pool.ping()
        logger.info(f"Redis connected: {settings.redis_url}")
        return _redis_pool
    except Exception as e:
        logger.warning(f"Redis connection failed: {e}. Using in-memory fallback.")
        _redis_pool = None
        return None


async def close_redis() -> None:
    """Close Redis connection pool."""
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None
        logger.info("Redis connection closed")


def get_redis() -> Optional[redis.Redis]:
    """Get the Redis connection pool."""
    return _redis_pool


class MarketCache:
    """
    TTL cache for normalized exchange data.

    Values must be JSON-serializable. Keys follow
    ``{exchange}_{operation}_{symbol}[_params]``, e.g. ``nse_quote_RELIANCE``.
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._redis = redis_client
        self._clock = clock
        # key -> (json payload, expires_at on self._clock)
        self._memory_cache: Dict[str, Tuple[str, float]] = {}

    @property
    def redis(self) -> Optional[redis.Redis]:
        return self._redis or _redis_pool

    @property
    def backend(self) -> str:
        return "redis" if self.redis is not None else "memory"

    # ============ In-memory fallback ============

    def _memory_get(self, key: str) -> Optional[str]:
        entry = self._memory_cache.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._memory_cache[key]
            return None
        return value

    def _memory_set(self, key: str, value: str, ttl: float) -> None:
        self._memory_cache[key] = (value, self._clock() + ttl)

    # ============ Public API ============

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when absent or expired."""
        if self.redis is not None:
            try:
                value = await self.redis.get(key)
                return json.loads(value) if value is not None else None
            except redis.RedisError as e:
                logger.debug(f"Redis get failed for {key}: {e}")

        value = self._memory_get(key)
        return json.loads(value) if value is not None else None

    async def set(self, key: str, value: Any, ttl: float) -> None:
        """Store ``value`` under ``key`` until now + ``ttl`` seconds."""
        if ttl <= 0:
            return
        payload = json.dumps(value)

        if self.redis is not None:
            try:
                await self.redis.set(key, payload, px=int(ttl * 1000))
                return
            except redis.RedisError as e:
                logger.debug(f"Redis set failed for {key}: {e}")

        self._memory_set(key, payload, ttl)

    async def remove(self, key: str) -> None:
        """Delete ``key`` if present."""
        if self.redis is not None:
            try:
                await self.redis.delete(key)
                return
            except redis.RedisError as e:
                logger.debug(f"Redis remove failed for {key}: {e}")

        self._memory_cache.pop(key, None)

    async def exists(self, key: str) -> bool:
        """True when ``key`` holds an unexpired value."""
        if self.redis is not None:
            try:
                return bool(await self.redis.exists(key))
            except redis.RedisError as e:
                logger.debug(f"Redis exists failed for {key}: {e}")

        return self._memory_get(key) is not None

    async def ping(self) -> bool:
        """Check the Redis backend; the memory fallback is always reachable."""
        if self.redis is None:
            return True
        try:
            return bool(await self.redis.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False


# Singleton instance
_market_cache: Optional[MarketCache] = None


def get_market_cache() -> MarketCache:
    """Get the market cache singleton."""
    global _market_cache
    if _market_cache is None:
        _market_cache = MarketCache()
    return _market_cache
