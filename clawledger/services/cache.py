"""
Redis caching layer for ClawLedger.

Caches base-asset prices, token stats and candles with graceful
degradation: if Redis is unavailable, get methods return None and set
methods are no-ops, and the pipeline keeps working from upstream data.
"""

import json
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from clawledger.config import settings
from clawledger.utils.logging import get_logger

logger = get_logger(__name__)

KEY_PREFIX = "clawledger"


class RedisCache:
    """Async Redis cache with typed helpers."""

    def __init__(self, redis_url: Optional[str] = None):
        self._redis_url = redis_url if redis_url is not None else settings.redis_url
        self._redis: Optional[aioredis.Redis] = None
        self._available = False
        self._hits = 0
        self._misses = 0

    @property
    def is_available(self) -> bool:
        return self._available

    async def connect(self) -> None:
        """Connect to Redis. Logs a warning and continues if unavailable."""
        if not self._redis_url:
            logger.info("Redis cache disabled (REDIS_URL not set)")
            return

        try:
            self._redis = aioredis.from_url(
                self._redis_url,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
                retry_on_timeout=True,
                max_connections=settings.redis_pool_size,
            )
            await self._redis.ping()
            self._available = True
            logger.info("Redis cache connected", url=self._redis_url.split("@")[-1])
        except (RedisError, OSError) as e:
            logger.warning("Redis cache unavailable, running without cache", error=str(e))
            self._redis = None
            self._available = False

    async def close(self) -> None:
        if self._redis:
            try:
                await self._redis.aclose()
            except (RedisError, OSError) as e:
                logger.debug("Redis close failed", error=str(e))
            self._redis = None
            self._available = False
            logger.info("Redis cache closed")

    def cache_stats(self) -> dict:
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
        }

    async def health_check(self) -> dict:
        if not self._available or not self._redis:
            return {"status": "unavailable", **self.cache_stats()}
        try:
            await self._redis.ping()
            return {"status": "healthy", **self.cache_stats()}
        except (RedisError, OSError) as e:
            return {"status": "unhealthy", "reason": str(e), **self.cache_stats()}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _get(self, key: str) -> Optional[str]:
        val = await self._guarded("GET", key, lambda r: r.get(key))
        if val is None:
            self._misses += 1
        else:
            self._hits += 1
        return val

    async def _set(self, key: str, value: str, ttl: Optional[int]) -> None:
        await self._guarded("SET", key, lambda r: r.set(key, value, ex=ttl))

    async def _guarded(self, op: str, key: str, call: Callable[[aioredis.Redis], Awaitable[Any]]) -> Any:
        """Run one command; a down or failing Redis reads as a miss."""
        if not self._available or self._redis is None:
            return None
        try:
            return await call(self._redis)
        except (RedisError, OSError) as e:
            logger.debug("Redis command failed", op=op, key=key, error=str(e))
            return None

    # ------------------------------------------------------------------
    # Base asset prices
    # ------------------------------------------------------------------

    async def get_base_price(self, chain: str, last_known: bool = False) -> Optional[Decimal]:
        suffix = "last_known" if last_known else "current"
        raw = await self._get(f"{KEY_PREFIX}:price:{chain}:{suffix}")
        if raw is None:
            return None
        price = Decimal(raw)
        return price if price > 0 else None

    async def set_base_price(self, chain: str, price: Decimal, ttl: int) -> None:
        await self._set(f"{KEY_PREFIX}:price:{chain}:current", str(price), ttl)
        await self._set(f"{KEY_PREFIX}:price:{chain}:last_known", str(price), None)

    # ------------------------------------------------------------------
    # JSON blobs (token stats, candles)
    # ------------------------------------------------------------------

    async def get_json(self, key: str) -> Optional[Any]:
        raw = await self._get(f"{KEY_PREFIX}:{key}")
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.debug("Cache deserialize failed", key=key, error=str(e))
            return None

    async def set_json(self, key: str, value: Any, ttl: int) -> None:
        await self._set(f"{KEY_PREFIX}:{key}", json.dumps(value, default=str), ttl)


cache = RedisCache()
