"""
Redis-backed response cache.
"""

import logging
from typing import Any, Optional

import orjson
import redis.asyncio as redis
from redis.exceptions import RedisError

from .base import CacheStats

logger = logging.getLogger(__name__)


class RedisCache:
    """Stores JSON-serializable values in Redis with SETEX expiry.

    Redis failures are logged and reported as misses so a cache outage never
    fails a model request.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        key_prefix: str = "model_orchestrator:",
        client: Optional[redis.Redis] = None,
    ):
        """
        Initialize Redis cache.

        Args:
            redis_url: Redis connection URL, used when no client is given
            key_prefix: Prefix applied to every key
            client: Pre-built redis.asyncio client
        """
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.client = client or redis.from_url(redis_url, decode_responses=False)
        self.stats = CacheStats()

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            data = await self.client.get(self._key(key))
        except RedisError as e:
            self.stats.errors += 1
            logger.error(f"Redis get failed: {e}", extra={"cache_key": key})
            return None

        if data is None:
            self.stats.misses += 1
            return None

        try:
            value = orjson.loads(data)
        except orjson.JSONDecodeError:
            self.stats.errors += 1
            logger.warning(f"Discarding undecodable cache entry {key}")
            return None

        self.stats.hits += 1
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self.client.setex(self._key(key), ttl_seconds, orjson.dumps(value))
            self.stats.sets += 1
        except RedisError as e:
            self.stats.errors += 1
            logger.error(f"Redis set failed: {e}", extra={"cache_key": key})

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self.client.delete(self._key(key)))
        except RedisError as e:
            self.stats.errors += 1
            logger.error(f"Redis delete failed: {e}", extra={"cache_key": key})
            return False

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        await self.client.aclose()
        logger.info("Redis cache disconnected")
