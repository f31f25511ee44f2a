"""Unit tests for the response caches."""

from unittest.mock import AsyncMock, MagicMock

import orjson
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from model_orchestrator.cache import InMemoryCache, RedisCache, ResponseCache


@pytest.fixture
def mock_redis():
    """Mock redis.asyncio client."""
    client = MagicMock()
    client.get = AsyncMock(return_value=None)
    client.setex = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    return client


class TestInMemoryCache:
    """Test suite for the in-process TTL cache."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, clock):
        cache = InMemoryCache(clock=clock)

        await cache.set("k", {"content": "hi"}, ttl_seconds=60)

        assert await cache.get("k") == {"content": "hi"}
        assert cache.stats.hits == 1
        assert cache.stats.sets == 1

    @pytest.mark.asyncio
    async def test_entry_expires(self, clock):
        cache = InMemoryCache(clock=clock)
        await cache.set("k", "v", ttl_seconds=60)

        clock.advance(59)
        assert await cache.get("k") == "v"

        clock.advance(1)
        assert await cache.get("k") is None
        assert len(cache) == 0
        assert cache.stats.misses == 1

    @pytest.mark.asyncio
    async def test_evicts_oldest_at_capacity(self, clock):
        cache = InMemoryCache(max_size=2, clock=clock)
        await cache.set("a", 1, ttl_seconds=100)
        clock.advance(1)
        await cache.set("b", 2, ttl_seconds=100)
        clock.advance(1)

        await cache.set("c", 3, ttl_seconds=100)

        assert await cache.get("a") is None
        assert await cache.get("b") == 2
        assert await cache.get("c") == 3
        assert cache.stats.evictions == 1

    @pytest.mark.asyncio
    async def test_expired_entries_go_first(self, clock):
        cache = InMemoryCache(max_size=2, clock=clock)
        await cache.set("short", 1, ttl_seconds=1)
        await cache.set("long", 2, ttl_seconds=100)
        clock.advance(5)

        await cache.set("new", 3, ttl_seconds=100)

        assert await cache.get("long") == 2
        assert await cache.get("new") == 3

    @pytest.mark.asyncio
    async def test_overwrite_does_not_evict(self, clock):
        cache = InMemoryCache(max_size=1, clock=clock)
        await cache.set("a", 1, ttl_seconds=10)

        await cache.set("a", 2, ttl_seconds=10)

        assert await cache.get("a") == 2
        assert cache.stats.evictions == 0

    @pytest.mark.asyncio
    async def test_delete_and_close(self, clock):
        cache = InMemoryCache(clock=clock)
        await cache.set("a", 1, ttl_seconds=10)

        assert await cache.delete("a") is True
        assert await cache.delete("a") is False

        await cache.set("b", 1, ttl_seconds=10)
        await cache.close()
        assert len(cache) == 0

    def test_satisfies_protocol(self, mock_redis):
        assert isinstance(InMemoryCache(), ResponseCache)
        assert isinstance(RedisCache(client=mock_redis), ResponseCache)

    def test_hit_rate(self):
        cache = InMemoryCache()
        cache.stats.hits = 3
        cache.stats.misses = 1

        assert cache.stats.to_dict()["hit_rate"] == 0.75


class TestRedisCache:
    """Test suite for the Redis-backed cache."""

    @pytest.mark.asyncio
    async def test_set_uses_setex_with_prefix(self, mock_redis):
        cache = RedisCache(client=mock_redis, key_prefix="test:")

        await cache.set("k", {"content": "hi"}, ttl_seconds=1800)

        mock_redis.setex.assert_awaited_once_with("test:k", 1800, orjson.dumps({"content": "hi"}))
        assert cache.stats.sets == 1

    @pytest.mark.asyncio
    async def test_get_decodes_json(self, mock_redis):
        mock_redis.get.return_value = b'{"content": "hi"}'
        cache = RedisCache(client=mock_redis)

        assert await cache.get("k") == {"content": "hi"}
        mock_redis.get.assert_awaited_once_with("model_orchestrator:k")
        assert cache.stats.hits == 1

    @pytest.mark.asyncio
    async def test_miss(self, mock_redis):
        cache = RedisCache(client=mock_redis)

        assert await cache.get("k") is None
        assert cache.stats.misses == 1

    @pytest.mark.asyncio
    async def test_redis_errors_degrade_to_miss(self, mock_redis):
        mock_redis.get.side_effect = RedisConnectionError("down")
        mock_redis.setex.side_effect = RedisConnectionError("down")
        mock_redis.delete.side_effect = RedisConnectionError("down")
        cache = RedisCache(client=mock_redis)

        assert await cache.get("k") is None
        await cache.set("k", "v", ttl_seconds=10)
        assert await cache.delete("k") is False
        assert cache.stats.errors == 3

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_a_miss(self, mock_redis):
        mock_redis.get.return_value = b"not-json{"
        cache = RedisCache(client=mock_redis)

        assert await cache.get("k") is None
        assert cache.stats.errors == 1

    @pytest.mark.asyncio
    async def test_ping_and_close(self, mock_redis):
        cache = RedisCache(client=mock_redis)

        assert await cache.ping() is True
        mock_redis.ping.side_effect = RedisConnectionError("down")
        assert await cache.ping() is False

        await cache.close()
        mock_redis.aclose.assert_awaited_once()
