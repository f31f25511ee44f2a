from .base import CacheStats, ResponseCache
from .memory_cache import InMemoryCache
from .redis_cache import RedisCache

__all__ = ["CacheStats", "ResponseCache", "InMemoryCache", "RedisCache"]
