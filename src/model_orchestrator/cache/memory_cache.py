"""
In-process TTL cache for model responses.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from .base import CacheStats

logger = logging.getLogger(__name__)


class InMemoryCache:
    """Asyncio-safe TTL cache with oldest-first eviction at capacity."""

    def __init__(self, max_size: int = 1000, clock: Callable[[], float] = time.monotonic):
        self._max_size = max_size
        self._clock = clock
        self._store: Dict[str, Tuple[float, Any]] = {}
        self._lock = asyncio.Lock()
        self.stats = CacheStats()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self.stats.misses += 1
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._store[key]
                self.stats.misses += 1
                return None
            self.stats.hits += 1
            return value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        async with self._lock:
            if key not in self._store and len(self._store) >= self._max_size:
                self._evict()
            self._store[key] = (self._clock() + ttl_seconds, value)
            self.stats.sets += 1

    def _evict(self) -> None:
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._store.items() if expires_at <= now]
        for k in expired:
            del self._store[k]
        if len(self._store) >= self._max_size:
            oldest_key = min(self._store.items(), key=lambda kv: kv[1][0])[0]
            del self._store[oldest_key]
            expired.append(oldest_key)
        self.stats.evictions += len(expired)
        logger.debug(f"Evicted {len(expired)} cache entries")

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._store.pop(key, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._store.clear()

    async def close(self) -> None:
        await self.clear()

    def __len__(self) -> int:
        return len(self._store)
