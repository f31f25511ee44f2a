"""
Response cache contract and shared statistics.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Protocol, runtime_checkable


@runtime_checkable
class ResponseCache(Protocol):
    """Opaque key-value storage with per-entry expiry."""

    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None on a miss or after expiry."""
        ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...

    async def delete(self, key: str) -> bool:
        ...

    async def close(self) -> None:
        ...


@dataclass
class CacheStats:
    """Cache statistics tracking."""

    hits: int = 0
    misses: int = 0
    errors: int = 0
    sets: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {**asdict(self), "hit_rate": round(self.hit_rate, 4)}
