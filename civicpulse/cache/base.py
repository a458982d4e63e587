"""
Keyed Cache Contract

Both backends (Redis and in-process memory) implement KeyedCache:
- get() returns the value, or None on miss, expiry or backend failure
- set() always takes an explicit TTL and overwrites unconditionally
- delete_pattern() removes every live key matching a glob in one step
- no method raises; failures are logged and degrade to miss/no-op

None is never stored, so a None from get() is always a miss.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional


@dataclass
class CacheStats:
    """Cache operation statistics."""
    hits: int = 0
    misses: int = 0
    errors: int = 0
    timeouts: int = 0
    bytes_written: int = 0
    bytes_read: int = 0
    bytes_saved_compression: int = 0
    latency_samples: List[float] = field(default_factory=list)

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    @property
    def avg_latency_ms(self) -> float:
        if not self.latency_samples:
            return 0.0
        return sum(self.latency_samples[-100:]) / len(self.latency_samples[-100:]) * 1000

    def record_latency(self, seconds: float):
        """Record a latency sample."""
        self.latency_samples.append(seconds)
        # Keep only last 1000 samples
        if len(self.latency_samples) > 1000:
            self.latency_samples = self.latency_samples[-1000:]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "timeouts": self.timeouts,
            "hit_rate_percent": round(self.hit_rate * 100, 2),
            "avg_latency_ms": round(self.avg_latency_ms, 2),
            "bytes_written": self.bytes_written,
            "bytes_read": self.bytes_read,
            "bytes_saved_compression": self.bytes_saved_compression,
        }


def require_ttl(ttl: Optional[timedelta]) -> timedelta:
    """Reject missing or non-positive TTLs at the call site."""
    if ttl is None:
        raise ValueError("Cache TTL must be provided explicitly")
    if ttl.total_seconds() <= 0:
        raise ValueError(f"Cache TTL must be positive, got {ttl}")
    return ttl


class KeyedCache(ABC):
    """TTL key/value cache with glob-pattern invalidation."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: timedelta) -> bool:
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern. Returns count deleted."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        ...

    async def close(self):
        """Release backend resources."""
