"""
In-Process Memory Cache

KeyedCache backend for local development, tests and single-process
deployments without Redis.

- Entries carry an absolute expiry and are dropped lazily on read
- Values go through the same serialize/compress codec as Redis, so
  callers never share mutable objects with the cache
- Pattern deletion runs under one lock: concurrent readers see the
  cache either before or after the purge, never half-way
- Glob syntax follows Redis (*, ?, [abc], [^abc], [a-z], backslash escape)
"""

import logging
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Any, Callable, Dict, Optional

from civicpulse.cache.base import CacheStats, KeyedCache, require_ttl
from civicpulse.cache.compression import CacheCompressor, PayloadCodec
from civicpulse.cache.config import CacheConfig, get_cache_config


logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    payload: bytes
    expires_at: float


@lru_cache(maxsize=512)
def compile_glob(pattern: str) -> "re.Pattern[str]":
    """Translate a Redis-style glob into an anchored regex."""
    out = []
    i, n = 0, len(pattern)
    while i < n:
        ch = pattern[i]
        if ch == "*":
            out.append(".*")
        elif ch == "?":
            out.append(".")
        elif ch == "\\" and i + 1 < n:
            i += 1
            out.append(re.escape(pattern[i]))
        elif ch == "[":
            j = pattern.find("]", i + 1)
            if j == -1:
                out.append(re.escape(ch))
            else:
                body = pattern[i + 1:j]
                negate = body.startswith("^")
                if negate:
                    body = body[1:]
                body = body.replace("\\", "\\\\")
                out.append(f"[{'^' if negate else ''}{body}]")
                i = j
        else:
            out.append(re.escape(ch))
        i += 1
    return re.compile("".join(out) + r"\Z", re.DOTALL)


class MemoryCache(KeyedCache):
    """Thread-safe TTL map with passive expiry."""

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        max_entries: Optional[int] = None,
    ):
        self.config = config or get_cache_config()
        self._clock = clock
        self._max_entries = max_entries if max_entries is not None else self.config.memory_max_entries
        self._codec = PayloadCodec(CacheCompressor(
            enabled=self.config.compression_enabled,
            threshold=self.config.compression_threshold,
        ))
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()
        self._lock = threading.Lock()
        self._stats = CacheStats()

    def _live_entry(self, key: str, now: float) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= now:
            del self._entries[key]
            return None
        return entry

    # =========================================================================
    # Core Operations
    # =========================================================================

    async def get(self, key: str) -> Optional[Any]:
        if not self.config.enabled:
            return None

        start_time = time.perf_counter()
        with self._lock:
            entry = self._live_entry(key, self._clock())
            if entry is not None:
                self._entries.move_to_end(key)
        self._stats.record_latency(time.perf_counter() - start_time)

        if entry is None:
            self._stats.misses += 1
            return None

        try:
            value = self._codec.decode(entry.payload)
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache decode error for {key}: {e}")
            return None

        self._stats.hits += 1
        self._stats.bytes_read += len(entry.payload)
        return value

    async def set(self, key: str, value: Any, ttl: timedelta) -> bool:
        ttl = require_ttl(ttl)
        if not self.config.enabled or value is None:
            return False

        try:
            payload, stats = self._codec.encode(value)
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache set error for {key}: {e}")
            return False

        if stats:
            self._stats.bytes_saved_compression += stats.original_size - stats.compressed_size

        with self._lock:
            self._entries[key] = _Entry(payload, self._clock() + ttl.total_seconds())
            self._entries.move_to_end(key)
            if self._max_entries:
                while len(self._entries) > self._max_entries:
                    self._entries.popitem(last=False)
        self._stats.bytes_written += len(payload)
        return True

    async def delete(self, key: str) -> bool:
        if not self.config.enabled:
            return False
        with self._lock:
            return self._entries.pop(key, None) is not None

    async def delete_pattern(self, pattern: str) -> int:
        if not self.config.enabled:
            return 0

        matcher = compile_glob(pattern)
        with self._lock:
            now = self._clock()
            doomed = [
                key for key, entry in self._entries.items()
                if matcher.match(key) or entry.expires_at <= now
            ]
            deleted = 0
            for key in doomed:
                entry = self._entries.pop(key)
                if entry.expires_at > now:
                    deleted += 1

        if deleted:
            logger.info(f"Deleted {deleted} keys matching {pattern}")
        return deleted

    async def exists(self, key: str) -> bool:
        if not self.config.enabled:
            return False
        with self._lock:
            return self._live_entry(key, self._clock()) is not None

    async def ttl(self, key: str) -> int:
        """Remaining TTL in whole seconds, -2 if missing."""
        with self._lock:
            entry = self._live_entry(key, self._clock())
            if entry is None:
                return -2
            return int(entry.expires_at - self._clock())

    async def clear(self):
        with self._lock:
            self._entries.clear()

    # =========================================================================
    # Statistics and Health
    # =========================================================================

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for entry in self._entries.values() if entry.expires_at > now)

    def get_stats(self) -> Dict[str, Any]:
        stats = self._stats.as_dict()
        stats.update({
            "backend": "memory",
            "enabled": self.config.enabled,
            "entries": len(self),
        })
        return stats

    async def health_check(self) -> Dict[str, Any]:
        return {
            "healthy": True,
            "status": "memory" if self.config.enabled else "disabled",
            "stats": self.get_stats(),
        }
