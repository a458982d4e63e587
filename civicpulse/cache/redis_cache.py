"""
Redis KeyedCache Backend

KeyedCache backed by Redis with:
- Automatic LZ4 compression for large values
- Circuit breaker for resilience
- Sub-second timeout on every operation
- Deployment-wide key prefix
- Graceful degradation: any failure is a miss or a no-op, never an exception
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from redis.asyncio import Redis, ConnectionPool
from redis.exceptions import RedisError, ConnectionError as RedisConnectionError

from civicpulse.cache.base import CacheStats, KeyedCache, require_ttl
from civicpulse.cache.compression import CacheCompressor, PayloadCodec
from civicpulse.cache.config import CacheConfig, get_cache_config


logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class CircuitBreakerState:
    """Consecutive failures and when the breaker opened."""
    failures: int = 0
    last_failure: float = 0.0
    is_open: bool = False
    opened_at: float = 0.0


class CircuitBreaker:
    """
    Fail-fast guard in front of Redis.

    After `threshold` consecutive failures every call is refused for
    `timeout` seconds, then calls resume with the failure count reset.
    """

    def __init__(
        self,
        threshold: int = 5,
        timeout: int = 30,
    ):
        self.threshold = threshold
        self.timeout = timeout
        self.state = CircuitBreakerState()

    def is_available(self) -> bool:
        """False while open; closes again once the cool-down has passed."""
        if not self.state.is_open:
            return True

        # Half-open: let requests through again after the cool-down
        if time.monotonic() - self.state.opened_at >= self.timeout:
            self.state.is_open = False
            self.state.failures = 0
            logger.info("Circuit breaker closed, allowing requests")
            return True

        return False

    def record_success(self):
        self.state.failures = 0
        self.state.is_open = False

    def record_failure(self):
        self.state.failures += 1
        self.state.last_failure = time.monotonic()

        if self.state.failures >= self.threshold and not self.state.is_open:
            self.state.is_open = True
            self.state.opened_at = time.monotonic()
            logger.warning(
                f"Circuit breaker opened after {self.state.failures} failures. "
                f"Will retry in {self.timeout} seconds."
            )


class RedisCache(KeyedCache):
    """
    Redis-backed KeyedCache.

    Features:
    - LZ4 compression for large values
    - Circuit breaker for resilience
    - Statistics tracking
    - Graceful degradation (returns None on errors)
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        client: Optional[Redis] = None,
    ):
        self.config = config or get_cache_config()
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = client
        self._codec = PayloadCodec(CacheCompressor(
            enabled=self.config.compression_enabled,
            threshold=self.config.compression_threshold,
        ))
        self._circuit_breaker = CircuitBreaker(
            threshold=self.config.circuit_breaker_threshold,
            timeout=self.config.circuit_breaker_timeout,
        ) if self.config.circuit_breaker_enabled else None
        self._stats = CacheStats()
        self._initialized = client is not None
        self._lock = asyncio.Lock()

    async def initialize(self) -> bool:
        """Create the connection pool and ping. Returns False if Redis is unreachable."""
        if self._initialized:
            return True

        async with self._lock:
            if self._initialized:
                return True

            try:
                self._pool = ConnectionPool.from_url(
                    self.config.redis_url,
                    max_connections=self.config.redis_max_connections,
                    socket_timeout=self.config.redis_socket_timeout,
                    socket_connect_timeout=self.config.redis_connect_timeout,
                    decode_responses=False,  # We handle bytes directly
                )
                self._redis = Redis(connection_pool=self._pool)

                await asyncio.wait_for(self._redis.ping(), self.config.operation_timeout)
                self._initialized = True
                logger.info(f"Redis cache initialized: {self.config.redis_url}")

            except (RedisError, OSError, asyncio.TimeoutError) as e:
                logger.error(f"Failed to initialize Redis: {e}")
                self._initialized = False
                await self._discard_connection()
                if self._circuit_breaker:
                    self._circuit_breaker.record_failure()

        return self._initialized

    async def _discard_connection(self):
        """Drop the client and pool left behind by a failed connect."""
        pool, self._pool, self._redis = self._pool, None, None
        if pool is not None:
            try:
                await pool.disconnect()
            except (RedisError, OSError) as e:
                logger.debug(f"Ignoring error while discarding Redis pool: {e}")

    async def close(self):
        """Release the client and its pool."""
        if self._redis:
            await self._redis.aclose()
        if self._pool:
            await self._pool.disconnect()
        self._initialized = False
        logger.info("Redis cache closed")

    async def _ready(self) -> bool:
        if not self.config.enabled:
            return False
        if self._circuit_breaker and not self._circuit_breaker.is_available():
            return False
        if not self._initialized:
            return await self.initialize()
        return True

    @asynccontextmanager
    async def _with_circuit_breaker(self):
        """Record the outcome of one Redis call on the breaker."""
        if self._circuit_breaker and not self._circuit_breaker.is_available():
            raise RedisConnectionError("Circuit breaker is open")

        try:
            yield
            if self._circuit_breaker:
                self._circuit_breaker.record_success()
        except (RedisError, OSError, asyncio.TimeoutError):
            if self._circuit_breaker:
                self._circuit_breaker.record_failure()
            raise

    async def _bounded(self, call: Callable[[], Awaitable[T]], timeout: Optional[float] = None) -> T:
        async with self._with_circuit_breaker():
            return await asyncio.wait_for(call(), timeout or self.config.operation_timeout)

    def _record_failure(self, op: str, key: str, error: Exception):
        self._stats.errors += 1
        if isinstance(error, asyncio.TimeoutError):
            self._stats.timeouts += 1
            logger.warning(f"Cache {op} timed out for {key}")
        elif isinstance(error, RedisConnectionError):
            logger.warning(f"Redis unavailable during {op} for {key}: {error}")
        else:
            logger.error(f"Cache {op} error for {key}: {error}")

    # =========================================================================
    # Core Operations
    # =========================================================================

    async def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Returns None if:
        - Key doesn't exist or has expired
        - Cache is disabled
        - Redis is unavailable or slower than the operation timeout
        - Deserialization fails
        """
        if not await self._ready():
            self._stats.misses += 1
            return None

        start_time = time.perf_counter()

        try:
            data = await self._bounded(lambda: self._redis.get(self.config.prefixed(key)))
            self._stats.record_latency(time.perf_counter() - start_time)

            if data is None:
                self._stats.misses += 1
                return None

            value = self._codec.decode(data)
            self._stats.hits += 1
            self._stats.bytes_read += len(data)
            return value

        except Exception as e:
            self._stats.misses += 1
            self._record_failure("get", key, e)
            return None

    async def set(self, key: str, value: Any, ttl: timedelta) -> bool:
        """
        Set value in cache with an explicit TTL.

        Returns True on success, False on failure. None values are not stored.
        """
        ttl = require_ttl(ttl)
        if value is None or not await self._ready():
            return False

        start_time = time.perf_counter()

        try:
            payload, stats = self._codec.encode(value)
            if stats:
                self._stats.bytes_saved_compression += (
                    stats.original_size - stats.compressed_size
                )

            await self._bounded(lambda: self._redis.set(
                self.config.prefixed(key), payload, px=ttl,
            ))

            self._stats.record_latency(time.perf_counter() - start_time)
            self._stats.bytes_written += len(payload)
            return True

        except Exception as e:
            self._record_failure("set", key, e)
            return False

    async def delete(self, key: str) -> bool:
        """Remove one key; False when absent or Redis is down."""
        if not await self._ready():
            return False

        try:
            deleted = await self._bounded(lambda: self._redis.delete(self.config.prefixed(key)))
            return deleted > 0
        except Exception as e:
            self._record_failure("delete", key, e)
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching pattern. Returns count deleted.

        Matching keys are collected with SCAN and removed with a single DEL,
        so readers never observe a partially applied purge.
        """
        if not await self._ready():
            return 0

        prefixed = self.config.prefixed(pattern)

        async def scan_and_delete() -> int:
            keys = [key async for key in self._redis.scan_iter(match=prefixed, count=500)]
            if not keys:
                return 0
            return await self._redis.delete(*keys)

        try:
            deleted = await self._bounded(scan_and_delete, timeout=self.config.purge_timeout)
            if deleted:
                logger.info(f"Deleted {deleted} keys matching {pattern}")
            return deleted
        except Exception as e:
            self._record_failure("delete_pattern", pattern, e)
            return 0

    async def exists(self, key: str) -> bool:
        """True only for a live key on a reachable Redis."""
        if not await self._ready():
            return False

        try:
            return await self._bounded(lambda: self._redis.exists(self.config.prefixed(key))) > 0
        except Exception as e:
            self._record_failure("exists", key, e)
            return False

    async def ttl(self, key: str) -> int:
        """Seconds left on a key (-1 without expiry, -2 when missing or unreachable)."""
        if not await self._ready():
            return -2

        try:
            return await self._bounded(lambda: self._redis.ttl(self.config.prefixed(key)))
        except Exception as e:
            self._record_failure("ttl", key, e)
            return -2

    # =========================================================================
    # Statistics and Health
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        """Hit/miss counters plus breaker state."""
        stats = self._stats.as_dict()
        stats.update({
            "backend": "redis",
            "enabled": self.config.enabled,
            "initialized": self._initialized,
            "circuit_breaker_open": (
                self._circuit_breaker.state.is_open
                if self._circuit_breaker else False
            ),
        })
        return stats

    async def health_check(self) -> Dict[str, Any]:
        """PING round trip with latency."""
        if not self.config.enabled:
            return {"healthy": True, "status": "disabled"}

        if not await self._ready():
            return {
                "healthy": False,
                "status": "unavailable",
                "stats": self.get_stats(),
            }

        try:
            start = time.perf_counter()
            await self._bounded(lambda: self._redis.ping())
            latency_ms = (time.perf_counter() - start) * 1000

            return {
                "healthy": True,
                "status": "connected",
                "latency_ms": round(latency_ms, 2),
                "stats": self.get_stats(),
            }

        except Exception as e:
            self._record_failure("ping", "-", e)
            return {
                "healthy": False,
                "status": "error",
                "error": str(e),
                "stats": self.get_stats(),
            }
