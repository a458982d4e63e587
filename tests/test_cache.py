"""
Tests for the caching layer.

These tests verify:
- Memory cache operations (get, set, delete, pattern delete)
- Passive expiry (miss after TTL)
- Compression (LZ4)
- Redis degradation: a failing backend behaves as always-miss
- Circuit breaker behavior
"""

import asyncio
from datetime import timedelta, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from civicpulse.cache import (
    CacheCompressor,
    CacheConfig,
    CacheTTL,
    CircuitBreaker,
    MemoryCache,
    RedisCache,
    deserialize_value,
    serialize_value,
)
from civicpulse.cache.base import require_ttl
from civicpulse.cache.memory_cache import compile_glob


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


# =============================================================================
# COMPRESSION TESTS
# =============================================================================

class TestCompression:
    """Test compression utilities."""

    def test_serialize_datetime(self):
        """Datetimes are stored as ISO strings."""
        data = {"timestamp": datetime(2024, 1, 15, 10, 30, 0)}
        assert deserialize_value(serialize_value(data))["timestamp"] == "2024-01-15T10:30:00"

    def test_compressor_small_data_not_compressed(self):
        """Small data should not be compressed."""
        compressor = CacheCompressor(enabled=True, threshold=1024)
        small_data = b"hello world"
        compressed, stats = compressor.compress(small_data)

        assert compressed[0:1] == b'\x00'
        assert stats is None
        assert compressor.decompress(compressed) == small_data

    def test_compressor_large_data_compressed(self):
        """Large repetitive data is LZ4 compressed."""
        compressor = CacheCompressor(enabled=True, threshold=100)
        large_data = b"x" * 10000

        compressed, stats = compressor.compress(large_data)

        assert compressed[0:1] == b'\x01'
        assert stats.compression_ratio > 1
        assert compressor.decompress(compressed) == large_data

    def test_unknown_marker_rejected(self):
        with pytest.raises(ValueError):
            CacheCompressor().decompress(b"\x07payload")


# =============================================================================
# TTL TESTS
# =============================================================================

class TestCacheTTL:

    def test_ttl_required(self):
        with pytest.raises(ValueError):
            require_ttl(None)
        with pytest.raises(ValueError):
            require_ttl(timedelta(0))

    def test_ttl_values_reasonable(self):
        """List views stay short, aggregates are longer."""
        for ttl in (CacheTTL.USER_REPORTS, CacheTTL.NEARBY_REPORTS, CacheTTL.SOCIAL_POSTS, CacheTTL.ADMIN_REPORTS):
            assert timedelta(minutes=3) <= ttl <= timedelta(minutes=10)
        assert CacheTTL.COMMUNITY_STATS >= CacheTTL.USER_REPORTS
        assert CacheTTL.SOCIAL_STATS >= CacheTTL.SOCIAL_POSTS


# =============================================================================
# MEMORY CACHE TESTS
# =============================================================================

class TestMemoryCache:

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def memory(self, cache_config, clock):
        return MemoryCache(cache_config, clock=clock)

    async def test_set_and_get(self, memory):
        data = {"reports": [{"id": "r1", "title": "Pothole"}], "total": 1}
        assert await memory.set("reports:user:u1:list:f=:p=50.0:u=guest", data, timedelta(minutes=5))
        assert await memory.get("reports:user:u1:list:f=:p=50.0:u=guest") == data

    async def test_get_nonexistent(self, memory):
        assert await memory.get("reports:missing") is None

    async def test_none_is_never_stored(self, memory):
        assert await memory.set("k", None, timedelta(minutes=1)) is False
        assert not await memory.exists("k")

    async def test_returned_values_are_copies(self, memory):
        await memory.set("k", {"items": [1, 2]}, timedelta(minutes=1))
        value = await memory.get("k")
        value["items"].append(3)
        assert await memory.get("k") == {"items": [1, 2]}

    async def test_miss_after_expiry(self, memory, clock):
        await memory.set("k", {"v": 1}, timedelta(seconds=10))
        clock.advance(9.9)
        assert await memory.get("k") == {"v": 1}
        clock.advance(0.1)
        assert await memory.get("k") is None
        assert await memory.ttl("k") == -2

    async def test_overwrite_replaces_value_and_ttl(self, memory, clock):
        await memory.set("k", {"v": 1}, timedelta(seconds=10))
        clock.advance(8)
        await memory.set("k", {"v": 2}, timedelta(seconds=10))
        clock.advance(8)
        assert await memory.get("k") == {"v": 2}

    async def test_delete(self, memory):
        await memory.set("k", {"v": 1}, timedelta(minutes=1))
        assert await memory.delete("k")
        assert await memory.get("k") is None
        assert not await memory.delete("k")

    async def test_delete_pattern(self, memory):
        ttl = timedelta(minutes=5)
        await memory.set("social_posts:all:f=:p=20.0:u=guest", {"a": 1}, ttl)
        await memory.set("social_posts:trending:f=:p=20.0:u=guest", {"a": 2}, ttl)
        await memory.set("social_stats:feed:f=:p=all:u=guest", {"a": 3}, ttl)

        deleted = await memory.delete_pattern("social_posts:*")

        assert deleted == 2
        assert await memory.get("social_stats:feed:f=:p=all:u=guest") == {"a": 3}

    async def test_delete_pattern_does_not_count_expired(self, memory, clock):
        await memory.set("reports:a", {"v": 1}, timedelta(seconds=1))
        await memory.set("reports:b", {"v": 1}, timedelta(minutes=1))
        clock.advance(2)
        assert await memory.delete_pattern("reports:*") == 1
        assert len(memory) == 0

    async def test_max_entries_evicts_oldest(self, cache_config):
        bounded = MemoryCache(cache_config, max_entries=2)
        for key in ("a", "b", "c"):
            await bounded.set(key, {"k": key}, timedelta(minutes=1))
        assert await bounded.get("a") is None
        assert await bounded.get("c") == {"k": "c"}

    async def test_disabled_cache_always_misses(self, cache_config):
        disabled = MemoryCache(CacheConfig(**{**cache_config.__dict__, "enabled": False}))
        await disabled.set("k", {"v": 1}, timedelta(minutes=1))
        assert await disabled.get("k") is None

    async def test_stats(self, memory):
        await memory.set("k", {"v": 1}, timedelta(minutes=1))
        await memory.get("k")
        await memory.get("missing")
        stats = memory.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["backend"] == "memory"


class TestGlob:

    def test_star_and_question_mark(self):
        assert compile_glob("reports:detail:*").match("reports:detail:r1:f=:p=all:u=guest")
        assert compile_glob("admins:?ist*").match("admins:list:f=")
        assert not compile_glob("reports:detail:*").match("reports:user:u1")

    def test_character_classes(self):
        assert compile_glob("k[ab]").match("ka")
        assert not compile_glob("k[^ab]").match("ka")
        assert compile_glob("k[a-c]").match("kb")

    def test_escaped_metacharacter_is_literal(self):
        assert compile_glob(r"k\*").match("k*")
        assert not compile_glob(r"k\*").match("kx")


# =============================================================================
# REDIS DEGRADATION TESTS
# =============================================================================

def _failing_redis() -> MagicMock:
    client = MagicMock()
    client.get = AsyncMock(side_effect=RedisConnectionError("down"))
    client.set = AsyncMock(side_effect=RedisConnectionError("down"))
    client.delete = AsyncMock(side_effect=RedisConnectionError("down"))
    client.exists = AsyncMock(side_effect=RedisConnectionError("down"))
    client.ping = AsyncMock(side_effect=RedisConnectionError("down"))
    return client


class TestRedisDegradation:

    @pytest.fixture
    def redis_config(self, cache_config):
        return CacheConfig(**{**cache_config.__dict__, "backend": "redis", "circuit_breaker_threshold": 3})

    async def test_failing_backend_is_always_miss(self, redis_config):
        cache = RedisCache(redis_config, client=_failing_redis())

        assert await cache.set("k", {"v": 1}, timedelta(minutes=1)) is False
        assert await cache.get("k") is None
        assert await cache.delete("k") is False
        assert await cache.exists("k") is False
        assert cache.get_stats()["errors"] >= 3

    async def test_slow_backend_times_out_as_miss(self, redis_config):
        async def slow_get(key):
            await asyncio.sleep(1)
            return b"\x00{}"

        client = MagicMock()
        client.get = slow_get
        cache = RedisCache(CacheConfig(**{**redis_config.__dict__, "operation_timeout": 0.01}), client=client)

        assert await cache.get("k") is None
        assert cache.get_stats()["timeouts"] == 1

    async def test_circuit_opens_after_threshold(self, redis_config):
        client = _failing_redis()
        cache = RedisCache(redis_config, client=client)

        for _ in range(3):
            await cache.get("k")
        calls = client.get.await_count
        await cache.get("k")

        assert cache.get_stats()["circuit_breaker_open"] is True
        assert client.get.await_count == calls

    async def test_failed_connect_disconnects_pool(self, redis_config):
        pool = MagicMock()
        pool.disconnect = AsyncMock()
        client = MagicMock()
        client.ping = AsyncMock(side_effect=RedisConnectionError("refused"))

        with patch("civicpulse.cache.redis_cache.ConnectionPool.from_url", return_value=pool), \
                patch("civicpulse.cache.redis_cache.Redis", return_value=client):
            cache = RedisCache(redis_config)
            assert await cache.initialize() is False
            assert await cache.initialize() is False

        assert pool.disconnect.await_count == 2
        assert cache._pool is None

    def test_purge_timeout_is_sub_second(self, redis_config):
        assert 0 < redis_config.purge_timeout < 1

    async def test_slow_purge_is_bounded(self, redis_config):
        async def slow_scan(match=None, count=None):
            await asyncio.sleep(1)
            yield match

        client = MagicMock()
        client.scan_iter = slow_scan
        cache = RedisCache(CacheConfig(**{**redis_config.__dict__, "purge_timeout": 0.01}), client=client)

        assert await cache.delete_pattern("reports:*") == 0
        assert cache.get_stats()["timeouts"] == 1

    async def test_round_trip_through_codec(self, redis_config):
        store = {}

        async def fake_set(key, payload, px=None):
            store[key] = payload
            return True

        async def fake_get(key):
            return store.get(key)

        client = MagicMock()
        client.set = fake_set
        client.get = fake_get
        cache = RedisCache(CacheConfig(**{**redis_config.__dict__, "namespace": "civicpulse"}), client=client)

        await cache.set("reports:detail:r1", {"id": "r1"}, timedelta(minutes=5))

        assert list(store) == ["civicpulse:reports:detail:r1"]
        assert await cache.get("reports:detail:r1") == {"id": "r1"}


class TestCircuitBreaker:

    def test_opens_and_recovers(self):
        breaker = CircuitBreaker(threshold=2, timeout=0)
        breaker.record_failure()
        assert breaker.is_available()
        breaker.record_failure()
        assert breaker.state.is_open
        # timeout 0: half-open immediately
        assert breaker.is_available()
        assert not breaker.state.is_open

    def test_success_resets_failures(self):
        breaker = CircuitBreaker(threshold=3, timeout=30)
        breaker.record_failure()
        breaker.record_success()
        assert breaker.state.failures == 0
