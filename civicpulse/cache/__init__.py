"""
CivicPulse Caching Layer

Keyed TTL cache in front of the read-heavy endpoints.

Components:
- KeyedCache: the backend contract (Redis or in-process memory)
- CacheKeyBuilder: deterministic keys and invalidation patterns
- InvalidationRouter / CacheInvalidator: mutation event -> purge plan
- ReadThroughCache / CachePolicy: cache-aside reads with bypass control

Cache failures never reach callers; a down cache behaves as always-miss.
"""

from civicpulse.cache.base import CacheStats, KeyedCache
from civicpulse.cache.config import CacheConfig, CacheTTL, get_cache_config
from civicpulse.cache.compression import (
    CacheCompressor,
    PayloadCodec,
    serialize_value,
    deserialize_value,
)
from civicpulse.cache.memory_cache import MemoryCache
from civicpulse.cache.redis_cache import RedisCache, CircuitBreaker
from civicpulse.cache.keys import CacheKeyBuilder, CacheNamespace, Pagination
from civicpulse.cache.invalidation import (
    CacheEvent,
    CacheInvalidator,
    InvalidationPlan,
    InvalidationResult,
    InvalidationRouter,
)
from civicpulse.cache.read_through import CachePolicy, ReadThroughCache
from civicpulse.cache.factory import get_cache, set_cache, close_cache

__all__ = [
    # Contract
    "KeyedCache",
    "CacheStats",
    # Config
    "CacheConfig",
    "CacheTTL",
    "get_cache_config",
    # Compression
    "CacheCompressor",
    "PayloadCodec",
    "serialize_value",
    "deserialize_value",
    # Backends
    "MemoryCache",
    "RedisCache",
    "CircuitBreaker",
    "get_cache",
    "set_cache",
    "close_cache",
    # Keys
    "CacheKeyBuilder",
    "CacheNamespace",
    "Pagination",
    # Invalidation
    "CacheEvent",
    "CacheInvalidator",
    "InvalidationPlan",
    "InvalidationResult",
    "InvalidationRouter",
    # Read path
    "CachePolicy",
    "ReadThroughCache",
]
