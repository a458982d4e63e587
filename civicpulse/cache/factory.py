"""
Process-wide cache singleton.

The backend is chosen by CACHE_BACKEND ("redis" or "memory"). Tests and
the app factory may install their own instance with set_cache().
"""

import asyncio
import logging
from typing import Optional

from civicpulse.cache.base import KeyedCache
from civicpulse.cache.config import get_cache_config
from civicpulse.cache.memory_cache import MemoryCache
from civicpulse.cache.redis_cache import RedisCache


logger = logging.getLogger(__name__)

# Singleton instance
_cache: Optional[KeyedCache] = None
_cache_lock = asyncio.Lock()


def build_cache() -> KeyedCache:
    config = get_cache_config()
    if config.backend == "memory":
        logger.info("Using in-process memory cache")
        return MemoryCache(config)
    if config.backend != "redis":
        logger.warning(f"Unknown CACHE_BACKEND '{config.backend}', falling back to redis")
    return RedisCache(config)


async def get_cache() -> KeyedCache:
    """Get singleton cache instance."""
    global _cache

    if _cache is not None:
        return _cache

    async with _cache_lock:
        if _cache is not None:
            return _cache

        cache = build_cache()
        if isinstance(cache, RedisCache):
            # An unreachable Redis still yields a usable (always-miss) cache
            await cache.initialize()
        _cache = cache
        return _cache


def set_cache(cache: Optional[KeyedCache]):
    """Install a specific cache instance (or clear it with None)."""
    global _cache
    _cache = cache


async def close_cache():
    """Close singleton cache instance."""
    global _cache

    if _cache:
        await _cache.close()
        _cache = None
