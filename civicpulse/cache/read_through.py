"""
Read-Through Caching

Every cached read path goes through ReadThroughCache.get_or_load():

    key -> cache get -> (miss) loader() -> cache set with explicit TTL

CachePolicy controls when the cache is skipped:
- bypass_cache: the caller asked for fresh data; no read, no fill
- guard: a namespace whose bypass flag (armed by sensitive mutations)
  forces fresh reads while it is live

A guarded fill is also dropped when the flag was armed after the load
started, so a read that fetched rows before an admin change cannot
re-cache them after the purge.
"""

import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar, Union

from civicpulse.cache.base import KeyedCache
from civicpulse.cache.keys import CacheKeyBuilder, CacheNamespace


logger = logging.getLogger(__name__)

T = TypeVar('T')

Loader = Callable[[], Union[T, Awaitable[T]]]


@dataclass(frozen=True)
class CachePolicy:
    """How one read interacts with the cache."""
    bypass_cache: bool = False
    bypass_window: timedelta = timedelta(seconds=30)
    guard: Optional[CacheNamespace] = None

    @classmethod
    def fresh(cls) -> "CachePolicy":
        return cls(bypass_cache=True)

    @classmethod
    def guarded(cls, namespace: CacheNamespace, window: timedelta = timedelta(seconds=30)) -> "CachePolicy":
        return cls(bypass_window=window, guard=namespace)


DEFAULT_POLICY = CachePolicy()


class ReadThroughCache:
    """Cache-aside helper shared by all read handlers."""

    def __init__(self, cache: KeyedCache):
        self.cache = cache

    async def _flag_armed_at(self, policy: CachePolicy) -> Optional[float]:
        if policy.guard is None:
            return None
        armed_at = await self.cache.get(CacheKeyBuilder.flag(policy.guard))
        if armed_at is None:
            return None
        try:
            armed_at = float(armed_at)
        except (TypeError, ValueError):
            # Unreadable flag still means "bypass"
            return time.time()
        # The flag's TTL already bounds the window; this guards clock skew on the entry
        if time.time() - armed_at > policy.bypass_window.total_seconds():
            return None
        return armed_at

    async def get_or_load(
        self,
        key: str,
        loader: Loader,
        ttl: timedelta,
        policy: CachePolicy = DEFAULT_POLICY,
    ) -> Tuple[Any, bool]:
        """
        Return (value, cached). cached is True only when served from the cache.

        Loader exceptions propagate unchanged; cache problems never do.
        """
        if policy.bypass_cache:
            logger.debug(f"Cache bypassed by policy for {key}")
            return await _call(loader), False

        if await self._flag_armed_at(policy) is not None:
            logger.info(f"Bypass window active for {policy.guard.value}, skipping cache for {key}")
            return await _call(loader), False

        cached = await self.cache.get(key)
        if cached is not None:
            return cached, True

        load_started = time.time()
        value = await _call(loader)

        if value is None:
            return value, False

        armed_at = await self._flag_armed_at(policy)
        if armed_at is not None and armed_at >= load_started:
            logger.info(f"Dropping fill for {key}: bypass armed during load")
            return value, False

        await self.cache.set(key, value, ttl)
        return value, False


async def _call(loader: Loader) -> Any:
    result = loader()
    if hasattr(result, "__await__"):
        result = await result
    return result
