"""
Service Base

Shared wiring for the request handlers: the keyed cache, the read-through
helper and the invalidator.

Write path:  transaction -> commit -> after_commit(event) -> response
Read path:   build key -> read_through(key, loader, ttl, policy)
"""

import logging
from datetime import timedelta
from typing import Any, Callable, Optional, Tuple

from civicpulse.cache import (
    CacheEvent,
    CacheInvalidator,
    CachePolicy,
    InvalidationResult,
    KeyedCache,
    ReadThroughCache,
)
from civicpulse.database.session import store_errors
from civicpulse.utils.config import Settings, get_settings

logger = logging.getLogger(__name__)


class BaseService:
    """Holds the cache collaborators every service needs."""

    def __init__(self, cache: KeyedCache, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.cache = cache
        self.reader = ReadThroughCache(cache)
        self.invalidator = CacheInvalidator(
            cache,
            bypass_window=self.bypass_window,
        )

    @property
    def bypass_window(self) -> timedelta:
        return timedelta(seconds=self.settings.ADMIN_CACHE_BYPASS_SECONDS)

    async def read_through(
        self,
        key: str,
        loader: Callable[[], Any],
        ttl: timedelta,
        policy: Optional[CachePolicy] = None,
    ) -> Tuple[Any, bool]:
        def load():
            with store_errors():
                return loader()

        return await self.reader.get_or_load(key, load, ttl, policy or CachePolicy())

    async def after_commit(self, event: CacheEvent, **context: Any) -> Optional[InvalidationResult]:
        """
        Invalidate caches for a committed mutation.

        The data is already durable, so nothing here may fail the request.
        """
        try:
            result = await self.invalidator.handle_event(event, **context)
        except Exception as e:
            logger.error(f"Post-commit invalidation failed for {event.value}: {e}")
            return None

        if not result.success:
            logger.warning(f"Invalidation for {event.value} incomplete: {result.errors}")
        return result
