"""
Shared FastAPI Dependencies

Providers for the cache, external collaborators and services, plus the
query parameters every list endpoint shares. Tests replace the
collaborators through app.dependency_overrides.
"""

from functools import lru_cache

from fastapi import Depends, Query

from civicpulse.cache import CachePolicy, KeyedCache, Pagination, get_cache
from civicpulse.integrations import MediaStorage, Notifier, build_notifier, build_storage
from civicpulse.services import AdminService, ReportService, SocialService, UserService
from civicpulse.utils.config import Settings, get_settings


# =============================================================================
# COLLABORATORS
# =============================================================================

async def provide_cache() -> KeyedCache:
    return await get_cache()


@lru_cache
def provide_storage() -> MediaStorage:
    return build_storage()


@lru_cache
def provide_notifier() -> Notifier:
    return build_notifier()


def provide_settings() -> Settings:
    return get_settings()


# =============================================================================
# SERVICES
# =============================================================================

def get_report_service(
    cache: KeyedCache = Depends(provide_cache),
    storage: MediaStorage = Depends(provide_storage),
    notifier: Notifier = Depends(provide_notifier),
    settings: Settings = Depends(provide_settings),
) -> ReportService:
    return ReportService(cache, storage=storage, notifier=notifier, settings=settings)


def get_social_service(
    cache: KeyedCache = Depends(provide_cache),
    settings: Settings = Depends(provide_settings),
) -> SocialService:
    return SocialService(cache, settings=settings)


def get_admin_service(
    cache: KeyedCache = Depends(provide_cache),
    settings: Settings = Depends(provide_settings),
) -> AdminService:
    return AdminService(cache, settings=settings)


def get_user_service(
    cache: KeyedCache = Depends(provide_cache),
    settings: Settings = Depends(provide_settings),
) -> UserService:
    return UserService(cache, settings=settings)


# =============================================================================
# QUERY PARAMETERS
# =============================================================================

def cache_policy(
    fresh: bool = Query(False, description="Skip the cache for this read"),
) -> CachePolicy:
    return CachePolicy.fresh() if fresh else CachePolicy()


def report_pagination(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> Pagination:
    return Pagination(limit=limit, offset=offset)


def feed_pagination(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> Pagination:
    return Pagination(limit=limit, offset=offset)


def envelope(payload: dict) -> dict:
    """Success envelope: {"success": true, ...payload}."""
    return {"success": True, **payload}
