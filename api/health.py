"""
Health API

Endpoints:
- GET /health - App, database and cache status (503 when the database is down)
- GET /health/db - Database connectivity and pool statistics
- GET /health/cache - Cache backend health and hit statistics
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from civicpulse.cache import KeyedCache
from civicpulse.database import check_db_connection, get_db_stats
from civicpulse.utils.config import Settings

from .dependencies import provide_cache, provide_settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])

STARTED_AT = time.monotonic()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("")
async def health(
    cache: KeyedCache = Depends(provide_cache),
    settings: Settings = Depends(provide_settings),
):
    """
    Overall status.

    A down cache only degrades performance, so it never makes the app
    unhealthy. A down database does.
    """
    db_ok = check_db_connection()
    cache_health = await cache.health_check()

    body: Dict[str, Any] = {
        "status": "healthy" if db_ok else "unhealthy",
        "timestamp": _now(),
        "uptime": round(time.monotonic() - STARTED_AT, 1),
        "database": {"connected": db_ok},
        "cache": {
            "connected": bool(cache_health.get("healthy")),
            "status": cache_health.get("status"),
        },
        "environment": settings.ENVIRONMENT,
    }
    if not db_ok:
        body["message"] = "Database connection unavailable"
        return JSONResponse(status_code=503, content=body)
    return body


@router.get("/db")
async def database_health():
    if not check_db_connection():
        return JSONResponse(
            status_code=503,
            content={"success": False, "message": "Database connection failed", "timestamp": _now()},
        )
    return {"success": True, "message": "Database connection successful", "pool": get_db_stats(), "timestamp": _now()}


@router.get("/cache")
async def cache_health(cache: KeyedCache = Depends(provide_cache)):
    return {"success": True, "cache": await cache.health_check(), "timestamp": _now()}
