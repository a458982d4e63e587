"""
CivicPulse API

FastAPI application that:
1. Serves citizen reports, the social feed, admin directory and users
2. Keeps a keyed TTL cache in front of the read-heavy endpoints
3. Invalidates that cache after every committed mutation
4. Maps domain errors to JSON envelopes with their HTTP status
"""

import logging
import sys

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from civicpulse import __version__
from civicpulse.cache import close_cache, get_cache
from civicpulse.database import check_db_connection, init_db
from civicpulse.errors import ServiceError, StoreUnavailableError
from civicpulse.utils.config import get_settings

from . import admins, health, reports, social, users
from .dependencies import provide_notifier, provide_storage

settings = get_settings()

# Configure logging to stdout
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

app = FastAPI(
    title="CivicPulse API",
    description="Civic issue reporting backend with cache-consistent reads and automatic priority scoring",
    version=__version__,
)


# ============================================================================
# STARTUP / SHUTDOWN
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Initialize database and cache on startup."""
    logger.info("Initializing database...")
    try:
        init_db()
        if check_db_connection():
            logger.info("Database connection verified")
        else:
            logger.warning("Database connection check failed - continuing anyway")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")

    # An unreachable cache degrades to always-miss
    cache = await get_cache()
    logger.info(f"Cache ready: {(await cache.health_check()).get('status')}")


@app.on_event("shutdown")
async def shutdown_event():
    await close_cache()
    await provide_storage().close()
    await provide_notifier().close()


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    headers = None
    if isinstance(exc, StoreUnavailableError):
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Invalid request",
            "error": "validation_error",
            "details": {"errors": errors},
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error", "error": "internal_error"},
    )


# ============================================================================
# ROUTES
# ============================================================================

for module in (reports, social, admins, users, health):
    app.include_router(module.router, prefix=settings.API_PREFIX)


@app.get("/")
async def root():
    return {
        "success": True,
        "message": "CivicPulse API is running",
        "version": app.version,
    }


# ============================================================================
# RUN SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.app:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
