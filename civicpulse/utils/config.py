"""
CivicPulse Settings

Store, priority-scoring, media and notification settings read from the
environment (and .env). Cache settings live in civicpulse.cache.config.
"""

from typing import Optional
from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Application Settings
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    API_PREFIX: str = "/api/v1"

    # Store
    DATABASE_URL: Optional[str] = None
    SQLITE_PATH: str = "civicpulse_dev.db"
    SQL_DEBUG: bool = False
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_STATEMENT_TIMEOUT_MS: int = 30000
    DB_RETRY_AFTER_SECONDS: int = 5

    # Auto-priority policy
    PRIORITY_WINDOW_DAYS: int = 30
    PRIORITY_RADIUS_METERS: float = 500.0

    # Forced cache bypass after admin mutations
    ADMIN_CACHE_BYPASS_SECONDS: int = 30

    # Media storage (Cloudinary, optional)
    CLOUDINARY_CLOUD_NAME: Optional[str] = None
    CLOUDINARY_API_KEY: Optional[str] = None
    CLOUDINARY_API_SECRET: Optional[str] = None
    CLOUDINARY_UPLOAD_PRESET: Optional[str] = None
    MAX_RESOLUTION_PHOTOS: int = 2
    MAX_PROGRESS_PHOTOS: int = 5

    # Notifications (optional webhook)
    NOTIFICATION_WEBHOOK_URL: Optional[str] = None

    # Timeouts
    API_TIMEOUT: int = 30

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields in .env file
        case_sensitive = False  # Allow both UPPERCASE and lowercase


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()
