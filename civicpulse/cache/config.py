"""
Cache Configuration

Centralized configuration for the caching layer.

Every read path passes its TTL explicitly; CacheTTL is the table those
call sites read from. There is no implicit default TTL on the cache itself.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional
from functools import lru_cache


@dataclass(frozen=True)
class CacheTTL:
    """
    Cache TTL configuration by read path.

    List views churn with every report and vote, so they stay short
    (3-10 minutes). Aggregates are cheap to serve slightly stale.
    """

    # Report reads
    REPORT_DETAIL: timedelta = timedelta(minutes=5)
    USER_REPORTS: timedelta = timedelta(minutes=5)
    USER_STATS: timedelta = timedelta(minutes=5)
    NEARBY_REPORTS: timedelta = timedelta(minutes=3)

    # Admin-side report lists
    ADMIN_REPORTS: timedelta = timedelta(minutes=10)
    ASSIGNED_REPORTS: timedelta = timedelta(minutes=5)

    # Social feed
    SOCIAL_POSTS: timedelta = timedelta(minutes=5)
    SOCIAL_COMMENTS: timedelta = timedelta(minutes=10)
    REPORT_SOCIAL_STATS: timedelta = timedelta(minutes=5)

    # Aggregates
    SOCIAL_STATS: timedelta = timedelta(minutes=15)
    COMMUNITY_STATS: timedelta = timedelta(minutes=15)

    # Admin directory
    ADMINS_LIST: timedelta = timedelta(minutes=10)
    ADMIN_PROFILE: timedelta = timedelta(minutes=10)


@dataclass
class CacheConfig:
    """
    Main cache configuration.

    Settings can be overridden via environment variables:
    - CACHE_ENABLED: Enable/disable caching globally
    - CACHE_BACKEND: "redis" or "memory"
    - REDIS_URL: Redis connection string
    - CACHE_OPERATION_TIMEOUT: Per-operation timeout in seconds
    - CACHE_PURGE_TIMEOUT: Timeout for one pattern purge (SCAN + DEL)
    """

    # Key prefix shared by every entry (empty disables prefixing)
    namespace: str = field(default_factory=lambda: os.getenv(
        "CACHE_NAMESPACE",
        "civicpulse"
    ))

    # Global cache toggle
    enabled: bool = field(default_factory=lambda: os.getenv(
        "CACHE_ENABLED",
        "true"
    ).lower() == "true")

    backend: str = field(default_factory=lambda: os.getenv(
        "CACHE_BACKEND",
        "redis"
    ).lower())

    # Redis connection
    redis_url: str = field(default_factory=lambda: os.getenv(
        "REDIS_URL",
        "redis://localhost:6379/0"
    ))
    redis_max_connections: int = field(default_factory=lambda: int(os.getenv(
        "REDIS_MAX_CONNECTIONS",
        "20"
    )))
    redis_socket_timeout: float = field(default_factory=lambda: float(os.getenv(
        "REDIS_SOCKET_TIMEOUT",
        "0.5"
    )))
    redis_connect_timeout: float = field(default_factory=lambda: float(os.getenv(
        "REDIS_CONNECT_TIMEOUT",
        "0.5"
    )))

    # Upper bound on any single cache call; a slow cache is a miss
    operation_timeout: float = field(default_factory=lambda: float(os.getenv(
        "CACHE_OPERATION_TIMEOUT",
        "0.25"
    )))
    # Pattern purges SCAN in several round trips; still kept under a second
    purge_timeout: float = field(default_factory=lambda: float(os.getenv(
        "CACHE_PURGE_TIMEOUT",
        "0.75"
    )))

    # Circuit breaker
    circuit_breaker_enabled: bool = field(default_factory=lambda: os.getenv(
        "CACHE_CIRCUIT_BREAKER_ENABLED",
        "true"
    ).lower() == "true")
    circuit_breaker_threshold: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_CIRCUIT_BREAKER_THRESHOLD",
        "5"
    )))
    circuit_breaker_timeout: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_CIRCUIT_BREAKER_TIMEOUT",
        "30"
    )))

    # Compression
    compression_enabled: bool = field(default_factory=lambda: os.getenv(
        "CACHE_COMPRESSION_ENABLED",
        "true"
    ).lower() == "true")
    compression_threshold: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_COMPRESSION_THRESHOLD",
        "1024"
    )))

    # Memory backend bound
    memory_max_entries: Optional[int] = field(default_factory=lambda: (
        int(os.environ["CACHE_MEMORY_MAX_ENTRIES"])
        if os.getenv("CACHE_MEMORY_MAX_ENTRIES") else None
    ))

    def prefixed(self, key: str) -> str:
        """Apply the deployment-wide key prefix."""
        if not self.namespace:
            return key
        return f"{self.namespace}:{key}"


@lru_cache(maxsize=1)
def get_cache_config() -> CacheConfig:
    """Get singleton cache configuration."""
    return CacheConfig()
