"""TTL cache of image platform support, shared by all in-flight requests."""

from .store import (
    CACHE_FAILURE_TTL,
    CACHE_NEGATIVE_TTL,
    CACHE_SUCCESS_TTL,
    CacheKey,
    InMemoryCache,
    PlatformSupportCache,
    RedisCache,
    build_cache,
)

__all__ = [
    "CACHE_FAILURE_TTL",
    "CACHE_NEGATIVE_TTL",
    "CACHE_SUCCESS_TTL",
    "CacheKey",
    "InMemoryCache",
    "PlatformSupportCache",
    "RedisCache",
    "build_cache",
]
