from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Protocol, Tuple, Union

import redis

from multiarcher.config.settings import Settings
from multiarcher.errors import ConfigError

from .arc import ARCCache

logger = logging.getLogger(__name__)

CACHE_SUCCESS_TTL = timedelta(hours=24)
CACHE_NEGATIVE_TTL = timedelta(hours=6)
CACHE_FAILURE_TTL = timedelta(minutes=5)

REDIS_TIMEOUT_SECONDS = 5.0
KEY_PREFIX = "multiarcher:v1:"

TTL = Union[timedelta, float, int, None]


@dataclass(frozen=True)
class CacheKey:
    """Composite (image reference, platform) cache key."""

    image: str
    platform: str

    def encode(self) -> str:
        # A JSON array cannot be confused across the image/platform boundary,
        # even when the image reference itself contains colons.
        return KEY_PREFIX + json.dumps([self.image, self.platform], separators=(",", ":"))


class PlatformSupportCache(Protocol):
    def get(self, key: CacheKey) -> Tuple[bool, bool]:
        ...

    def set(self, key: CacheKey, value: bool, ttl: TTL = None) -> None:
        ...


def _ttl_seconds(ttl: TTL) -> float:
    if ttl is None:
        return 0.0
    if isinstance(ttl, timedelta):
        return ttl.total_seconds()
    return float(ttl)


class InMemoryCache:
    """Process-local bounded cache with ARC eviction and per-entry expiry."""

    def __init__(self, size: int, clock=None) -> None:
        self._arc = ARCCache(size) if clock is None else ARCCache(size, clock=clock)
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> Tuple[bool, bool]:
        with self._lock:
            value, found = self._arc.get(key)
        if not found:
            return False, False
        if not isinstance(value, bool):
            logger.error("found non boolean cache value for %s", key)
            return False, False
        return value, True

    def set(self, key: CacheKey, value: bool, ttl: TTL = None) -> None:
        seconds = _ttl_seconds(ttl)
        with self._lock:
            self._arc.set(key, value, seconds if seconds > 0 else None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._arc)


class RedisCache:
    """Networked cache; values are stored as ``"1"``/``"0"`` with native expiry."""

    def __init__(self, addr: Optional[str] = None, client: Optional[redis.Redis] = None) -> None:
        if client is None:
            host, _, port = (addr or "localhost:6379").rpartition(":")
            client = redis.Redis(
                host=host or "localhost",
                port=int(port or 6379),
                socket_timeout=REDIS_TIMEOUT_SECONDS,
                socket_connect_timeout=REDIS_TIMEOUT_SECONDS,
            )
        self._client = client

    def get(self, key: CacheKey) -> Tuple[bool, bool]:
        try:
            raw = self._client.get(key.encode())
        except redis.RedisError as exc:
            logger.error("failed to get key on RedisCache: %s", exc)
            return False, False
        if raw is None:
            return False, False
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        if raw == "1":
            return True, True
        if raw == "0":
            return False, True
        logger.error("found non boolean cache value for %s", key)
        return False, False

    def set(self, key: CacheKey, value: bool, ttl: TTL = None) -> None:
        seconds = _ttl_seconds(ttl)
        try:
            if seconds > 0:
                # redis rejects a zero expiry
                self._client.set(key.encode(), "1" if value else "0", px=max(1, int(seconds * 1000)))
            else:
                self._client.set(key.encode(), "1" if value else "0")
        except redis.RedisError as exc:
            logger.error("failed to set key on RedisCache: %s", exc)


def build_cache(settings: Settings) -> PlatformSupportCache:
    if settings.cache_backend == "inmemory":
        logger.info("using in-memory cache size=%d", settings.cache_size)
        return InMemoryCache(settings.cache_size)
    if settings.cache_backend == "redis":
        logger.info("using redis cache addr=%s", settings.redis_addr)
        return RedisCache(settings.redis_addr)
    raise ConfigError(f"invalid cache choice: {settings.cache_backend}")


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
