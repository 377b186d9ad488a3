from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence

from multiarcher.cache.store import (
    CACHE_FAILURE_TTL,
    CACHE_NEGATIVE_TTL,
    CACHE_SUCCESS_TTL,
    CacheKey,
    PlatformSupportCache,
)
from multiarcher.common.deadline import Deadline
from multiarcher.errors import NotAManifestListError, UpstreamError

from .credentials import RegistryHostCredential
from .manifests import DEFAULT_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

ARM64 = "linux/arm64"


class ManifestInspector(Protocol):
    def get_manifest_platforms(
        self,
        image: str,
        hosts: Optional[Sequence[RegistryHostCredential]] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> List[str]:
        ...


class ManifestPlatformChecker:
    """Answers whether an image supports a platform, memoised in the cache.

    Three outcomes are cached with different lifetimes: confirmed support
    (24h), confirmed lack of support (6h) and a failed lookup (5m), so a
    registry outage is retried soon without hammering the registry on every
    admission request.
    """

    def __init__(
        self,
        cache: PlatformSupportCache,
        inspector: ManifestInspector,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.cache = cache
        self.inspector = inspector
        self.timeout_seconds = timeout_seconds

    def supports(
        self,
        deadline: Deadline,
        image: str,
        platform: str,
        hosts: Optional[Sequence[RegistryHostCredential]] = None,
    ) -> bool:
        key = CacheKey(image, platform)
        value, found = self.cache.get(key)
        if found:
            return value

        try:
            platforms = self.inspector.get_manifest_platforms(
                image, hosts, timeout=deadline.cap(self.timeout_seconds)
            )
        except NotAManifestListError as exc:
            logger.error("image has no manifest list image=%s: %s", image, exc)
            self.cache.set(key, False, CACHE_FAILURE_TTL)
            return False
        except UpstreamError as exc:
            logger.error("failed to get manifest image=%s: %s", image, exc)
            self.cache.set(key, False, CACHE_FAILURE_TTL)
            return False

        # exact comparison: configured platforms must match the manifest verbatim
        if platform in platforms:
            self.cache.set(key, True, CACHE_SUCCESS_TTL)
            return True
        self.cache.set(key, False, CACHE_NEGATIVE_TTL)
        return False

    def supports_arm64(
        self,
        deadline: Deadline,
        image: str,
        hosts: Optional[Sequence[RegistryHostCredential]] = None,
    ) -> bool:
        return self.supports(deadline, image, ARM64, hosts)


__all__ = ["ARM64", "ManifestInspector", "ManifestPlatformChecker"]
