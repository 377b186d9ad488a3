"""Configuration loaded once at startup and shared read-only by all requests."""

from .settings import Settings
from .tolerations import (
    PlatformTolerationConfig,
    PlatformTolerationMapping,
    Toleration,
    load_platform_toleration_config,
)

__all__ = [
    "PlatformTolerationConfig",
    "PlatformTolerationMapping",
    "Settings",
    "Toleration",
    "load_platform_toleration_config",
]
