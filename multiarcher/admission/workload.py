from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from multiarcher.common.deadline import Deadline
from multiarcher.config.tolerations import PlatformTolerationConfig
from multiarcher.registry.checker import ARM64, ManifestPlatformChecker
from multiarcher.registry.credentials import RegistryHostCredential

logger = logging.getLogger(__name__)


def collect_containers(pod_spec: Optional[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Union of regular, init and ephemeral containers.

    Ephemeral containers are reduced to ``{name, image}``; only the image
    matters for platform support.
    """
    if not pod_spec:
        return []
    containers: List[Dict[str, Any]] = []
    containers.extend(pod_spec.get("containers") or [])
    containers.extend(pod_spec.get("initContainers") or [])
    for ephemeral in pod_spec.get("ephemeralContainers") or []:
        containers.append({"name": ephemeral.get("name", ""), "image": ephemeral.get("image", "")})
    return containers


def supported_platforms(
    deadline: Deadline,
    checker: ManifestPlatformChecker,
    containers: Sequence[Mapping[str, Any]],
    hosts: Optional[Sequence[RegistryHostCredential]],
    config: PlatformTolerationConfig,
) -> List[str]:
    """Configured platforms supported by every container image, in config order."""
    supported: List[str] = []
    for platform in config.platforms():
        unsupported_image = None
        for container in containers:
            image = str(container.get("image") or "")
            if not checker.supports(deadline, image, platform, hosts):
                unsupported_image = image
                break
        if unsupported_image is None:
            supported.append(platform)
        else:
            logger.info(
                "containers have images without platform support platform=%s image=%s",
                platform,
                unsupported_image,
            )
    return supported


def pod_supported_platforms(
    deadline: Deadline,
    checker: ManifestPlatformChecker,
    pod: Mapping[str, Any],
    hosts: Optional[Sequence[RegistryHostCredential]],
    config: PlatformTolerationConfig,
) -> List[str]:
    return supported_platforms(deadline, checker, collect_containers(pod.get("spec")), hosts, config)


def template_supported_platforms(
    deadline: Deadline,
    checker: ManifestPlatformChecker,
    template: Mapping[str, Any],
    hosts: Optional[Sequence[RegistryHostCredential]],
    config: PlatformTolerationConfig,
) -> List[str]:
    return supported_platforms(deadline, checker, collect_containers(template.get("spec")), hosts, config)


def pod_supports_arm64(
    deadline: Deadline,
    checker: ManifestPlatformChecker,
    pod: Mapping[str, Any],
    hosts: Optional[Sequence[RegistryHostCredential]] = None,
) -> bool:
    missing = [
        str(container.get("image") or "")
        for container in (pod.get("spec") or {}).get("containers") or []
        if not checker.supports(deadline, str(container.get("image") or ""), ARM64, hosts)
    ]
    if missing:
        logger.info("pod has images without arm64 support: %s", ", ".join(missing))
        return False
    return True


__all__ = [
    "collect_containers",
    "pod_supported_platforms",
    "pod_supports_arm64",
    "supported_platforms",
    "template_supported_platforms",
]
