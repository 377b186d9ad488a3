"""Registry access: image references, manifest lists and pull credentials."""

from .checker import ManifestPlatformChecker
from .credentials import RegistryHostCredential, resolve_hosts
from .manifests import RegistryManifestInspector
from .reference import ImageReference

__all__ = [
    "ImageReference",
    "ManifestPlatformChecker",
    "RegistryHostCredential",
    "RegistryManifestInspector",
    "resolve_hosts",
]
