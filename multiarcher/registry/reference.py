"""Docker-style image reference parsing and normalisation."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from multiarcher.errors import RegistryError

DOCKER_HUB = "docker.io"
DOCKER_HUB_API = "registry-1.docker.io"
DOCKER_HUB_ALIASES = {"docker.io", "index.docker.io", "registry-1.docker.io", "registry.hub.docker.com"}
DEFAULT_TAG = "latest"

_REPOSITORY_PATTERN = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*(?:/[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*)*$")
_TAG_PATTERN = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST_PATTERN = re.compile(r"^[a-z0-9]+(?:[+._-][a-z0-9]+)*:[a-zA-Z0-9=_-]+$")


def canonical_registry(host: str) -> str:
    host = host.lower()
    if host in DOCKER_HUB_ALIASES:
        return DOCKER_HUB
    return host


@dataclass(frozen=True)
class ImageReference:
    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @classmethod
    def parse(cls, name: str) -> "ImageReference":
        if not name or name != name.strip():
            raise RegistryError(f"invalid image reference: {name!r}")

        remainder = name
        digest = None
        if "@" in remainder:
            remainder, digest = remainder.split("@", 1)
            if not _DIGEST_PATTERN.match(digest):
                raise RegistryError(f"invalid digest in image reference: {name!r}")

        tag = None
        last_slash = remainder.rfind("/")
        last_colon = remainder.rfind(":")
        if last_colon > last_slash:
            remainder, tag = remainder[:last_colon], remainder[last_colon + 1 :]
            if not _TAG_PATTERN.match(tag):
                raise RegistryError(f"invalid tag in image reference: {name!r}")

        first, sep, rest = remainder.partition("/")
        if sep and ("." in first or ":" in first or first == "localhost"):
            registry, repository = canonical_registry(first), rest
        else:
            registry, repository = DOCKER_HUB, remainder

        if registry == DOCKER_HUB and "/" not in repository:
            repository = f"library/{repository}"
        if not _REPOSITORY_PATTERN.match(repository):
            raise RegistryError(f"invalid repository in image reference: {name!r}")

        if tag is None and digest is None:
            tag = DEFAULT_TAG
        return cls(registry=registry, repository=repository, tag=tag, digest=digest)

    @property
    def api_host(self) -> str:
        if self.registry == DOCKER_HUB:
            return DOCKER_HUB_API
        return self.registry

    @property
    def reference(self) -> str:
        """Tag or digest used in the manifest URL; a digest wins over a tag."""
        return self.digest or self.tag or DEFAULT_TAG

    def __str__(self) -> str:
        text = f"{self.registry}/{self.repository}"
        if self.tag:
            text += f":{self.tag}"
        if self.digest:
            text += f"@{self.digest}"
        return text


__all__ = ["DOCKER_HUB", "ImageReference", "canonical_registry"]
