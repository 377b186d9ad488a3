"""Manifest list inspection against an OCI distribution registry."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx

from multiarcher.errors import NotAManifestListError, RegistryError

from .credentials import RegistryHostCredential
from .reference import ImageReference, canonical_registry

logger = logging.getLogger(__name__)

MEDIA_TYPE_OCI_INDEX = "application/vnd.oci.image.index.v1+json"
MEDIA_TYPE_DOCKER_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
MEDIA_TYPE_OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
MEDIA_TYPE_DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
LIST_MEDIA_TYPES = (MEDIA_TYPE_OCI_INDEX, MEDIA_TYPE_DOCKER_LIST)
ACCEPT_HEADER = ", ".join(
    [MEDIA_TYPE_OCI_INDEX, MEDIA_TYPE_DOCKER_LIST, MEDIA_TYPE_OCI_MANIFEST, MEDIA_TYPE_DOCKER_MANIFEST]
)

DEFAULT_TIMEOUT_SECONDS = 10.0
TOKEN_CLIENT_ID = "k8s-multiarcher"

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


def parse_challenge(header: str) -> tuple:
    """Split a ``WWW-Authenticate`` header into its scheme and parameters."""
    scheme, _, params = header.strip().partition(" ")
    return scheme.lower(), dict(_CHALLENGE_PARAM.findall(params))


def platform_string(platform: Dict[str, Any]) -> str:
    parts = [str(platform.get("os") or ""), str(platform.get("architecture") or "")]
    variant = platform.get("variant")
    if variant:
        parts.append(str(variant))
    return "/".join(parts)


def platforms_from_manifest(document: Dict[str, Any], media_type: str = "") -> List[str]:
    media_type = media_type or str(document.get("mediaType") or "")
    manifests = document.get("manifests")
    if media_type not in LIST_MEDIA_TYPES and not isinstance(manifests, list):
        raise NotAManifestListError("provided image name has no manifest list")
    if not isinstance(manifests, list):
        raise RegistryError("manifest list has no manifests")
    platforms: List[str] = []
    for descriptor in manifests:
        if not isinstance(descriptor, dict):
            continue
        platform = descriptor.get("platform")
        if isinstance(platform, dict):
            platforms.append(platform_string(platform))
    return platforms


def find_credential(
    registry: str, hosts: Optional[Iterable[RegistryHostCredential]]
) -> Optional[RegistryHostCredential]:
    wanted = canonical_registry(registry)
    for host in hosts or []:
        if canonical_registry(host.host) == wanted:
            return host
    return None


class RegistryManifestInspector:
    """Reads the platform list of an image's manifest list over HTTPS.

    Authentication follows the registry token handshake: an
    anonymous request first, then on a ``401`` the ``Bearer`` challenge is
    answered with the matching credential (or anonymously). No retries.
    """

    def __init__(
        self,
        transport: Optional[httpx.BaseTransport] = None,
        scheme: str = "https",
        plain_http_hosts: Sequence[str] = (),
    ) -> None:
        self._transport = transport
        self._scheme = scheme
        self._plain_http_hosts = {canonical_registry(host) for host in plain_http_hosts}

    def get_manifest_platforms(
        self,
        image: str,
        hosts: Optional[Sequence[RegistryHostCredential]] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> List[str]:
        ref = ImageReference.parse(image)
        credential = find_credential(ref.registry, hosts)
        scheme = "http" if ref.registry in self._plain_http_hosts else self._scheme
        url = f"{scheme}://{ref.api_host}/v2/{ref.repository}/manifests/{ref.reference}"
        headers = {"Accept": ACCEPT_HEADER}
        logger.debug("fetching manifest image=%s url=%s", image, url)

        try:
            with httpx.Client(timeout=timeout, transport=self._transport) as client:
                response = client.get(url, headers=headers)
                if response.status_code == 401:
                    response = self._retry_with_auth(client, response, url, headers, ref, credential)
                response.raise_for_status()
                document = response.json()
        except httpx.HTTPStatusError as exc:
            raise RegistryError(
                f"registry returned {exc.response.status_code} for {image}"
            ) from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise RegistryError(f"failed to get manifest for {image}: {exc}") from exc
        except ValueError as exc:
            raise RegistryError(f"invalid manifest JSON for {image}: {exc}") from exc

        if not isinstance(document, dict):
            raise RegistryError(f"manifest for {image} is not an object")
        media_type = response.headers.get("content-type", "").split(";", 1)[0].strip()
        return platforms_from_manifest(document, media_type)

    def _retry_with_auth(
        self,
        client: httpx.Client,
        response: httpx.Response,
        url: str,
        headers: Dict[str, str],
        ref: ImageReference,
        credential: Optional[RegistryHostCredential],
    ) -> httpx.Response:
        scheme, params = parse_challenge(response.headers.get("www-authenticate", ""))
        if scheme == "bearer" and params.get("realm"):
            token = self._fetch_token(client, params, ref, credential)
            return client.get(url, headers={**headers, "Authorization": f"Bearer {token}"})
        if scheme == "basic" and credential is not None and credential.username:
            return client.get(url, headers=headers, auth=(credential.username, credential.password))
        return response

    def _fetch_token(
        self,
        client: httpx.Client,
        params: Dict[str, str],
        ref: ImageReference,
        credential: Optional[RegistryHostCredential],
    ) -> str:
        realm = params["realm"]
        scope = params.get("scope") or f"repository:{ref.repository}:pull"
        query = {"scope": scope}
        if params.get("service"):
            query["service"] = params["service"]

        if credential is not None and credential.identity_token:
            form = {
                "grant_type": "refresh_token",
                "refresh_token": credential.identity_token,
                "client_id": TOKEN_CLIENT_ID,
                **query,
            }
            token_response = client.post(realm, data=form)
        elif credential is not None and credential.username:
            token_response = client.get(realm, params=query, auth=(credential.username, credential.password))
        else:
            token_response = client.get(realm, params=query)
        token_response.raise_for_status()

        body = token_response.json()
        token = (body.get("token") or body.get("access_token")) if isinstance(body, dict) else None
        if not token:
            raise RegistryError(f"token endpoint {realm} returned no token")
        return str(token)


__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "RegistryManifestInspector",
    "find_credential",
    "parse_challenge",
    "platform_string",
    "platforms_from_manifest",
]
