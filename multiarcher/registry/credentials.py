"""Registry credentials derived from a workload's image pull secrets.

Credentials are resolved per admission request and never cached.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from multiarcher.common.deadline import Deadline
from multiarcher.errors import CredentialError, UpstreamError
from multiarcher.kube.client import KubeClient

from .reference import canonical_registry

logger = logging.getLogger(__name__)

SECRET_TYPE_DOCKER_CONFIG_JSON = "kubernetes.io/dockerconfigjson"
SECRET_TYPE_DOCKERCFG = "kubernetes.io/dockercfg"
DOCKER_CONFIG_JSON_KEY = ".dockerconfigjson"
DOCKERCFG_KEY = ".dockercfg"
DEFAULT_SERVICE_ACCOUNT = "default"

_LABEL = r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
_HOST_PATTERN = re.compile(rf"^(?:{_LABEL}(?:\.{_LABEL})*|\[[0-9A-Fa-f:.]+\])(?::[0-9]{{1,5}})?$")


@dataclass(frozen=True)
class RegistryHostCredential:
    host: str
    username: str = ""
    password: str = field(default="", repr=False)
    identity_token: str = field(default="", repr=False)


def normalise_host(registry: str) -> str:
    """Strip a scheme and path, as legacy dockercfg keys carry them."""
    host = registry.strip()
    for scheme in ("https://", "http://"):
        if host.lower().startswith(scheme):
            host = host[len(scheme) :]
            break
    host = host.split("/", 1)[0]
    return canonical_registry(host) if host else host


def validate_host(registry: str) -> bool:
    host = normalise_host(registry)
    if not host or not _HOST_PATTERN.match(host):
        return False
    _, sep, port = host.rpartition("]")[2].rpartition(":")
    return not sep or int(port) <= 65535


def decode_docker_auth(encoded: str) -> tuple:
    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise CredentialError(f"invalid base64 auth: {exc}") from exc
    # passwords may contain colons; only the first one separates the user
    username, sep, password = decoded.partition(":")
    if not sep:
        raise CredentialError("invalid auth format, expected format username:password")
    return username, password


def hosts_from_auths(auths: Mapping[str, Any]) -> List[RegistryHostCredential]:
    hosts: List[RegistryHostCredential] = []
    for registry, entry in auths.items():
        if not isinstance(entry, dict):
            logger.warning("skipping malformed docker auth entry registry=%s", registry)
            continue
        username = str(entry.get("username") or "")
        password = str(entry.get("password") or "")
        identity_token = str(entry.get("identitytoken") or "")
        auth = str(entry.get("auth") or "")
        if not username and not password and auth:
            try:
                username, password = decode_docker_auth(auth)
            except CredentialError as exc:
                logger.warning("failed to decode docker auth registry=%s: %s", registry, exc)
                continue
        if not username and not password and not identity_token:
            continue
        if not validate_host(registry):
            logger.debug("skipping invalid registry host %r", registry)
            continue
        hosts.append(
            RegistryHostCredential(
                host=normalise_host(registry),
                username=username,
                password=password,
                identity_token=identity_token,
            )
        )
    return hosts


def _secret_payload(secret: Mapping[str, Any], key: str) -> Any:
    data = secret.get("data") or {}
    encoded = data.get(key)
    if not encoded:
        raise CredentialError(f"missing {key}")
    try:
        return json.loads(base64.b64decode(encoded))
    except (binascii.Error, ValueError) as exc:
        raise CredentialError(f"invalid {key}: {exc}") from exc


def hosts_from_secret(secret: Mapping[str, Any]) -> List[RegistryHostCredential]:
    secret_type = secret.get("type")
    if secret_type == SECRET_TYPE_DOCKER_CONFIG_JSON:
        payload = _secret_payload(secret, DOCKER_CONFIG_JSON_KEY)
        auths = payload.get("auths") if isinstance(payload, dict) else None
        if auths is None:
            return []
        if not isinstance(auths, dict):
            raise CredentialError("auths must be an object")
        return hosts_from_auths(auths)
    if secret_type == SECRET_TYPE_DOCKERCFG:
        payload = _secret_payload(secret, DOCKERCFG_KEY)
        if not isinstance(payload, dict):
            raise CredentialError(".dockercfg must be an object")
        return hosts_from_auths(payload)
    raise CredentialError(f"unsupported secret type: {secret_type}")


def _reference_names(refs: Optional[Iterable[Any]]) -> List[str]:
    names: List[str] = []
    for ref in refs or []:
        if isinstance(ref, dict) and ref.get("name"):
            names.append(str(ref["name"]))
    return names


def collect_image_pull_secrets(
    deadline: Deadline,
    kube: KubeClient,
    namespace: str,
    pod_spec: Mapping[str, Any],
) -> List[str]:
    names: Dict[str, None] = dict.fromkeys(_reference_names(pod_spec.get("imagePullSecrets")))

    account_name = pod_spec.get("serviceAccountName") or DEFAULT_SERVICE_ACCOUNT
    try:
        account = kube.get_service_account(namespace, account_name, timeout=deadline.remaining())
    except UpstreamError as exc:
        logger.debug(
            "failed to load service account serviceAccount=%s namespace=%s: %s",
            account_name,
            namespace,
            exc,
        )
        return list(names)
    names.update(dict.fromkeys(_reference_names(account.get("imagePullSecrets"))))
    return list(names)


def resolve_hosts(
    deadline: Deadline,
    namespace: str,
    pod_spec: Optional[Mapping[str, Any]],
    kube: KubeClient,
) -> Optional[List[RegistryHostCredential]]:
    """Return registry credentials for the pod spec, or ``None`` for anonymous access.

    ``None`` is returned when there is nothing to look up or the Kubernetes
    API is unavailable. Failing to read or parse an individual secret is
    logged and skipped; it never fails the call.
    """
    if not namespace or pod_spec is None:
        return None
    if not kube.available:
        logger.debug("kubernetes client unavailable for registry credentials")
        return None

    secret_names = collect_image_pull_secrets(deadline, kube, namespace, pod_spec)
    if not secret_names:
        return None

    hosts: List[RegistryHostCredential] = []
    for name in secret_names:
        try:
            secret = kube.get_secret(namespace, name, timeout=deadline.remaining())
        except UpstreamError as exc:
            logger.warning("failed to load image pull secret secret=%s namespace=%s: %s", name, namespace, exc)
            continue
        try:
            hosts.extend(hosts_from_secret(secret))
        except CredentialError as exc:
            logger.warning("failed to parse image pull secret secret=%s namespace=%s: %s", name, namespace, exc)
    return hosts


__all__ = [
    "RegistryHostCredential",
    "collect_image_pull_secrets",
    "decode_docker_auth",
    "hosts_from_auths",
    "hosts_from_secret",
    "normalise_host",
    "resolve_hosts",
    "validate_host",
]
