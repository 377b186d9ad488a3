"""Admission decision pipeline for Pods and DaemonSets.

Every successfully processed request is allowed; the webhook only ever adds
tolerations. A JSON patch is attached only when at least one configured
platform is supported by every container image of the workload.
"""

from __future__ import annotations

import base64
import copy
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type

import jsonpatch
from pydantic import BaseModel, ValidationError

from multiarcher.cache.store import PlatformSupportCache
from multiarcher.common.deadline import Deadline
from multiarcher.config.tolerations import PlatformTolerationConfig
from multiarcher.errors import (
    InvalidAdmissionRequest,
    ObjectDecodeError,
    PatchConstructionError,
    UnsupportedKindError,
)
from multiarcher.kube.client import KubeClient, UnavailableKubeClient
from multiarcher.kube.namespaces import (
    NamespaceFilter,
    fetch_namespace,
    has_disabled_annotation,
    is_workload_disabled,
)
from multiarcher.registry.checker import ManifestInspector, ManifestPlatformChecker
from multiarcher.registry.credentials import resolve_hosts
from multiarcher.registry.manifests import RegistryManifestInspector

from .models import AdmissionRequest, AdmissionResponse, AdmissionReview, DaemonSet, Pod
from .tolerations import add_tolerations_to_pod_spec
from .workload import collect_containers, supported_platforms

logger = logging.getLogger(__name__)

KIND_POD = "Pod"
KIND_DAEMONSET = "DaemonSet"
PATCH_TYPE_JSON = "JSONPatch"

_SCHEMAS: Dict[str, Type[BaseModel]] = {KIND_POD: Pod, KIND_DAEMONSET: DaemonSet}


@dataclass(frozen=True)
class AdmissionDecision:
    uid: str
    allowed: bool = True
    patch_type: Optional[str] = None
    patch: Optional[bytes] = None

    def to_response(self) -> AdmissionResponse:
        encoded = base64.b64encode(self.patch).decode("ascii") if self.patch is not None else None
        return AdmissionResponse(uid=self.uid, allowed=self.allowed, patch_type=self.patch_type, patch=encoded)


def decode_review(body: bytes) -> AdmissionReview:
    try:
        review = AdmissionReview.model_validate_json(body)
    except ValidationError as exc:
        logger.error("failed to unmarshal request body: %s", exc)
        raise InvalidAdmissionRequest(f"failed to decode admission review: {exc}") from exc
    if review.request is None:
        logger.error("invalid admission request: no request in review")
        raise InvalidAdmissionRequest("got an invalid admission request")
    return review


def pod_spec_of(obj: Dict[str, Any], kind: str) -> Dict[str, Any]:
    """Locate the pod spec of a Pod or DaemonSet, creating missing levels."""
    holder = obj
    if kind == KIND_DAEMONSET:
        holder = holder.setdefault("spec", {}).setdefault("template", {})
    return holder.setdefault("spec", {})


def build_patch(original: Dict[str, Any], modified: Dict[str, Any]) -> bytes:
    try:
        patch = jsonpatch.make_patch(original, modified)
        return json.dumps(patch.patch, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError, jsonpatch.JsonPatchException) as exc:
        logger.error("failed to create patch: %s", exc)
        raise PatchConstructionError(f"failed to create patch: {exc}") from exc


class AdmissionEngine:
    def __init__(
        self,
        cache: PlatformSupportCache,
        config: PlatformTolerationConfig,
        inspector: Optional[ManifestInspector] = None,
        kube: Optional[KubeClient] = None,
        namespace_filter: Optional[NamespaceFilter] = None,
        checker: Optional[ManifestPlatformChecker] = None,
    ) -> None:
        self.config = config
        self.checker = checker or ManifestPlatformChecker(cache, inspector or RegistryManifestInspector())
        self.kube: KubeClient = kube if kube is not None else UnavailableKubeClient()
        self.namespace_filter = namespace_filter or NamespaceFilter()

    def process(self, deadline: Deadline, body: bytes) -> AdmissionReview:
        review = decode_review(body)
        decision = self.decide(deadline, review.request)
        return AdmissionReview(api_version=review.api_version, kind=review.kind, response=decision.to_response())

    def decide(self, deadline: Deadline, request: AdmissionRequest) -> AdmissionDecision:
        kind = request.kind.kind
        schema = _SCHEMAS.get(kind)
        if schema is None:
            error = UnsupportedKindError(kind)
            logger.error("invalid request kind: %s", error)
            raise error

        original = self._decode_object(request, kind, schema)
        metadata = original.get("metadata") or {}
        # the request namespace is authoritative; the object's may be empty on create
        namespace = request.namespace or str(metadata.get("namespace") or "")
        allow = AdmissionDecision(uid=request.uid)

        if self._should_skip(deadline, namespace, original):
            return allow

        modified = copy.deepcopy(original)
        pod_spec = pod_spec_of(modified, kind)
        hosts = resolve_hosts(deadline, namespace, pod_spec, self.kube)
        platforms = supported_platforms(deadline, self.checker, collect_containers(pod_spec), hosts, self.config)
        if not platforms:
            return allow

        add_tolerations_to_pod_spec(self.config, pod_spec, platforms)
        patch = build_patch(original, modified)
        logger.info(
            "patching %s name=%s namespace=%s platforms=%s",
            kind,
            metadata.get("name") or request.name,
            namespace,
            ",".join(platforms),
        )
        return AdmissionDecision(uid=request.uid, allowed=True, patch_type=PATCH_TYPE_JSON, patch=patch)

    def _decode_object(self, request: AdmissionRequest, kind: str, schema: Type[BaseModel]) -> Dict[str, Any]:
        obj = request.obj
        if obj is None:
            logger.error("failed to unmarshal %s: request has no object", kind.lower())
            raise ObjectDecodeError(f"admission request for {kind} has no object")
        try:
            schema.model_validate(obj)
        except ValidationError as exc:
            logger.error("failed to unmarshal %s: %s", kind.lower(), exc)
            raise ObjectDecodeError(f"failed to decode {kind}: {exc}") from exc
        return obj

    def _should_skip(self, deadline: Deadline, namespace: str, obj: Dict[str, Any]) -> bool:
        if is_workload_disabled(obj):
            logger.info("skipping workload with disabled annotation namespace=%s", namespace)
            return True
        if not namespace:
            return False
        if not self.namespace_filter.should_process_name(namespace):
            return True

        namespace_obj = fetch_namespace(deadline, namespace, self.kube)
        if namespace_obj is None:
            return False
        if not self.namespace_filter.should_process(namespace_obj):
            return True
        if has_disabled_annotation(namespace_obj.get("metadata")):
            logger.info("skipping namespace with disabled annotation namespace=%s", namespace)
            return True
        return False


def process_admission_review(
    deadline: Deadline,
    cache: PlatformSupportCache,
    config: PlatformTolerationConfig,
    body: bytes,
    *,
    engine: Optional[AdmissionEngine] = None,
) -> AdmissionReview:
    """Decide one admission review; raises ``AdmissionError`` with no response on failure."""
    engine = engine or AdmissionEngine(cache, config)
    return engine.process(deadline, body)


__all__ = [
    "AdmissionDecision",
    "AdmissionEngine",
    "KIND_DAEMONSET",
    "KIND_POD",
    "PATCH_TYPE_JSON",
    "build_patch",
    "decode_review",
    "pod_spec_of",
    "process_admission_review",
]
