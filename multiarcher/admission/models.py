from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

ADMISSION_API_VERSION = "admission.k8s.io/v1"


class _Model(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class GroupVersionKind(_Model):
    group: str = ""
    version: str = ""
    kind: str = ""


class AdmissionRequest(_Model):
    uid: str = Field(..., description="Identifier echoed back in the response")
    kind: GroupVersionKind = Field(default_factory=GroupVersionKind)
    namespace: str = ""
    name: str = ""
    operation: str = ""
    obj: Optional[Dict[str, Any]] = Field(default=None, alias="object")


class AdmissionResponse(_Model):
    uid: str
    allowed: bool = True
    patch_type: Optional[str] = Field(default=None, alias="patchType")
    patch: Optional[str] = Field(default=None, description="Base64 encoded JSON patch")


class AdmissionReview(_Model):
    api_version: str = Field(default=ADMISSION_API_VERSION, alias="apiVersion")
    kind: str = "AdmissionReview"
    request: Optional[AdmissionRequest] = None
    response: Optional[AdmissionResponse] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"request"})


# Workload schemas. They only validate the fields the pipeline reads; the
# raw object dict is what gets copied and patched, so unknown fields survive.


class ObjectMeta(_Model):
    name: str = ""
    namespace: str = ""
    labels: Optional[Dict[str, str]] = None
    annotations: Optional[Dict[str, str]] = None


class Container(_Model):
    name: str = ""
    image: str = ""


class TolerationSpec(_Model):
    key: str = ""
    operator: str = ""
    value: str = ""
    effect: str = ""
    toleration_seconds: Optional[int] = Field(default=None, alias="tolerationSeconds")


class LocalObjectReference(_Model):
    name: str = ""


class PodSpec(_Model):
    containers: Optional[List[Container]] = None
    init_containers: Optional[List[Container]] = Field(default=None, alias="initContainers")
    ephemeral_containers: Optional[List[Container]] = Field(default=None, alias="ephemeralContainers")
    tolerations: Optional[List[TolerationSpec]] = None
    image_pull_secrets: Optional[List[LocalObjectReference]] = Field(default=None, alias="imagePullSecrets")
    service_account_name: str = Field(default="", alias="serviceAccountName")


class Pod(_Model):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: PodSpec = Field(default_factory=PodSpec)


class PodTemplateSpec(_Model):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: PodSpec = Field(default_factory=PodSpec)


class DaemonSetSpec(_Model):
    template: PodTemplateSpec = Field(default_factory=PodTemplateSpec)


class DaemonSet(_Model):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: DaemonSetSpec = Field(default_factory=DaemonSetSpec)


__all__ = [
    "ADMISSION_API_VERSION",
    "AdmissionRequest",
    "AdmissionResponse",
    "AdmissionReview",
    "Container",
    "DaemonSet",
    "GroupVersionKind",
    "ObjectMeta",
    "Pod",
    "PodSpec",
    "PodTemplateSpec",
    "TolerationSpec",
]
