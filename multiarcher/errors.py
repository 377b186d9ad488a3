"""Error taxonomy shared by the admission pipeline.

The errors fall into two lanes:

* ``AdmissionError`` subclasses abort the whole admission request. The HTTP
  layer turns them into a 5xx response.
* ``UpstreamError`` subclasses describe registries or the Kubernetes API not
  answering. They never escape the pipeline; callers fold them into a
  conservative outcome (platform unsupported, no credentials).
"""

from __future__ import annotations


class ConfigError(Exception):
    """Raised at startup when configuration cannot be corrected to a default."""


class AdmissionError(Exception):
    """Base class for errors that are fatal to an admission request."""


class InvalidAdmissionRequest(AdmissionError):
    """The review body is not valid JSON or carries no request."""


class UnsupportedKindError(AdmissionError):
    def __init__(self, kind: str) -> None:
        super().__init__(f"got a request for an unsupported kind: {kind}")
        self.kind = kind


class ObjectDecodeError(AdmissionError):
    """The embedded object does not decode into the expected schema."""


class PatchConstructionError(AdmissionError):
    """Serialising the mutated object or diffing it failed."""


class UpstreamError(Exception):
    """Base class for failures of registries and the Kubernetes API."""


class RegistryError(UpstreamError):
    pass


class NotAManifestListError(RegistryError):
    """The image reference resolves to a single-platform manifest."""


class CredentialError(UpstreamError):
    pass


class KubeUnavailableError(UpstreamError):
    """No Kubernetes API client could be initialised for this process."""


class KubeApiError(UpstreamError):
    """A read against the Kubernetes API failed or timed out."""


__all__ = [
    "AdmissionError",
    "ConfigError",
    "CredentialError",
    "InvalidAdmissionRequest",
    "KubeApiError",
    "KubeUnavailableError",
    "NotAManifestListError",
    "ObjectDecodeError",
    "PatchConstructionError",
    "RegistryError",
    "UnsupportedKindError",
    "UpstreamError",
]
