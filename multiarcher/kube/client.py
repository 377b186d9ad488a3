from __future__ import annotations

import logging
import os
import threading
from typing import Any, Callable, Dict, Optional, Protocol

import urllib3
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from multiarcher.errors import KubeApiError, KubeUnavailableError

logger = logging.getLogger(__name__)


class KubeClient(Protocol):
    """Read-only slice of the Kubernetes API used by the admission pipeline.

    Objects are returned as JSON-like dicts in the API's own camelCase form.
    ``timeout`` is the caller's remaining deadline in seconds (``None`` for no
    deadline).
    """

    @property
    def available(self) -> bool:
        ...

    def get_secret(self, namespace: str, name: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        ...

    def get_service_account(
        self, namespace: str, name: str, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        ...

    def get_namespace(self, name: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        ...


def load_core_v1() -> client.CoreV1Api:
    try:
        config.load_incluster_config()
    except ConfigException:
        if not os.getenv("KUBECONFIG"):
            raise
        config.load_kube_config()
    return client.CoreV1Api()


class KubernetesClientHandle:
    """Lazily initialised client owned by the process's composition root.

    Initialisation runs at most once. When it fails the error is kept and
    every later call raises ``KubeUnavailableError`` without retrying, until
    the process restarts.
    """

    def __init__(self, loader: Callable[[], Any] = load_core_v1) -> None:
        self._loader = loader
        self._lock = threading.Lock()
        self._initialised = False
        self._core: Any = None
        self._error: Optional[Exception] = None

    def _core_v1(self) -> Any:
        with self._lock:
            if not self._initialised:
                try:
                    self._core = self._loader()
                except (ConfigException, OSError, ValueError) as exc:
                    logger.warning("kubernetes client unavailable: %s", exc)
                    self._error = exc
                self._initialised = True
        if self._error is not None:
            raise KubeUnavailableError(str(self._error)) from self._error
        return self._core

    @property
    def available(self) -> bool:
        try:
            self._core_v1()
        except KubeUnavailableError:
            return False
        return True

    def get_secret(self, namespace: str, name: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        core = self._core_v1()
        return self._read(core, core.read_namespaced_secret, timeout, name, namespace)

    def get_service_account(
        self, namespace: str, name: str, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        core = self._core_v1()
        return self._read(core, core.read_namespaced_service_account, timeout, name, namespace)

    def get_namespace(self, name: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        core = self._core_v1()
        return self._read(core, core.read_namespace, timeout, name)

    @staticmethod
    def _read(core: Any, method: Callable[..., Any], timeout: Optional[float], *args: str) -> Dict[str, Any]:
        if timeout is not None and timeout <= 0:
            raise KubeApiError("request deadline exceeded")
        try:
            obj = method(*args, _request_timeout=timeout)
        except ApiException as exc:
            raise KubeApiError(f"kubernetes API returned {exc.status}: {exc.reason}") from exc
        except urllib3.exceptions.HTTPError as exc:
            raise KubeApiError(f"kubernetes API unreachable: {exc}") from exc
        return core.api_client.sanitize_for_serialization(obj)


class UnavailableKubeClient:
    """Explicit stand-in used when no cluster is reachable."""

    available = False

    def __init__(self, reason: str = "kubernetes client not configured") -> None:
        self.reason = reason

    def get_secret(self, namespace: str, name: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        raise KubeUnavailableError(self.reason)

    def get_service_account(
        self, namespace: str, name: str, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        raise KubeUnavailableError(self.reason)

    def get_namespace(self, name: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        raise KubeUnavailableError(self.reason)


__all__ = ["KubeClient", "KubernetesClientHandle", "UnavailableKubeClient", "load_core_v1"]
