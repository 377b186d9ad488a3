"""Kubernetes API access and namespace scoping."""

from .client import KubeClient, KubernetesClientHandle, UnavailableKubeClient
from .namespaces import NamespaceFilter, is_namespace_disabled, is_workload_disabled
from .selectors import LabelSelector, SelectorError

__all__ = [
    "KubeClient",
    "KubernetesClientHandle",
    "LabelSelector",
    "NamespaceFilter",
    "SelectorError",
    "UnavailableKubeClient",
    "is_namespace_disabled",
    "is_workload_disabled",
]
