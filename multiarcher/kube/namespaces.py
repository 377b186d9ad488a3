"""Namespace scoping and opt-out annotations for admitted workloads."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Mapping, Optional

from multiarcher.common.deadline import Deadline
from multiarcher.errors import UpstreamError

from .client import KubeClient
from .selectors import LabelSelector, SelectorError

logger = logging.getLogger(__name__)

DISABLED_ANNOTATION = "k8smultiarcher.programmerq.io/disabled"


@dataclass(frozen=True)
class NamespaceFilter:
    selector: LabelSelector = field(default_factory=LabelSelector)
    ignored: FrozenSet[str] = frozenset()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "NamespaceFilter":
        env = os.environ if environ is None else environ

        selector = LabelSelector()
        raw_selector = env.get("NAMESPACE_SELECTOR", "")
        if raw_selector:
            try:
                selector = LabelSelector.parse(raw_selector)
                logger.info("loaded namespace selector %s", raw_selector)
            except SelectorError as exc:
                logger.error("failed to parse NAMESPACE_SELECTOR %r, ignoring: %s", raw_selector, exc)

        raw_ignored = env.get("NAMESPACES_TO_IGNORE", "")
        ignored = frozenset(name.strip() for name in raw_ignored.split(",") if name.strip())
        if ignored:
            logger.info("loaded %d namespace(s) to ignore: %s", len(ignored), raw_ignored)
        return cls(selector=selector, ignored=ignored)

    def should_process_name(self, name: str) -> bool:
        if name in self.ignored:
            logger.debug("skipping namespace due to ignore list namespace=%s", name)
            return False
        return True

    def should_process(self, namespace: Optional[Mapping[str, Any]]) -> bool:
        if namespace is None:
            return True
        metadata = namespace.get("metadata") or {}
        if not self.should_process_name(str(metadata.get("name") or "")):
            return False
        if not self.selector.empty and not self.selector.matches(metadata.get("labels")):
            logger.debug("skipping namespace due to selector mismatch namespace=%s", metadata.get("name"))
            return False
        return True


def has_disabled_annotation(metadata: Optional[Mapping[str, Any]]) -> bool:
    annotations = (metadata or {}).get("annotations") or {}
    return annotations.get(DISABLED_ANNOTATION) == "true"


def fetch_namespace(deadline: Deadline, namespace: str, kube: KubeClient) -> Optional[Dict[str, Any]]:
    """Read the Namespace object, or ``None`` when it cannot be read."""
    if not namespace:
        return None
    if not kube.available:
        logger.debug("kubernetes client unavailable for namespace check namespace=%s", namespace)
        return None
    try:
        return kube.get_namespace(namespace, timeout=deadline.remaining())
    except UpstreamError as exc:
        logger.warning("failed to get namespace namespace=%s: %s", namespace, exc)
        return None


def is_namespace_disabled(deadline: Deadline, namespace: str, kube: KubeClient) -> bool:
    obj = fetch_namespace(deadline, namespace, kube)
    if obj is None:
        return False
    return has_disabled_annotation(obj.get("metadata"))


def is_workload_disabled(obj: Mapping[str, Any]) -> bool:
    if has_disabled_annotation(obj.get("metadata")):
        return True
    template = (obj.get("spec") or {}).get("template") or {}
    return has_disabled_annotation(template.get("metadata"))


__all__ = [
    "DISABLED_ANNOTATION",
    "fetch_namespace",
    "NamespaceFilter",
    "has_disabled_annotation",
    "is_namespace_disabled",
    "is_workload_disabled",
]
