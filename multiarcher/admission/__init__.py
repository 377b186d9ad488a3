"""Admission pipeline: platform resolution and toleration patches."""

from .engine import AdmissionDecision, AdmissionEngine, process_admission_review
from .tolerations import apply_tolerations
from .workload import collect_containers, supported_platforms

__all__ = [
    "AdmissionDecision",
    "AdmissionEngine",
    "apply_tolerations",
    "collect_containers",
    "process_admission_review",
    "supported_platforms",
]
