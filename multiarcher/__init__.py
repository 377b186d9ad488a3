"""Mutating admission webhook that tolerates workloads onto multi-arch nodes."""

__version__ = "0.1.0"
