"""Reconcilers for join token requests and control plane status."""

from .controlplane import (
    ControlPlaneStatusReconciler,
    compute_status,
    lowest_version,
    probe_readiness,
    version_matches,
)
from .jointoken import FINALIZER, JoinTokenRequestReconciler, generate_secret

__all__ = [
    'ControlPlaneStatusReconciler',
    'FINALIZER',
    'JoinTokenRequestReconciler',
    'compute_status',
    'generate_secret',
    'lowest_version',
    'probe_readiness',
    'version_matches',
]
