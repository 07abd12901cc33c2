"""Deployment reconciliation against live cluster state."""

from .cluster import ClusterClient, KubectlClusterClient, parse_reason
from .credentials import CephAuthClient, CredentialClient
from .naming import index_to_name, name_to_index
from .reconciler import (
    CleanupResult,
    DaemonClass,
    DeploymentReconciler,
    DeploymentRecord,
    IdentityLocks,
    ReconcileAction,
    ReconcileResult,
    ReconcileState,
)

__all__ = [
    "CephAuthClient",
    "CleanupResult",
    "ClusterClient",
    "CredentialClient",
    "DaemonClass",
    "DeploymentReconciler",
    "DeploymentRecord",
    "IdentityLocks",
    "KubectlClusterClient",
    "ReconcileAction",
    "ReconcileResult",
    "ReconcileState",
    "index_to_name",
    "name_to_index",
    "parse_reason",
]
