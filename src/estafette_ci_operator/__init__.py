"""
Estafette CI operator for Kubernetes.

Converges Estafette CI Credential resources into the shared
``estafette-external-credentials`` ConfigMap of each namespace.

This package implements:
- Credential reconciliation with optimistic concurrency retries
- Multi-owner bookkeeping on the shared credentials config map
- A periodic resync controller with Prometheus metrics
- Boundary validation for Credential and TrustedImage manifests
"""

__version__ = "0.1.0"

from .controllers.credential_controller import CredentialController
from .controllers.credential_reconciler import CredentialReconciler
from .models.configuration import ControllerConfiguration
from .models.credential import Credential, NamespacedName, ReconcileOutcome

__all__ = [
    "ControllerConfiguration",
    "Credential",
    "CredentialController",
    "CredentialReconciler",
    "NamespacedName",
    "ReconcileOutcome",
]
