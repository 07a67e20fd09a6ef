"""
Controllers for the Estafette CI operator.

This package contains the credential reconciler and the controller
runtime that drives it.
"""

from .credential_controller import CredentialController
from .credential_reconciler import CredentialReconciler, DuplicateAggregateError, ReconcileError

__all__ = [
    "CredentialController",
    "CredentialReconciler",
    "DuplicateAggregateError",
    "ReconcileError",
]
