"""
Data models for the Estafette CI operator.
"""

from .configuration import ControllerConfiguration
from .credential import (
    Credential,
    CredentialsDocument,
    CredentialSpec,
    CredentialStatus,
    NamespacedName,
    ReconcileOutcome,
)
from .ownership import OwnerReference
from .trusted_image import TrustedImageSpec

__all__ = [
    "ControllerConfiguration",
    "Credential",
    "CredentialsDocument",
    "CredentialSpec",
    "CredentialStatus",
    "NamespacedName",
    "OwnerReference",
    "ReconcileOutcome",
    "TrustedImageSpec",
]
