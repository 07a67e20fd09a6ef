"""
Utility modules for the Estafette CI operator.

This package contains the credentials document codec, owner-reference
bookkeeping, the credential index, the Kubernetes client wrapper and
manifest validation.
"""

from .codec import DocumentDecodeError, decode_document, encode_document, entry_for_credential
from .index import CredentialIndex
from .kubernetes_client import ConflictError, KubernetesClient, KubernetesClientError, NotFoundError
from .ownership import OwnershipError, is_owned_by, remove_owner_reference, set_owner_reference
from .validation import CredentialValidator

__all__ = [
    "ConflictError",
    "CredentialIndex",
    "CredentialValidator",
    "DocumentDecodeError",
    "KubernetesClient",
    "KubernetesClientError",
    "NotFoundError",
    "OwnershipError",
    "decode_document",
    "encode_document",
    "entry_for_credential",
    "is_owned_by",
    "remove_owner_reference",
    "set_owner_reference",
]
