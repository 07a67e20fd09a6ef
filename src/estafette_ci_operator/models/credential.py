"""
Credential models and the aggregate credentials document.

This module defines the Credential custom resource as seen by the operator,
the reconcile key type and the in-memory form of the document stored in the
shared ``estafette-external-credentials`` ConfigMap.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, JsonValue, field_validator


class NamespacedName(NamedTuple):
    """Reconcile key identifying a Credential."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class ReconcileOutcome(str, Enum):
    """
    Result of a single reconcile call.

    Used for metrics labels and by callers that want to know which
    branch of the convergence algorithm ran.
    """

    CREATED = "created"       # Aggregate created with this credential
    UPDATED = "updated"       # Entry upserted into existing aggregate
    UNCHANGED = "unchanged"   # Nothing to write
    PRUNED = "pruned"         # Entry removed, aggregate kept
    DELETED = "deleted"       # Last entry removed, aggregate deleted


class CredentialSpec(BaseModel):
    """
    Desired state of a Credential.

    ``additional_properties`` is a schema-free payload; it is flattened
    into the credential's entry in the aggregate document.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(
        ...,
        min_length=1,
        description="Credential type, e.g. container-registry"
    )
    whitelisted_pipelines: Optional[str] = Field(
        default=None,
        alias="whitelistedPipelines",
        description="Pattern of pipelines allowed to use the credential"
    )
    whitelisted_trusted_images: Optional[str] = Field(
        default=None,
        alias="whitelistedTrustedImages",
        description="Pattern of trusted images allowed to use the credential"
    )
    additional_properties: Dict[str, JsonValue] = Field(
        default_factory=dict,
        alias="additionalProperties",
        description="Open map of credential specific values"
    )


class CredentialStatus(BaseModel):
    """Observed state of a Credential, written only by the reconciler."""

    model_config = ConfigDict(populate_by_name=True)

    config_map: str = Field(
        default="",
        alias="configMap",
        description="Name of the ConfigMap holding this credential's entry"
    )


class Credential(BaseModel):
    """Credential resource with the metadata the reconciler relies on."""

    model_config = ConfigDict(populate_by_name=True)

    api_version: str = Field(default="ci.estafette.io/v1", alias="apiVersion")
    kind: str = Field(default="Credential")
    name: str
    namespace: str
    uid: Optional[str] = None
    resource_version: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    spec: CredentialSpec
    status: CredentialStatus = Field(default_factory=CredentialStatus)

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> "Credential":
        """Build a Credential from a custom object manifest."""
        metadata = resource.get("metadata") or {}
        return cls(
            api_version=resource.get("apiVersion", "ci.estafette.io/v1"),
            kind=resource.get("kind", "Credential"),
            name=metadata.get("name"),
            namespace=metadata.get("namespace"),
            uid=metadata.get("uid"),
            resource_version=metadata.get("resourceVersion"),
            labels=metadata.get("labels") or {},
            spec=CredentialSpec.model_validate(resource.get("spec") or {}),
            status=CredentialStatus.model_validate(resource.get("status") or {}),
        )

    @property
    def key(self) -> NamespacedName:
        return NamespacedName(self.namespace, self.name)


class CredentialsDocument(BaseModel):
    """
    Aggregate document stored in the shared ConfigMap.

    Entries are flat maps keyed by ``name``. Order is significant and
    preserved by both upsert and prune.
    """

    credentials: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("credentials")
    @classmethod
    def validate_entries(cls, v: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Every entry needs a string name and names must be unique."""
        seen = set()
        for entry in v:
            name = entry.get("name")
            if not isinstance(name, str) or not name:
                raise ValueError("Every credential entry must have a non-empty string name")
            if name in seen:
                raise ValueError(f"Duplicate credential entry: {name}")
            seen.add(name)
        return v

    def names(self) -> List[str]:
        return [entry["name"] for entry in self.credentials]

    def find(self, name: str) -> Optional[Dict[str, Any]]:
        for entry in self.credentials:
            if entry.get("name") == name:
                return entry
        return None

    def upsert(self, entry: Dict[str, Any]) -> bool:
        """
        Insert or replace an entry by name.

        An existing entry keeps its position; a new one is appended.

        Returns:
            True if the document changed
        """
        for index, existing in enumerate(self.credentials):
            if existing.get("name") == entry["name"]:
                if existing == entry:
                    return False
                self.credentials[index] = entry
                return True

        self.credentials.append(entry)
        return True

    def prune(self, name: str) -> bool:
        """
        Remove the entry with the given name.

        Returns:
            True if an entry was removed
        """
        for index, existing in enumerate(self.credentials):
            if existing.get("name") == name:
                del self.credentials[index]
                return True
        return False

    def is_empty(self) -> bool:
        return not self.credentials
