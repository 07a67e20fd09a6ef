"""
Ownership marker model.

An ``OwnerReference`` mirrors the Kubernetes ``metav1.OwnerReference``
structure. The shared credentials ConfigMap carries one per contributing
Credential.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class OwnerReference(BaseModel):
    """Ownership marker stored in ``metadata.ownerReferences``."""

    model_config = ConfigDict(populate_by_name=True)

    api_version: str = Field(..., alias="apiVersion")
    kind: str
    name: str
    uid: Optional[str] = None
    controller: bool = False
    block_owner_deletion: bool = Field(default=False, alias="blockOwnerDeletion")

    @property
    def group(self) -> str:
        """API group of the owner; empty for the core group."""
        if "/" not in self.api_version:
            return ""
        return self.api_version.split("/", 1)[0]

    def refers_to_same_object(self, other: "OwnerReference") -> bool:
        """Same API group, kind and name. Versions are ignored."""
        return (
            self.group == other.group
            and self.kind == other.kind
            and self.name == other.name
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OwnerReference":
        return cls.model_validate(data)

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True)
        if data["uid"] is None:
            del data["uid"]
        return data
