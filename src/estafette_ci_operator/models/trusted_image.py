"""
TrustedImage schema.

The operator does not reconcile TrustedImages; the model exists so that
manifests can be validated alongside Credentials.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TrustedImageSpec(BaseModel):
    """Desired state of a TrustedImage."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, description="Image name")
    type: str = Field(..., min_length=1, description="Image type")
    whitelisted_pipelines: Optional[str] = Field(
        default=None,
        alias="whitelistedPipelines",
        description="Pattern of pipelines allowed to use the image"
    )
    path: str = Field(..., min_length=1, description="Image path")
    run_privileged: bool = Field(default=False, alias="runPrivileged")
    run_docker: bool = Field(default=False, alias="runDocker")
    allow_commands: bool = Field(default=False, alias="allowCommands")
    injected_credential_types: List[str] = Field(
        default_factory=list,
        alias="injectedCredentialTypes",
        description="Credential types injected into the image"
    )

    @field_validator("injected_credential_types")
    @classmethod
    def validate_unique_types(cls, v: List[str]) -> List[str]:
        """Injected credential types form a set."""
        if len(set(v)) != len(v):
            raise ValueError("injectedCredentialTypes must not contain duplicates")
        return v
