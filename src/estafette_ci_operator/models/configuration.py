"""
Operator configuration.

Aggregates the settings the credential controller needs: which namespaces
to converge, the identity of the shared ConfigMap and the Credential API,
the conflict retry policy and observability options.
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator, model_validator


class ControllerConfiguration(BaseModel):
    """
    Main controller configuration.

    The aggregate name and data key are passed to the reconciler rather
    than read from module constants, so tests and multi-tenant setups can
    override them.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    namespaces: List[str] = Field(
        default_factory=lambda: ["default"],
        description="Namespaces whose Credentials are converged"
    )
    aggregate_name: str = Field(
        default="estafette-external-credentials",
        pattern=r"^[a-z0-9]([-a-z0-9.]*[a-z0-9])?$",
        description="Name of the shared credentials ConfigMap"
    )
    data_key: str = Field(
        default="credentials-config.yaml",
        pattern=r"^[-._a-zA-Z0-9]+$",
        description="ConfigMap data key holding the credentials document"
    )
    credential_group: str = Field(
        default="ci.estafette.io",
        description="API group of the Credential resource"
    )
    credential_version: str = Field(
        default="v1",
        description="API version of the Credential resource"
    )
    credential_plural: str = Field(
        default="credentials",
        description="Plural resource name of the Credential resource"
    )
    credential_kind: str = Field(
        default="Credential",
        description="Kind of the Credential resource"
    )
    managed_by: str = Field(
        default="estafette-ci-operator",
        description="Value of the app.kubernetes.io/managed-by label"
    )
    max_conflict_retries: int = Field(
        default=5,
        ge=0,
        le=20,
        description="Retries of the read-modify-write cycle on version conflicts"
    )
    retry_backoff_base: float = Field(
        default=0.1,
        ge=0.0,
        description="Base delay in seconds for conflict retry backoff"
    )
    retry_backoff_max: float = Field(
        default=2.0,
        ge=0.0,
        description="Maximum delay in seconds for conflict retry backoff"
    )
    resync_interval: PositiveInt = Field(
        default=30,
        description="Seconds between full resync passes"
    )
    prune_stale_entries: bool = Field(
        default=True,
        description="Drop entries whose Credential no longer exists"
    )
    merge_duplicate_aggregates: bool = Field(
        default=False,
        description="Merge duplicate aggregates instead of aborting"
    )
    monitoring_port: PositiveInt = Field(
        default=8080,
        description="Port for the Prometheus metrics endpoint"
    )
    log_level: str = Field(
        default="INFO",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    log_format: str = Field(
        default="json",
        pattern=r"^(json|console)$",
        description="Log renderer"
    )
    enable_metrics: bool = Field(
        default=True,
        description="Enable Prometheus metrics"
    )

    @field_validator("namespaces")
    @classmethod
    def validate_namespaces(cls, v: List[str]) -> List[str]:
        """Require at least one namespace and drop duplicates keeping order."""
        if not v:
            raise ValueError("At least one namespace must be configured")
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def validate_backoff(self) -> "ControllerConfiguration":
        if self.retry_backoff_base > self.retry_backoff_max:
            raise ValueError("retry_backoff_base must not exceed retry_backoff_max")
        return self

    @property
    def credential_api_version(self) -> str:
        return f"{self.credential_group}/{self.credential_version}"

    @property
    def managed_by_selector(self) -> str:
        return f"app.kubernetes.io/managed-by={self.managed_by}"
