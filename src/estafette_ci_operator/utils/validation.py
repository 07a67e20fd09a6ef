"""
Boundary validation for Credential and TrustedImage manifests.

Credential payloads are schema-free; this module checks only what the
reconciler depends on: valid Kubernetes names, compilable pipeline and
image patterns, and additional properties that flatten cleanly into an
aggregate entry.
"""

import re
from typing import Any, Dict, List

import structlog
from pydantic import ValidationError

from ..models.credential import Credential
from ..models.trusted_image import TrustedImageSpec
from .codec import RESERVED_ENTRY_KEYS


class CredentialValidator:
    """
    Validator for resources handled by the operator.

    Every check returns a list of human readable issues; an empty list
    means the resource is acceptable.
    """

    def __init__(self, max_property_depth: int = 16) -> None:
        self.max_property_depth = max_property_depth
        self.logger = structlog.get_logger().bind(component="credential_validator")

    def validate_kubernetes_name(self, name: str) -> bool:
        """Validate Kubernetes resource name format."""
        if not name:
            return False

        if len(name) > 253:
            return False

        # Must start and end with alphanumeric
        if not (name[0].isalnum() and name[-1].isalnum()):
            return False

        for char in name:
            if not (char.islower() or char.isdigit() or char in "-."):
                return False

        return True

    def validate_pattern(self, field: str, pattern: str) -> List[str]:
        """Whitelist patterns are matched as regular expressions downstream."""
        try:
            re.compile(pattern)
        except re.error as e:
            return [f"{field} is not a valid regular expression: {e}"]
        return []

    def validate_additional_properties(self, properties: Dict[str, Any]) -> List[str]:
        issues = []

        for key in properties:
            if key in RESERVED_ENTRY_KEYS:
                issues.append(f"additionalProperties key '{key}' is reserved and will be ignored")

        issues.extend(self._validate_value("additionalProperties", properties, depth=0))
        return issues

    def _validate_value(self, path: str, value: Any, depth: int) -> List[str]:
        if depth > self.max_property_depth:
            return [f"{path} is nested deeper than {self.max_property_depth} levels"]

        issues = []
        if isinstance(value, dict):
            for key, item in value.items():
                if not isinstance(key, str):
                    issues.append(f"{path} has non-string key {key!r}")
                    continue
                issues.extend(self._validate_value(f"{path}.{key}", item, depth + 1))
        elif isinstance(value, list):
            for index, item in enumerate(value):
                issues.extend(self._validate_value(f"{path}[{index}]", item, depth + 1))
        elif value is not None and not isinstance(value, (str, int, float, bool)):
            issues.append(f"{path} has unsupported value type {type(value).__name__}")
        return issues

    def validate_credential(self, credential: Credential) -> List[str]:
        """
        Validate a credential before its entry is written.

        Args:
            credential: Credential to validate

        Returns:
            List of issues found
        """
        issues = []

        if not self.validate_kubernetes_name(credential.name):
            issues.append(f"Invalid credential name: {credential.name}")

        if credential.spec.whitelisted_pipelines:
            issues.extend(self.validate_pattern(
                "whitelistedPipelines", credential.spec.whitelisted_pipelines
            ))
        if credential.spec.whitelisted_trusted_images:
            issues.extend(self.validate_pattern(
                "whitelistedTrustedImages", credential.spec.whitelisted_trusted_images
            ))

        issues.extend(self.validate_additional_properties(credential.spec.additional_properties))
        return issues

    def validate_manifest(self, manifest: Dict[str, Any]) -> List[str]:
        """
        Validate a Credential or TrustedImage manifest.

        Args:
            manifest: Resource manifest as loaded from YAML

        Returns:
            List of issues found
        """
        if not isinstance(manifest, dict):
            return ["Manifest is not a mapping"]

        kind = manifest.get("kind")
        name = (manifest.get("metadata") or {}).get("name", "")

        try:
            if kind == "Credential":
                resource = dict(manifest)
                resource["metadata"] = {"namespace": "default", **(manifest.get("metadata") or {})}
                return self.validate_credential(Credential.from_resource(resource))

            if kind == "TrustedImage":
                spec = TrustedImageSpec.model_validate(manifest.get("spec") or {})
                issues = []
                if not self.validate_kubernetes_name(name):
                    issues.append(f"Invalid trusted image name: {name}")
                if spec.whitelisted_pipelines:
                    issues.extend(self.validate_pattern("whitelistedPipelines", spec.whitelisted_pipelines))
                return issues
        except ValidationError as e:
            return [
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in e.errors()
            ]

        return [f"Unsupported kind: {kind}"]
