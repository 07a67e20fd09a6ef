"""
Reverse index from credentials ConfigMaps to Credential reconcile keys.
"""

from typing import Any, Dict, List, Set

import structlog

from ..models.credential import NamespacedName
from .ownership import get_owner_references


class CredentialIndex:
    """
    Index of ConfigMaps by their Credential owners.

    ``index_config_map`` is the index function: it reports the names of
    the Credentials owning a ConfigMap. The controller populates a cache
    per namespace during resync; the reconciler only calls the pure
    filtering methods.
    """

    def __init__(self, credential_group: str, credential_kind: str = "Credential") -> None:
        self.credential_group = credential_group
        self.credential_kind = credential_kind
        self._owners: Dict[str, Dict[str, List[str]]] = {}
        self.logger = structlog.get_logger().bind(component="credential_index")

    def index_config_map(self, config_map: Dict[str, Any]) -> List[str]:
        """Names of the Credentials owning the ConfigMap."""
        return [
            ref.name
            for ref in get_owner_references(config_map)
            if ref.group == self.credential_group and ref.kind == self.credential_kind
        ]

    def is_credential_owned(self, config_map: Dict[str, Any]) -> bool:
        return bool(self.index_config_map(config_map))

    def owned(self, config_maps: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """ConfigMaps with at least one Credential owner, in listing order."""
        return [cm for cm in config_maps if self.is_credential_owned(cm)]

    def populate(self, namespace: str, config_maps: List[Dict[str, Any]]) -> None:
        """Replace the cached owners of a namespace from a ConfigMap listing."""
        owners: Dict[str, List[str]] = {}
        for config_map in config_maps:
            names = self.index_config_map(config_map)
            if names:
                owners[config_map["metadata"]["name"]] = names
        self._owners[namespace] = owners

        self.logger.debug(
            "Credential index populated",
            namespace=namespace,
            config_maps=len(owners)
        )

    def reconcile_keys(self, namespace: str) -> Set[NamespacedName]:
        """Reconcile keys of every Credential recorded as owner in a namespace."""
        return {
            NamespacedName(namespace, name)
            for names in self._owners.get(namespace, {}).values()
            for name in names
        }
