"""
Shared test fixtures.

``FakeKubernetesClient`` is an in-memory object store with the same async
interface as ``KubernetesClient``. It enforces resourceVersion checks on
ConfigMap writes and yields to the event loop on every call so concurrent
reconciles interleave.
"""

import asyncio
import copy
import itertools
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from estafette_ci_operator.models.configuration import ControllerConfiguration
from estafette_ci_operator.utils.kubernetes_client import ConflictError, NotFoundError


class FakeKubernetesClient:
    """In-memory stand-in for the Kubernetes API."""

    def __init__(self) -> None:
        self.credentials: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.config_maps: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.writes: List[Tuple[str, str, str]] = []
        self.status_updates: List[Tuple[str, str, Dict[str, Any]]] = []
        self._versions = itertools.count(1)
        self._uids = itertools.count(1)

    def _next_version(self) -> str:
        return str(next(self._versions))

    def add_credential(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        metadata = resource["metadata"]
        metadata.setdefault("uid", f"uid-{next(self._uids)}")
        metadata["resourceVersion"] = self._next_version()
        self.credentials[(metadata["namespace"], metadata["name"])] = copy.deepcopy(resource)
        return resource

    def remove_credential(self, namespace: str, name: str) -> None:
        del self.credentials[(namespace, name)]

    def add_config_map(self, config_map: Dict[str, Any]) -> Dict[str, Any]:
        metadata = config_map["metadata"]
        metadata["resourceVersion"] = self._next_version()
        self.config_maps[(metadata["namespace"], metadata["name"])] = copy.deepcopy(config_map)
        return config_map

    def config_map(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self.config_maps.get((namespace, name)))

    async def get_credential(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        await asyncio.sleep(0)
        return copy.deepcopy(self.credentials.get((namespace, name)))

    async def list_credentials(self, namespace: str) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        return [copy.deepcopy(c) for (ns, _), c in sorted(self.credentials.items()) if ns == namespace]

    async def update_credential_status(self, namespace: str, name: str, status: Dict[str, Any]) -> Dict[str, Any]:
        await asyncio.sleep(0)
        credential = self.credentials.get((namespace, name))
        if credential is None:
            raise NotFoundError(f"credential {namespace}/{name} not found", status=404)
        credential.setdefault("status", {}).update(status)
        self.status_updates.append((namespace, name, status))
        return copy.deepcopy(credential)

    async def list_config_maps(self, namespace: str, label_selector: str) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        key, _, value = label_selector.partition("=")
        return [
            copy.deepcopy(cm)
            for (ns, _), cm in sorted(self.config_maps.items())
            if ns == namespace and (cm["metadata"].get("labels") or {}).get(key) == value
        ]

    async def get_config_map(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        await asyncio.sleep(0)
        return copy.deepcopy(self.config_maps.get((namespace, name)))

    async def create_config_map(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        await asyncio.sleep(0)
        name = body["metadata"]["name"]
        if (namespace, name) in self.config_maps:
            raise ConflictError(f"config map {namespace}/{name} already exists", status=409)
        stored = copy.deepcopy(body)
        stored["metadata"]["resourceVersion"] = self._next_version()
        self.config_maps[(namespace, name)] = stored
        self.writes.append(("create", namespace, name))
        return copy.deepcopy(stored)

    async def replace_config_map(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        await asyncio.sleep(0)
        name = body["metadata"]["name"]
        current = self.config_maps.get((namespace, name))
        if current is None:
            raise NotFoundError(f"config map {namespace}/{name} not found", status=404)
        if current["metadata"]["resourceVersion"] != body["metadata"].get("resourceVersion"):
            raise ConflictError(f"config map {namespace}/{name} was modified", status=409)
        stored = copy.deepcopy(body)
        stored["metadata"]["resourceVersion"] = self._next_version()
        self.config_maps[(namespace, name)] = stored
        self.writes.append(("replace", namespace, name))
        return copy.deepcopy(stored)

    async def delete_config_map(self, namespace: str, name: str, resource_version: str) -> None:
        await asyncio.sleep(0)
        current = self.config_maps.get((namespace, name))
        if current is None:
            return
        if current["metadata"]["resourceVersion"] != resource_version:
            raise ConflictError(f"config map {namespace}/{name} was modified", status=409)
        del self.config_maps[(namespace, name)]
        self.writes.append(("delete", namespace, name))

    async def validate_permissions(self, namespace: str) -> None:
        await asyncio.sleep(0)

    async def close(self) -> None:
        pass

    def get_operation_stats(self) -> Dict[str, int]:
        stats: Dict[str, int] = {}
        for operation, _, _ in self.writes:
            stats[operation] = stats.get(operation, 0) + 1
        return stats


@pytest.fixture
def controller_config() -> ControllerConfiguration:
    """Configuration with immediate conflict retries."""
    return ControllerConfiguration(
        namespaces=["default"],
        retry_backoff_base=0.0,
        retry_backoff_max=0.0,
        enable_metrics=False,
    )


@pytest.fixture
def fake_client() -> FakeKubernetesClient:
    return FakeKubernetesClient()


@pytest.fixture
def make_credential() -> Callable[..., Dict[str, Any]]:
    """Factory for Credential manifests."""

    def _make(name: str,
              type: str = "container-registry",
              namespace: str = "default",
              whitelisted_pipelines: Optional[str] = None,
              whitelisted_trusted_images: Optional[str] = None,
              additional_properties: Optional[Dict[str, Any]] = None,
              uid: Optional[str] = None) -> Dict[str, Any]:
        spec: Dict[str, Any] = {"type": type}
        if whitelisted_pipelines is not None:
            spec["whitelistedPipelines"] = whitelisted_pipelines
        if whitelisted_trusted_images is not None:
            spec["whitelistedTrustedImages"] = whitelisted_trusted_images
        if additional_properties is not None:
            spec["additionalProperties"] = additional_properties

        metadata: Dict[str, Any] = {"name": name, "namespace": namespace}
        if uid is not None:
            metadata["uid"] = uid

        return {
            "apiVersion": "ci.estafette.io/v1",
            "kind": "Credential",
            "metadata": metadata,
            "spec": spec,
        }

    return _make


@pytest.fixture
def cred1(make_credential) -> Dict[str, Any]:
    """Container registry credential used throughout the tests."""
    return make_credential(
        "cred1",
        type="container-registry",
        whitelisted_pipelines="github.com/estafette/.+",
        additional_properties={
            "repository": "estafette",
            "private": False,
            "username": "estafettesvc",
            "password": "supersecretpassword",
        },
        uid="uid-cred1",
    )
