"""
Kubernetes client wrapper for the Estafette CI operator.

This module wraps the official Kubernetes Python client for the two
resources the credential reconciler touches: Credential custom objects
and the shared credentials ConfigMap. Objects are exchanged as plain
manifest dictionaries and API errors are mapped to typed exceptions.
"""

import asyncio
from typing import Any, Dict, List, Optional

import structlog
from kubernetes import client
from kubernetes.client.rest import ApiException

from ..models.configuration import ControllerConfiguration


class KubernetesClientError(Exception):
    """Raised when a Kubernetes API call fails."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class NotFoundError(KubernetesClientError):
    """Raised when the requested object does not exist."""
    pass


class ConflictError(KubernetesClientError):
    """Raised on a resourceVersion conflict or an AlreadyExists response."""
    pass


def _translate(e: ApiException, action: str) -> KubernetesClientError:
    message = f"{action} failed: {e.status} {e.reason}"
    if e.status == 404:
        return NotFoundError(message, status=e.status)
    if e.status == 409:
        return ConflictError(message, status=e.status)
    return KubernetesClientError(message, status=e.status)


class KubernetesClient:
    """
    Kubernetes client wrapper used by the credential controller.

    Provides:
    - Credential get/list and status updates via CustomObjectsApi
    - ConfigMap list/create/replace/delete via CoreV1Api
    - resourceVersion preconditions on every ConfigMap write
    - Operation counters for monitoring
    """

    def __init__(self, config: ControllerConfiguration, logger: Any = None) -> None:
        """
        Initialize the client wrapper.

        Kubernetes configuration must already be loaded.

        Args:
            config: Controller configuration naming the Credential API
            logger: Structured logger instance
        """
        self.config = config
        base_logger = logger if logger is not None else structlog.get_logger()
        self.logger = base_logger.bind(component="k8s_client")

        self.api_client = client.ApiClient()
        self.v1 = client.CoreV1Api(self.api_client)
        self.custom_objects = client.CustomObjectsApi(self.api_client)

        self._operation_counts: Dict[str, int] = {}

    def _count(self, operation: str) -> None:
        self._operation_counts[operation] = self._operation_counts.get(operation, 0) + 1

    def _to_dict(self, obj: Any) -> Dict[str, Any]:
        return self.api_client.sanitize_for_serialization(obj)

    async def get_credential(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a Credential.

        Returns:
            Credential manifest, or None if it does not exist
        """
        try:
            return await asyncio.to_thread(
                self.custom_objects.get_namespaced_custom_object,
                group=self.config.credential_group,
                version=self.config.credential_version,
                namespace=namespace,
                plural=self.config.credential_plural,
                name=name
            )
        except ApiException as e:
            if e.status == 404:
                return None
            self.logger.error(
                "Kubernetes API error getting credential",
                namespace=namespace,
                credential=name,
                status_code=e.status,
                reason=e.reason
            )
            raise _translate(e, f"get credential {namespace}/{name}") from e

    async def list_credentials(self, namespace: str) -> List[Dict[str, Any]]:
        """List all Credentials in a namespace."""
        try:
            response = await asyncio.to_thread(
                self.custom_objects.list_namespaced_custom_object,
                group=self.config.credential_group,
                version=self.config.credential_version,
                namespace=namespace,
                plural=self.config.credential_plural
            )
            return response.get("items", [])
        except ApiException as e:
            self.logger.error(
                "Kubernetes API error listing credentials",
                namespace=namespace,
                status_code=e.status,
                reason=e.reason
            )
            raise _translate(e, f"list credentials in {namespace}") from e

    async def update_credential_status(self,
                                       namespace: str,
                                       name: str,
                                       status: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge-patch the status subresource of a Credential.

        Raises:
            NotFoundError: If the Credential is gone
        """
        try:
            response = await asyncio.to_thread(
                self.custom_objects.patch_namespaced_custom_object_status,
                group=self.config.credential_group,
                version=self.config.credential_version,
                namespace=namespace,
                plural=self.config.credential_plural,
                name=name,
                body={"status": status}
            )
            self._count("credential_status_update")
            return response
        except ApiException as e:
            if e.status != 404:
                self.logger.error(
                    "Kubernetes API error updating credential status",
                    namespace=namespace,
                    credential=name,
                    status_code=e.status,
                    reason=e.reason
                )
            raise _translate(e, f"update status of credential {namespace}/{name}") from e

    async def list_config_maps(self, namespace: str, label_selector: str) -> List[Dict[str, Any]]:
        """List ConfigMaps matching a label selector."""
        try:
            response = await asyncio.to_thread(
                self.v1.list_namespaced_config_map,
                namespace=namespace,
                label_selector=label_selector
            )
            return [self._to_dict(item) for item in response.items]
        except ApiException as e:
            self.logger.error(
                "Kubernetes API error listing config maps",
                namespace=namespace,
                status_code=e.status,
                reason=e.reason
            )
            raise _translate(e, f"list config maps in {namespace}") from e

    async def get_config_map(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a ConfigMap by name regardless of its labels.

        Returns:
            ConfigMap manifest, or None if it does not exist
        """
        try:
            response = await asyncio.to_thread(
                self.v1.read_namespaced_config_map,
                name=name,
                namespace=namespace
            )
            return self._to_dict(response)
        except ApiException as e:
            if e.status == 404:
                return None
            self.logger.error(
                "Kubernetes API error reading config map",
                namespace=namespace,
                config_map=name,
                status_code=e.status,
                reason=e.reason
            )
            raise _translate(e, f"get config map {namespace}/{name}") from e

    async def create_config_map(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a ConfigMap.

        Raises:
            ConflictError: If a ConfigMap with the same name exists
        """
        try:
            response = await asyncio.to_thread(
                self.v1.create_namespaced_config_map, namespace=namespace, body=body
            )
            self._count("config_map_create")

            self.logger.info(
                "ConfigMap created",
                namespace=namespace,
                config_map=response.metadata.name,
                resource_version=response.metadata.resource_version
            )
            return self._to_dict(response)
        except ApiException as e:
            self.logger.warning(
                "Kubernetes API error creating config map",
                namespace=namespace,
                status_code=e.status,
                reason=e.reason
            )
            raise _translate(e, f"create config map in {namespace}") from e

    async def replace_config_map(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Replace a ConfigMap.

        The body must carry the ``metadata.resourceVersion`` that was read;
        the API server rejects the write if the object changed since.

        Raises:
            ConflictError: If the resourceVersion is stale
        """
        name = body["metadata"]["name"]
        if not body["metadata"].get("resourceVersion"):
            raise KubernetesClientError(f"Refusing to replace config map {name} without resourceVersion")

        try:
            response = await asyncio.to_thread(
                self.v1.replace_namespaced_config_map, name=name, namespace=namespace, body=body
            )
            self._count("config_map_replace")

            self.logger.info(
                "ConfigMap replaced",
                namespace=namespace,
                config_map=name,
                resource_version=response.metadata.resource_version
            )
            return self._to_dict(response)
        except ApiException as e:
            self.logger.warning(
                "Kubernetes API error replacing config map",
                namespace=namespace,
                config_map=name,
                status_code=e.status,
                reason=e.reason
            )
            raise _translate(e, f"replace config map {namespace}/{name}") from e

    async def delete_config_map(self, namespace: str, name: str, resource_version: str) -> None:
        """
        Delete a ConfigMap if it still has the given resourceVersion.

        A ConfigMap that is already gone counts as deleted.

        Raises:
            ConflictError: If the ConfigMap changed since it was read
        """
        try:
            await asyncio.to_thread(
                self.v1.delete_namespaced_config_map,
                name=name,
                namespace=namespace,
                body=client.V1DeleteOptions(
                    preconditions=client.V1Preconditions(resource_version=resource_version)
                )
            )
            self._count("config_map_delete")
            self.logger.info("ConfigMap deleted", namespace=namespace, config_map=name)
        except ApiException as e:
            if e.status == 404:
                self.logger.info("ConfigMap not found (already deleted)", namespace=namespace, config_map=name)
                return
            self.logger.warning(
                "Kubernetes API error deleting config map",
                namespace=namespace,
                config_map=name,
                status_code=e.status,
                reason=e.reason
            )
            raise _translate(e, f"delete config map {namespace}/{name}") from e

    async def validate_permissions(self, namespace: str) -> None:
        """
        Check that Credentials and ConfigMaps can be listed in a namespace.

        Raises:
            KubernetesClientError: If access is denied
        """
        try:
            await asyncio.to_thread(self.v1.list_namespaced_config_map, namespace=namespace, limit=1)
            await asyncio.to_thread(
                self.custom_objects.list_namespaced_custom_object,
                group=self.config.credential_group,
                version=self.config.credential_version,
                namespace=namespace,
                plural=self.config.credential_plural,
                limit=1
            )
        except ApiException as e:
            self.logger.error(
                "Kubernetes permission validation failed",
                namespace=namespace,
                status_code=e.status,
                reason=e.reason
            )
            raise _translate(e, f"permission check in {namespace}") from e

        self.logger.info("Kubernetes permissions validated", namespace=namespace)

    async def close(self) -> None:
        """Close the underlying API client."""
        self.logger.info("Kubernetes client closing", operation_counts=self._operation_counts)
        self.api_client.close()

    def get_operation_stats(self) -> Dict[str, int]:
        """Get operation statistics for monitoring."""
        return self._operation_counts.copy()
