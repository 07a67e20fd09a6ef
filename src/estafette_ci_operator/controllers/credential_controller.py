"""
Credential controller runtime.

Loads Kubernetes configuration, starts the metrics endpoint and runs a
periodic resync loop that feeds every known reconcile key of the
configured namespaces to the credential reconciler.
"""

import asyncio
from typing import Any, Dict, List, Optional

import structlog
from kubernetes import config as kube_config
from prometheus_client import Counter, start_http_server

from ..models.configuration import ControllerConfiguration
from ..models.credential import NamespacedName
from ..utils.codec import DocumentDecodeError
from ..utils.index import CredentialIndex
from ..utils.kubernetes_client import KubernetesClient, KubernetesClientError
from ..utils.ownership import OwnershipError
from .credential_reconciler import CredentialReconciler, ReconcileError


RESYNC_PASSES = Counter(
    "estafette_credential_resync_total",
    "Resync passes by result",
    ["namespace", "result"]
)


class CredentialController:
    """
    Drives the credential reconciler for a set of namespaces.

    Each resync pass lists the Credentials of a namespace, refreshes the
    credential index from the credentials config maps and reconciles the
    union of live Credentials and recorded owners, so deletions are
    picked up as well.
    """

    def __init__(self,
                 config: ControllerConfiguration,
                 k8s_client: Optional[KubernetesClient] = None) -> None:
        """
        Initialize the controller.

        Args:
            config: Controller configuration
            k8s_client: Pre-built client; created from kubeconfig on start when omitted
        """
        self.config = config
        self.logger = structlog.get_logger().bind(
            component="credential_controller",
            namespaces=config.namespaces
        )

        self.k8s_client = k8s_client
        self.index = CredentialIndex(config.credential_group, config.credential_kind)
        self.reconciler: Optional[CredentialReconciler] = None
        if k8s_client is not None:
            self.reconciler = CredentialReconciler(config, k8s_client, self.index, self.logger)

        self._running = False
        self._shutdown_event = asyncio.Event()

        self.logger.info(
            "Credential controller initialized",
            aggregate_name=config.aggregate_name,
            resync_interval=config.resync_interval
        )

    async def start(self) -> None:
        """
        Start the controller and block until ``stop`` is called.

        Raises:
            RuntimeError: If the controller is already running
            ConnectionError: If the Kubernetes API is not reachable
        """
        if self._running:
            raise RuntimeError("Controller is already running")

        self.logger.info("Starting credential controller")

        try:
            await self.initialize()

            if self.config.enable_metrics:
                start_http_server(self.config.monitoring_port)
                self.logger.info("Metrics server started", port=self.config.monitoring_port)

            self._running = True
            self.logger.info("Credential controller started successfully")

            await self._control_loop()
        except Exception as e:
            self.logger.error("Failed to run controller", error=str(e))
            raise
        finally:
            self._running = False

    async def stop(self) -> None:
        """Signal the control loop to exit and release the client."""
        self.logger.info("Stopping credential controller")
        self._shutdown_event.set()

        if self.k8s_client:
            await self.k8s_client.close()

        self.logger.info("Credential controller stopped")

    async def initialize(self) -> None:
        """Create the Kubernetes client if needed and check access."""
        if self.k8s_client is None:
            try:
                try:
                    kube_config.load_incluster_config()
                    self.logger.info("Loaded in-cluster Kubernetes configuration")
                except kube_config.ConfigException:
                    kube_config.load_kube_config()
                    self.logger.info("Loaded local Kubernetes configuration")
            except Exception as e:
                self.logger.error("Failed to load Kubernetes configuration", error=str(e))
                raise ConnectionError(f"Kubernetes initialization failed: {e}") from e

            self.k8s_client = KubernetesClient(self.config, logger=self.logger)
            self.reconciler = CredentialReconciler(self.config, self.k8s_client, self.index, self.logger)

        for namespace in self.config.namespaces:
            try:
                await self.k8s_client.validate_permissions(namespace)
            except KubernetesClientError as e:
                raise ConnectionError(f"Kubernetes initialization failed: {e}") from e

    async def _control_loop(self) -> None:
        """Resync every ``resync_interval`` seconds until shutdown."""
        self.logger.info("Starting resync loop")

        while not self._shutdown_event.is_set():
            try:
                await self.resync()
            except Exception as e:
                self.logger.error("Error in resync loop", error=str(e))

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.config.resync_interval)
            except asyncio.TimeoutError:
                pass

    async def resync(self, namespaces: Optional[List[str]] = None) -> Dict[str, Dict[str, int]]:
        """
        Reconcile all known keys of the given namespaces concurrently.

        Returns:
            Per namespace, the number of reconciles per outcome
        """
        namespaces = namespaces or self.config.namespaces
        results = await asyncio.gather(
            *(self.resync_namespace(namespace) for namespace in namespaces),
            return_exceptions=True
        )

        summaries: Dict[str, Dict[str, int]] = {}
        for namespace, result in zip(namespaces, results):
            if isinstance(result, BaseException):
                self.logger.error("Resync of namespace failed", namespace=namespace, error=str(result))
                RESYNC_PASSES.labels(namespace=namespace, result="failure").inc()
                summaries[namespace] = {"list_error": 1}
            else:
                RESYNC_PASSES.labels(namespace=namespace, result="success").inc()
                summaries[namespace] = result
        return summaries

    async def resync_namespace(self, namespace: str) -> Dict[str, int]:
        """Reconcile every live and every recorded Credential of a namespace."""
        if self.reconciler is None:
            raise RuntimeError("Controller is not initialized")

        credentials = await self.k8s_client.list_credentials(namespace)
        config_maps = await self.k8s_client.list_config_maps(namespace, self.config.managed_by_selector)
        self.index.populate(namespace, config_maps)

        keys = {NamespacedName(namespace, item["metadata"]["name"]) for item in credentials}
        keys |= self.index.reconcile_keys(namespace)

        summary: Dict[str, int] = {}
        for key in sorted(keys):
            outcome = await self.reconcile(key)
            summary[outcome] = summary.get(outcome, 0) + 1

        self.logger.info("Namespace resynced", namespace=namespace, keys=len(keys), summary=summary)
        return summary

    async def reconcile(self, key: NamespacedName) -> str:
        """
        Reconcile a single key, logging failures instead of raising.

        Returns:
            The outcome value, or ``error``
        """
        if self.reconciler is None:
            raise RuntimeError("Controller is not initialized")

        try:
            outcome = await self.reconciler.reconcile(key)
            return outcome.value
        except (ReconcileError, DocumentDecodeError, KubernetesClientError, OwnershipError) as e:
            self.logger.error(
                "Failed to reconcile credential",
                credential=str(key),
                error_type=type(e).__name__,
                error=str(e)
            )
            return "error"

    def get_status(self) -> Dict[str, Any]:
        """Current controller state for diagnostics."""
        return {
            "running": self._running,
            "namespaces": self.config.namespaces,
            "aggregate_name": self.config.aggregate_name,
            "indexed_owners": {
                namespace: sorted(key.name for key in self.index.reconcile_keys(namespace))
                for namespace in self.config.namespaces
            },
            "operation_counts": self.k8s_client.get_operation_stats() if self.k8s_client else {},
        }
