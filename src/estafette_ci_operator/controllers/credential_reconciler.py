"""
Credential reconciler.

Converges the shared credentials ConfigMap of a namespace so that it holds
exactly one entry, and one owner reference, per live Credential. The
read-modify-write cycle on the ConfigMap is optimistic: every write carries
the resourceVersion that was read and the whole cycle is retried on a
version conflict.
"""

import asyncio
import random
import time
from typing import Any, Dict, List, Optional, Set, Tuple

import structlog
from prometheus_client import Counter, Gauge, Histogram
from pydantic import ValidationError

from ..models.configuration import ControllerConfiguration
from ..models.credential import (
    Credential,
    CredentialsDocument,
    NamespacedName,
    ReconcileOutcome,
)
from ..utils.codec import decode_document, encode_document, entry_for_credential, merge_documents
from ..utils.index import CredentialIndex
from ..utils.kubernetes_client import ConflictError, KubernetesClient, NotFoundError
from ..utils.ownership import (
    get_owner_references,
    is_owned_by,
    owner_reference_for,
    remove_owner_reference,
    set_owner_reference,
)
from ..utils.validation import CredentialValidator


RECONCILE_OPERATIONS = Counter(
    "estafette_credential_reconcile_total",
    "Credential reconciliations by outcome",
    ["outcome"]
)
RECONCILE_ERRORS = Counter(
    "estafette_credential_reconcile_errors_total",
    "Failed credential reconciliations",
    ["reason"]
)
CONFLICT_RETRIES = Counter(
    "estafette_credential_conflict_retries_total",
    "Retries of the credentials config map read-modify-write cycle"
)
INVARIANT_VIOLATIONS = Counter(
    "estafette_credential_invariant_violations_total",
    "Namespaces found with more than one credentials config map",
    ["namespace"]
)
AGGREGATE_ENTRIES = Gauge(
    "estafette_credential_config_map_entries",
    "Number of entries in the credentials config map",
    ["namespace"]
)
RECONCILE_DURATION = Histogram(
    "estafette_credential_reconcile_duration_seconds",
    "Credential reconcile duration in seconds"
)


class ReconcileError(Exception):
    """Raised when a credential cannot be reconciled."""
    pass


class DuplicateAggregateError(ReconcileError):
    """Raised when a namespace holds more than one credentials config map."""
    pass


class CredentialReconciler:
    """
    Reconciles Credential resources into the shared credentials ConfigMap.

    Branches per reconcile key:
    - credential present, no config map: create it with a single entry
    - credential present, config map found: upsert the entry and owner reference
    - credential gone, config map found: prune the entry, delete the config
      map once it is empty
    """

    def __init__(self,
                 config: ControllerConfiguration,
                 k8s_client: KubernetesClient,
                 index: Optional[CredentialIndex] = None,
                 logger: Any = None) -> None:
        """
        Initialize the reconciler.

        Args:
            config: Controller configuration naming the aggregate and the Credential API
            k8s_client: Client used for all reads and writes
            index: Index identifying credential owned config maps
            logger: Structured logger instance
        """
        self.config = config
        self.k8s_client = k8s_client
        self.index = index or CredentialIndex(config.credential_group, config.credential_kind)
        self.validator = CredentialValidator()

        base_logger = logger if logger is not None else structlog.get_logger()
        self.logger = base_logger.bind(component="credential_reconciler")

    async def reconcile(self, key: NamespacedName) -> ReconcileOutcome:
        """
        Converge the credentials config map for one credential.

        Args:
            key: Namespace and name of the credential

        Returns:
            Outcome of the reconciliation

        Raises:
            ReconcileError: If conflicts persist after all retries, the
                credential is malformed or the namespace holds duplicate
                config maps
            DocumentDecodeError: If the config map content is malformed
            KubernetesClientError: If a Kubernetes API call fails
        """
        log = self.logger.bind(credential=str(key))
        started = time.monotonic()
        attempt = 0

        try:
            while True:
                try:
                    outcome = await self._reconcile_once(key, log)
                except ConflictError as e:
                    if attempt >= self.config.max_conflict_retries:
                        log.error(
                            "Giving up after repeated version conflicts",
                            attempts=attempt + 1,
                            error=str(e)
                        )
                        raise ReconcileError(
                            f"Reconcile of {key} failed after {attempt + 1} attempts: {e}"
                        ) from e

                    delay = self._backoff_delay(attempt)
                    attempt += 1
                    CONFLICT_RETRIES.inc()
                    log.info(
                        "Version conflict on credentials config map, retrying",
                        attempt=attempt,
                        delay=round(delay, 3),
                        error=str(e)
                    )
                    await asyncio.sleep(delay)
                    continue

                RECONCILE_OPERATIONS.labels(outcome=outcome.value).inc()
                log.debug("Credential reconciled", outcome=outcome.value, attempts=attempt + 1)
                return outcome

        except Exception as e:
            RECONCILE_ERRORS.labels(reason=type(e).__name__).inc()
            raise
        finally:
            RECONCILE_DURATION.observe(time.monotonic() - started)

    def _backoff_delay(self, attempt: int) -> float:
        delay = min(self.config.retry_backoff_base * (2 ** attempt), self.config.retry_backoff_max)
        return delay * (0.5 + random.random())

    async def _reconcile_once(self, key: NamespacedName, log: Any) -> ReconcileOutcome:
        """One fetch-decode-mutate-encode-write pass."""
        resource = await self.k8s_client.get_credential(key.namespace, key.name)
        try:
            credential = Credential.from_resource(resource) if resource is not None else None
        except ValidationError as e:
            raise ReconcileError(f"Credential {key} is malformed: {e}") from e

        if credential is not None:
            issues = self.validator.validate_credential(credential)
            if issues:
                log.warning("Credential has validation issues", issues=issues)

        aggregate, duplicates = await self._locate_aggregate(key.namespace, log)
        live_names = await self._live_credential_names(key, credential)

        if credential is None:
            if aggregate is None:
                log.debug("Credential and credentials config map are both absent")
                return ReconcileOutcome.UNCHANGED
            outcome = await self._remove_credential(aggregate, key, live_names, bool(duplicates), log)
        elif aggregate is None:
            outcome = await self._create_aggregate(credential, log)
        else:
            outcome = await self._update_aggregate(aggregate, credential, live_names, bool(duplicates), log)

        for duplicate in duplicates:
            metadata = duplicate["metadata"]
            await self.k8s_client.delete_config_map(key.namespace, metadata["name"], metadata["resourceVersion"])

        if credential is not None:
            config_map_name = aggregate["metadata"]["name"] if aggregate is not None else self.config.aggregate_name
            await self._update_status(credential, config_map_name, log)

        return outcome

    async def _locate_aggregate(self,
                                namespace: str,
                                log: Any) -> Tuple[Optional[Dict[str, Any]], List[Dict[str, Any]]]:
        """
        Find the credentials config map of a namespace.

        Returns:
            The config map (or None) and the duplicates to delete after it
            has been written

        Raises:
            DuplicateAggregateError: If duplicates exist and merging is disabled
        """
        config_maps = await self.k8s_client.list_config_maps(namespace, self.config.managed_by_selector)

        # The selector misses an aggregate whose managed-by label was never set or was removed.
        if not any(cm["metadata"]["name"] == self.config.aggregate_name for cm in config_maps):
            unlabelled = await self.k8s_client.get_config_map(namespace, self.config.aggregate_name)
            if unlabelled is not None:
                log.warning(
                    "Adopting credentials config map without managed-by label",
                    config_map=self.config.aggregate_name
                )
                config_maps.append(unlabelled)

        owned_names = {cm["metadata"]["name"] for cm in self.index.owned(config_maps)}
        aggregates = [
            cm for cm in config_maps
            if cm["metadata"]["name"] in owned_names or cm["metadata"]["name"] == self.config.aggregate_name
        ]

        if not aggregates:
            return None, []
        if len(aggregates) == 1:
            return aggregates[0], []

        names = sorted(cm["metadata"]["name"] for cm in aggregates)
        INVARIANT_VIOLATIONS.labels(namespace=namespace).inc()

        if not self.config.merge_duplicate_aggregates:
            log.error("Multiple credentials config maps found, not modifying any", config_maps=names)
            raise DuplicateAggregateError(
                f"Namespace {namespace} has {len(names)} credentials config maps: {', '.join(names)}"
            )

        ordered = sorted(
            aggregates,
            key=lambda cm: (cm["metadata"]["name"] != self.config.aggregate_name, cm["metadata"]["name"])
        )
        canonical, duplicates = ordered[0], ordered[1:]

        merged = merge_documents([decode_document(cm.get("data"), self.config.data_key) for cm in ordered])
        for duplicate in duplicates:
            for ref in get_owner_references(duplicate):
                set_owner_reference(canonical, ref, namespace)
        canonical.setdefault("data", {})[self.config.data_key] = encode_document(merged)

        log.warning(
            "Merging duplicate credentials config maps",
            canonical=canonical["metadata"]["name"],
            duplicates=[cm["metadata"]["name"] for cm in duplicates]
        )
        return canonical, duplicates

    async def _live_credential_names(self,
                                     key: NamespacedName,
                                     credential: Optional[Credential]) -> Optional[Set[str]]:
        if not self.config.prune_stale_entries:
            return None

        live = await self.k8s_client.list_credentials(key.namespace)
        names = {item["metadata"]["name"] for item in live}

        # The direct read of the reconciled credential wins over the listing.
        if credential is None:
            names.discard(key.name)
        else:
            names.add(key.name)
        return names

    def _prune_stale(self,
                     aggregate: Dict[str, Any],
                     document: CredentialsDocument,
                     live_names: Optional[Set[str]],
                     log: Any) -> bool:
        """Drop entries and owner references of credentials that no longer exist."""
        if live_names is None:
            return False

        stale = [name for name in document.names() if name not in live_names]
        stale.extend(
            ref.name for ref in get_owner_references(aggregate)
            if ref.kind == self.config.credential_kind
            and ref.name not in live_names
            and ref.name not in stale
        )

        for name in stale:
            document.prune(name)
            remove_owner_reference(aggregate, self.config.credential_kind, name)

        if stale:
            log.info("Pruned stale credential entries", stale=stale)
        return bool(stale)

    async def _create_aggregate(self, credential: Credential, log: Any) -> ReconcileOutcome:
        document = CredentialsDocument(credentials=[entry_for_credential(credential)])

        config_map = {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {
                "name": self.config.aggregate_name,
                "namespace": credential.namespace,
                "labels": {
                    "app.kubernetes.io/managed-by": self.config.managed_by,
                },
            },
            "data": {
                self.config.data_key: encode_document(document),
            },
        }
        set_owner_reference(config_map, owner_reference_for(credential), credential.namespace)

        # An AlreadyExists response surfaces as ConflictError and the cycle is retried.
        await self.k8s_client.create_config_map(credential.namespace, config_map)
        AGGREGATE_ENTRIES.labels(namespace=credential.namespace).set(1)

        log.info("Created credentials config map", config_map=self.config.aggregate_name)
        return ReconcileOutcome.CREATED

    async def _update_aggregate(self,
                                aggregate: Dict[str, Any],
                                credential: Credential,
                                live_names: Optional[Set[str]],
                                dirty: bool,
                                log: Any) -> ReconcileOutcome:
        document = decode_document(aggregate.get("data"), self.config.data_key)
        entry = entry_for_credential(credential)

        changed = self._prune_stale(aggregate, document, live_names, log) or dirty
        changed = self._ensure_managed_label(aggregate) or changed

        if not changed and is_owned_by(aggregate, credential) and document.find(credential.name) == entry:
            log.debug("Credential already reflected in credentials config map")
            return ReconcileOutcome.UNCHANGED

        changed = document.upsert(entry) or changed
        changed = set_owner_reference(aggregate, owner_reference_for(credential), credential.namespace) or changed
        if not changed:
            return ReconcileOutcome.UNCHANGED

        await self._write_aggregate(aggregate, document)
        log.info(
            "Updated credentials config map",
            config_map=aggregate["metadata"]["name"],
            entries=len(document.credentials)
        )
        return ReconcileOutcome.UPDATED

    async def _remove_credential(self,
                                 aggregate: Dict[str, Any],
                                 key: NamespacedName,
                                 live_names: Optional[Set[str]],
                                 dirty: bool,
                                 log: Any) -> ReconcileOutcome:
        document = decode_document(aggregate.get("data"), self.config.data_key)

        changed = document.prune(key.name)
        changed = remove_owner_reference(aggregate, self.config.credential_kind, key.name) or changed
        changed = self._prune_stale(aggregate, document, live_names, log) or changed
        if not (changed or dirty):
            log.debug("Deleted credential has no entry in credentials config map")
            return ReconcileOutcome.UNCHANGED

        metadata = aggregate["metadata"]
        if document.is_empty():
            await self.k8s_client.delete_config_map(key.namespace, metadata["name"], metadata["resourceVersion"])
            AGGREGATE_ENTRIES.labels(namespace=key.namespace).set(0)
            log.info("Deleted credentials config map after last entry was removed", config_map=metadata["name"])
            return ReconcileOutcome.DELETED

        await self._write_aggregate(aggregate, document)
        log.info(
            "Removed credential from credentials config map",
            config_map=metadata["name"],
            entries=len(document.credentials)
        )
        return ReconcileOutcome.PRUNED

    def _ensure_managed_label(self, aggregate: Dict[str, Any]) -> bool:
        labels = aggregate["metadata"].get("labels") or {}
        if labels.get("app.kubernetes.io/managed-by") == self.config.managed_by:
            return False
        labels["app.kubernetes.io/managed-by"] = self.config.managed_by
        aggregate["metadata"]["labels"] = labels
        return True

    async def _write_aggregate(self, aggregate: Dict[str, Any], document: CredentialsDocument) -> None:
        """Replace the config map using the resourceVersion it was read with."""
        self._ensure_managed_label(aggregate)
        aggregate.setdefault("apiVersion", "v1")
        aggregate.setdefault("kind", "ConfigMap")
        aggregate.setdefault("data", {})[self.config.data_key] = encode_document(document)

        namespace = aggregate["metadata"]["namespace"]
        try:
            await self.k8s_client.replace_config_map(namespace, aggregate)
        except NotFoundError as e:
            # Garbage collected between read and write; start over.
            raise ConflictError(str(e), status=e.status) from e

        AGGREGATE_ENTRIES.labels(namespace=namespace).set(len(document.credentials))

    async def _update_status(self, credential: Credential, config_map_name: str, log: Any) -> None:
        if credential.status.config_map == config_map_name:
            return

        try:
            await self.k8s_client.update_credential_status(
                credential.namespace,
                credential.name,
                {"configMap": config_map_name}
            )
        except NotFoundError:
            log.info("Credential disappeared before its status could be updated")
            return

        log.info("Updated credential status", config_map=config_map_name)
