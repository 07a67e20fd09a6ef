"""
Owner-reference bookkeeping for the shared credentials ConfigMap.

The ConfigMap has one owner reference per contributing Credential. The
functions here operate on plain ConfigMap manifests (``metadata`` uses the
camelCase field names of the Kubernetes API).
"""

from typing import Any, Dict, List

from ..models.credential import Credential
from ..models.ownership import OwnerReference


class OwnershipError(Exception):
    """Raised when an owner reference cannot be set."""
    pass


def owner_reference_for(credential: Credential, is_controller: bool = False) -> OwnerReference:
    """
    Build the owner reference pointing at a credential.

    Kubernetes accepts at most one controller reference per object, so
    markers on the shared ConfigMap default to non-controller.
    """
    return OwnerReference(
        api_version=credential.api_version,
        kind=credential.kind,
        name=credential.name,
        uid=credential.uid,
        controller=is_controller,
        block_owner_deletion=is_controller,
    )


def get_owner_references(config_map: Dict[str, Any]) -> List[OwnerReference]:
    metadata = config_map.get("metadata") or {}
    return [OwnerReference.from_dict(ref) for ref in metadata.get("ownerReferences") or []]


def _store_owner_references(config_map: Dict[str, Any], refs: List[OwnerReference]) -> None:
    config_map.setdefault("metadata", {})["ownerReferences"] = [ref.to_dict() for ref in refs]


def set_owner_reference(config_map: Dict[str, Any],
                        owner_ref: OwnerReference,
                        owner_namespace: str) -> bool:
    """
    Add or replace an owner reference on a ConfigMap.

    A reference to the same group, kind and name is replaced in place,
    otherwise the reference is appended.

    Args:
        config_map: ConfigMap manifest, modified in place
        owner_ref: Reference to set
        owner_namespace: Namespace of the owner

    Returns:
        True if the references changed

    Raises:
        OwnershipError: If owner and ConfigMap live in different namespaces
    """
    namespace = (config_map.get("metadata") or {}).get("namespace")
    if not namespace:
        raise OwnershipError(
            f"cluster-scoped resource must not have a namespace-scoped owner, "
            f"owner's namespace {owner_namespace}"
        )
    if namespace != owner_namespace:
        raise OwnershipError(
            f"cross-namespace owner references are disallowed, owner's namespace "
            f"{owner_namespace}, obj's namespace {namespace}"
        )

    refs = get_owner_references(config_map)
    for index, existing in enumerate(refs):
        if existing.refers_to_same_object(owner_ref):
            if existing == owner_ref:
                return False
            refs[index] = owner_ref
            break
    else:
        refs.append(owner_ref)

    _store_owner_references(config_map, refs)
    return True


def remove_owner_reference(config_map: Dict[str, Any], kind: str, name: str) -> bool:
    """
    Remove the first owner reference matching kind and name.

    The owner may already be deleted, so only its kind and name are
    available for matching.

    Returns:
        True if a reference was removed
    """
    refs = get_owner_references(config_map)
    for index, existing in enumerate(refs):
        if existing.kind == kind and existing.name == name:
            del refs[index]
            _store_owner_references(config_map, refs)
            return True
    return False


def is_owned_by(config_map: Dict[str, Any], credential: Credential) -> bool:
    """
    Check whether a ConfigMap carries an owner reference for a credential.

    Group, kind and name must match. When both sides know the uid it has
    to match as well, so a recreated credential is adopted again.
    """
    wanted = owner_reference_for(credential)
    for existing in get_owner_references(config_map):
        if not existing.refers_to_same_object(wanted):
            continue
        if existing.uid and wanted.uid and existing.uid != wanted.uid:
            continue
        return True
    return False
