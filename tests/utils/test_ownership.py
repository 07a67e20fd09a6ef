"""
Owner-reference bookkeeping tests.
"""

import pytest

from estafette_ci_operator.models.credential import Credential
from estafette_ci_operator.models.ownership import OwnerReference
from estafette_ci_operator.utils.ownership import (
    OwnershipError,
    get_owner_references,
    is_owned_by,
    owner_reference_for,
    remove_owner_reference,
    set_owner_reference,
)


def config_map(namespace="default", refs=None):
    metadata = {"name": "estafette-external-credentials"}
    if namespace is not None:
        metadata["namespace"] = namespace
    if refs is not None:
        metadata["ownerReferences"] = refs
    return {"metadata": metadata, "data": {}}


def ref(name, uid=None, api_version="ci.estafette.io/v1", kind="Credential"):
    return OwnerReference(api_version=api_version, kind=kind, name=name, uid=uid)


class TestOwnerReference:
    """Test the owner reference model."""

    def test_group_from_api_version(self):
        assert ref("a").group == "ci.estafette.io"
        assert ref("a", api_version="v1").group == ""

    def test_same_object_ignores_version_and_uid(self):
        assert ref("a", uid="1").refers_to_same_object(ref("a", uid="2", api_version="ci.estafette.io/v2"))
        assert not ref("a").refers_to_same_object(ref("b"))
        assert not ref("a").refers_to_same_object(ref("a", kind="TrustedImage"))
        assert not ref("a").refers_to_same_object(ref("a", api_version="other.io/v1"))

    def test_to_dict_uses_api_field_names(self):
        assert ref("a", uid="u").to_dict() == {
            "apiVersion": "ci.estafette.io/v1",
            "kind": "Credential",
            "name": "a",
            "uid": "u",
            "controller": False,
            "blockOwnerDeletion": False,
        }

    def test_to_dict_drops_missing_uid(self):
        assert "uid" not in ref("a").to_dict()

    def test_owner_reference_for_credential(self, cred1):
        owner = owner_reference_for(Credential.from_resource(cred1))

        assert owner.name == "cred1"
        assert owner.uid == "uid-cred1"
        assert owner.controller is False


class TestSetOwnerReference:
    """Test adding and replacing owner references."""

    def test_adds_reference(self):
        cm = config_map()

        assert set_owner_reference(cm, ref("a", uid="1"), "default") is True
        assert [r.name for r in get_owner_references(cm)] == ["a"]

    def test_appends_in_order(self):
        cm = config_map()
        for name in ("a", "b", "c"):
            set_owner_reference(cm, ref(name), "default")

        assert [r.name for r in get_owner_references(cm)] == ["a", "b", "c"]

    def test_identical_reference_is_noop(self):
        cm = config_map(refs=[ref("a", uid="1").to_dict()])

        assert set_owner_reference(cm, ref("a", uid="1"), "default") is False
        assert len(get_owner_references(cm)) == 1

    def test_replaces_same_object(self):
        cm = config_map(refs=[ref("a", uid="old").to_dict(), ref("b").to_dict()])

        assert set_owner_reference(cm, ref("a", uid="new"), "default") is True

        refs = get_owner_references(cm)
        assert [(r.name, r.uid) for r in refs] == [("a", "new"), ("b", None)]

    def test_cross_namespace_is_rejected(self):
        cm = config_map(namespace="team-a")

        with pytest.raises(OwnershipError, match="cross-namespace"):
            set_owner_reference(cm, ref("a"), "team-b")
        assert get_owner_references(cm) == []

    def test_cluster_scoped_object_is_rejected(self):
        with pytest.raises(OwnershipError, match="cluster-scoped"):
            set_owner_reference(config_map(namespace=None), ref("a"), "default")


class TestRemoveOwnerReference:
    """Test removing owner references by kind and name."""

    def test_removes_matching_reference(self):
        cm = config_map(refs=[ref("a").to_dict(), ref("b").to_dict(), ref("c").to_dict()])

        assert remove_owner_reference(cm, "Credential", "b") is True
        assert [r.name for r in get_owner_references(cm)] == ["a", "c"]

    def test_other_kind_is_kept(self):
        cm = config_map(refs=[ref("a", kind="TrustedImage").to_dict()])

        assert remove_owner_reference(cm, "Credential", "a") is False
        assert len(get_owner_references(cm)) == 1

    def test_missing_reference(self):
        cm = config_map()

        assert remove_owner_reference(cm, "Credential", "a") is False


class TestIsOwnedBy:
    """Test ownership lookups."""

    def test_owned(self, cred1):
        cm = config_map(refs=[ref("cred1", uid="uid-cred1").to_dict()])

        assert is_owned_by(cm, Credential.from_resource(cred1))

    def test_uid_mismatch_is_not_owned(self, cred1):
        cm = config_map(refs=[ref("cred1", uid="uid-old").to_dict()])

        assert not is_owned_by(cm, Credential.from_resource(cred1))

    def test_missing_uid_matches_by_name(self, cred1):
        cm = config_map(refs=[ref("cred1").to_dict()])

        assert is_owned_by(cm, Credential.from_resource(cred1))

    def test_not_owned(self, cred1):
        cm = config_map(refs=[ref("other").to_dict()])

        assert not is_owned_by(cm, Credential.from_resource(cred1))
