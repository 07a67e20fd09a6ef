"""
Credentials document codec tests.
"""

import pytest
import yaml

from estafette_ci_operator.models.credential import Credential, CredentialsDocument
from estafette_ci_operator.utils.codec import (
    DocumentDecodeError,
    decode_document,
    encode_document,
    entry_for_credential,
    merge_documents,
)

DATA_KEY = "credentials-config.yaml"


class TestEntryForCredential:
    """Test flattening of credentials into document entries."""

    def test_additional_properties_are_flattened(self, cred1):
        entry = entry_for_credential(Credential.from_resource(cred1))

        assert entry == {
            "name": "cred1",
            "type": "container-registry",
            "whitelistedPipelines": "github.com/estafette/.+",
            "repository": "estafette",
            "private": False,
            "username": "estafettesvc",
            "password": "supersecretpassword",
        }

    def test_empty_whitelists_are_omitted(self, make_credential):
        entry = entry_for_credential(Credential.from_resource(make_credential("plain")))

        assert entry == {"name": "plain", "type": "container-registry"}

    def test_nested_values_are_kept(self, make_credential):
        resource = make_credential(
            "gke",
            type="kubernetes-engine",
            additional_properties={"defaults": {"namespace": "ns", "autoscale": {"min": 1}}},
        )

        entry = entry_for_credential(Credential.from_resource(resource))

        assert entry["defaults"] == {"namespace": "ns", "autoscale": {"min": 1}}

    def test_reserved_keys_win(self, make_credential):
        resource = make_credential(
            "cred",
            whitelisted_pipelines="github.com/.+",
            additional_properties={"name": "x", "whitelistedPipelines": "y"},
        )

        entry = entry_for_credential(Credential.from_resource(resource))

        assert entry["name"] == "cred"
        assert entry["whitelistedPipelines"] == "github.com/.+"


class TestEncodeDocument:
    """Test YAML serialization."""

    def test_cred1_yaml(self, cred1):
        document = CredentialsDocument(credentials=[entry_for_credential(Credential.from_resource(cred1))])

        assert encode_document(document) == (
            "credentials:\n"
            "- name: cred1\n"
            "  password: supersecretpassword\n"
            "  private: false\n"
            "  repository: estafette\n"
            "  type: container-registry\n"
            "  username: estafettesvc\n"
            "  whitelistedPipelines: github.com/estafette/.+\n"
        )

    def test_entry_order_is_preserved(self):
        document = CredentialsDocument(credentials=[
            {"name": "zeta", "type": "t"},
            {"name": "alpha", "type": "t"},
        ])

        loaded = yaml.safe_load(encode_document(document))

        assert [e["name"] for e in loaded["credentials"]] == ["zeta", "alpha"]

    def test_encoding_is_deterministic(self):
        first = CredentialsDocument(credentials=[{"type": "t", "name": "a", "b": 1, "a": 2}])
        second = CredentialsDocument(credentials=[{"a": 2, "b": 1, "name": "a", "type": "t"}])

        assert encode_document(first) == encode_document(second)

    def test_empty_document(self):
        assert yaml.safe_load(encode_document(CredentialsDocument())) == {"credentials": []}


class TestDecodeDocument:
    """Test YAML deserialization and its failure modes."""

    def test_round_trip(self, cred1):
        document = CredentialsDocument(credentials=[entry_for_credential(Credential.from_resource(cred1))])

        decoded = decode_document({DATA_KEY: encode_document(document)}, DATA_KEY)

        assert decoded == document

    def test_empty_list(self):
        assert decode_document({DATA_KEY: "credentials: []\n"}, DATA_KEY).is_empty()

    @pytest.mark.parametrize("data", [
        None,
        {},
        {"other.yaml": "credentials: []"},
    ])
    def test_missing_data_key(self, data):
        with pytest.raises(DocumentDecodeError, match="no data key"):
            decode_document(data, DATA_KEY)

    @pytest.mark.parametrize("content", [
        "credentials: [",
        "- just\n- a list\n",
        "other: []\n",
        "",
        "credentials: notalist\n",
        "credentials:\n- plain string\n",
        "credentials:\n- type: no-name\n",
        "credentials:\n- name: dup\n- name: dup\n",
    ])
    def test_malformed_content(self, content):
        with pytest.raises(DocumentDecodeError):
            decode_document({DATA_KEY: content}, DATA_KEY)


class TestDocumentMutation:
    """Test upsert and prune semantics."""

    def setup_method(self):
        self.document = CredentialsDocument(credentials=[
            {"name": "a", "type": "t"},
            {"name": "b", "type": "t"},
            {"name": "c", "type": "t"},
        ])

    def test_upsert_appends_new_entry(self):
        assert self.document.upsert({"name": "d", "type": "t"}) is True
        assert self.document.names() == ["a", "b", "c", "d"]

    def test_upsert_replaces_in_place(self):
        assert self.document.upsert({"name": "b", "type": "changed"}) is True
        assert self.document.names() == ["a", "b", "c"]
        assert self.document.find("b") == {"name": "b", "type": "changed"}

    def test_upsert_equal_entry_is_noop(self):
        assert self.document.upsert({"name": "b", "type": "t"}) is False

    def test_prune_keeps_order(self):
        assert self.document.prune("b") is True
        assert self.document.names() == ["a", "c"]

    def test_prune_missing_entry(self):
        assert self.document.prune("missing") is False
        assert self.document.names() == ["a", "b", "c"]


class TestMergeDocuments:
    """Test folding of duplicate documents."""

    def test_first_occurrence_wins(self):
        merged = merge_documents([
            CredentialsDocument(credentials=[{"name": "a", "type": "first"}]),
            CredentialsDocument(credentials=[{"name": "a", "type": "second"}, {"name": "b", "type": "t"}]),
        ])

        assert merged.names() == ["a", "b"]
        assert merged.find("a")["type"] == "first"

    def test_merge_nothing(self):
        assert merge_documents([]).is_empty()
