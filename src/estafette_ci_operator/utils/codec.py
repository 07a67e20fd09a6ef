"""
Codec for the credentials document embedded in the shared ConfigMap.

The document is YAML of the form ``{credentials: [entry, ...]}``. Encoding
is deterministic: keys inside an entry are sorted while the entry order is
kept as is.
"""

from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from ..models.credential import Credential, CredentialsDocument

# Keys owned by the credential itself; additional properties may not override them.
RESERVED_ENTRY_KEYS = ("name", "type", "whitelistedPipelines", "whitelistedTrustedImages")


class DocumentDecodeError(Exception):
    """Raised when the aggregate content cannot be decoded."""
    pass


def entry_for_credential(credential: Credential) -> Dict[str, Any]:
    """
    Build the flat aggregate entry for a credential.

    Args:
        credential: Credential to flatten

    Returns:
        Entry map with additional properties merged in at the top level
    """
    entry: Dict[str, Any] = {}
    for key, value in credential.spec.additional_properties.items():
        if key not in RESERVED_ENTRY_KEYS:
            entry[key] = value

    entry["name"] = credential.name
    entry["type"] = credential.spec.type
    if credential.spec.whitelisted_pipelines:
        entry["whitelistedPipelines"] = credential.spec.whitelisted_pipelines
    if credential.spec.whitelisted_trusted_images:
        entry["whitelistedTrustedImages"] = credential.spec.whitelisted_trusted_images

    return entry


def encode_document(document: CredentialsDocument) -> str:
    """Serialize a document to YAML."""
    return yaml.safe_dump(
        {"credentials": document.credentials},
        default_flow_style=False,
        sort_keys=True,
        allow_unicode=True,
    )


def decode_document(data: Optional[Dict[str, str]], data_key: str) -> CredentialsDocument:
    """
    Deserialize the document held in a ConfigMap's data.

    Args:
        data: ConfigMap ``data`` field
        data_key: Key holding the YAML document

    Returns:
        Decoded document

    Raises:
        DocumentDecodeError: If the key is missing or the content is malformed
    """
    if not data or data_key not in data:
        raise DocumentDecodeError(f"ConfigMap has no data key {data_key}")

    try:
        content = yaml.safe_load(data[data_key])
    except yaml.YAMLError as e:
        raise DocumentDecodeError(f"Invalid YAML in {data_key}: {e}") from e

    if not isinstance(content, dict) or "credentials" not in content:
        raise DocumentDecodeError(f"Document in {data_key} has no top-level credentials key")

    entries = content["credentials"]
    if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
        raise DocumentDecodeError(f"credentials in {data_key} must be a list of maps")

    try:
        return CredentialsDocument(credentials=entries)
    except ValidationError as e:
        raise DocumentDecodeError(f"Invalid credentials document: {e}") from e


def merge_documents(documents: List[CredentialsDocument]) -> CredentialsDocument:
    """
    Merge documents in order; the first occurrence of a name wins.

    Used to fold duplicate aggregates into a single document.
    """
    merged = CredentialsDocument()
    for document in documents:
        for entry in document.credentials:
            if merged.find(entry["name"]) is None:
                merged.credentials.append(entry)
    return merged
