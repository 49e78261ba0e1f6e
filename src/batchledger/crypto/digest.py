"""Document digests: bytes32 content hashes for batch metadata.

A batch's metadata_hash is the SHA-256 of the metadata document it
points to. JSON documents are hashed in canonical form (sorted keys,
Unicode preserved, UTF-8) so that the same document always produces
the same hash regardless of key order or whitespace. Other documents
are hashed as raw bytes.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any


def sha256_bytes32(data: bytes) -> str:
    """SHA-256 of raw bytes as a 0x-prefixed bytes32 value."""
    return "0x" + hashlib.sha256(data).hexdigest()


def canonical_json_bytes(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, ensure_ascii=False).encode("utf-8")


def canonical_hash(document_path: Path) -> str:
    """Compute the canonical SHA-256 hash of a JSON document."""
    parsed = json.loads(document_path.read_text(encoding="utf-8"))
    return sha256_bytes32(canonical_json_bytes(parsed))


def canonical_hash_text(document_path: Path) -> str:
    """Compute the SHA-256 hash of a non-JSON document's raw bytes."""
    return sha256_bytes32(document_path.read_bytes())


def hash_document(document_path: Path) -> str:
    """Hash a document, canonicalising it first if it is JSON."""
    if document_path.suffix.lower() == ".json":
        return canonical_hash(document_path)
    return canonical_hash_text(document_path)
