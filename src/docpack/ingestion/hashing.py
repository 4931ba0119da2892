"""Stable content hashes for dedup and incremental rebuilds."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Iterable


def normalize_text(text: str) -> str:
    """Collapse every whitespace run to one space and strip the ends.

    Case is preserved.
    """
    return " ".join(text.split())


def content_hash(text: str) -> str:
    """SHA-256 hex digest of the normalized *text*."""
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


def file_checksum(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def compute_signature(model_id: str, chunk_keys: Iterable[Any], documents: Iterable[Any]) -> str:
    """Stable signature of everything a published snapshot would contain.

    Two runs with equal signatures would publish identical snapshots, so
    the second one can be skipped.
    """
    payload = {
        "model_id": model_id,
        "chunks": list(chunk_keys),
        "documents": list(documents),
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()
