"""Published snapshot — the unit the retriever reads."""

from __future__ import annotations

from datetime import datetime, timezone
from functools import cached_property
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from docpack.ingestion.models import Chunk, Document, EmbeddingRecord, FrontMatter


class SnapshotDocument(BaseModel):
    """Document metadata kept in a snapshot (the body lives in the chunks)."""

    model_config = ConfigDict(frozen=True)

    id: str
    path: str
    weight: float = 1.0
    front_matter: FrontMatter = Field(default_factory=FrontMatter)
    headings: tuple[tuple[int, str], ...] = ()

    @classmethod
    def from_document(cls, document: Document) -> SnapshotDocument:
        return cls(
            id=document.id,
            path=document.path,
            weight=document.weight,
            front_matter=document.front_matter,
            headings=document.headings,
        )

    @property
    def version(self) -> str | None:
        return self.front_matter.version

    @property
    def tags(self) -> frozenset[str]:
        return self.front_matter.tags

    def metadata(self) -> dict[str, Any]:
        meta = self.front_matter.model_dump(mode="json", exclude_none=True)
        meta["tags"] = sorted(self.front_matter.tags)
        meta.update({"id": self.id, "source": self.path, "weight": self.weight})
        return meta


class Snapshot(BaseModel):
    """Every chunk, vector and document record current at one point in time.

    Snapshots are immutable; a rebuild produces a new one.
    """

    model_config = ConfigDict(frozen=True)

    snapshot_id: str
    pack_name: str = "pack"
    pack_version: str = "0.0.0"
    model_id: str
    dimensions: int = 0
    signature: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    documents: tuple[SnapshotDocument, ...] = ()
    chunks: tuple[Chunk, ...] = ()
    embeddings: dict[str, EmbeddingRecord] = Field(default_factory=dict)

    @cached_property
    def documents_by_path(self) -> dict[str, SnapshotDocument]:
        return {doc.path: doc for doc in self.documents}

    @property
    def hashes(self) -> set[str]:
        return {chunk.hash for chunk in self.chunks}

    def records_by_key(self) -> dict[tuple[str, str], EmbeddingRecord]:
        """Embedding records keyed by ``(hash, model_id)``."""
        return {record.key: record for record in self.embeddings.values()}


def new_snapshot_id(signature: str, now: datetime | None = None) -> str:
    """Sortable snapshot id: UTC timestamp plus a signature prefix."""
    now = now or datetime.now(timezone.utc)
    return f"{now:%Y%m%dT%H%M%S%f}-{signature[:8] or 'empty'}"
