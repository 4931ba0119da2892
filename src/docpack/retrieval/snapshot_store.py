"""In-memory vector search over the current published snapshot."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np

from docpack.errors import RetrievalModelMismatchError
from docpack.retrieval.base import VectorStoreBase
from docpack.retrieval.models import MetadataFilter
from docpack.retrieval.reranker import version_key
from docpack.store.filesystem import SnapshotStore
from docpack.store.snapshot import Snapshot, SnapshotDocument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Index:
    snapshot: Snapshot
    rows: list[int]  # chunk positions in snapshot.chunks
    matrix: np.ndarray  # unit-length vectors, one row per entry in `rows`
    metadata: list[dict[str, Any]]


def newest_versions(documents: tuple[SnapshotDocument, ...]) -> set[str]:
    """Paths of the newest version of every logical document id."""
    best: dict[str, SnapshotDocument] = {}
    for doc in documents:
        current = best.get(doc.id)
        if current is None or version_key(doc.version) > version_key(current.version):
            best[doc.id] = doc
    return {doc.path for doc in best.values()}


class SnapshotVectorStore(VectorStoreBase):
    """Search the snapshot that is current in a :class:`SnapshotStore`.

    The snapshot is resolved once per query and never mutated, so queries
    run without locks and are unaffected by a rebuild in progress.  Only
    the newest version of each logical document is searchable, and chunks
    whose embedding failed are skipped.
    """

    def __init__(self, store: SnapshotStore, collection_name: str = "docpack") -> None:
        super().__init__(collection_name)
        self._store = store
        self._index: _Index | None = None

    # -- VectorStoreBase overrides --------------------------------------------

    @property
    def model_id(self) -> str | None:
        snapshot = self._store.current()
        return snapshot.model_id if snapshot is not None else None

    def similarity_search(
        self,
        query_embedding: list[float],
        *,
        k: int | None = 5,
        filters: list[MetadataFilter] | None = None,
        model_id: str | None = None,
    ) -> list[dict[str, Any]]:
        index = self._current_index()
        if index is None:
            logger.warning("No published snapshot in %s; returning no results", self._store.root)
            return []
        if model_id is not None and model_id != index.snapshot.model_id:
            raise RetrievalModelMismatchError(model_id, index.snapshot.model_id)
        if not index.rows or (k is not None and k <= 0):
            return []

        query = np.asarray(query_embedding, dtype=np.float64)
        norm = np.linalg.norm(query)
        scores = index.matrix @ (query / norm) if norm else np.zeros(len(index.rows))

        keep = [
            i for i, meta in enumerate(index.metadata)
            if not filters or all(f.matches(meta) for f in filters)
        ]
        keep.sort(key=lambda i: -scores[i])  # stable: equal scores stay in snapshot order

        hits: list[dict[str, Any]] = []
        for i in keep[:k]:
            chunk = index.snapshot.chunks[index.rows[i]]
            hits.append(
                {
                    "id": f"{chunk.source}#{chunk.ordinal}",
                    "content": chunk.text,
                    "score": float(scores[i]),
                    "order": index.rows[i],
                    "metadata": index.metadata[i],
                }
            )
        return hits

    def health_check(self) -> bool:
        try:
            self._store.current()
            return True
        except Exception:
            logger.warning("Snapshot health-check failed", exc_info=True)
            return False

    # -- internals ------------------------------------------------------------

    def _current_index(self) -> _Index | None:
        snapshot = self._store.current()
        if snapshot is None:
            return None
        index = self._index
        if index is not None and index.snapshot.snapshot_id == snapshot.snapshot_id:
            return index
        index = self._build(snapshot)
        self._index = index
        return index

    @staticmethod
    def _build(snapshot: Snapshot) -> _Index:
        eligible = newest_versions(snapshot.documents)
        documents = snapshot.documents_by_path
        rows: list[int] = []
        vectors: list[list[float]] = []
        metadata: list[dict[str, Any]] = []
        for pos, chunk in enumerate(snapshot.chunks):
            record = snapshot.embeddings.get(chunk.hash)
            if record is None or chunk.source not in eligible:
                continue
            doc = documents[chunk.source]
            meta = doc.metadata()
            meta.update(
                {
                    "doc_id": chunk.doc_id,
                    "chunk_index": chunk.ordinal,
                    "heading_path": list(chunk.heading_path),
                    "priority": chunk.priority,
                    "hash": chunk.hash,
                }
            )
            rows.append(pos)
            vectors.append(record.vector)
            metadata.append(meta)

        dim = snapshot.dimensions or (len(vectors[0]) if vectors else 0)
        matrix = np.asarray(vectors, dtype=np.float64).reshape(len(vectors), dim)
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        logger.info("Indexed snapshot %s: %d searchable chunks", snapshot.snapshot_id, len(rows))
        return _Index(snapshot=snapshot, rows=rows, matrix=matrix / norms, metadata=metadata)
