"""Semantic retriever — ranked search over the published snapshot.

This module is the **primary public interface** for retrieval.  It is
intentionally decoupled from LangChain retriever abstractions so that
non-agent callers (evaluation scripts, notebooks, tests) can use it
directly.

Usage::

    from docpack.config import Settings
    from docpack.retrieval.retriever import get_retriever

    retriever = get_retriever(Settings())
    for r in retriever.search("How are releases versioned?", tags=["release"]):
        print(r.citation.short_ref(), r.content[:80])
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from docpack.config import Settings
from docpack.errors import RetrievalModelMismatchError
from docpack.ingestion.embedder import Embedder, build_embedder
from docpack.retrieval.base import VectorStoreBase
from docpack.retrieval.models import Citation, MetadataFilter, RetrievalResult
from docpack.retrieval.reranker import rerank

logger = logging.getLogger(__name__)


class SemanticRetriever:
    """High-level retriever that wraps any :class:`VectorStoreBase`.

    Parameters
    ----------
    store:
        A concrete vector-store backend.
    embedder:
        Embeds queries.  Its ``model_id`` must match the store's.
    default_k:
        Number of results returned by :meth:`search` when *k* is omitted.
    max_k:
        Upper bound on *k*; larger requests are clamped.
    candidate_pool:
        How many of the most similar chunks are considered for ranking.
        ``None`` (the default) ranks every eligible chunk.
    score_threshold:
        Minimum similarity score; candidates below this are discarded.
        ``None`` (the default) keeps every candidate.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embedder: Embedder,
        *,
        default_k: int = 6,
        max_k: int = 8,
        candidate_pool: int | None = None,
        score_threshold: float | None = None,
    ) -> None:
        if not 0 < default_k <= max_k:
            raise ValueError(f"need 0 < default_k <= max_k, got {default_k} and {max_k}")
        self._store = store
        self._embedder = embedder
        self.default_k = default_k
        self.max_k = max_k
        self.candidate_pool = None if candidate_pool is None else max(candidate_pool, max_k)
        self.score_threshold = score_threshold

    # -- public API -----------------------------------------------------------

    def search(
        self,
        query: str,
        *,
        k: int | None = None,
        tags: Iterable[str] | None = None,
        filters: list[MetadataFilter] | None = None,
        strict_tags: bool = False,
    ) -> list[RetrievalResult]:
        """Run a ranked semantic search and return results with citations.

        Parameters
        ----------
        query:
            Natural-language query string.
        k:
            Number of results (defaults to ``self.default_k``, capped at
            ``self.max_k``).
        tags:
            Tag filter.  Matching sources rank above non-matching ones.
        filters:
            Optional metadata filters on the source documents.
        strict_tags:
            Drop sources that share no tag with *tags* instead of only
            ranking them lower.

        Returns
        -------
        list[RetrievalResult]
            At most *k* results, ordered by the composite ranking key.

        Raises
        ------
        RetrievalModelMismatchError
            The snapshot was built with a different embedding model.  Only
            this query fails; the snapshot is untouched.
        """
        snapshot_model = self._store.model_id
        if snapshot_model is not None and snapshot_model != self._embedder.model_id:
            raise RetrievalModelMismatchError(self._embedder.model_id, snapshot_model)
        embedding = self._embedder.embed_query(query)
        return self.search_by_embedding(embedding, k=k, tags=tags, filters=filters, strict_tags=strict_tags)

    def search_by_embedding(
        self,
        embedding: list[float],
        *,
        k: int | None = None,
        tags: Iterable[str] | None = None,
        filters: list[MetadataFilter] | None = None,
        strict_tags: bool = False,
    ) -> list[RetrievalResult]:
        """Same as :meth:`search` but accepts a pre-computed embedding."""
        k = self._clamp(k)
        wanted = sorted(set(tags or ()))
        filters = list(filters or [])
        if strict_tags and wanted:
            filters.append(MetadataFilter.any_of("tags", wanted))

        raw_hits = self._store.similarity_search(
            embedding,
            k=self.candidate_pool,
            filters=filters or None,
            model_id=self._embedder.model_id,
        )
        if self.score_threshold is None:
            candidates = raw_hits
        else:
            candidates = [h for h in raw_hits if h.get("score", 0.0) >= self.score_threshold]
        return self._to_results(rerank(candidates, tags=wanted, top_k=k))

    # -- LangChain compat -----------------------------------------------------

    def as_langchain_retriever(self, k: int | None = None) -> Any:
        """Return a thin LangChain-compatible retriever wrapper.

        This intentionally imports LangChain only here so that the rest
        of the retrieval package has **zero** LangChain dependency.
        """
        from langchain_core.documents import Document
        from langchain_core.retrievers import BaseRetriever

        outer = self

        class _LCRetriever(BaseRetriever):
            """Adapter that satisfies LangChain's retriever protocol."""

            def _get_relevant_documents(self_inner, query: str, **kwargs: Any) -> list[Document]:  # type: ignore[override]  # noqa: N805
                results = outer.search(query, k=k)
                return [
                    Document(
                        page_content=r.content,
                        metadata={**r.citation.metadata, "_citation": r.citation.model_dump()},
                    )
                    for r in results
                ]

        return _LCRetriever()

    # -- internals ------------------------------------------------------------

    def _clamp(self, k: int | None) -> int:
        if k is None:
            return self.default_k
        if k <= 0:
            raise ValueError(f"k must be positive, got {k}")
        if k > self.max_k:
            logger.info("Requested k=%d exceeds max_k=%d; clamping", k, self.max_k)
            return self.max_k
        return k

    @staticmethod
    def _to_results(hits: list[dict[str, Any]]) -> list[RetrievalResult]:
        results: list[RetrievalResult] = []
        for hit in hits:
            meta = hit.get("metadata", {})
            citation = Citation(
                document_id=meta.get("doc_id", meta.get("id")),
                source=meta.get("source", "unknown"),
                chunk_index=meta.get("chunk_index"),
                heading_path=list(meta.get("heading_path", [])),
                version=meta.get("version"),
                score=hit.get("score"),
                metadata=meta,
            )
            results.append(RetrievalResult(content=hit.get("content", ""), citation=citation))
        return results


# ---------------------------------------------------------------------------
# Convenience factory
# ---------------------------------------------------------------------------


def get_retriever(settings: Settings, **kwargs: Any) -> SemanticRetriever:
    """Build a retriever over the snapshot in ``settings.build_path``."""
    from docpack.retrieval.snapshot_store import SnapshotVectorStore
    from docpack.store.filesystem import SnapshotStore

    store = SnapshotVectorStore(SnapshotStore(settings.build_path, retain=settings.retain_snapshots))
    return SemanticRetriever(store, build_embedder(settings, settings.resolve_model(store.model_id)), **kwargs)
