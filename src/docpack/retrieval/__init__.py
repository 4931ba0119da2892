"""
Retrieval — vector search, composite ranking, and citation assembly.

This module wraps the published snapshot behind a clean interface so that
callers never need to know how vectors are stored.

Public surface
--------------
- :class:`SemanticRetriever` — main entry point for retrieval with citations.
- :class:`VectorStoreBase` — abstract backend.
- :class:`SnapshotVectorStore` — default backend over the current snapshot.
- :class:`Citation`, :class:`RetrievalResult`, :class:`MetadataFilter` — data models.
- :func:`get_retriever` — factory wired from :class:`~docpack.config.Settings`.
"""

from docpack.retrieval.base import VectorStoreBase
from docpack.retrieval.models import Citation, MetadataFilter, RetrievalResult
from docpack.retrieval.retriever import SemanticRetriever, get_retriever

__all__ = [
    "Citation",
    "MetadataFilter",
    "RetrievalResult",
    "SemanticRetriever",
    "SnapshotVectorStore",
    "VectorStoreBase",
    "get_retriever",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import SnapshotVectorStore so the store package loads only when used."""
    if name == "SnapshotVectorStore":
        from docpack.retrieval.snapshot_store import SnapshotVectorStore

        return SnapshotVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
