"""Abstract base class for vector-store backends.

Adding a new backend only requires subclassing :class:`VectorStoreBase`
and implementing the abstract members.  Ranking and citation handling in
:mod:`docpack.retrieval.retriever` are backend-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from docpack.retrieval.models import MetadataFilter


class VectorStoreBase(ABC):
    """Backend-agnostic vector-store interface.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / pack.
    """

    def __init__(self, collection_name: str) -> None:
        self.collection_name = collection_name

    # -- required overrides ---------------------------------------------------

    @property
    @abstractmethod
    def model_id(self) -> str | None:
        """Embedding model the stored vectors were built with (``None`` if empty)."""
        ...

    @abstractmethod
    def similarity_search(
        self,
        query_embedding: list[float],
        *,
        k: int | None = 5,
        filters: list[MetadataFilter] | None = None,
        model_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """Return the *k* stored chunks most similar to *query_embedding*.

        Each result dict **must** contain at least:

        * ``"id"`` – chunk identifier
        * ``"content"`` – the chunk text
        * ``"score"`` – cosine similarity (higher = more similar)
        * ``"order"`` – position in the store, used as the final tie-break
        * ``"metadata"`` – source and ranking metadata

        Parameters
        ----------
        query_embedding:
            Dense vector for the query.
        k:
            Number of results to return; ``None`` returns every match.
        filters:
            Optional metadata filters applied before scoring.
        model_id:
            Model that produced *query_embedding*.  Backends raise
            :class:`~docpack.errors.RetrievalModelMismatchError` when it
            differs from the stored vectors' model.
        """
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is readable."""
        ...
