"""Domain models for retrieval results and citation tracking."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

_OPERATORS = frozenset({"eq", "ne", "gt", "gte", "lt", "lte", "in", "nin", "any"})


class MetadataFilter(BaseModel):
    """Declarative filter over source-document metadata.

    Attributes
    ----------
    field:
        The metadata key to filter on (e.g. ``"area"``, ``"owner"``,
        ``"tags"``).
    operator:
        Comparison operator — one of ``eq``, ``ne``, ``gt``, ``gte``,
        ``lt``, ``lte``, ``in``, ``nin``, or ``any`` (list-valued field
        shares at least one element with ``value``).
    value:
        The value (or list of values for ``in`` / ``nin`` / ``any``) to
        compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    # -- helpers for common filters ------------------------------------------

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def not_equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="ne", value=value)

    @classmethod
    def one_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="in", value=values)

    @classmethod
    def any_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="any", value=values)

    # -- evaluation -----------------------------------------------------------

    def matches(self, metadata: dict[str, Any]) -> bool:
        """Whether *metadata* satisfies this filter.

        A missing field only satisfies the negative operators.
        """
        if self.operator not in _OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.operator!r}")
        if self.field not in metadata:
            return self.operator in ("ne", "nin")
        actual = metadata[self.field]
        op = self.operator
        try:
            if op == "eq":
                return actual == self.value
            if op == "ne":
                return actual != self.value
            if op == "in":
                return actual in self.value
            if op == "nin":
                return actual not in self.value
            if op == "any":
                return bool(set(actual) & set(self.value))
            if op == "gt":
                return actual > self.value
            if op == "gte":
                return actual >= self.value
            if op == "lt":
                return actual < self.value
            return actual <= self.value
        except TypeError:
            return False


class Citation(BaseModel):
    """Provenance record linking a retrieved chunk back to its source document.

    Attributes
    ----------
    citation_id:
        Unique identifier for this citation instance.
    document_id:
        Logical id of the source document.
    source:
        Source path of the document within the pack.
    chunk_index:
        Ordinal position of the chunk within the source document.
    heading_path:
        Headings enclosing the chunk, outermost first.
    version:
        Declared version of the source document.
    score:
        Cosine similarity between the query and the chunk.
    metadata:
        Front matter and ranking attributes of the source.
    retrieved_at:
        UTC timestamp of when the retrieval happened.
    """

    citation_id: str = Field(default_factory=lambda: uuid4().hex[:12])
    document_id: str | None = None
    source: str = "unknown"
    chunk_index: int | None = None
    heading_path: list[str] = Field(default_factory=list)
    version: str | None = None
    score: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    retrieved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def short_ref(self) -> str:
        """Return a compact ``[source§chunk]`` reference string."""
        chunk = self.chunk_index if self.chunk_index is not None else "?"
        return f"[{self.source}§{chunk}]"


class RetrievalResult(BaseModel):
    """A single retrieved passage together with its citation."""

    content: str
    citation: Citation

    def to_payload(self) -> dict[str, Any]:
        """Shape handed to the calling agent."""
        return {
            "text": self.content,
            "document_id": self.citation.document_id,
            "heading_path": list(self.citation.heading_path),
            "score": self.citation.score,
        }

    def __str__(self) -> str:  # noqa: D105
        return f"{self.citation.short_ref()} {self.content[:120]}…"
