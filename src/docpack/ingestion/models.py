"""Domain records produced and consumed during ingestion.

All records are immutable once built.  A changed chunk is a *new*
:class:`Chunk` with a new hash, never an edited one.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FrontMatter(BaseModel):
    """Metadata block at the top of a source document.

    Every field is optional; unknown keys are kept so filters can still
    reach them.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    id: str | None = None
    title: str | None = None
    version: str | None = None
    area: str | None = None
    tags: frozenset[str] = frozenset()
    audience: str | None = None
    owner: str | None = None
    updated: date | None = None
    confidence: str | None = None

    @field_validator("id", "title", "version", "area", "audience", "owner", "confidence", mode="before")
    @classmethod
    def _scalar_to_str(cls, value: Any) -> Any:
        # YAML turns `version: 1.2` into a float and `id: 7` into an int.
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            return frozenset(t.strip() for t in value.split(",") if t.strip())
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(str(t).strip() for t in value if str(t).strip())
        return value

    @field_validator("updated", mode="before")
    @classmethod
    def _datetime_to_date(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.date()
        return value


class Document(BaseModel):
    """A loaded source document.

    Attributes
    ----------
    id:
        Logical document identifier.  Several documents may share an id
        when they carry different ``version`` values.
    path:
        Source path relative to the pack root; unique within a run.
    body:
        Raw body text following the front matter.
    front_matter:
        Parsed metadata (defaults when the block was missing or malformed).
    weight:
        Weight of the manifest include entry that matched this file.
    headings:
        Heading index in body order as ``(level, title)`` pairs.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    path: str
    body: str
    front_matter: FrontMatter = Field(default_factory=FrontMatter)
    weight: float = 1.0
    headings: tuple[tuple[int, str], ...] = ()

    @property
    def version(self) -> str | None:
        return self.front_matter.version

    @property
    def tags(self) -> frozenset[str]:
        return self.front_matter.tags

    def metadata(self) -> dict[str, Any]:
        """Flat metadata dict used for filtering and citations."""
        meta = self.front_matter.model_dump(mode="json", exclude_none=True)
        meta["tags"] = sorted(self.front_matter.tags)
        meta.update({"id": self.id, "source": self.path, "weight": self.weight})
        return meta

    def to_langchain(self) -> Any:
        """Return this document as a LangChain ``Document``."""
        from langchain_core.documents import Document as LCDocument

        return LCDocument(page_content=self.body, metadata=self.metadata())


class Chunk(BaseModel):
    """A bounded, possibly overlapping slice of a document body.

    ``text`` is always ``normalized_body[start:end]``.  The first
    ``overlap_chars`` characters repeat the tail of the previous chunk;
    ``separator`` holds the whitespace skipped between the previous chunk
    and this one when there is no overlap.
    """

    model_config = ConfigDict(frozen=True)

    doc_id: str
    source: str
    ordinal: int
    text: str
    heading_path: tuple[str, ...] = ()
    tokens: int
    hash: str
    start: int
    end: int
    overlap_chars: int = 0
    separator: str = ""
    oversized: bool = False
    priority: int = 0


class EmbeddingRecord(BaseModel):
    """A vector for one chunk hash under one model."""

    model_config = ConfigDict(frozen=True)

    hash: str
    vector: list[float]
    model_id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> tuple[str, str]:
        return (self.hash, self.model_id)
