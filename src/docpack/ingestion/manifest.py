"""Pack manifest — which documents to ingest and how to chunk them.

Example ``pack.yaml``::

    name: handbook
    version: 1.4.0
    model: text-embedding-3-small
    include:
      - path: rules/**/*.md
        weight: 2.0
      - path: docs/**/*.md
    policies:
      max_chunk_tokens: 400
      overlap_tokens: 32
    filters:
      tags_any: [backend, api]
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from docpack.errors import ChunkPolicyError, ParseError

logger = logging.getLogger(__name__)

DEFAULT_INCLUDE = "**/*.md"


class IncludeEntry(BaseModel):
    """One glob of source documents and the ranking weight of its matches."""

    model_config = ConfigDict(frozen=True)

    path: str
    weight: float = 1.0


class ChunkPolicy(BaseModel):
    """Token bounds for the chunker.

    Bounds are checked by :meth:`check`, not at construction, so that a
    malformed manifest can still be read while an invalid policy stays a
    fatal error for the run.
    """

    model_config = ConfigDict(frozen=True)

    max_chunk_tokens: int = 500
    overlap_tokens: int = 40

    def check(self) -> ChunkPolicy:
        """Raise :class:`ChunkPolicyError` unless ``0 <= overlap < max``."""
        if self.max_chunk_tokens <= 0:
            raise ChunkPolicyError(f"max_chunk_tokens must be positive, got {self.max_chunk_tokens}")
        if self.overlap_tokens < 0:
            raise ChunkPolicyError(f"overlap_tokens must not be negative, got {self.overlap_tokens}")
        if self.overlap_tokens >= self.max_chunk_tokens:
            raise ChunkPolicyError(
                f"overlap_tokens ({self.overlap_tokens}) must be < "
                f"max_chunk_tokens ({self.max_chunk_tokens})"
            )
        return self


class ManifestFilters(BaseModel):
    model_config = ConfigDict(frozen=True)

    tags_any: frozenset[str] = frozenset()

    @field_validator("tags_any", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return frozenset() if value is None else value


class PackManifest(BaseModel):
    """Declarative description of a pack.  Read-only input to a run."""

    model_config = ConfigDict(frozen=True)

    name: str = "pack"
    version: str = "0.0.0"
    model: str | None = None
    include: tuple[IncludeEntry, ...] = (IncludeEntry(path=DEFAULT_INCLUDE),)
    policies: ChunkPolicy = Field(default_factory=ChunkPolicy)
    filters: ManifestFilters = Field(default_factory=ManifestFilters)

    @field_validator("version", mode="before")
    @classmethod
    def _version_to_str(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("include", mode="before")
    @classmethod
    def _bare_globs(cls, value: Any) -> Any:
        # `include: ["docs/*.md"]` is shorthand for weight 1.0
        if isinstance(value, list):
            return [{"path": v} if isinstance(v, str) else v for v in value]
        return value


def parse_manifest(data: Any, source: str = "<manifest>") -> PackManifest:
    """Validate raw manifest *data*; raise :class:`ParseError` when malformed."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ParseError(source, f"expected a mapping, got {type(data).__name__}")
    try:
        return PackManifest.model_validate(data)
    except ValidationError as exc:
        raise ParseError(source, str(exc)) from exc


def load_manifest(path: str | Path, warnings: list[str] | None = None) -> PackManifest:
    """Read a YAML manifest from *path*.

    A malformed manifest is not fatal: the error is logged, appended to
    *warnings* (when given) and a default manifest named after the file is
    returned.  A missing file still raises ``FileNotFoundError``.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    try:
        return parse_manifest(yaml.safe_load(text), source=str(path))
    except (yaml.YAMLError, ParseError) as exc:
        message = f"malformed manifest {path}: {exc}"
        logger.warning("%s; using defaults", message)
        if warnings is not None:
            warnings.append(message)
        return PackManifest(name=path.stem)
