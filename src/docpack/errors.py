"""Exception hierarchy shared by every docpack component.

Recoverable errors (:class:`ParseError`) are absorbed by the component that
raises them and surface as warnings in the run report.  Everything else is
fatal for the scope it is raised in: the whole run, a single embedding
batch, a single snapshot read, or a single query.
"""

from __future__ import annotations


class DocpackError(Exception):
    """Base class for all docpack errors."""


class ParseError(DocpackError):
    """Malformed front matter or pack manifest.  Defaults are applied."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class ChunkPolicyError(DocpackError):
    """Invalid chunking bounds.  Rejects the run before any I/O."""


class EmbeddingError(DocpackError):
    """An embedding call failed."""

    retryable: bool = False


class TransientEmbeddingError(EmbeddingError):
    """Rate limit, timeout or server fault that outlived its retries."""

    retryable = True


class FatalEmbeddingError(EmbeddingError):
    """Authentication or malformed-request failure.  Never retried."""


class StoreError(DocpackError):
    """Snapshot store failure."""


class StoreCorruptionError(StoreError):
    """A snapshot failed its checksum; a full rebuild is required."""

    def __init__(self, snapshot_id: str, reason: str) -> None:
        super().__init__(f"snapshot {snapshot_id!r} is corrupt: {reason}")
        self.snapshot_id = snapshot_id


class StoreBusyError(StoreError):
    """Another publish is already in flight."""


class RetrievalModelMismatchError(DocpackError):
    """The query embedder and the snapshot were built with different models."""

    def __init__(self, query_model: str, snapshot_model: str) -> None:
        super().__init__(
            f"query model {query_model!r} does not match snapshot model {snapshot_model!r}"
        )
        self.query_model = query_model
        self.snapshot_model = snapshot_model
