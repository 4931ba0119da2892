"""Ingestion run — load → chunk → dedup → embed → publish.

A run moves through ``IDLE → LOADING → CHUNKING → EMBEDDING → PUBLISHING``
and back to ``IDLE`` on success.  Embedding failures and cancellation do
not abort it: whatever was embedded is published together with the
previous snapshot's still-valid records, and the run ends ``FAILED`` so the
caller knows to re-run.  A re-run only embeds the hashes still missing.

Fatal errors (invalid chunk policy, a concurrent publish) abort the run
and leave the published snapshot untouched.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from docpack.config import Settings
from docpack.errors import StoreCorruptionError
from docpack.ingestion.chunker import chunk_documents
from docpack.ingestion.dedup import embed_missing, partition
from docpack.ingestion.embedder import Embedder, build_embedder
from docpack.ingestion.hashing import compute_signature
from docpack.ingestion.loader import FileSystemLoader, Loader
from docpack.ingestion.manifest import PackManifest
from docpack.ingestion.models import Chunk, Document, EmbeddingRecord
from docpack.ingestion.tokens import TokenCounter
from docpack.store.filesystem import SnapshotStore
from docpack.store.snapshot import Snapshot, SnapshotDocument, new_snapshot_id

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    PUBLISHING = "publishing"
    FAILED = "failed"


class RunSummary(BaseModel):
    """What a run did, reported back to the caller."""

    state: RunState = RunState.IDLE
    documents_loaded: int = 0
    documents_skipped: int = 0
    documents_excluded: int = 0
    chunks_created: int = 0
    chunks_reused: int = 0
    chunks_pruned: int = 0
    embeddings_computed: int = 0
    embeddings_skipped: int = 0
    embeddings_failed: int = 0
    embedding_calls: int = 0
    cancelled: bool = False
    published: bool = False
    unchanged: bool = False
    snapshot_id: str | None = None
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    def describe(self) -> str:
        outcome = (
            f"published snapshot {self.snapshot_id}" if self.published
            else "snapshot unchanged"
        )
        return (
            f"{self.state.value}: {self.documents_loaded} documents loaded "
            f"({self.documents_skipped} skipped); chunks {self.chunks_created} created / "
            f"{self.chunks_reused} reused / {self.chunks_pruned} pruned; embeddings "
            f"{self.embeddings_computed} computed / {self.embeddings_skipped} skipped / "
            f"{self.embeddings_failed} failed; {outcome}"
        )


class IngestionRun:
    """One build of a pack into the snapshot store.

    Parameters
    ----------
    manifest:
        Pack manifest; its chunk policy is validated on construction.
    store:
        Destination snapshot store.
    embedder:
        Embedder selected for this run.
    loader:
        Document source.
    workers:
        Threads used to chunk documents in parallel.
    counter:
        Token counter override for the chunker.
    """

    def __init__(
        self,
        manifest: PackManifest,
        store: SnapshotStore,
        embedder: Embedder,
        loader: Loader,
        *,
        workers: int = 1,
        counter: TokenCounter | None = None,
    ) -> None:
        self.manifest = manifest
        self.store = store
        self.embedder = embedder
        self.loader = loader
        self.workers = max(1, workers)
        self.counter = counter
        manifest.policies.check()
        self.state = RunState.IDLE

    @classmethod
    def from_settings(cls, settings: Settings, manifest: PackManifest, root: str | Path) -> IngestionRun:
        """Wire a run from configuration: filesystem loader, store and embedder."""
        return cls(
            manifest,
            SnapshotStore(settings.build_path, retain=settings.retain_snapshots),
            build_embedder(settings, settings.resolve_model(manifest.model)),
            FileSystemLoader(root),
            workers=settings.chunk_workers,
        )

    def run(self, cancel: threading.Event | None = None) -> RunSummary:
        """Execute the run and report what happened.

        Raises
        ------
        StoreBusyError
            Another publish holds the store; nothing was written.
        """
        summary = RunSummary()
        try:
            self._enter(RunState.LOADING)
            documents = list(self.loader.load(self.manifest))
            report = self.loader.report
            summary.documents_loaded = len(documents)
            summary.documents_skipped = len(report.skipped)
            summary.documents_excluded = len(report.excluded)
            summary.warnings.extend(report.warnings)
            summary.warnings.extend(report.skipped)
            previous = self._previous_snapshot(summary)

            self._enter(RunState.CHUNKING)
            chunks = self._chunk(documents)

            self._enter(RunState.EMBEDDING)
            model_id = self.embedder.model_id
            existing = previous.records_by_key() if previous is not None else {}
            split = partition(chunks, existing, model_id)
            outcome = embed_missing(self.embedder, split.missing, cancel)
            records = {**split.reused, **outcome.records}

            previous_hashes = previous.hashes if previous is not None else set()
            current_hashes = {c.hash for c in chunks}
            summary.chunks_reused = sum(1 for c in chunks if c.hash in previous_hashes)
            summary.chunks_created = len(chunks) - summary.chunks_reused
            summary.chunks_pruned = len(previous_hashes - current_hashes)
            summary.embeddings_skipped = len(split.reused)
            summary.embeddings_computed = len(outcome.records)
            summary.embeddings_failed = len(outcome.failed)
            summary.embedding_calls = outcome.calls
            summary.cancelled = outcome.cancelled
            summary.errors.extend(outcome.errors)

            self._enter(RunState.PUBLISHING)
            self._publish(summary, documents, chunks, records, previous)
        except Exception:
            self._enter(RunState.FAILED)
            raise

        partial = summary.embeddings_failed > 0 or summary.cancelled
        summary.state = RunState.FAILED if partial else RunState.IDLE
        self._enter(summary.state)
        logger.info(summary.describe())
        return summary

    # -- internals ------------------------------------------------------------

    def _enter(self, state: RunState) -> None:
        if state is not self.state:
            logger.info("Run %s: %s -> %s", self.manifest.name, self.state.value, state.value)
        self.state = state

    def _previous_snapshot(self, summary: RunSummary) -> Snapshot | None:
        try:
            return self.store.current()
        except StoreCorruptionError as exc:
            summary.warnings.append(f"{exc}; rebuilding from scratch")
            logger.warning("%s; rebuilding from scratch", exc)
            self.store.discard(exc.snapshot_id)
            return None

    def _chunk(self, documents: list[Document]) -> list[Chunk]:
        per_doc = chunk_documents(
            documents, self.manifest.policies, counter=self.counter, workers=self.workers
        )
        chunks = [chunk for doc_chunks in per_doc for chunk in doc_chunks]
        logger.info("Chunked %d documents into %d chunks", len(documents), len(chunks))
        return chunks

    def _publish(
        self,
        summary: RunSummary,
        documents: list[Document],
        chunks: list[Chunk],
        records: dict[str, EmbeddingRecord],
        previous: Snapshot | None,
    ) -> None:
        model_id = self.embedder.model_id
        snapshot_documents = tuple(SnapshotDocument.from_document(d) for d in documents)
        # only records for hashes still in use are carried forward
        kept = {c.hash: records[c.hash] for c in chunks if c.hash in records}
        signature = compute_signature(
            model_id,
            [(self.manifest.name, self.manifest.version)]
            + [(c.source, c.ordinal, c.hash, c.hash in kept) for c in chunks],
            [{**d.metadata(), "headings": d.headings} for d in snapshot_documents],
        )
        if previous is not None and previous.signature == signature:
            summary.unchanged = True
            summary.snapshot_id = previous.snapshot_id
            logger.info("Content unchanged; keeping snapshot %s", previous.snapshot_id)
            return

        dimensions = len(next(iter(kept.values())).vector) if kept else 0
        snapshot = Snapshot(
            snapshot_id=new_snapshot_id(signature),
            pack_name=self.manifest.name,
            pack_version=self.manifest.version,
            model_id=model_id,
            dimensions=dimensions,
            signature=signature,
            documents=snapshot_documents,
            chunks=tuple(chunks),
            embeddings=kept,
        )
        self.store.publish(snapshot)
        summary.published = True
        summary.snapshot_id = snapshot.snapshot_id
