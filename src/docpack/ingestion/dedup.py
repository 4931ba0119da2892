"""Hash-level dedup and concurrent batch embedding.

Only hashes without a record under the target model are embedded.  Batches
run on a thread pool bounded by the embedder's ``concurrency``; each batch
carries its own hashes, so results are matched back by hash no matter the
order batches finish in.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from docpack.errors import EmbeddingError, FatalEmbeddingError
from docpack.ingestion.embedder import Embedder
from docpack.ingestion.models import Chunk, EmbeddingRecord

logger = logging.getLogger(__name__)


@dataclass
class Partition:
    """Unique chunk hashes split by whether they need embedding."""

    reused: dict[str, EmbeddingRecord] = field(default_factory=dict)
    missing: dict[str, str] = field(default_factory=dict)  # hash -> text


@dataclass
class EmbeddingOutcome:
    records: dict[str, EmbeddingRecord] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False
    calls: int = 0


def partition(
    chunks: Iterable[Chunk],
    existing: Mapping[tuple[str, str], EmbeddingRecord],
    model_id: str,
) -> Partition:
    """Split *chunks* into reusable records and texts still to embed.

    *existing* is keyed by ``(hash, model_id)``; records for other models
    are never reused.
    """
    result = Partition()
    for chunk in chunks:
        if chunk.hash in result.reused or chunk.hash in result.missing:
            continue
        record = existing.get((chunk.hash, model_id))
        if record is not None:
            result.reused[chunk.hash] = record
        else:
            result.missing[chunk.hash] = chunk.text
    return result


def _batches(items: Sequence[tuple[str, str]], size: int) -> list[list[tuple[str, str]]]:
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def embed_missing(
    embedder: Embedder,
    texts_by_hash: Mapping[str, str],
    cancel: threading.Event | None = None,
) -> EmbeddingOutcome:
    """Embed every text in *texts_by_hash*, batch by batch.

    Parameters
    ----------
    embedder:
        Target embedder; its ``batch_size`` and ``concurrency`` bound the work.
    texts_by_hash:
        Texts to embed, keyed by chunk hash.
    cancel:
        When set, no further batches are started.  Batches already in
        flight finish and their records are kept.

    Returns
    -------
    EmbeddingOutcome
        Records for every batch that succeeded.  A failed batch only loses
        its own hashes; the rest of the run is unaffected.
    """
    outcome = EmbeddingOutcome()
    pending = _batches(list(texts_by_hash.items()), max(1, embedder.batch_size))
    if not pending:
        return outcome
    pending.reverse()  # pop() from the end keeps submission order

    def run(batch: list[tuple[str, str]]) -> list[EmbeddingRecord]:
        vectors = embedder.embed([text for _, text in batch])
        if len(vectors) != len(batch):
            raise FatalEmbeddingError(f"embedder returned {len(vectors)} vectors for {len(batch)} texts")
        return [
            EmbeddingRecord(hash=h, vector=list(vec), model_id=embedder.model_id)
            for (h, _), vec in zip(batch, vectors)
        ]

    total = len(pending)
    in_flight: dict[Future[list[EmbeddingRecord]], list[tuple[str, str]]] = {}
    with ThreadPoolExecutor(max_workers=max(1, embedder.concurrency)) as pool:
        while pending or in_flight:
            while pending and len(in_flight) < max(1, embedder.concurrency):
                if cancel is not None and cancel.is_set():
                    outcome.cancelled = True
                    outcome.failed.extend(h for batch in pending for h, _ in batch)
                    logger.warning("Embedding cancelled; %d batches not started", len(pending))
                    pending = []
                    break
                batch = pending.pop()
                in_flight[pool.submit(run, batch)] = batch
                outcome.calls += 1

            if not in_flight:
                break
            done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
            for future in done:
                batch = in_flight.pop(future)
                try:
                    records = future.result()
                except EmbeddingError as exc:
                    hashes = [h for h, _ in batch]
                    outcome.failed.extend(hashes)
                    outcome.errors.append(str(exc))
                    logger.error("Embedding batch of %d failed: %s", len(hashes), exc)
                    continue
                for record in records:
                    outcome.records[record.hash] = record
                logger.info("Embedded %d / %d hashes (%d batches total)", len(outcome.records), len(texts_by_hash), total)
    return outcome
