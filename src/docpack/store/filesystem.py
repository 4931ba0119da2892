"""Directory-backed snapshot store with an atomically swapped pointer.

Layout under ``root``::

    CURRENT                      id of the published snapshot
    .publish.lock                present while a publish is in flight
    snapshots/<id>/manifest.json header + per-file SHA-256 checksums
    snapshots/<id>/documents.jsonl
    snapshots/<id>/chunks.jsonl
    snapshots/<id>/embeddings.jsonl

A publish writes a complete snapshot into a temporary directory, renames it
into place and only then replaces ``CURRENT``.  Readers resolve ``CURRENT``
once and read an immutable directory, so they never see partial state and
never wait on a writer.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Sequence

from pydantic import BaseModel, ValidationError

from docpack.errors import StoreBusyError, StoreCorruptionError, StoreError
from docpack.ingestion.hashing import file_checksum
from docpack.ingestion.models import Chunk, EmbeddingRecord
from docpack.store.snapshot import Snapshot, SnapshotDocument

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
MANIFEST = "manifest.json"
DOCUMENTS = "documents.jsonl"
CHUNKS = "chunks.jsonl"
EMBEDDINGS = "embeddings.jsonl"
CORRUPT_SUFFIX = ".corrupt"


def _jsonl(models: Sequence[BaseModel]) -> bytes:
    return "".join(m.model_dump_json() + "\n" for m in models).encode("utf-8")


class SnapshotStore:
    """Single-writer, many-reader store of published snapshots.

    Parameters
    ----------
    root:
        Build-artifact directory.
    retain:
        Number of snapshot directories kept after a publish, the current
        one included.
    """

    def __init__(self, root: str | Path, *, retain: int = 2) -> None:
        self.root = Path(root)
        self.retain = max(1, retain)
        self._write_lock = threading.Lock()
        self._cached: Snapshot | None = None

    @property
    def snapshots_dir(self) -> Path:
        return self.root / "snapshots"

    @property
    def pointer(self) -> Path:
        return self.root / "CURRENT"

    def snapshot_dir(self, snapshot_id: str) -> Path:
        return self.snapshots_dir / snapshot_id

    # -- reads ----------------------------------------------------------------

    def current_id(self) -> str | None:
        try:
            value = self.pointer.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return value or None

    def current(self) -> Snapshot | None:
        """The published snapshot, or ``None`` before the first publish.

        Raises :class:`StoreCorruptionError` when it fails verification.
        """
        snapshot_id = self.current_id()
        if snapshot_id is None:
            return None
        cached = self._cached
        if cached is not None and cached.snapshot_id == snapshot_id:
            return cached
        snapshot = self.load(snapshot_id)
        self._cached = snapshot
        return snapshot

    def load(self, snapshot_id: str) -> Snapshot:
        return read_snapshot_dir(self.snapshot_dir(snapshot_id), snapshot_id)

    # -- writes ---------------------------------------------------------------

    def publish(self, snapshot: Snapshot) -> Path:
        """Write *snapshot* and make it current.

        Raises :class:`StoreBusyError` when another publish holds the lock, and
        :class:`StoreError` before writing anything when a vector does not
        match the snapshot's dimension or model id.
        """
        mismatched = [
            r.hash for r in snapshot.embeddings.values()
            if len(r.vector) != snapshot.dimensions or r.model_id != snapshot.model_id
        ]
        if mismatched:
            raise StoreError(
                f"snapshot {snapshot.snapshot_id!r}: {len(mismatched)} vectors do not match "
                f"dimension {snapshot.dimensions} and model {snapshot.model_id!r}"
            )
        with self._writer():
            target = self.snapshot_dir(snapshot.snapshot_id)
            staging = self.snapshots_dir / f".tmp-{snapshot.snapshot_id}"
            if staging.exists():
                shutil.rmtree(staging)
            staging.mkdir(parents=True)
            write_snapshot_dir(staging, snapshot)
            os.replace(staging, target)
            self._swap_pointer(snapshot.snapshot_id)
            self._cached = snapshot
            logger.info(
                "Published snapshot %s (%d chunks, %d vectors)",
                snapshot.snapshot_id, len(snapshot.chunks), len(snapshot.embeddings),
            )
            self._prune(keep=snapshot.snapshot_id)
        return target

    def import_snapshot(self, source: str | Path) -> Snapshot:
        """Verify a snapshot directory fetched from elsewhere and make it current."""
        source = Path(source)
        snapshot = read_snapshot_dir(source, source.name)
        with self._writer():
            target = self.snapshot_dir(snapshot.snapshot_id)
            if not target.exists():
                staging = self.snapshots_dir / f".tmp-{snapshot.snapshot_id}"
                if staging.exists():
                    shutil.rmtree(staging)
                shutil.copytree(source, staging)
                os.replace(staging, target)
            self._swap_pointer(snapshot.snapshot_id)
            self._cached = snapshot
            self._prune(keep=snapshot.snapshot_id)
        logger.info("Imported snapshot %s from %s", snapshot.snapshot_id, source)
        return snapshot

    def discard(self, snapshot_id: str) -> None:
        """Quarantine a corrupt snapshot; clears ``CURRENT`` if it pointed there."""
        with self._writer():
            directory = self.snapshot_dir(snapshot_id)
            if directory.exists():
                quarantine = directory.with_name(directory.name + CORRUPT_SUFFIX)
                if quarantine.exists():
                    shutil.rmtree(quarantine)
                os.replace(directory, quarantine)
            if self.current_id() == snapshot_id:
                self.pointer.unlink(missing_ok=True)
            if self._cached is not None and self._cached.snapshot_id == snapshot_id:
                self._cached = None
        logger.warning("Discarded snapshot %s; next run rebuilds from scratch", snapshot_id)

    # -- internals ------------------------------------------------------------

    @contextmanager
    def _writer(self) -> Iterator[None]:
        """Exclusive publish lock, within this process and across processes."""
        if not self._write_lock.acquire(blocking=False):
            raise StoreBusyError(f"a publish is already in flight for {self.root}")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            lock_path = self.root / ".publish.lock"
            try:
                fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError as exc:
                raise StoreBusyError(f"{lock_path} exists; another run is publishing") from exc
            try:
                os.write(fd, str(os.getpid()).encode("ascii"))
                os.close(fd)
                yield
            finally:
                lock_path.unlink(missing_ok=True)
        finally:
            self._write_lock.release()

    def _swap_pointer(self, snapshot_id: str) -> None:
        tmp = self.root / "CURRENT.tmp"
        tmp.write_text(snapshot_id + "\n", encoding="utf-8")
        os.replace(tmp, self.pointer)

    def _prune(self, keep: str) -> None:
        if not self.snapshots_dir.exists():
            return
        names = sorted(
            p.name
            for p in self.snapshots_dir.iterdir()
            if p.is_dir() and not p.name.startswith(".") and not p.name.endswith(CORRUPT_SUFFIX)
        )
        older = [n for n in names if n != keep]
        survivors = {keep, *older[max(0, len(older) - (self.retain - 1)) :]}
        for name in names:
            if name not in survivors:
                shutil.rmtree(self.snapshots_dir / name, ignore_errors=True)
                logger.info("Pruned old snapshot %s", name)


def write_snapshot_dir(directory: Path, snapshot: Snapshot) -> None:
    """Write the data files, then the manifest that checksums them."""
    files = {
        DOCUMENTS: _jsonl(snapshot.documents),
        CHUNKS: _jsonl(snapshot.chunks),
        EMBEDDINGS: _jsonl(list(snapshot.embeddings.values())),
    }
    for name, data in files.items():
        (directory / name).write_bytes(data)

    header = snapshot.model_dump(mode="json", exclude={"documents", "chunks", "embeddings"})
    header["format"] = FORMAT_VERSION
    header["counts"] = {
        "documents": len(snapshot.documents),
        "chunks": len(snapshot.chunks),
        "embeddings": len(snapshot.embeddings),
    }
    header["files"] = {name: file_checksum(data) for name, data in files.items()}
    (directory / MANIFEST).write_text(json.dumps(header, indent=2, sort_keys=True), encoding="utf-8")


def read_snapshot_dir(directory: Path, snapshot_id: str) -> Snapshot:
    """Load and verify a snapshot directory.

    Any missing file, checksum mismatch or unparsable record raises
    :class:`StoreCorruptionError`; nothing is partially recovered.
    """
    try:
        header = json.loads((directory / MANIFEST).read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise StoreCorruptionError(snapshot_id, f"missing {MANIFEST}") from exc
    except (OSError, ValueError) as exc:
        raise StoreCorruptionError(snapshot_id, f"unreadable {MANIFEST}: {exc}") from exc
    if not isinstance(header, dict) or not isinstance(header.get("files"), dict):
        raise StoreCorruptionError(snapshot_id, f"{MANIFEST} has no checksum table")

    raw: dict[str, bytes] = {}
    for name in (DOCUMENTS, CHUNKS, EMBEDDINGS):
        expected = header["files"].get(name)
        try:
            data = (directory / name).read_bytes()
        except OSError as exc:
            raise StoreCorruptionError(snapshot_id, f"missing {name}") from exc
        if expected is None or file_checksum(data) != expected:
            raise StoreCorruptionError(snapshot_id, f"checksum mismatch on {name}")
        raw[name] = data

    try:
        documents = tuple(SnapshotDocument.model_validate_json(line) for line in _lines(raw[DOCUMENTS]))
        chunks = tuple(Chunk.model_validate_json(line) for line in _lines(raw[CHUNKS]))
        records = [EmbeddingRecord.model_validate_json(line) for line in _lines(raw[EMBEDDINGS])]
        snapshot = Snapshot(
            snapshot_id=header["snapshot_id"],
            pack_name=header.get("pack_name", "pack"),
            pack_version=header.get("pack_version", "0.0.0"),
            model_id=header["model_id"],
            dimensions=header.get("dimensions", 0),
            signature=header.get("signature", ""),
            created_at=header["created_at"],
            documents=documents,
            chunks=chunks,
            embeddings={r.hash: r for r in records},
        )
    except (KeyError, ValidationError, ValueError) as exc:
        raise StoreCorruptionError(snapshot_id, f"invalid record: {exc}") from exc

    if any(len(r.vector) != snapshot.dimensions or r.model_id != snapshot.model_id for r in records):
        raise StoreCorruptionError(snapshot_id, "vector dimension or model id mismatch")
    return snapshot


def _lines(data: bytes) -> list[str]:
    return [line for line in data.decode("utf-8").splitlines() if line.strip()]
