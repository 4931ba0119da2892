"""Release / fetch of snapshot directories.

Publishing artifacts to a code-hosting service is somebody else's job; the
store only needs something that can upload a snapshot directory and download
the latest one.  :class:`DirectoryRelease` does that against a plain
directory, e.g. a working copy of the artifact repository.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from docpack.store.filesystem import SnapshotStore, read_snapshot_dir
from docpack.store.snapshot import Snapshot

logger = logging.getLogger(__name__)


class ReleaseClient(ABC):
    """Remote home of released snapshots."""

    @abstractmethod
    def upload(self, snapshot_dir: Path) -> str:
        """Release *snapshot_dir*; return the released snapshot id."""
        ...

    @abstractmethod
    def download_latest(self, dest: Path) -> Path | None:
        """Download the latest release under *dest*; ``None`` if there is none."""
        ...


class DirectoryRelease(ReleaseClient):
    """Releases kept as ``<root>/<snapshot id>/`` plus a ``LATEST`` marker."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def upload(self, snapshot_dir: Path) -> str:
        snapshot = read_snapshot_dir(snapshot_dir, snapshot_dir.name)
        target = self.root / snapshot.snapshot_id
        if not target.exists():
            self.root.mkdir(parents=True, exist_ok=True)
            shutil.copytree(snapshot_dir, target)
        (self.root / "LATEST").write_text(snapshot.snapshot_id + "\n", encoding="utf-8")
        logger.info("Released snapshot %s to %s", snapshot.snapshot_id, self.root)
        return snapshot.snapshot_id

    def download_latest(self, dest: Path) -> Path | None:
        marker = self.root / "LATEST"
        if not marker.exists():
            return None
        snapshot_id = marker.read_text(encoding="utf-8").strip()
        target = Path(dest) / snapshot_id
        shutil.copytree(self.root / snapshot_id, target, dirs_exist_ok=True)
        return target


def release_current(store: SnapshotStore, client: ReleaseClient) -> str | None:
    """Upload the store's current snapshot, if any."""
    snapshot_id = store.current_id()
    if snapshot_id is None:
        logger.info("Nothing to release: no published snapshot in %s", store.root)
        return None
    return client.upload(store.snapshot_dir(snapshot_id))


def fetch_latest(store: SnapshotStore, client: ReleaseClient) -> Snapshot | None:
    """Download the latest release and make it the store's current snapshot.

    A corrupt download raises :class:`~docpack.errors.StoreCorruptionError`
    and leaves the store untouched.
    """
    with tempfile.TemporaryDirectory(prefix="docpack-fetch-") as tmp:
        downloaded = client.download_latest(Path(tmp))
        if downloaded is None:
            logger.info("No released snapshot available")
            return None
        return store.import_snapshot(downloaded)
