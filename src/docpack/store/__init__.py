"""
Store — versioned, atomically published snapshots of chunks and vectors.

Public surface
--------------
- :class:`SnapshotStore` — single-writer directory store with a ``CURRENT`` pointer.
- :class:`Snapshot`, :class:`SnapshotDocument` — the published records.
- :class:`ReleaseClient`, :class:`DirectoryRelease` — upload / fetch of snapshots.
"""

from docpack.store.filesystem import SnapshotStore
from docpack.store.release import DirectoryRelease, ReleaseClient, fetch_latest, release_current
from docpack.store.snapshot import Snapshot, SnapshotDocument, new_snapshot_id

__all__ = [
    "DirectoryRelease",
    "ReleaseClient",
    "Snapshot",
    "SnapshotDocument",
    "SnapshotStore",
    "fetch_latest",
    "new_snapshot_id",
    "release_current",
]
