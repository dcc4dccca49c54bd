"""
Storage layer for Repo Monitor.

A single JSON snapshot file holds the last check time and the last-observed
state of every tracked repository.

Quick start:
    from storage import SnapshotStore

    store = SnapshotStore("data/repositories.json")
    snapshot = await store.load()
    repos = await store.get_known_repositories()
"""

from storage.snapshot_store import (
    Snapshot,
    SnapshotStore,
    TrackedRepository,
)

__all__ = [
    "Snapshot",
    "SnapshotStore",
    "TrackedRepository",
]

__version__ = "1.0.0"
