"""
Multi-device wallet sync -- sealed snapshots, per-entity merge.

A device pushes its whole wallet, encrypted, to a dumb blob store.
Other devices pull it, decrypt it, and merge it by id: newer wins,
nothing is dropped. The store never sees plaintext and never arbitrates.
"""

from .engine import SyncEngine
from .merge import merge_snapshots
from .scheduler import SyncScheduler
from .snapshot import Snapshot, build_snapshot, parse_snapshot

__all__ = [
    "Snapshot",
    "SyncEngine",
    "SyncScheduler",
    "build_snapshot",
    "merge_snapshots",
    "parse_snapshot",
]
