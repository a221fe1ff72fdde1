"""Snapshot writing, reading and lifecycle."""

from streamstate.snapshot.naming import snapshot_name, snapshot_prefix, snapshot_timestamp
from streamstate.snapshot.policy import SnapshotPolicy, SnapshotRetention
from streamstate.snapshot.reader import SnapshotReader
from streamstate.snapshot.writer import SnapshotWriter

__all__ = [
    "SnapshotPolicy",
    "SnapshotReader",
    "SnapshotRetention",
    "SnapshotWriter",
    "snapshot_name",
    "snapshot_prefix",
    "snapshot_timestamp",
]
