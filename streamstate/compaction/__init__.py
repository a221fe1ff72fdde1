"""Snapshot-backed event sources."""

from streamstate.compaction.compacting_source import (
    CompactingEventSource,
    RestoreFailurePolicy,
    SnapshotConfig,
    SourceConfig,
    SourceState,
)

__all__ = [
    "CompactingEventSource",
    "RestoreFailurePolicy",
    "SnapshotConfig",
    "SourceConfig",
    "SourceState",
]
