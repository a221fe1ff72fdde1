"""
When to take snapshots and how many to keep.
"""

import threading
import time
from typing import Callable, List

from streamstate.snapshot.naming import snapshot_prefix
from streamstate.transport.base import BlobStore
from streamstate.utils.logging import get_logger

logger = get_logger(__name__)


class SnapshotPolicy:
    """
    Time and volume based snapshot trigger.

    A snapshot is due once interval_ms has passed since the last one and at
    least min_events events were applied in between.
    """

    def __init__(
        self,
        interval_ms: int = 300000,
        min_events: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize snapshot policy.

        Args:
            interval_ms: Minimum time between snapshots
            min_events: Minimum events applied since the last snapshot
            clock: Monotonic clock in seconds
        """
        if interval_ms < 0:
            raise ValueError(f"interval_ms must be non-negative, got {interval_ms}")
        if min_events < 0:
            raise ValueError(f"min_events must be non-negative, got {min_events}")

        self.interval_ms = interval_ms
        self.min_events = min_events
        self._clock = clock
        self._last_snapshot = clock()
        self._events = 0
        self._lock = threading.Lock()

    def record_events(self, count: int = 1) -> None:
        with self._lock:
            self._events += count

    @property
    def events_since_snapshot(self) -> int:
        with self._lock:
            return self._events

    def should_snapshot(self) -> bool:
        with self._lock:
            elapsed_ms = (self._clock() - self._last_snapshot) * 1000
            return elapsed_ms >= self.interval_ms and self._events >= self.min_events

    def snapshot_taken(self) -> None:
        with self._lock:
            self._last_snapshot = self._clock()
            self._events = 0


class SnapshotRetention:
    """Deletes all but the most recent snapshots of a stream."""

    def __init__(self, blob_store: BlobStore, keep: int = 3):
        """
        Args:
            blob_store: Store holding the snapshots
            keep: Number of most recent snapshots to keep (at least 1)
        """
        if keep < 1:
            raise ValueError(f"keep must be at least 1, got {keep}")

        self.blob_store = blob_store
        self.keep = keep

    def apply(self, stream_name: str) -> List[str]:
        """
        Delete outdated snapshots of a stream.

        Returns:
            Names of the deleted snapshots
        """
        names = self.blob_store.list(snapshot_prefix(stream_name))
        outdated = names[self.keep :]

        if outdated:
            self.blob_store.delete(outdated)

            logger.info(
                "Deleted outdated snapshots",
                stream=stream_name,
                deleted=len(outdated),
                kept=len(names) - len(outdated),
            )

        return outdated
