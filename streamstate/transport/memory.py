"""
In-memory transports.

Used by tests and for embedding streamstate in a single process. Both are
thread-safe.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from streamstate.core.errors import TransportError
from streamstate.core.event import Record, offset_token, utc_now
from streamstate.transport.base import BlobStore, LogClient
from streamstate.utils.logging import get_logger

logger = get_logger(__name__)


def next_index(token: Optional[str]) -> int:
    """Index of the record following a token."""
    if token is None:
        return 0
    try:
        return int(token) + 1
    except ValueError as e:
        raise TransportError(f"Invalid sequence token: {token!r}") from e


@dataclass
class _Partition:
    records: List[Record] = field(default_factory=list)
    closed: bool = False


class InMemoryLogClient(LogClient):
    """
    Partitioned log held in memory.

    Example:
        client = InMemoryLogClient()
        client.append("orders", "shard-0", key="order-1", data=b'{"total": 3}')
    """

    def __init__(self):
        self._streams: Dict[str, Dict[str, _Partition]] = {}
        self._condition = threading.Condition()

    def create_partition(self, stream_name: str, partition_id: str) -> None:
        with self._condition:
            partitions = self._streams.setdefault(stream_name, {})
            partitions.setdefault(partition_id, _Partition())

    def append(
        self,
        stream_name: str,
        partition_id: str,
        key: str,
        data: bytes,
        arrival_timestamp: Optional[datetime] = None,
    ) -> str:
        """
        Append a record.

        Args:
            stream_name: Stream name
            partition_id: Partition id (created on first use)
            key: Record key
            data: Payload bytes
            arrival_timestamp: Arrival time (default: now)

        Returns:
            Sequence token assigned to the record
        """
        with self._condition:
            partition = self._streams.setdefault(stream_name, {}).setdefault(
                partition_id, _Partition()
            )
            if partition.closed:
                raise TransportError(f"Partition {partition_id} of {stream_name} is closed")

            token = offset_token(len(partition.records))
            partition.records.append(
                Record(
                    data=data,
                    partition_key=key,
                    sequence_token=token,
                    arrival_timestamp=arrival_timestamp or utc_now(),
                )
            )
            self._condition.notify_all()

        return token

    def close_partition(self, stream_name: str, partition_id: str) -> None:
        """Mark a partition closed; it is no longer listed as open."""
        with self._condition:
            self._partition(stream_name, partition_id).closed = True

        logger.info("Closed partition", stream=stream_name, partition=partition_id)

    def last_token(self, stream_name: str, partition_id: str) -> Optional[str]:
        with self._condition:
            records = self._partition(stream_name, partition_id).records
            return records[-1].sequence_token if records else None

    def list_open_partitions(self, stream_name: str) -> Set[str]:
        with self._condition:
            partitions = self._streams.get(stream_name, {})
            return {pid for pid, partition in partitions.items() if not partition.closed}

    def read_from(
        self,
        stream_name: str,
        partition_id: str,
        token: Optional[str],
        timeout: float,
    ) -> Optional[Record]:
        index = next_index(token)

        with self._condition:
            partition = self._partition(stream_name, partition_id)

            if index >= len(partition.records) and timeout > 0:
                self._condition.wait_for(
                    lambda: index < len(partition.records),
                    timeout=timeout,
                )

            if index >= len(partition.records):
                return None

            record = partition.records[index]
            head = partition.records[-1]

        behind = head.arrival_timestamp - record.arrival_timestamp
        return Record(
            data=record.data,
            partition_key=record.partition_key,
            sequence_token=record.sequence_token,
            arrival_timestamp=record.arrival_timestamp,
            millis_behind=max(0, int(behind.total_seconds() * 1000)),
        )

    def _partition(self, stream_name: str, partition_id: str) -> _Partition:
        try:
            return self._streams[stream_name][partition_id]
        except KeyError:
            raise TransportError(
                f"Unknown partition {partition_id} of stream {stream_name}"
            ) from None


class InMemoryBlobStore(BlobStore):
    """Blob store backed by a dict."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.RLock()

    def put(self, name: str, data: bytes) -> None:
        with self._lock:
            self._blobs[name] = bytes(data)

        logger.debug("Stored blob", name=name, size=len(data))

    def get(self, name: str) -> bytes:
        with self._lock:
            try:
                return self._blobs[name]
            except KeyError:
                raise TransportError(f"Blob not found: {name}") from None

    def list(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(name for name in self._blobs if name.startswith(prefix))

    def delete(self, names: Iterable[str]) -> None:
        with self._lock:
            for name in names:
                self._blobs.pop(name, None)
