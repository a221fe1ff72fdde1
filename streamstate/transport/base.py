"""
Contracts for the transports streamstate reads from and writes to.

The consumer and snapshot code only talk to these interfaces; concrete
implementations live next to this module.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Set

from streamstate.core.event import Record


class LogClient(ABC):
    """Read access to a partitioned, append-only log."""

    @abstractmethod
    def list_open_partitions(self, stream_name: str) -> Set[str]:
        """
        List partitions that can still receive records.

        Args:
            stream_name: Stream name

        Returns:
            Set of partition ids
        """
        pass

    @abstractmethod
    def read_from(
        self,
        stream_name: str,
        partition_id: str,
        token: Optional[str],
        timeout: float,
    ) -> Optional[Record]:
        """
        Read the record following a position.

        Args:
            stream_name: Stream name
            partition_id: Partition to read
            token: Last consumed sequence token (None = start of partition)
            timeout: Seconds to wait for a record to become available

        Returns:
            The next record, or None if none is available yet

        Raises:
            TransportError: If the read fails
        """
        pass

    def close(self) -> None:
        """Release resources held by the client."""
        pass


class BlobStore(ABC):
    """Named blob storage for snapshots."""

    @abstractmethod
    def put(self, name: str, data: bytes) -> None:
        """
        Store a blob. The blob becomes visible only if the call succeeds.

        Raises:
            TransportError: If the write fails
        """
        pass

    @abstractmethod
    def get(self, name: str) -> bytes:
        """
        Fetch a blob.

        Raises:
            TransportError: If the blob is missing or the read fails
        """
        pass

    @abstractmethod
    def list(self, prefix: str = "") -> List[str]:
        """
        List blob names starting with a prefix.

        Returns:
            Names sorted ascending
        """
        pass

    @abstractmethod
    def delete(self, names: Iterable[str]) -> None:
        """Delete blobs; missing names are ignored."""
        pass
