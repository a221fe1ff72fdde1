"""
File-backed transports.

FileLogClient stores every partition as an append-only file of framed entries:

    <directory>/<stream>/<partition>.log
    <directory>/<stream>/<partition>.closed   (marker: partition closed)

Sequence tokens are zero-padded entry indices. LocalBlobStore keeps one file
per blob and publishes writes with an atomic rename.
"""

import os
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from streamstate.core.errors import TransportError
from streamstate.core.event import Record, offset_token
from streamstate.core.format import Entry, EntryFrame
from streamstate.core.reader import FrameReader
from streamstate.transport.base import BlobStore, LogClient
from streamstate.transport.memory import next_index
from streamstate.utils.logging import get_logger

logger = get_logger(__name__)

LOG_FILE_SUFFIX = ".log"
CLOSED_MARKER_SUFFIX = ".closed"


class FileLogClient(LogClient):
    """
    Partitioned log stored in local files.

    Readers keep a cursor per partition so sequential reads do not rescan the
    file from the beginning.
    """

    def __init__(
        self,
        directory: Path,
        poll_interval_ms: int = 10,
        fsync_on_append: bool = False,
    ):
        """
        Initialize file log client.

        Args:
            directory: Root directory holding one sub-directory per stream
            poll_interval_ms: Sleep between polls while waiting for records
            fsync_on_append: Whether to fsync after each append
        """
        self.directory = Path(directory)
        self.poll_interval_ms = poll_interval_ms
        self.fsync_on_append = fsync_on_append

        self._cursors: Dict[Tuple[str, str], Tuple[int, int]] = {}
        self._counts: Dict[Tuple[str, str], int] = {}
        self._lock = threading.RLock()

        logger.info(
            "Initialized file log client",
            directory=str(self.directory),
            fsync_on_append=fsync_on_append,
        )

    def _path(self, stream_name: str, partition_id: str) -> Path:
        return self.directory / stream_name / f"{partition_id}{LOG_FILE_SUFFIX}"

    def _marker(self, stream_name: str, partition_id: str) -> Path:
        return self.directory / stream_name / f"{partition_id}{CLOSED_MARKER_SUFFIX}"

    def append(self, stream_name: str, partition_id: str, key: str, data: bytes) -> str:
        """
        Append a record to a partition file.

        Args:
            stream_name: Stream name
            partition_id: Partition id (file created on first use)
            key: Record key
            data: Payload bytes

        Returns:
            Sequence token of the record

        Raises:
            TransportError: If the partition is closed or the write fails
        """
        with self._lock:
            if self._marker(stream_name, partition_id).exists():
                raise TransportError(f"Partition {partition_id} of {stream_name} is closed")

            path = self._path(stream_name, partition_id)
            count_key = (stream_name, partition_id)

            try:
                path.parent.mkdir(parents=True, exist_ok=True)

                if count_key not in self._counts:
                    self._counts[count_key] = self._count_entries(path)

                frame = EntryFrame.serialize(
                    Entry(timestamp=int(time.time() * 1000), key=key, value=data)
                )

                with open(path, "ab") as f:
                    f.write(frame)
                    f.flush()
                    if self.fsync_on_append:
                        os.fsync(f.fileno())
            except OSError as e:
                raise TransportError(f"Failed to append to {path}: {e}") from e

            index = self._counts[count_key]
            self._counts[count_key] = index + 1

        logger.debug(
            "Appended record",
            stream=stream_name,
            partition=partition_id,
            index=index,
            size=len(data),
        )

        return offset_token(index)

    def _count_entries(self, path: Path) -> int:
        if not path.exists():
            return 0
        with open(path, "rb") as f:
            return sum(1 for _ in FrameReader(f, strict=False, name=str(path)))

    def close_partition(self, stream_name: str, partition_id: str) -> None:
        """Write the closed marker for a partition."""
        marker = self._marker(stream_name, partition_id)
        marker.parent.mkdir(parents=True, exist_ok=True)
        marker.touch()

        logger.info("Closed partition", stream=stream_name, partition=partition_id)

    def list_open_partitions(self, stream_name: str) -> Set[str]:
        stream_dir = self.directory / stream_name
        if not stream_dir.exists():
            return set()

        return {
            path.stem
            for path in stream_dir.glob(f"*{LOG_FILE_SUFFIX}")
            if not self._marker(stream_name, path.stem).exists()
        }

    def read_from(
        self,
        stream_name: str,
        partition_id: str,
        token: Optional[str],
        timeout: float,
    ) -> Optional[Record]:
        path = self._path(stream_name, partition_id)
        index = next_index(token)
        deadline = time.time() + timeout

        while True:
            record = self._read_at(stream_name, partition_id, path, index)
            if record is not None:
                return record

            if time.time() >= deadline:
                return None

            time.sleep(self.poll_interval_ms / 1000.0)

    def _read_at(
        self,
        stream_name: str,
        partition_id: str,
        path: Path,
        index: int,
    ) -> Optional[Record]:
        cursor_key = (stream_name, partition_id)

        try:
            with open(path, "rb") as f:
                with self._lock:
                    cursor = self._cursors.get(cursor_key)

                if cursor is not None and cursor[0] == index:
                    f.seek(cursor[1])
                    current = index
                else:
                    current = 0

                reader = FrameReader(f, strict=False, name=str(path))

                while current < index:
                    if reader.read_next() is None:
                        return None
                    current += 1

                entry = reader.read_next()
                if entry is None:
                    with self._lock:
                        self._cursors[cursor_key] = (index, reader.position)
                    return None

                at_head = reader.position >= os.fstat(f.fileno()).st_size

                with self._lock:
                    self._cursors[cursor_key] = (index + 1, reader.position)
        except FileNotFoundError as e:
            raise TransportError(f"Partition file not found: {path}") from e
        except OSError as e:
            raise TransportError(f"Failed to read {path}: {e}") from e

        millis_behind = 0 if at_head else max(0, int(time.time() * 1000) - entry.timestamp)

        return Record(
            data=entry.value,
            partition_key=entry.key or "",
            sequence_token=offset_token(index),
            arrival_timestamp=datetime.fromtimestamp(entry.timestamp / 1000.0, tz=timezone.utc),
            millis_behind=millis_behind,
        )


class LocalBlobStore(BlobStore):
    """Blob store backed by a local directory."""

    PARTIAL_SUFFIX = ".part"

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

        logger.info("Initialized local blob store", directory=str(self.directory))

    def put(self, name: str, data: bytes) -> None:
        target = self.directory / name
        partial = self.directory / f"{name}{self.PARTIAL_SUFFIX}"

        try:
            with open(partial, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(partial, target)
        except OSError as e:
            partial.unlink(missing_ok=True)
            raise TransportError(f"Failed to store blob {name}: {e}") from e

        logger.debug("Stored blob", name=name, size=len(data))

    def get(self, name: str) -> bytes:
        try:
            return (self.directory / name).read_bytes()
        except OSError as e:
            raise TransportError(f"Failed to read blob {name}: {e}") from e

    def list(self, prefix: str = "") -> List[str]:
        return sorted(
            path.name
            for path in self.directory.glob(f"{prefix}*")
            if path.is_file() and not path.name.endswith(self.PARTIAL_SUFFIX)
        )

    def delete(self, names: Iterable[str]) -> None:
        for name in names:
            try:
                (self.directory / name).unlink(missing_ok=True)
            except OSError as e:
                raise TransportError(f"Failed to delete blob {name}: {e}") from e
