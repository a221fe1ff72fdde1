"""
Snapshot writer.

A snapshot is written to a local temporary file first (header entry with the
offset vector, then one entry per repository key), uploaded to the blob store,
and the local file is removed on every exit path.
"""

import json
import tempfile
import time
from pathlib import Path
from typing import Any, Optional

from streamstate.core.codec import Encoder, encoder_for
from streamstate.core.errors import SnapshotUploadError
from streamstate.core.event import OffsetVector
from streamstate.core.format import Entry, EntryAttributes, EntryFrame
from streamstate.snapshot.naming import SNAPSHOT_HEADER_KEY, snapshot_name
from streamstate.state.repository import StateRepository
from streamstate.transport.base import BlobStore
from streamstate.utils.logging import get_logger

logger = get_logger(__name__)


class SnapshotWriter:
    """
    Writes snapshots of a state repository.

    The snapshot reads whatever the repository holds while it is written;
    entries put concurrently may or may not be included.

    Example:
        writer = SnapshotWriter(blob_store)
        name = writer.take_snapshot("orders", vector, repository)
    """

    def __init__(
        self,
        blob_store: BlobStore,
        temp_dir: Optional[Path] = None,
        encoder: Optional[Encoder] = None,
    ):
        """
        Initialize snapshot writer.

        Args:
            blob_store: Destination of uploaded snapshots
            temp_dir: Directory for local snapshot files (default: system temp)
            encoder: Payload encoder (default: text for str, JSON otherwise)
        """
        self.blob_store = blob_store
        self.temp_dir = Path(temp_dir) if temp_dir else Path(tempfile.gettempdir())
        self.encoder = encoder or encoder_for(None)

    def take_snapshot(
        self,
        stream_name: str,
        current_vector: OffsetVector,
        repository: StateRepository,
    ) -> str:
        """
        Write and upload a snapshot.

        Args:
            stream_name: Stream the state belongs to
            current_vector: Positions the repository state corresponds to
            repository: State to persist

        Returns:
            Name of the uploaded snapshot

        Raises:
            SnapshotUploadError: If the upload fails
            Exception: If writing the local file fails
        """
        name = snapshot_name(stream_name)
        path: Optional[Path] = None
        start_time = time.time()

        try:
            path = self.create_snapshot(stream_name, current_vector, repository, name=name)
            self._upload(name, path)
        finally:
            if path is not None:
                self._delete_local(path)

        logger.info(
            "Snapshot taken",
            stream=stream_name,
            name=name,
            entries=repository.size(),
            positions=dict(current_vector),
            duration_ms=int((time.time() - start_time) * 1000),
        )

        return name

    def create_snapshot(
        self,
        stream_name: str,
        current_vector: OffsetVector,
        repository: StateRepository,
        name: Optional[str] = None,
    ) -> Path:
        """
        Write a snapshot to a local file.

        Args:
            stream_name: Stream the state belongs to
            current_vector: Positions stored in the header entry
            repository: State to persist
            name: Snapshot name (default: derived from stream and time)

        Returns:
            Path of the written file; the caller owns it

        Raises:
            Exception: Any write or encoding failure, after the partial file
                has been removed
        """
        name = name or snapshot_name(stream_name)
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        path = self.temp_dir / name

        try:
            entries = self._write_entries(path, current_vector, repository)
        except BaseException:
            self._delete_local(path)
            raise

        logger.info(
            "Created local snapshot",
            stream=stream_name,
            path=str(path),
            entries=entries,
            size=path.stat().st_size,
        )

        return path

    def _write_entries(
        self,
        path: Path,
        current_vector: OffsetVector,
        repository: StateRepository,
    ) -> int:
        timestamp = int(time.time() * 1000)
        entries = 0

        with open(path, "wb") as f:
            header = Entry(
                timestamp=timestamp,
                key=SNAPSHOT_HEADER_KEY,
                value=json.dumps(current_vector.to_json()).encode("utf-8"),
                attributes=EntryAttributes.SNAPSHOT_HEADER,
            )
            f.write(EntryFrame.serialize(header))

            for key in repository.keys():
                value: Any = repository.get(key)
                if value is None:
                    continue

                entry = Entry(timestamp=timestamp, key=key, value=self.encoder(value))
                f.write(EntryFrame.serialize(entry))
                entries += 1

        return entries

    def _upload(self, name: str, path: Path) -> None:
        try:
            self.blob_store.put(name, path.read_bytes())
        except SnapshotUploadError:
            raise
        except Exception as e:
            logger.error("Snapshot upload failed", name=name, error=str(e))
            raise SnapshotUploadError(f"Failed to upload snapshot {name}: {e}") from e

    def _delete_local(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.error("Failed to delete local snapshot", path=str(path), error=str(e))
            raise

        logger.debug("Deleted local snapshot", path=str(path))
