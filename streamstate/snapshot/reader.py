"""
Snapshot reader.

A snapshot is read like a log with a single partition: the header entry yields
the offset vector, every following entry is decoded into an Event and handed
to the same callback used for live events.
"""

import io
import json
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Callable, Iterator, Optional, Tuple, Union

from streamstate.consumer.predicates import StopPredicate
from streamstate.core.codec import Codec, json_codec
from streamstate.core.errors import DecodeError, SnapshotDecodeError
from streamstate.core.event import Event, OffsetVector, Record, offset_token
from streamstate.core.format import CorruptEntryError, Entry
from streamstate.core.reader import FrameReader
from streamstate.snapshot.naming import snapshot_prefix
from streamstate.transport.base import BlobStore
from streamstate.utils.logging import get_logger

logger = get_logger(__name__)

SnapshotSource = Union[str, Path, bytes, BinaryIO]


@contextmanager
def _open_source(source: SnapshotSource) -> Iterator[BinaryIO]:
    if isinstance(source, (bytes, bytearray)):
        yield io.BytesIO(source)
    elif isinstance(source, (str, Path)):
        with open(source, "rb") as f:
            yield f
    else:
        yield source


class SnapshotReader:
    """
    Locates and replays snapshots.

    Example:
        reader = SnapshotReader(blob_store)
        latest = reader.download_latest("orders")
        if latest:
            name, data = latest
            vector = reader.consume_snapshot(data, name, never, handle_event)
    """

    def __init__(self, blob_store: BlobStore):
        self.blob_store = blob_store

    def list_snapshots(self, stream_name: str) -> list:
        """Snapshot names of a stream, most recent first."""
        return self.blob_store.list(snapshot_prefix(stream_name))

    def latest_snapshot_name(self, stream_name: str) -> Optional[str]:
        names = self.list_snapshots(stream_name)
        return names[0] if names else None

    def download_latest(self, stream_name: str) -> Optional[Tuple[str, bytes]]:
        """
        Download the most recent snapshot of a stream.

        Returns:
            (name, content), or None if the stream has no snapshot
        """
        name = self.latest_snapshot_name(stream_name)
        if name is None:
            logger.info("No snapshot found", stream=stream_name)
            return None

        data = self.blob_store.get(name)

        logger.info("Downloaded snapshot", stream=stream_name, name=name, size=len(data))

        return name, data

    def consume_snapshot(
        self,
        source: SnapshotSource,
        name_hint: str,
        stop_predicate: StopPredicate,
        on_entry: Callable[[Event], Any],
        codec: Codec = json_codec,
    ) -> OffsetVector:
        """
        Replay a snapshot.

        Args:
            source: Snapshot file path, content, or binary stream
            name_hint: Snapshot name, used as partition id of the events
            stop_predicate: Evaluated before each entry and once with None at
                the end of the body; True ends the replay
            on_entry: Called with every state entry as an Event
            codec: Payload decoder

        Returns:
            Offset vector stored in the header, also on early stop

        Raises:
            SnapshotDecodeError: If the snapshot or any entry is unreadable
        """
        entries = 0

        with _open_source(source) as stream:
            reader = FrameReader(stream, strict=True, name=name_hint)

            header = self._read_entry(reader, name_hint)
            if header is None:
                raise SnapshotDecodeError(f"Snapshot {name_hint} is empty")

            vector = self._decode_header(header, name_hint)

            while True:
                entry = self._read_entry(reader, name_hint)
                if entry is None:
                    # End of body counts as idle; nothing follows either way
                    stop_predicate(None)
                    break

                event = self._decode_entry(entry, entries, name_hint, codec)

                if stop_predicate(event):
                    logger.info(
                        "Snapshot replay stopped early",
                        name=name_hint,
                        entries=entries,
                    )
                    break

                on_entry(event)
                entries += 1

        logger.info(
            "Consumed snapshot",
            name=name_hint,
            entries=entries,
            positions=dict(vector),
        )

        return vector

    def _read_entry(self, reader: FrameReader, name_hint: str) -> Optional[Entry]:
        try:
            return reader.read_next()
        except CorruptEntryError as e:
            raise SnapshotDecodeError(f"Corrupt snapshot {name_hint}: {e}") from e

    def _decode_header(self, header: Entry, name_hint: str) -> OffsetVector:
        if not header.is_header:
            raise SnapshotDecodeError(f"Snapshot {name_hint} does not start with a header entry")

        try:
            return OffsetVector.from_json(json.loads(header.value.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, DecodeError) as e:
            raise SnapshotDecodeError(f"Invalid header in snapshot {name_hint}: {e}") from e

    def _decode_entry(self, entry: Entry, index: int, name_hint: str, codec: Codec) -> Event:
        if entry.key is None:
            raise SnapshotDecodeError(f"Entry {index} of snapshot {name_hint} has no key")

        record = Record(
            data=entry.value,
            partition_key=entry.key,
            sequence_token=offset_token(index),
            arrival_timestamp=datetime.fromtimestamp(entry.timestamp / 1000.0, tz=timezone.utc),
        )

        try:
            return Event.from_record(record, codec, partition_id=name_hint)
        except DecodeError as e:
            raise SnapshotDecodeError(
                f"Failed to decode entry {entry.key!r} of snapshot {name_hint}: {e}"
            ) from e
