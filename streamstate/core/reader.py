"""
Sequential reader for framed entries.

Reads EntryFrame frames from any binary stream. In lenient mode (live
partition files) a truncated tail is treated as a write still in progress and
ends iteration; in strict mode (snapshots) it is a decode error.
"""

from typing import BinaryIO, Iterator, Optional

from streamstate.core.format import CorruptEntryError, Entry, EntryFrame
from streamstate.utils.logging import get_logger

logger = get_logger(__name__)


class FrameReader:
    """
    Reads entries one frame at a time.

    Attributes:
        position: Byte position of the next frame
    """

    def __init__(self, stream: BinaryIO, strict: bool = True, name: str = "<stream>"):
        """
        Initialize a frame reader.

        Args:
            stream: Binary stream positioned at a frame boundary
            strict: Raise on truncated frames instead of stopping
            name: Name used in log output
        """
        self._stream = stream
        self.strict = strict
        self.name = name
        self.position = stream.tell()

    def read_next(self) -> Optional[Entry]:
        """
        Read the next entry.

        Returns:
            Entry, or None at end of stream

        Raises:
            CorruptEntryError: On corruption, or truncation in strict mode
        """
        length_bytes = self._stream.read(EntryFrame.LENGTH_FIELD_SIZE)

        if len(length_bytes) == 0:
            return None

        if len(length_bytes) < EntryFrame.LENGTH_FIELD_SIZE:
            return self._truncated(len(length_bytes), EntryFrame.LENGTH_FIELD_SIZE)

        length = int.from_bytes(length_bytes, byteorder="big")

        if length <= EntryFrame.CRC_FIELD_SIZE or length > EntryFrame.MAX_FRAME_SIZE:
            raise CorruptEntryError(
                f"Invalid frame length {length} at position {self.position} in {self.name}"
            )

        remaining_bytes = self._stream.read(length)

        if len(remaining_bytes) < length:
            return self._truncated(EntryFrame.LENGTH_FIELD_SIZE + len(remaining_bytes), length)

        entry = EntryFrame.deserialize(length_bytes + remaining_bytes)
        self.position += EntryFrame.LENGTH_FIELD_SIZE + length
        return entry

    def _truncated(self, got: int, expected: int) -> None:
        if self.strict:
            raise CorruptEntryError(
                f"Truncated frame at position {self.position} in {self.name}: "
                f"expected {expected} bytes, got {got}"
            )

        logger.debug(
            "Partial write at end of stream",
            name=self.name,
            position=self.position,
            bytes_read=got,
        )
        self._stream.seek(self.position)
        return None

    def __iter__(self) -> Iterator[Entry]:
        while True:
            entry = self.read_next()
            if entry is None:
                return
            yield entry

