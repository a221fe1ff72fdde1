"""
Binary entry format shared by file-backed partition logs and snapshot files.

Using one framing for both means a snapshot can be read with the same reader
as a live partition: the snapshot is simply a log with a single partition.
"""

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

import crc32c

from streamstate.core.errors import DecodeError


class MagicByte(IntEnum):
    """Entry format version."""

    V1 = 1
    CURRENT = V1


class EntryAttributes(IntEnum):
    """Flags stored in the attributes byte."""

    NONE = 0
    SNAPSHOT_HEADER = 1


class CorruptEntryError(DecodeError):
    """Raised when a frame fails validation."""
    pass


@dataclass
class Entry:
    """
    A single framed entry.

    Attributes:
        timestamp: Unix timestamp in milliseconds
        key: Optional entry key
        value: Entry payload
        attributes: EntryAttributes flags
    """

    timestamp: int
    key: Optional[str]
    value: bytes
    attributes: int = EntryAttributes.NONE

    def __post_init__(self) -> None:
        if self.timestamp < 0:
            raise ValueError(f"Timestamp must be non-negative, got {self.timestamp}")
        if self.key is not None and not isinstance(self.key, str):
            raise TypeError(f"Key must be str or None, got {type(self.key)}")
        if not isinstance(self.value, bytes):
            raise TypeError(f"Value must be bytes, got {type(self.value)}")

    @property
    def is_header(self) -> bool:
        return bool(self.attributes & EntryAttributes.SNAPSHOT_HEADER)


class EntryFrame:
    """
    Serializer for entries.

    Wire format:
        Length (4 bytes) - Total length excluding this field
        CRC32C (4 bytes) - Checksum of remaining data
        Magic byte (1 byte) - Format version
        Attributes (1 byte) - Flags
        Timestamp (8 bytes) - Entry timestamp in ms
        Key length (4 bytes) - Length of key (-1 if null)
        Key (variable) - UTF-8 key
        Value length (4 bytes) - Length of value
        Value (variable) - Payload
    """

    LENGTH_FIELD_SIZE = 4
    CRC_FIELD_SIZE = 4
    HEADER_SIZE = 1 + 1 + 8
    MAX_FRAME_SIZE = 100 * 1024 * 1024

    @staticmethod
    def serialize(entry: Entry) -> bytes:
        """
        Serialize an entry to a frame.

        Args:
            entry: Entry to serialize

        Returns:
            Frame bytes
        """
        key_bytes = entry.key.encode("utf-8") if entry.key is not None else b""
        key_length = len(key_bytes) if entry.key is not None else -1

        payload = struct.pack(
            f">BBQi{len(key_bytes)}si{len(entry.value)}s",
            MagicByte.CURRENT,
            entry.attributes,
            entry.timestamp,
            key_length,
            key_bytes,
            len(entry.value),
            entry.value,
        )

        crc = crc32c.crc32c(payload)
        total_length = EntryFrame.CRC_FIELD_SIZE + len(payload)

        return struct.pack(">II", total_length, crc) + payload

    @classmethod
    def deserialize(cls, data: bytes) -> Entry:
        """
        Deserialize a complete frame.

        Args:
            data: Frame bytes including the length field

        Returns:
            Entry

        Raises:
            CorruptEntryError: If the frame is truncated or fails validation
        """
        if len(data) < cls.LENGTH_FIELD_SIZE + cls.CRC_FIELD_SIZE:
            raise CorruptEntryError(f"Frame too short: {len(data)} bytes")

        length, crc = struct.unpack(">II", data[:8])

        if len(data) < cls.LENGTH_FIELD_SIZE + length:
            raise CorruptEntryError(
                f"Incomplete frame: expected {cls.LENGTH_FIELD_SIZE + length} bytes, "
                f"got {len(data)} bytes"
            )

        payload = data[8 : cls.LENGTH_FIELD_SIZE + length]

        computed_crc = crc32c.crc32c(payload)
        if computed_crc != crc:
            raise CorruptEntryError(f"CRC mismatch: expected {crc}, computed {computed_crc}")

        if len(payload) < cls.HEADER_SIZE + 4:
            raise CorruptEntryError(f"Frame payload too short: {len(payload)} bytes")

        magic_byte, attributes, timestamp = struct.unpack(">BBQ", payload[:10])

        if magic_byte != MagicByte.V1:
            raise CorruptEntryError(f"Unsupported magic byte: {magic_byte}")

        key_length = struct.unpack(">i", payload[10:14])[0]

        if key_length == -1:
            key = None
            value_offset = 14
        else:
            if key_length < 0:
                raise CorruptEntryError(f"Invalid key length: {key_length}")
            try:
                key = payload[14 : 14 + key_length].decode("utf-8")
            except UnicodeDecodeError as e:
                raise CorruptEntryError(f"Key is not valid UTF-8: {e}") from e
            value_offset = 14 + key_length

        value_length_bytes = payload[value_offset : value_offset + 4]
        if len(value_length_bytes) != 4:
            raise CorruptEntryError("Missing value length")

        value_length = struct.unpack(">i", value_length_bytes)[0]
        if value_length < 0:
            raise CorruptEntryError(f"Invalid value length: {value_length}")

        value = payload[value_offset + 4 : value_offset + 4 + value_length]
        if len(value) != value_length:
            raise CorruptEntryError(
                f"Value length mismatch: expected {value_length}, got {len(value)}"
            )

        return Entry(timestamp=timestamp, key=key, value=value, attributes=attributes)
