"""Tests for entry framing and the frame reader."""

import io

import pytest

from streamstate.core.errors import DecodeError
from streamstate.core.format import (
    CorruptEntryError,
    Entry,
    EntryAttributes,
    EntryFrame,
    MagicByte,
)
from streamstate.core.reader import FrameReader


class TestEntry:
    """Test Entry dataclass."""

    def test_create_entry(self):
        """Test creating an entry with a key."""
        entry = Entry(timestamp=1234567890, key="order-1", value=b"value")

        assert entry.key == "order-1"
        assert entry.attributes == EntryAttributes.NONE
        assert not entry.is_header

    def test_negative_timestamp_raises_error(self):
        """Test that negative timestamp raises ValueError."""
        with pytest.raises(ValueError, match="Timestamp must be non-negative"):
            Entry(timestamp=-1, key=None, value=b"test")

    def test_value_must_be_bytes(self):
        """Test that non-bytes values are rejected."""
        with pytest.raises(TypeError):
            Entry(timestamp=0, key="k", value="text")

    def test_header_flag(self):
        """Test the snapshot header attribute."""
        entry = Entry(
            timestamp=0,
            key="__snapshot_header__",
            value=b"{}",
            attributes=EntryAttributes.SNAPSHOT_HEADER,
        )

        assert entry.is_header


class TestEntryFrame:
    """Test EntryFrame serialization and deserialization."""

    def test_roundtrip_with_key(self):
        """Test serializing and deserializing an entry with a key."""
        entry = Entry(timestamp=1700000000000, key="key-ü", value=b"payload")

        result = EntryFrame.deserialize(EntryFrame.serialize(entry))

        assert result == entry

    def test_roundtrip_without_key(self):
        """Test that a null key is distinct from an empty key."""
        no_key = EntryFrame.deserialize(EntryFrame.serialize(Entry(0, None, b"v")))
        empty_key = EntryFrame.deserialize(EntryFrame.serialize(Entry(0, "", b"v")))

        assert no_key.key is None
        assert empty_key.key == ""

    def test_frame_layout(self):
        """Test the length prefix and magic byte."""
        data = EntryFrame.serialize(Entry(timestamp=0, key="k", value=b"v"))

        length = int.from_bytes(data[:4], "big")
        assert length == len(data) - EntryFrame.LENGTH_FIELD_SIZE
        assert data[8] == MagicByte.V1

    def test_crc_mismatch(self):
        """Test that a flipped payload byte is detected."""
        data = bytearray(EntryFrame.serialize(Entry(timestamp=0, key="k", value=b"value")))
        data[-1] ^= 0xFF

        with pytest.raises(CorruptEntryError, match="CRC mismatch"):
            EntryFrame.deserialize(bytes(data))

    def test_truncated_frame(self):
        """Test that a short frame is rejected."""
        data = EntryFrame.serialize(Entry(timestamp=0, key="k", value=b"value"))

        with pytest.raises(CorruptEntryError, match="Incomplete frame"):
            EntryFrame.deserialize(data[:-2])

    def test_corrupt_entry_is_decode_error(self):
        """Test the error hierarchy."""
        assert issubclass(CorruptEntryError, DecodeError)


class TestFrameReader:
    """Test FrameReader."""

    def _frames(self, count):
        return b"".join(
            EntryFrame.serialize(Entry(timestamp=i, key=f"key-{i}", value=f"v{i}".encode()))
            for i in range(count)
        )

    def test_iterates_all_entries(self):
        """Test reading every frame of a stream."""
        reader = FrameReader(io.BytesIO(self._frames(5)))

        keys = [entry.key for entry in reader]

        assert keys == [f"key-{i}" for i in range(5)]

    def test_position_advances(self):
        """Test that the position points at the next frame."""
        data = self._frames(2)
        first_size = len(EntryFrame.serialize(Entry(timestamp=0, key="key-0", value=b"v0")))
        reader = FrameReader(io.BytesIO(data))

        reader.read_next()
        assert reader.position == first_size

        reader.read_next()
        assert reader.position == len(data)
        assert reader.read_next() is None

    def test_strict_mode_rejects_truncated_tail(self):
        """Test that strict readers fail on a partial frame."""
        data = self._frames(2)[:-3]
        reader = FrameReader(io.BytesIO(data), strict=True)

        reader.read_next()
        with pytest.raises(CorruptEntryError, match="Truncated frame"):
            reader.read_next()

    def test_lenient_mode_stops_at_truncated_tail(self):
        """Test that lenient readers treat a partial frame as end of stream."""
        data = self._frames(2)
        stream = io.BytesIO(data[:-3])
        reader = FrameReader(stream, strict=False)

        assert reader.read_next().key == "key-0"
        position = reader.position

        assert reader.read_next() is None
        assert stream.tell() == position

    def test_invalid_length_raises(self):
        """Test that an impossible frame length is corruption in any mode."""
        reader = FrameReader(io.BytesIO(b"\x00\x00\x00\x01garbage"), strict=False)

        with pytest.raises(CorruptEntryError, match="Invalid frame length"):
            reader.read_next()
