"""
Core value types, errors, codecs and the entry format.
"""

from streamstate.core.errors import (
    ConsumerInvocationError,
    DecodeError,
    SnapshotDecodeError,
    SnapshotUploadError,
    StreamStateError,
    TransportError,
)
from streamstate.core.event import Event, OffsetVector, Record, sequence_key
from streamstate.core.format import CorruptEntryError, Entry, EntryAttributes, EntryFrame
from streamstate.core.reader import FrameReader

__all__ = [
    "ConsumerInvocationError",
    "CorruptEntryError",
    "DecodeError",
    "Entry",
    "EntryAttributes",
    "EntryFrame",
    "Event",
    "FrameReader",
    "OffsetVector",
    "Record",
    "SnapshotDecodeError",
    "SnapshotUploadError",
    "StreamStateError",
    "TransportError",
    "sequence_key",
]
