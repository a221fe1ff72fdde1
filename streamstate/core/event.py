"""
Value types flowing through streamstate.

- Record: a raw entry read from one partition of the log
- Event: a decoded Record handed to consumers and to the state repository
- OffsetVector: per-partition positions, the checkpoint of a stream
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Generic, Iterator, Optional, Tuple, TypeVar, Union

from streamstate.core.errors import DecodeError

T = TypeVar("T")

TOKEN_WIDTH = 20


def offset_token(index: int) -> str:
    """Token for an entry index, zero-padded so lexical and numeric order agree."""
    return f"{index:0{TOKEN_WIDTH}d}"


def sequence_key(token: str) -> Tuple[int, Union[int, str]]:
    """
    Sort key for sequence tokens of a single partition.

    Numeric tokens (Kinesis sequence numbers, padded file offsets) compare as
    integers; anything else compares as a string.

    Args:
        token: Sequence token

    Returns:
        Sortable key
    """
    if token.isdigit():
        return (0, int(token))
    return (1, token)


@dataclass(frozen=True)
class Record:
    """
    A raw entry read from one partition.

    Attributes:
        data: Opaque payload bytes
        partition_key: Key the producer used to route the record
        sequence_token: Position of the record within its partition
        arrival_timestamp: Approximate time the log accepted the record
        millis_behind: Approximate distance to the head of the partition
    """
    data: bytes
    partition_key: str
    sequence_token: str
    arrival_timestamp: datetime
    millis_behind: int = 0


@dataclass(frozen=True)
class Event(Generic[T]):
    """
    A decoded record.

    Attributes:
        key: Event key (the record's partition key)
        payload: Decoded payload
        arrival_timestamp: Approximate arrival time at the log
        sequence_token: Position within the partition
        lag: Approximate distance to the head of the partition
        partition_id: Partition the event was read from
    """
    key: str
    payload: T
    arrival_timestamp: datetime
    sequence_token: str
    lag: timedelta = timedelta(0)
    partition_id: Optional[str] = None

    @classmethod
    def from_record(
        cls,
        record: Record,
        codec: Callable[[bytes], T],
        partition_id: Optional[str] = None,
    ) -> "Event[T]":
        """
        Decode a record into an event.

        Args:
            record: Raw record
            codec: Payload decoder
            partition_id: Partition the record came from

        Returns:
            Decoded event

        Raises:
            DecodeError: If the codec fails
        """
        try:
            payload = codec(record.data)
        except DecodeError:
            raise
        except Exception as e:
            raise DecodeError(
                f"Failed to decode record {record.sequence_token} "
                f"(key={record.partition_key!r}): {e}"
            ) from e

        return cls(
            key=record.partition_key,
            payload=payload,
            arrival_timestamp=record.arrival_timestamp,
            sequence_token=record.sequence_token,
            lag=timedelta(milliseconds=record.millis_behind),
            partition_id=partition_id,
        )


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OffsetVector(Mapping):
    """
    Immutable mapping of partition id to last consumed sequence token.

    An empty vector means "start of log". Two vectors are equal when their
    mappings are equal.
    """

    __slots__ = ("_positions",)

    def __init__(self, positions: Optional[Mapping] = None):
        self._positions: Dict[str, str] = dict(positions or {})

    @classmethod
    def of(cls, positions: Optional[Mapping] = None) -> "OffsetVector":
        return cls(positions)

    @classmethod
    def empty(cls) -> "OffsetVector":
        return cls()

    def __getitem__(self, partition_id: str) -> str:
        return self._positions[partition_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._positions)

    def __len__(self) -> int:
        return len(self._positions)

    def __hash__(self) -> int:
        return hash(frozenset(self._positions.items()))

    def __repr__(self) -> str:
        return f"OffsetVector({self._positions!r})"

    def is_empty(self) -> bool:
        return not self._positions

    def position_of(self, partition_id: str) -> Optional[str]:
        """
        Get the position of a partition.

        Args:
            partition_id: Partition id

        Returns:
            Last consumed token, or None to start from the beginning
        """
        return self._positions.get(partition_id)

    def with_position(self, partition_id: str, token: str) -> "OffsetVector":
        positions = dict(self._positions)
        positions[partition_id] = token
        return OffsetVector(positions)

    def merge(self, other: Mapping) -> "OffsetVector":
        """Return a vector with the positions of both; other wins on conflict."""
        positions = dict(self._positions)
        positions.update(other)
        return OffsetVector(positions)

    def to_json(self) -> Dict[str, Any]:
        """
        JSON-able representation used in snapshot headers.

        Returns:
            {"startSequenceNumbers": [{"shard": ..., "sequenceNumber": ...}]}
        """
        return {
            "startSequenceNumbers": [
                {"shard": partition_id, "sequenceNumber": token}
                for partition_id, token in sorted(self._positions.items())
            ]
        }

    @classmethod
    def from_json(cls, data: Mapping) -> "OffsetVector":
        """
        Parse the representation produced by to_json().

        Raises:
            DecodeError: If the structure is invalid
        """
        try:
            entries = data["startSequenceNumbers"]
            return cls({entry["shard"]: entry["sequenceNumber"] for entry in entries})
        except (KeyError, TypeError) as e:
            raise DecodeError(f"Invalid offset vector: {data!r}") from e
