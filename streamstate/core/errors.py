"""Exception hierarchy for streamstate."""

from typing import Optional


class StreamStateError(Exception):
    """Base class for all streamstate errors."""
    pass


class DecodeError(StreamStateError):
    """Raised when a payload or entry cannot be decoded."""
    pass


class SnapshotDecodeError(DecodeError):
    """Raised when a snapshot is corrupt or unreadable."""
    pass


class TransportError(StreamStateError):
    """Raised when reading the log or accessing blob storage fails."""
    pass


class SnapshotUploadError(TransportError):
    """Raised when the blob store rejects a snapshot write."""
    pass


class ConsumerInvocationError(StreamStateError):
    """
    Raised when a registered consumer callback fails.

    Attributes:
        consumer_name: Name of the failing consumer
        event_key: Key of the event being dispatched
    """

    def __init__(
        self,
        message: str,
        consumer_name: Optional[str] = None,
        event_key: Optional[str] = None,
    ):
        super().__init__(message)
        self.consumer_name = consumer_name
        self.event_key = event_key
