"""
streamstate - key/value state projected from partitioned event streams,
compacted into snapshots for fast recovery.
"""

__version__ = "0.1.0"

from streamstate.bootstrap import EventSourcing
from streamstate.compaction import CompactingEventSource, SourceState
from streamstate.consumer import ConsumerRegistry, LogEventSource
from streamstate.core import Event, OffsetVector
from streamstate.state import StateRepository

__all__ = [
    "CompactingEventSource",
    "ConsumerRegistry",
    "Event",
    "EventSourcing",
    "LogEventSource",
    "OffsetVector",
    "SourceState",
    "StateRepository",
    "__version__",
]
