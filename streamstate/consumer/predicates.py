"""
Stop predicates for partition consumption.

A stop predicate is called with every event before it is processed and with
None whenever a partition has no record available. Returning True halts that
partition. Predicates are shared by all partition threads of a round.
"""

import threading
import time
from typing import Callable, Optional

from streamstate.core.event import Event

StopPredicate = Callable[[Optional[Event]], bool]


def never(event: Optional[Event]) -> bool:
    """Consume forever."""
    return False


def on_idle(event: Optional[Event]) -> bool:
    """Stop as soon as a partition has no record available."""
    return event is None


def caught_up(max_lag_ms: Optional[int] = None) -> StopPredicate:
    """
    Stop when a partition is idle, or when events are close to the head.

    Args:
        max_lag_ms: Stop at the first event whose lag is at most this many
            milliseconds (None: only stop when idle)
    """

    def predicate(event: Optional[Event]) -> bool:
        if event is None:
            return True
        if max_lag_ms is None:
            return False
        return event.lag.total_seconds() * 1000 <= max_lag_ms

    return predicate


def deadline(seconds: float) -> StopPredicate:
    """Stop every partition once the given number of seconds has elapsed."""
    end = time.monotonic() + seconds

    def predicate(event: Optional[Event]) -> bool:
        return time.monotonic() >= end

    return predicate


def any_of(*predicates: StopPredicate) -> StopPredicate:
    """Stop when any of the predicates says so."""

    def predicate(event: Optional[Event]) -> bool:
        return any(p(event) for p in predicates)

    return predicate


class StopFlag:
    """
    Cancellation flag usable as a stop predicate.

    Example:
        flag = StopFlag()
        threading.Timer(5.0, flag.set).start()
        source.consume_all(OffsetVector.empty(), flag, handle)
    """

    def __init__(self):
        self._event = threading.Event()

    def set(self) -> None:
        self._event.set()

    def clear(self) -> None:
        self._event.clear()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the flag is set or the timeout expires."""
        return self._event.wait(timeout)

    def __call__(self, event: Optional[Event]) -> bool:
        return self._event.is_set()
