"""
Registration of event consumers.

Consumers are registered explicitly at startup as (stream name, key pattern,
callback) entries. For every decoded event, all consumers of the event's
stream whose pattern matches the event key are invoked in registration order.
"""

import inspect
import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Pattern

from streamstate.core.errors import ConsumerInvocationError
from streamstate.core.event import Event
from streamstate.utils.logging import get_logger

logger = get_logger(__name__)


class ConsumerFailurePolicy(str, Enum):
    """
    What happens when a consumer callback raises.

    FAIL: the round fails once all partitions have finished
    STOP_PARTITION: only the affected partition stops, at its last good event
    SKIP: the failure is logged and the event skipped
    """

    FAIL = "fail"
    STOP_PARTITION = "stop_partition"
    SKIP = "skip"


@dataclass
class EventConsumer:
    """
    A registered consumer.

    Attributes:
        stream_name: Stream the consumer listens to
        key_pattern: Regex that must match the whole event key
        callback: Called with each matching event
        name: Name used in log output and errors
    """
    stream_name: str
    callback: Callable[[Event], Any]
    key_pattern: str = ".*"
    name: Optional[str] = None
    _compiled: Pattern = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.stream_name:
            raise ValueError("stream name must not be empty")
        if self.key_pattern is None:
            raise ValueError("key pattern must not be None")
        if not callable(self.callback):
            raise TypeError(f"Consumer callback must be callable, got {type(self.callback)}")

        _validate_signature(self.callback)

        try:
            self._compiled = re.compile(self.key_pattern)
        except re.error as e:
            raise ValueError(f"Invalid key pattern {self.key_pattern!r}: {e}") from e

        if self.name is None:
            self.name = getattr(self.callback, "__qualname__", repr(self.callback))

    def matches(self, stream_name: str, key: str) -> bool:
        return stream_name == self.stream_name and self._compiled.fullmatch(key) is not None

    def accept(self, event: Event) -> None:
        """
        Invoke the callback.

        Raises:
            ConsumerInvocationError: If the callback raises
        """
        try:
            self.callback(event)
        except Exception as e:
            raise ConsumerInvocationError(
                f"Consumer {self.name} failed on event {event.key!r}: {e}",
                consumer_name=self.name,
                event_key=event.key,
            ) from e


def _validate_signature(callback: Callable) -> None:
    """Require exactly one parameter, annotated as Event if annotated."""
    try:
        signature = inspect.signature(callback)
    except (TypeError, ValueError):
        return

    params = [
        p for p in signature.parameters.values()
        if p.kind not in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)
    ]

    if len(params) != 1:
        raise ValueError(
            f"Unable to register consumer {callback!r}: expected exactly one parameter, "
            f"got {len(params)}"
        )

    annotation = params[0].annotation
    if annotation is inspect.Parameter.empty or isinstance(annotation, str):
        return

    origin = getattr(annotation, "__origin__", annotation)
    if origin is not Event:
        raise ValueError(
            f"Unable to register consumer {callback!r}: expected parameter type Event, "
            f"not {annotation!r}"
        )


class ConsumerRegistry:
    """
    Ordered collection of event consumers.

    Example:
        registry = ConsumerRegistry()

        @registry.consumer("orders", key_pattern="order-.*")
        def on_order(event: Event) -> None:
            ...
    """

    def __init__(self):
        self._consumers: List[EventConsumer] = []
        self._lock = threading.RLock()

    def register(self, consumer: EventConsumer) -> EventConsumer:
        with self._lock:
            self._consumers.append(consumer)

        logger.info(
            "Registered event consumer",
            consumer=consumer.name,
            stream=consumer.stream_name,
            key_pattern=consumer.key_pattern,
        )

        return consumer

    def consumer(
        self,
        stream_name: str,
        key_pattern: str = ".*",
        name: Optional[str] = None,
    ) -> Callable[[Callable], Callable]:
        """Decorator registering a function as consumer."""

        def decorator(func: Callable) -> Callable:
            self.register(
                EventConsumer(
                    stream_name=stream_name,
                    callback=func,
                    key_pattern=key_pattern,
                    name=name,
                )
            )
            return func

        return decorator

    def consumers_for(self, stream_name: str) -> List[EventConsumer]:
        with self._lock:
            return [c for c in self._consumers if c.stream_name == stream_name]

    def streams(self) -> List[str]:
        """Stream names with at least one consumer, in registration order."""
        with self._lock:
            return list(dict.fromkeys(c.stream_name for c in self._consumers))

    def dispatch(self, stream_name: str, event: Event) -> int:
        """
        Invoke every matching consumer.

        Args:
            stream_name: Stream the event was read from
            event: Decoded event

        Returns:
            Number of consumers invoked

        Raises:
            ConsumerInvocationError: On the first failing consumer
        """
        with self._lock:
            consumers = list(self._consumers)

        invoked = 0
        for consumer in consumers:
            if consumer.matches(stream_name, event.key):
                consumer.accept(event)
                invoked += 1

        return invoked

    def __len__(self) -> int:
        with self._lock:
            return len(self._consumers)
