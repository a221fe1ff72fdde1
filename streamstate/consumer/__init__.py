"""Partition consumption and consumer registration."""

from streamstate.consumer.event_source import LogEventSource
from streamstate.consumer.partition import PartitionConsumer
from streamstate.consumer.predicates import (
    StopFlag,
    StopPredicate,
    any_of,
    caught_up,
    deadline,
    never,
    on_idle,
)
from streamstate.consumer.registry import ConsumerFailurePolicy, ConsumerRegistry, EventConsumer

__all__ = [
    "ConsumerFailurePolicy",
    "ConsumerRegistry",
    "EventConsumer",
    "LogEventSource",
    "PartitionConsumer",
    "StopFlag",
    "StopPredicate",
    "any_of",
    "caught_up",
    "deadline",
    "never",
    "on_idle",
]
