"""Tests for single-partition consumption."""

import json

import pytest

from streamstate.consumer.partition import PartitionConsumer
from streamstate.consumer.predicates import never, on_idle
from streamstate.consumer.registry import ConsumerFailurePolicy
from streamstate.core.errors import ConsumerInvocationError, DecodeError
from streamstate.core.event import offset_token
from streamstate.transport.memory import InMemoryLogClient


@pytest.fixture
def log_client():
    """Log client with five JSON records in one partition."""
    client = InMemoryLogClient()
    for i in range(5):
        client.append("orders", "shard-0", f"order-{i}", json.dumps({"n": i}).encode())
    return client


def failing_on(key):
    def on_event(event):
        if event.key == key:
            raise ConsumerInvocationError("boom", consumer_name="test", event_key=event.key)

    return on_event


class TestPartitionConsumer:
    """Test PartitionConsumer."""

    def test_consumes_until_idle(self, log_client):
        """Test draining a partition."""
        consumer = PartitionConsumer(log_client, "orders", poll_timeout_ms=10)
        events = []

        last = consumer.consume("shard-0", None, on_idle, events.append)

        assert [e.payload["n"] for e in events] == [0, 1, 2, 3, 4]
        assert all(e.partition_id == "shard-0" for e in events)
        assert last == offset_token(4)

    def test_resumes_after_start_token(self, log_client):
        """Test that consumption starts after the given token."""
        consumer = PartitionConsumer(log_client, "orders", poll_timeout_ms=10)
        events = []

        consumer.consume("shard-0", offset_token(2), on_idle, events.append)

        assert [e.key for e in events] == ["order-3", "order-4"]

    def test_idle_partition_returns_start_token(self, log_client):
        """Test that nothing consumed means the start token is returned."""
        consumer = PartitionConsumer(log_client, "orders", poll_timeout_ms=10)

        last = consumer.consume("shard-0", offset_token(4), on_idle, lambda e: None)

        assert last == offset_token(4)

    def test_predicate_sees_event_before_processing(self, log_client):
        """Test that a stopping event is not processed and not committed."""
        consumer = PartitionConsumer(log_client, "orders", poll_timeout_ms=10)
        events = []

        def stop_at_order_2(event):
            return event is None or event.key == "order-2"

        last = consumer.consume("shard-0", None, stop_at_order_2, events.append)

        assert [e.key for e in events] == ["order-0", "order-1"]
        assert last == offset_token(1)

    def test_idle_check_can_continue(self, log_client):
        """Test that returning False on None keeps polling."""
        consumer = PartitionConsumer(log_client, "orders", poll_timeout_ms=10)
        idle_checks = []

        def predicate(event):
            if event is None:
                idle_checks.append(1)
                return len(idle_checks) >= 3
            return False

        consumer.consume("shard-0", offset_token(4), predicate, lambda e: None)

        assert len(idle_checks) == 3

    def test_decode_error_fails_partition(self):
        """Test that undecodable records stop consumption with an error."""
        client = InMemoryLogClient()
        client.append("orders", "shard-0", "bad", b"{not json")
        consumer = PartitionConsumer(client, "orders", poll_timeout_ms=10)

        with pytest.raises(DecodeError):
            consumer.consume("shard-0", None, never, lambda e: None)

    def test_fail_policy_raises(self, log_client):
        """Test the default failure policy."""
        consumer = PartitionConsumer(log_client, "orders", poll_timeout_ms=10)

        with pytest.raises(ConsumerInvocationError):
            consumer.consume("shard-0", None, on_idle, failing_on("order-2"))

    def test_stop_partition_policy(self, log_client):
        """Test that the partition stops at the last good event."""
        consumer = PartitionConsumer(
            log_client,
            "orders",
            poll_timeout_ms=10,
            failure_policy=ConsumerFailurePolicy.STOP_PARTITION,
        )

        last = consumer.consume("shard-0", None, on_idle, failing_on("order-2"))

        assert last == offset_token(1)

    def test_skip_policy(self, log_client):
        """Test that failed events are skipped."""
        consumer = PartitionConsumer(
            log_client,
            "orders",
            poll_timeout_ms=10,
            failure_policy="skip",
        )

        last = consumer.consume("shard-0", None, on_idle, failing_on("order-2"))

        assert last == offset_token(4)
