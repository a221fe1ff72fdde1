"""Tests for fan-out consumption over all open partitions."""

import json
import threading
import time

import pytest

from streamstate.consumer.event_source import LogEventSource
from streamstate.consumer.predicates import on_idle
from streamstate.consumer.registry import ConsumerFailurePolicy
from streamstate.core.errors import ConsumerInvocationError, TransportError
from streamstate.core.event import OffsetVector, offset_token, sequence_key
from streamstate.transport.memory import InMemoryLogClient


def fill(client, stream, partitions, count):
    for partition in partitions:
        for i in range(count):
            client.append(stream, partition, f"{partition}-{i}", json.dumps(i).encode())


class TestLogEventSource:
    """Test LogEventSource."""

    def test_consumes_all_partitions(self):
        """Test that every open partition is drained."""
        client = InMemoryLogClient()
        fill(client, "teststream", ["shard1", "shard2", "shard3"], 4)
        source = LogEventSource("teststream", client, poll_timeout_ms=10)
        events = []
        lock = threading.Lock()

        def on_event(event):
            with lock:
                events.append(event)

        vector = source.consume_all(OffsetVector.empty(), on_idle, on_event)

        assert vector == {
            "shard1": offset_token(3),
            "shard2": offset_token(3),
            "shard3": offset_token(3),
        }
        assert len(events) == 12

    def test_per_partition_order(self):
        """Test that events of one partition arrive in sequence order."""
        client = InMemoryLogClient()
        fill(client, "teststream", ["shard1", "shard2"], 20)
        source = LogEventSource("teststream", client, poll_timeout_ms=10)
        seen = {"shard1": [], "shard2": []}

        source.consume_all(
            OffsetVector.empty(),
            on_idle,
            lambda e: seen[e.partition_id].append(e.sequence_token),
        )

        for tokens in seen.values():
            assert tokens == sorted(tokens, key=sequence_key)
            assert len(tokens) == 20

    def test_result_never_moves_backwards(self):
        """Test that resumed rounds only advance positions."""
        client = InMemoryLogClient()
        fill(client, "teststream", ["shard1", "shard2"], 3)
        source = LogEventSource("teststream", client, poll_timeout_ms=10)

        first = source.consume_all(OffsetVector.empty(), on_idle, lambda e: None)
        client.append("teststream", "shard1", "late", b"1")
        second = source.consume_all(first, on_idle, lambda e: None)

        for partition in first:
            assert sequence_key(second[partition]) >= sequence_key(first[partition])
        assert second["shard1"] == offset_token(3)
        assert second["shard2"] == first["shard2"]

    def test_no_open_partitions(self):
        """Test that a stream without open partitions yields an empty vector."""
        source = LogEventSource("teststream", InMemoryLogClient(), poll_timeout_ms=10)

        vector = source.consume_all(OffsetVector({"old": "1"}), on_idle, lambda e: None)

        assert vector.is_empty()

    def test_closed_partitions_are_dropped(self):
        """Test that closed partitions disappear from the result."""
        client = InMemoryLogClient()
        fill(client, "teststream", ["shard1", "shard2"], 2)
        client.close_partition("teststream", "shard1")
        source = LogEventSource("teststream", client, poll_timeout_ms=10)

        vector = source.consume_all(
            OffsetVector({"shard1": offset_token(0)}), on_idle, lambda e: None
        )

        assert vector == {"shard2": offset_token(1)}

    def test_new_partitions_start_at_beginning(self):
        """Test that partitions missing from the start vector are read from the start."""
        client = InMemoryLogClient()
        fill(client, "teststream", ["shard1"], 2)
        source = LogEventSource("teststream", client, poll_timeout_ms=10)
        first = source.consume_all(OffsetVector.empty(), on_idle, lambda e: None)

        fill(client, "teststream", ["shard2"], 2)
        keys = []
        second = source.consume_all(first, on_idle, lambda e: keys.append(e.key))

        assert keys == ["shard2-0", "shard2-1"]
        assert second == {"shard1": offset_token(1), "shard2": offset_token(1)}

    def test_idle_partition_without_events_is_omitted(self):
        """Test that a partition with no consumed record has no position."""
        client = InMemoryLogClient()
        fill(client, "teststream", ["shard1"], 1)
        client.create_partition("teststream", "shard2")
        source = LogEventSource("teststream", client, poll_timeout_ms=10)

        vector = source.consume_all(OffsetVector.empty(), on_idle, lambda e: None)

        assert vector == {"shard1": offset_token(0)}

    def test_stop_on_first_record_after_idle(self):
        """Test that each partition advances by at most one token."""
        client = InMemoryLogClient()
        client.create_partition("teststream", "shard1")
        client.create_partition("teststream", "shard2")
        source = LogEventSource("teststream", client, poll_timeout_ms=10)
        idle_threads = set()
        lock = threading.Lock()
        both_idle = threading.Event()

        def stop_on_first_record_after_idle(event):
            with lock:
                seen_idle = threading.get_ident() in idle_threads
                if event is None:
                    idle_threads.add(threading.get_ident())
                    if len(idle_threads) == 2:
                        both_idle.set()
                    return False
            return seen_idle

        result = {}

        def run():
            result["vector"] = source.consume_all(
                OffsetVector.empty(), stop_on_first_record_after_idle, lambda e: None
            )

        worker = threading.Thread(target=run)
        worker.start()

        assert both_idle.wait(5)
        fill(client, "teststream", ["shard1", "shard2"], 3)
        worker.join(5)

        assert not worker.is_alive()
        for partition in ("shard1", "shard2"):
            position = result["vector"].position_of(partition)
            advanced = 0 if position is None else int(position) + 1
            assert advanced <= 1

    def test_error_raised_after_all_partitions_finish(self):
        """Test that a failure does not abort the other partitions."""
        client = InMemoryLogClient()
        fill(client, "teststream", ["shard1", "shard2"], 3)
        source = LogEventSource("teststream", client, poll_timeout_ms=10)
        processed = []
        lock = threading.Lock()

        def on_event(event):
            if event.partition_id == "shard1":
                raise ConsumerInvocationError("boom", event_key=event.key)
            time.sleep(0.01)
            with lock:
                processed.append(event.key)

        with pytest.raises(ConsumerInvocationError):
            source.consume_all(OffsetVector.empty(), on_idle, on_event)

        assert processed == ["shard2-0", "shard2-1", "shard2-2"]

    def test_transport_error_propagates(self):
        """Test that transport failures reach the caller."""

        class BrokenClient(InMemoryLogClient):
            def read_from(self, stream_name, partition_id, token, timeout):
                raise TransportError("connection reset")

        client = BrokenClient()
        client.create_partition("teststream", "shard1")
        source = LogEventSource("teststream", client, poll_timeout_ms=10)

        with pytest.raises(TransportError, match="connection reset"):
            source.consume_all(OffsetVector.empty(), on_idle, lambda e: None)

    def test_skip_policy_applies_to_all_partitions(self):
        """Test that skipped failures still advance positions."""
        client = InMemoryLogClient()
        fill(client, "teststream", ["shard1", "shard2"], 2)
        source = LogEventSource(
            "teststream",
            client,
            poll_timeout_ms=10,
            failure_policy=ConsumerFailurePolicy.SKIP,
        )

        def on_event(event):
            raise ConsumerInvocationError("boom", event_key=event.key)

        vector = source.consume_all(OffsetVector.empty(), on_idle, on_event)

        assert vector == {"shard1": offset_token(1), "shard2": offset_token(1)}

    def test_bounded_workers(self):
        """Test consuming more partitions than threads."""
        client = InMemoryLogClient()
        fill(client, "teststream", ["s1", "s2", "s3", "s4"], 2)
        source = LogEventSource("teststream", client, poll_timeout_ms=10, max_workers=2)

        vector = source.consume_all(OffsetVector.empty(), on_idle, lambda e: None)

        assert len(vector) == 4
