"""Tests for the snapshot-backed compacting event source."""

import json
import tempfile
import threading
import time
from pathlib import Path

import pytest
from cryptography.fernet import Fernet

from streamstate.compaction.compacting_source import (
    CompactingEventSource,
    SnapshotConfig,
    SourceConfig,
    SourceState,
)
from streamstate.consumer.predicates import on_idle
from streamstate.consumer.registry import ConsumerRegistry, EventConsumer
from streamstate.core.codec import EncryptedCodec
from streamstate.core.errors import SnapshotDecodeError
from streamstate.core.event import offset_token
from streamstate.snapshot.naming import snapshot_name
from streamstate.transport.memory import InMemoryBlobStore, InMemoryLogClient

STREAM = "teststream"


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def log_client():
    return InMemoryLogClient()


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


def append(client, partition, key, value):
    return client.append(STREAM, partition, key, json.dumps(value).encode())


def make_source(log_client, blob_store, temp_dir, registry=None, **overrides):
    snapshot_settings = {
        "temp_dir": str(temp_dir),
        "interval_ms": 3600000,
        "min_events": 1,
        "keep": 3,
    }
    source_settings = {"poll_timeout_ms": 10, "round_pause_ms": 10}
    for key, value in overrides.items():
        if key in snapshot_settings:
            snapshot_settings[key] = value
        else:
            source_settings[key] = value

    return CompactingEventSource(
        stream_name=STREAM,
        log_client=log_client,
        blob_store=blob_store,
        registry=registry,
        config=SourceConfig(**source_settings),
        snapshot_config=SnapshotConfig(**snapshot_settings),
    )


class TestCompactingEventSource:
    """Test CompactingEventSource."""

    def test_cold_start_without_snapshot(self, log_client, blob_store, temp_dir):
        """Test starting a stream that has never been snapshotted."""
        source = make_source(log_client, blob_store, temp_dir)
        assert source.state == SourceState.COLD

        vector = source.start()

        assert vector.is_empty()
        assert source.state == SourceState.LIVE
        assert source.last_snapshot is None

    def test_consume_builds_state(self, log_client, blob_store, temp_dir):
        """Test that live events update the repository."""
        append(log_client, "shard1", "a", 1)
        append(log_client, "shard1", "b", 2)
        append(log_client, "shard2", "a", 3)
        source = make_source(log_client, blob_store, temp_dir)
        source.start()

        vector = source.consume(on_idle)

        assert vector == {"shard1": offset_token(1), "shard2": offset_token(0)}
        assert source.offset_vector == vector
        assert source.repository.get("b") == 2
        assert source.repository.get("a") in (1, 3)

    def test_restore_resumes_after_snapshot(self, log_client, blob_store, temp_dir):
        """Test that a restarted source continues where the snapshot left off."""
        for i in range(5):
            append(log_client, "shard1", f"key-{i}", {"n": i})
        first = make_source(log_client, blob_store, temp_dir)
        first.start()
        first.consume(on_idle)
        name = first.take_snapshot()

        append(log_client, "shard1", "key-5", {"n": 5})
        append(log_client, "shard1", "key-0", {"n": 99})

        live_keys = []
        registry = ConsumerRegistry()
        registry.register(EventConsumer(STREAM, lambda e: live_keys.append(e.key)))
        second = make_source(log_client, blob_store, temp_dir, registry=registry)

        vector = second.start()

        assert second.last_snapshot == name
        assert vector == {"shard1": offset_token(4)}
        assert second.repository.size() == 5

        live_keys.clear()
        second.consume(on_idle)

        assert live_keys == ["key-5", "key-0"]
        assert second.repository.get("key-0") == {"n": 99}
        assert second.repository.size() == 6

    def test_encrypted_stream_restores_from_snapshot(self, log_client, blob_store, temp_dir):
        """Test that snapshots of an encrypted stream stay encrypted and restore."""
        codec = EncryptedCodec(Fernet.generate_key())
        log_client.append(STREAM, "shard1", "card-1", codec.encrypt(b'{"number": "4111"}'))

        def encrypted_source():
            return CompactingEventSource(
                stream_name=STREAM,
                log_client=log_client,
                blob_store=blob_store,
                codec=codec,
                config=SourceConfig(poll_timeout_ms=10),
                snapshot_config=SnapshotConfig(temp_dir=str(temp_dir)),
            )

        first = encrypted_source()
        first.start()
        first.consume(on_idle)
        name = first.take_snapshot()

        assert b"number" not in blob_store.get(name)

        second = encrypted_source()
        second.start()

        assert second.state == SourceState.LIVE
        assert second.repository.get("card-1") == {"number": "4111"}

    def test_restore_matches_full_replay(self, log_client, blob_store, temp_dir):
        """Test that snapshot plus tail equals replaying the whole log."""
        for i in range(20):
            append(log_client, f"shard{i % 3}", f"key-{i % 7}", i)

        first = make_source(log_client, blob_store, temp_dir)
        first.start()
        first.consume(on_idle)
        first.take_snapshot()

        for i in range(20, 30):
            append(log_client, f"shard{i % 3}", f"key-{i % 7}", i)

        restored = make_source(log_client, blob_store, temp_dir)
        restored.start()
        restored.consume(on_idle)

        replayed = make_source(log_client, InMemoryBlobStore(), temp_dir)
        replayed.start()
        replayed.consume(on_idle)

        assert restored.offset_vector == replayed.offset_vector
        assert sorted(restored.repository.keys()) == sorted(replayed.repository.keys())

    def test_snapshot_entries_reach_consumers(self, log_client, blob_store, temp_dir):
        """Test that restored entries are dispatched like live events."""
        append(log_client, "shard1", "order-1", {"total": 3})
        first = make_source(log_client, blob_store, temp_dir)
        first.start()
        first.consume(on_idle)
        name = first.take_snapshot()

        received = []
        registry = ConsumerRegistry()
        registry.register(EventConsumer(STREAM, received.append, key_pattern="order-.*"))

        make_source(log_client, blob_store, temp_dir, registry=registry).start()

        assert [(e.key, e.payload, e.partition_id) for e in received] == [
            ("order-1", {"total": 3}, name)
        ]

    def test_null_payload_removes_key(self, log_client, blob_store, temp_dir):
        """Test that a null payload deletes the key."""
        append(log_client, "shard1", "a", 1)
        append(log_client, "shard1", "a", None)
        source = make_source(log_client, blob_store, temp_dir)
        source.start()

        source.consume(on_idle)

        assert "a" not in source.repository

    def test_corrupt_snapshot_fails_start(self, log_client, blob_store, temp_dir):
        """Test the default restore failure policy."""
        blob_store.put(snapshot_name(STREAM), b"\x00\x00\x00\x10garbage")
        source = make_source(log_client, blob_store, temp_dir)

        with pytest.raises(SnapshotDecodeError):
            source.start()

        assert source.state == SourceState.STOPPED
        assert source.repository.size() == 0

    def test_corrupt_snapshot_starts_empty(self, log_client, blob_store, temp_dir):
        """Test starting from the beginning of the log after a failed restore."""
        append(log_client, "shard1", "a", 1)
        blob_store.put(snapshot_name(STREAM), b"\x00\x00\x00\x10garbage")
        source = make_source(log_client, blob_store, temp_dir, restore_failure="empty")

        vector = source.start()
        source.consume(on_idle)

        assert vector.is_empty()
        assert source.state == SourceState.LIVE
        assert source.repository.get("a") == 1

    def test_policy_triggers_snapshot(self, log_client, blob_store, temp_dir):
        """Test that a due snapshot is written after a round."""
        append(log_client, "shard1", "a", 1)
        source = make_source(log_client, blob_store, temp_dir, interval_ms=0)
        source.start()

        source.consume(on_idle)

        assert source.last_snapshot is not None
        assert blob_store.list() == [source.last_snapshot]
        assert source.policy.events_since_snapshot == 0

    def test_no_snapshot_without_events(self, log_client, blob_store, temp_dir):
        """Test that idle rounds do not write snapshots."""
        log_client.create_partition(STREAM, "shard1")
        source = make_source(log_client, blob_store, temp_dir, interval_ms=0)
        source.start()

        source.consume(on_idle)

        assert blob_store.list() == []

    def test_retention_after_snapshot(self, log_client, blob_store, temp_dir):
        """Test that old snapshots are deleted."""
        append(log_client, "shard1", "a", 1)
        source = make_source(log_client, blob_store, temp_dir, keep=1)
        source.start()
        source.consume(on_idle)

        source.take_snapshot()
        time.sleep(0.005)
        latest = source.take_snapshot()

        assert blob_store.list() == [latest]

    def test_consume_requires_live_source(self, log_client, blob_store, temp_dir):
        """Test lifecycle enforcement."""
        source = make_source(log_client, blob_store, temp_dir)

        with pytest.raises(RuntimeError, match="not live"):
            source.consume(on_idle)

        source.start()
        with pytest.raises(RuntimeError):
            source.start()

        source.stop()
        assert source.state == SourceState.STOPPED
        with pytest.raises(RuntimeError, match="not live"):
            source.consume(on_idle)

    def test_run_until_stopped(self, log_client, blob_store, temp_dir):
        """Test the background consumption loop."""
        log_client.create_partition(STREAM, "shard1")
        source = make_source(log_client, blob_store, temp_dir)
        thread = threading.Thread(target=source.run)
        thread.start()

        append(log_client, "shard1", "late", "value")

        deadline = time.monotonic() + 5
        while source.repository.get("late") is None and time.monotonic() < deadline:
            time.sleep(0.01)

        source.stop()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert source.repository.get("late") == "value"
        assert source.state == SourceState.STOPPED

    def test_context_manager(self, log_client, blob_store, temp_dir):
        """Test start and stop via with-statement."""
        with make_source(log_client, blob_store, temp_dir) as source:
            assert source.state == SourceState.LIVE

        assert source.state == SourceState.STOPPED
