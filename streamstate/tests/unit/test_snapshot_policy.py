"""Tests for snapshot scheduling and retention."""

import pytest

from streamstate.snapshot.naming import snapshot_name
from streamstate.snapshot.policy import SnapshotPolicy, SnapshotRetention
from streamstate.transport.memory import InMemoryBlobStore


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestSnapshotPolicy:
    """Test SnapshotPolicy."""

    def test_requires_interval_and_events(self):
        """Test that both conditions must hold."""
        clock = FakeClock()
        policy = SnapshotPolicy(interval_ms=1000, min_events=2, clock=clock)

        policy.record_events(5)
        assert not policy.should_snapshot()

        clock.now = 1.0
        assert policy.should_snapshot()

    def test_too_few_events(self):
        """Test that an idle stream is not snapshotted."""
        clock = FakeClock()
        policy = SnapshotPolicy(interval_ms=1000, min_events=2, clock=clock)

        clock.now = 10.0
        policy.record_events()

        assert not policy.should_snapshot()

    def test_snapshot_taken_resets(self):
        """Test that taking a snapshot restarts both counters."""
        clock = FakeClock()
        policy = SnapshotPolicy(interval_ms=1000, min_events=1, clock=clock)
        clock.now = 2.0
        policy.record_events(3)

        policy.snapshot_taken()

        assert policy.events_since_snapshot == 0
        assert not policy.should_snapshot()

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            SnapshotPolicy(interval_ms=-1)

        with pytest.raises(ValueError):
            SnapshotPolicy(min_events=-1)


class TestSnapshotRetention:
    """Test SnapshotRetention."""

    def test_keeps_most_recent(self):
        """Test that only the newest snapshots survive."""
        store = InMemoryBlobStore()
        names = [snapshot_name("teststream", ts) for ts in (1000, 2000, 3000, 4000)]
        for name in names:
            store.put(name, b"x")
        store.put(snapshot_name("otherstream", 500), b"x")

        deleted = SnapshotRetention(store, keep=2).apply("teststream")

        assert sorted(deleted) == sorted(names[:2])
        assert store.list("compaction-teststream-") == [names[3], names[2]]
        assert len(store.list("compaction-otherstream-")) == 1

    def test_nothing_to_delete(self):
        """Test a stream below the retention limit."""
        store = InMemoryBlobStore()
        store.put(snapshot_name("teststream", 1000), b"x")

        assert SnapshotRetention(store, keep=3).apply("teststream") == []

    def test_keep_must_be_positive(self):
        with pytest.raises(ValueError):
            SnapshotRetention(InMemoryBlobStore(), keep=0)
