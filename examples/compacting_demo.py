#!/usr/bin/env python3
"""
Demo of snapshot-based recovery.

Builds an order projection from a file-backed log, snapshots it, appends more
events and shows that a restarted source restores from the snapshot and only
consumes the new tail.
"""

import json
import tempfile
from pathlib import Path

from streamstate.compaction import CompactingEventSource, SnapshotConfig, SourceConfig
from streamstate.consumer import ConsumerRegistry, on_idle
from streamstate.core import Event
from streamstate.transport import FileLogClient, LocalBlobStore


def build_source(log, snapshots, temp_dir, registry):
    return CompactingEventSource(
        stream_name="orders",
        log_client=log,
        blob_store=snapshots,
        registry=registry,
        config=SourceConfig(poll_timeout_ms=50),
        snapshot_config=SnapshotConfig(temp_dir=str(temp_dir)),
    )


def main():
    print("=" * 60)
    print("streamstate - Snapshot Recovery Demo")
    print("=" * 60)

    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        log = FileLogClient(root / "streams")
        snapshots = LocalBlobStore(root / "snapshots")

        registry = ConsumerRegistry()
        live = []

        @registry.consumer("orders", key_pattern="order-.*")
        def on_order(event: Event) -> None:
            live.append(event.key)

        print("\n[1] Appending 6 orders to 2 partitions...")
        for i in range(6):
            order = {"id": i, "total": 10 * i, "status": "open"}
            log.append("orders", f"shard-{i % 2}", f"order-{i}", json.dumps(order).encode("utf-8"))

        print("\n[2] Consuming and taking a snapshot...")
        source = build_source(log, snapshots, root / "tmp", registry)
        source.start()
        vector = source.consume(on_idle)
        name = source.take_snapshot()
        source.stop()
        print(f"  Positions: {dict(vector)}")
        print(f"  Snapshot:  {name}")

        print("\n[3] Closing order 1 and adding order 6...")
        log.append("orders", "shard-1", "order-1", b'{"id": 1, "total": 10, "status": "closed"}')
        log.append("orders", "shard-0", "order-6", b'{"id": 6, "total": 60, "status": "open"}')

        print("\n[4] Restarting from the snapshot...")
        live.clear()
        restarted = build_source(log, snapshots, root / "tmp", registry)
        restored = restarted.start()
        print(f"  Restored {restarted.repository.size()} orders at {dict(restored)}")

        live.clear()
        restarted.consume(on_idle)
        restarted.stop()
        print(f"  Live events after restore: {live}")
        print(f"  order-1: {restarted.repository.get('order-1')}")
        print(f"  Total orders: {restarted.repository.size()}")

    print("\n" + "=" * 60)
    print("Demo complete")
    print("=" * 60)


if __name__ == "__main__":
    main()
