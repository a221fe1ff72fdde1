"""
Compacting event source.

Combines live consumption with snapshots so that recovery starts near the
head of the log:

    COLD -> RESTORING -> LIVE -> STOPPED

On start the most recent snapshot is replayed into the state repository and
its offset vector becomes the starting point of live consumption. While live,
every consumption round updates the repository and the registered consumers,
and the snapshot policy decides when to checkpoint.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from streamstate.consumer.event_source import LogEventSource
from streamstate.consumer.predicates import StopFlag, StopPredicate, any_of, deadline, never, on_idle
from streamstate.consumer.registry import ConsumerFailurePolicy, ConsumerRegistry
from streamstate.core.codec import Codec, Encoder, encoder_matching, json_codec
from streamstate.core.errors import SnapshotDecodeError, StreamStateError
from streamstate.core.event import Event, OffsetVector
from streamstate.snapshot.policy import SnapshotPolicy, SnapshotRetention
from streamstate.snapshot.reader import SnapshotReader
from streamstate.snapshot.writer import SnapshotWriter
from streamstate.state.repository import StateRepository
from streamstate.transport.base import BlobStore, LogClient
from streamstate.utils.config import Config
from streamstate.utils.logging import get_logger, log_context

logger = get_logger(__name__)


class SourceState(str, Enum):
    """Lifecycle states of a CompactingEventSource."""

    COLD = "cold"
    RESTORING = "restoring"
    LIVE = "live"
    STOPPED = "stopped"


class RestoreFailurePolicy(str, Enum):
    """
    What happens when the latest snapshot cannot be decoded.

    FAIL: start() raises
    EMPTY: start from an empty repository at the beginning of the log
    """

    FAIL = "fail"
    EMPTY = "empty"


@dataclass
class SourceConfig:
    """
    Consumption settings.

    Attributes:
        poll_timeout_ms: How long a partition read waits for a record
        failure_policy: ConsumerFailurePolicy value
        max_workers: Thread limit per round (None = one per partition)
        restore_failure: RestoreFailurePolicy value
        max_round_ms: Upper bound for one consumption round in run()
        round_pause_ms: Pause between rounds in run()
    """
    poll_timeout_ms: int = 1000
    failure_policy: str = ConsumerFailurePolicy.FAIL.value
    max_workers: Optional[int] = None
    restore_failure: str = RestoreFailurePolicy.FAIL.value
    max_round_ms: int = 60000
    round_pause_ms: int = 100

    @classmethod
    def from_config(cls, config: Config) -> "SourceConfig":
        defaults = cls()
        return cls(
            poll_timeout_ms=config.get("transport.log.poll_timeout_ms", defaults.poll_timeout_ms),
            failure_policy=config.get("consumer.failure_policy", defaults.failure_policy),
            max_workers=config.get("consumer.max_workers", defaults.max_workers),
            restore_failure=config.get("snapshot.restore_failure", defaults.restore_failure),
            max_round_ms=config.get("consumer.max_round_ms", defaults.max_round_ms),
            round_pause_ms=config.get("snapshot.round_pause_ms", defaults.round_pause_ms),
        )


@dataclass
class SnapshotConfig:
    """
    Snapshot settings.

    Attributes:
        temp_dir: Directory for local snapshot files (None = system temp)
        interval_ms: Minimum time between snapshots
        min_events: Minimum events applied between snapshots
        keep: Number of snapshots kept per stream
    """
    temp_dir: Optional[str] = None
    interval_ms: int = 300000
    min_events: int = 1
    keep: int = 3

    @classmethod
    def from_config(cls, config: Config) -> "SnapshotConfig":
        defaults = cls()
        return cls(
            temp_dir=config.get("snapshot.temp_dir", defaults.temp_dir),
            interval_ms=config.get("snapshot.interval_ms", defaults.interval_ms),
            min_events=config.get("snapshot.min_events", defaults.min_events),
            keep=config.get("snapshot.keep", defaults.keep),
        )


class CompactingEventSource:
    """
    Event source that restores from and writes snapshots.

    Example:
        source = CompactingEventSource("orders", log_client, blob_store)
        source.start()
        source.consume(on_idle)
        source.take_snapshot()
    """

    def __init__(
        self,
        stream_name: str,
        log_client: LogClient,
        blob_store: BlobStore,
        codec: Codec = json_codec,
        encoder: Optional[Encoder] = None,
        repository: Optional[StateRepository] = None,
        registry: Optional[ConsumerRegistry] = None,
        config: Optional[SourceConfig] = None,
        snapshot_config: Optional[SnapshotConfig] = None,
    ):
        """
        Initialize compacting event source.

        Args:
            stream_name: Stream to consume
            log_client: Client for the partitioned log
            blob_store: Store for snapshots
            codec: Payload decoder, used for live records and snapshots
            encoder: Payload encoder for snapshots (default: inverse of codec)
            repository: State repository (a new one if None)
            registry: Consumers to dispatch events to
            config: Consumption settings
            snapshot_config: Snapshot settings
        """
        self.stream_name = stream_name
        self.codec = codec
        self.config = config or SourceConfig()
        self.snapshot_config = snapshot_config or SnapshotConfig()
        self.repository = repository if repository is not None else StateRepository(stream_name)
        self.registry = registry if registry is not None else ConsumerRegistry()

        self.restore_failure = RestoreFailurePolicy(self.config.restore_failure)

        self._event_source = LogEventSource(
            stream_name=stream_name,
            log_client=log_client,
            codec=codec,
            poll_timeout_ms=self.config.poll_timeout_ms,
            failure_policy=ConsumerFailurePolicy(self.config.failure_policy),
            max_workers=self.config.max_workers,
        )

        temp_dir = Path(self.snapshot_config.temp_dir) if self.snapshot_config.temp_dir else None
        self._writer = SnapshotWriter(
            blob_store, temp_dir=temp_dir, encoder=encoder or encoder_matching(codec)
        )
        self._reader = SnapshotReader(blob_store)
        self._policy = SnapshotPolicy(
            interval_ms=self.snapshot_config.interval_ms,
            min_events=self.snapshot_config.min_events,
        )
        self._retention = SnapshotRetention(blob_store, keep=self.snapshot_config.keep)

        self._state = SourceState.COLD
        self._vector = OffsetVector.empty()
        self._last_snapshot: Optional[str] = None
        self._stop_flag = StopFlag()
        self._state_lock = threading.RLock()
        self._snapshot_lock = threading.Lock()

        logger.info(
            "Initialized compacting event source",
            stream=stream_name,
            consumers=len(self.registry.consumers_for(stream_name)),
            snapshot_interval_ms=self.snapshot_config.interval_ms,
            restore_failure=self.restore_failure.value,
        )

    @property
    def state(self) -> SourceState:
        with self._state_lock:
            return self._state

    @property
    def offset_vector(self) -> OffsetVector:
        with self._state_lock:
            return self._vector

    @property
    def last_snapshot(self) -> Optional[str]:
        return self._last_snapshot

    @property
    def policy(self) -> SnapshotPolicy:
        return self._policy

    def _transition(self, expected: SourceState, target: SourceState) -> None:
        with self._state_lock:
            if self._state != expected:
                raise RuntimeError(
                    f"Cannot move {self.stream_name} from {self._state.value} to {target.value}"
                )
            self._state = target

        logger.info(
            "Source state changed",
            stream=self.stream_name,
            previous=expected.value,
            state=target.value,
        )

    def start(self) -> OffsetVector:
        """
        Restore from the latest snapshot and go live.

        Returns:
            Offset vector live consumption resumes from

        Raises:
            SnapshotDecodeError: If the snapshot is corrupt and the restore
                failure policy is FAIL
            TransportError: If listing or downloading snapshots fails
        """
        self._transition(SourceState.COLD, SourceState.RESTORING)

        try:
            vector = self._restore()
        except SnapshotDecodeError as e:
            self.repository.clear()

            if self.restore_failure == RestoreFailurePolicy.FAIL:
                self._transition(SourceState.RESTORING, SourceState.STOPPED)
                logger.error("Snapshot restore failed", stream=self.stream_name, error=str(e))
                raise

            logger.warning(
                "Snapshot restore failed, starting from an empty state at the beginning of the log",
                stream=self.stream_name,
                error=str(e),
            )
            vector = OffsetVector.empty()
        except Exception:
            self.repository.clear()
            self._transition(SourceState.RESTORING, SourceState.STOPPED)
            raise

        with self._state_lock:
            self._vector = vector

        self._transition(SourceState.RESTORING, SourceState.LIVE)

        return vector

    def _restore(self) -> OffsetVector:
        latest = self._reader.download_latest(self.stream_name)
        if latest is None:
            return OffsetVector.empty()

        name, data = latest
        vector = self._reader.consume_snapshot(data, name, never, self._dispatch, self.codec)
        self._last_snapshot = name

        logger.info(
            "Restored state from snapshot",
            stream=self.stream_name,
            name=name,
            entries=self.repository.size(),
            positions=dict(vector),
        )

        return vector

    def _dispatch(self, event: Event) -> None:
        """Apply an event to the repository and the registered consumers."""
        if event.payload is None:
            self.repository.remove(event.key)
        else:
            self.repository.put(event.key, event.payload)

        self.registry.dispatch(self.stream_name, event)

    def _on_live_event(self, event: Event) -> None:
        self._dispatch(event)
        self._policy.record_events()

    def consume(self, stop_predicate: StopPredicate = on_idle) -> OffsetVector:
        """
        Run one consumption round from the last known positions.

        Takes a snapshot afterwards if the snapshot policy says so.

        Args:
            stop_predicate: Ends the round per partition; stop() also ends it

        Returns:
            Positions after the round

        Raises:
            RuntimeError: If the source is not live
        """
        if self.state != SourceState.LIVE:
            raise RuntimeError(f"Source {self.stream_name} is not live ({self.state.value})")

        vector = self._event_source.consume_all(
            self.offset_vector,
            any_of(self._stop_flag, stop_predicate),
            self._on_live_event,
        )

        with self._state_lock:
            self._vector = vector

        if self._policy.should_snapshot():
            self.take_snapshot()

        return vector

    def take_snapshot(self) -> str:
        """
        Snapshot the repository at the current positions.

        Outdated snapshots beyond the retention limit are deleted afterwards.

        Returns:
            Snapshot name

        Raises:
            SnapshotUploadError: If the upload fails
        """
        with self._snapshot_lock:
            name = self._writer.take_snapshot(self.stream_name, self.offset_vector, self.repository)
            self._policy.snapshot_taken()
            self._last_snapshot = name

            try:
                self._retention.apply(self.stream_name)
            except StreamStateError as e:
                logger.error(
                    "Failed to delete outdated snapshots",
                    stream=self.stream_name,
                    error=str(e),
                )

        return name

    def run(self) -> None:
        """
        Consume until stop() is called.

        Starts the source first if it is still cold. Each round ends when all
        partitions are idle or after max_round_ms.
        """
        with log_context(stream=self.stream_name):
            if self.state == SourceState.COLD:
                self.start()

            logger.info("Running compacting event source")

            while not self._stop_flag.is_set():
                round_predicate = any_of(on_idle, deadline(self.config.max_round_ms / 1000.0))

                try:
                    self.consume(round_predicate)
                except RuntimeError:
                    if self._stop_flag.is_set():
                        break
                    raise

                self._stop_flag.wait(self.config.round_pause_ms / 1000.0)

            logger.info("Compacting event source stopped")

    def stop(self) -> None:
        """Signal the consumption loop to stop; consumption cannot resume."""
        self._stop_flag.set()

        with self._state_lock:
            previous = self._state
            self._state = SourceState.STOPPED

        if previous != SourceState.STOPPED:
            logger.info("Stopping compacting event source", stream=self.stream_name)

    def __enter__(self) -> "CompactingEventSource":
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()
