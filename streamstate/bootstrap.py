"""
Composition root.

Builds the log client, blob stores and codec from configuration and wires one
CompactingEventSource per stream, each running on its own thread.
"""

import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from streamstate.compaction.compacting_source import (
    CompactingEventSource,
    SnapshotConfig,
    SourceConfig,
    SourceState,
)
from streamstate.consumer.predicates import StopPredicate, on_idle
from streamstate.consumer.registry import ConsumerRegistry
from streamstate.core.codec import (
    Codec,
    Encoder,
    EncryptedCodec,
    EncryptingEncoder,
    bytes_codec,
    encoder_matching,
    json_codec,
    text_codec,
)
from streamstate.core.event import OffsetVector
from streamstate.state.repository import StateRepository
from streamstate.transport.base import BlobStore, LogClient
from streamstate.transport.kinesis import KinesisLogClient
from streamstate.transport.local import FileLogClient, LocalBlobStore
from streamstate.transport.memory import InMemoryBlobStore, InMemoryLogClient
from streamstate.transport.s3 import S3BlobStore
from streamstate.utils.config import Config, get_config
from streamstate.utils.logging import get_logger

logger = get_logger(__name__)

BlobStoreFactory = Callable[[str], BlobStore]

CODECS: Dict[str, Codec] = {
    "json": json_codec,
    "text": text_codec,
    "bytes": bytes_codec,
}


def create_log_client(config: Config) -> LogClient:
    """
    Build the log client selected by transport.log.type.

    Raises:
        ValueError: If the type is unknown
    """
    log_type = config.get("transport.log.type", "file")

    if log_type == "memory":
        return InMemoryLogClient()

    if log_type == "file":
        return FileLogClient(Path(config.get("transport.log.directory", "./data/streams")))

    if log_type == "kinesis":
        return KinesisLogClient(
            region_name=config.get("transport.aws.region"),
            endpoint_url=config.get("transport.aws.endpoint_url"),
        )

    raise ValueError(f"Unknown log transport: {log_type}")


def bucket_name(config: Config, stream_name: str) -> str:
    template = config.get("transport.blob.bucket_template", "{stream}-snapshots")
    return template.format(stream=stream_name)


def create_blob_store(config: Config, stream_name: str) -> BlobStore:
    """
    Build the snapshot store of a stream selected by transport.blob.type.

    Every stream gets its own bucket (or directory) named after
    transport.blob.bucket_template.

    Raises:
        ValueError: If the type is unknown
    """
    blob_type = config.get("transport.blob.type", "local")
    bucket = bucket_name(config, stream_name)

    if blob_type == "memory":
        return InMemoryBlobStore()

    if blob_type == "local":
        directory = Path(config.get("transport.blob.directory", "./data/snapshots"))
        return LocalBlobStore(directory / bucket)

    if blob_type == "s3":
        return S3BlobStore(
            bucket,
            region=config.get("transport.aws.region"),
            endpoint_url=config.get("transport.aws.endpoint_url"),
        )

    raise ValueError(f"Unknown blob transport: {blob_type}")


def create_codec(config: Config) -> Tuple[Codec, Encoder]:
    """
    Build the payload codec and its matching snapshot encoder.

    With codec.encryption_key set, payloads are Fernet-encrypted on the log
    and in snapshots.

    Raises:
        ValueError: If the codec type is unknown
    """
    codec_type = config.get("codec.type", "json")
    if codec_type not in CODECS:
        raise ValueError(f"Unknown codec: {codec_type}")

    codec = CODECS[codec_type]
    encoder = encoder_matching(codec)

    key = config.get("codec.encryption_key")
    if key:
        key_bytes = key.encode("ascii") if isinstance(key, str) else key
        return EncryptedCodec(key_bytes, inner=codec), EncryptingEncoder(key_bytes, inner=encoder)

    return codec, encoder


class EventSourcing:
    """
    Runs a compacting event source per stream.

    Example:
        registry = ConsumerRegistry()

        @registry.consumer("orders", key_pattern="order-.*")
        def on_order(event: Event) -> None:
            ...

        with EventSourcing(["orders"], registry=registry) as sourcing:
            sourcing.wait()
    """

    def __init__(
        self,
        stream_names: Optional[Iterable[str]] = None,
        config: Optional[Config] = None,
        registry: Optional[ConsumerRegistry] = None,
        log_client: Optional[LogClient] = None,
        blob_store_factory: Optional[BlobStoreFactory] = None,
    ):
        """
        Initialize event sourcing.

        Args:
            stream_names: Streams to consume (default: streams of the registry)
            config: Configuration (default: process-wide configuration)
            registry: Consumers to dispatch events to
            log_client: Log client (default: built from configuration)
            blob_store_factory: Maps a stream name to its snapshot store
                (default: built from configuration)

        Raises:
            ValueError: If no stream is given
        """
        self.config = config or get_config()
        self.registry = registry if registry is not None else ConsumerRegistry()

        names = list(stream_names) if stream_names is not None else self.registry.streams()
        self.stream_names: List[str] = list(dict.fromkeys(names))
        if not self.stream_names:
            raise ValueError("At least one stream is required")

        self.log_client = log_client or create_log_client(self.config)
        self._blob_store_factory = blob_store_factory or (
            lambda stream_name: create_blob_store(self.config, stream_name)
        )

        codec, encoder = create_codec(self.config)
        source_config = SourceConfig.from_config(self.config)
        snapshot_config = SnapshotConfig.from_config(self.config)

        self.sources: Dict[str, CompactingEventSource] = {
            name: CompactingEventSource(
                stream_name=name,
                log_client=self.log_client,
                blob_store=self._blob_store_factory(name),
                codec=codec,
                encoder=encoder,
                registry=self.registry,
                config=source_config,
                snapshot_config=snapshot_config,
            )
            for name in self.stream_names
        }

        self._threads: Dict[str, threading.Thread] = {}
        self._errors: Dict[str, BaseException] = {}
        self._lock = threading.Lock()

        logger.info(
            "Initialized event sourcing",
            streams=self.stream_names,
            consumers=len(self.registry),
        )

    def source(self, stream_name: str) -> CompactingEventSource:
        """
        Raises:
            KeyError: If the stream is not managed here
        """
        return self.sources[stream_name]

    def repository(self, stream_name: str) -> StateRepository:
        return self.sources[stream_name].repository

    @property
    def errors(self) -> Dict[str, BaseException]:
        """Failures of stream threads, by stream name."""
        with self._lock:
            return dict(self._errors)

    def start(self) -> None:
        """
        Restore every stream and start consuming in the background.

        Restores run on the calling thread so snapshot failures surface here.
        """
        for source in self.sources.values():
            if source.state == SourceState.COLD:
                source.start()

        for name, source in self.sources.items():
            thread = threading.Thread(
                target=self._run_source,
                args=(name, source),
                name=f"streamstate-{name}",
                daemon=True,
            )
            self._threads[name] = thread
            thread.start()

        logger.info("Event sourcing started", streams=self.stream_names)

    def _run_source(self, name: str, source: CompactingEventSource) -> None:
        try:
            source.run()
        except Exception as e:
            with self._lock:
                self._errors[name] = e
            logger.error("Stream consumption failed", stream=name, error=str(e), exc_info=True)

    def run_once(self, stop_predicate: StopPredicate = on_idle) -> Dict[str, OffsetVector]:
        """
        Restore, consume one round and take a snapshot for every stream.

        Returns:
            Offset vector per stream after the round
        """
        vectors = {}

        for name, source in self.sources.items():
            if source.state == SourceState.COLD:
                source.start()

            vectors[name] = source.consume(stop_predicate)
            source.take_snapshot()

        return vectors

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until all stream threads have finished."""
        for thread in self._threads.values():
            thread.join(timeout)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop all sources and wait for their threads."""
        logger.info("Stopping event sourcing", streams=self.stream_names)

        for source in self.sources.values():
            source.stop()

        self.wait(timeout)

        logger.info("Event sourcing stopped", streams=self.stream_names)

    def __enter__(self) -> "EventSourcing":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
