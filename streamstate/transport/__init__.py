"""Log clients and blob stores."""

from streamstate.transport.base import BlobStore, LogClient
from streamstate.transport.kinesis import KinesisLogClient
from streamstate.transport.local import FileLogClient, LocalBlobStore
from streamstate.transport.memory import InMemoryBlobStore, InMemoryLogClient
from streamstate.transport.s3 import S3BlobStore

__all__ = [
    "BlobStore",
    "FileLogClient",
    "InMemoryBlobStore",
    "InMemoryLogClient",
    "KinesisLogClient",
    "LocalBlobStore",
    "LogClient",
    "S3BlobStore",
]
