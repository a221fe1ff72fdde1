"""
Kinesis log client.

Shards map to partitions and Kinesis sequence numbers are used as sequence
tokens. Each shard keeps a cursor holding the shard iterator and the records
of the last GetRecords batch, so reading record by record costs one API call
per batch.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional, Set, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from streamstate.core.errors import TransportError
from streamstate.core.event import Record
from streamstate.transport.base import LogClient
from streamstate.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class _ShardCursor:
    position: Optional[str]
    iterator: Optional[str] = None
    millis_behind: int = 0
    buffer: Deque[Dict[str, Any]] = field(default_factory=deque)


class KinesisLogClient(LogClient):
    """
    Reads Kinesis shards.

    Example:
        client = KinesisLogClient(region_name="eu-central-1")
        shards = client.list_open_partitions("orders")
    """

    def __init__(
        self,
        client: Any = None,
        batch_limit: int = 1000,
        poll_interval_ms: int = 200,
        **client_kwargs: Any,
    ):
        """
        Initialize Kinesis log client.

        Args:
            client: boto3 Kinesis client (created from client_kwargs if None)
            batch_limit: Max records per GetRecords call
            poll_interval_ms: Sleep between empty GetRecords calls
            **client_kwargs: Passed to boto3.client("kinesis", ...)
        """
        self._client = client or boto3.client("kinesis", **client_kwargs)
        self.batch_limit = batch_limit
        self.poll_interval_ms = poll_interval_ms

        self._cursors: Dict[Tuple[str, str], _ShardCursor] = {}
        self._lock = threading.Lock()

    def list_open_partitions(self, stream_name: str) -> Set[str]:
        shards = []
        kwargs: Dict[str, Any] = {"StreamName": stream_name}

        try:
            while True:
                response = self._client.list_shards(**kwargs)
                shards.extend(response.get("Shards", []))

                next_token = response.get("NextToken")
                if not next_token:
                    break
                kwargs = {"NextToken": next_token}
        except (BotoCoreError, ClientError) as e:
            raise TransportError(f"Failed to list shards of {stream_name}: {e}") from e

        open_shards = {
            shard["ShardId"]
            for shard in shards
            if "EndingSequenceNumber" not in shard.get("SequenceNumberRange", {})
        }

        logger.debug(
            "Listed shards",
            stream=stream_name,
            total=len(shards),
            open=len(open_shards),
        )

        return open_shards

    def read_from(
        self,
        stream_name: str,
        partition_id: str,
        token: Optional[str],
        timeout: float,
    ) -> Optional[Record]:
        cursor = self._cursor(stream_name, partition_id, token)
        deadline = time.time() + timeout

        try:
            while True:
                if cursor.buffer:
                    raw = cursor.buffer.popleft()
                    cursor.position = raw["SequenceNumber"]
                    return Record(
                        data=raw["Data"],
                        partition_key=raw["PartitionKey"],
                        sequence_token=raw["SequenceNumber"],
                        arrival_timestamp=raw["ApproximateArrivalTimestamp"],
                        millis_behind=cursor.millis_behind,
                    )

                if cursor.iterator is None:
                    cursor.iterator = self._shard_iterator(stream_name, partition_id, token)

                response = self._client.get_records(
                    ShardIterator=cursor.iterator,
                    Limit=self.batch_limit,
                )
                cursor.iterator = response.get("NextShardIterator")
                cursor.millis_behind = response.get("MillisBehindLatest", 0)
                cursor.buffer.extend(response.get("Records", []))

                if cursor.buffer:
                    continue

                if cursor.iterator is None:
                    logger.info("Reached end of closed shard", stream=stream_name, shard=partition_id)
                    return None

                remaining = deadline - time.time()
                if remaining <= 0:
                    return None

                time.sleep(min(remaining, self.poll_interval_ms / 1000.0))
        except (BotoCoreError, ClientError) as e:
            with self._lock:
                self._cursors.pop((stream_name, partition_id), None)
            raise TransportError(
                f"Failed to read shard {partition_id} of {stream_name}: {e}"
            ) from e

    def _cursor(self, stream_name: str, partition_id: str, token: Optional[str]) -> _ShardCursor:
        key = (stream_name, partition_id)

        with self._lock:
            cursor = self._cursors.get(key)
            if cursor is None or cursor.position != token:
                cursor = _ShardCursor(position=token)
                self._cursors[key] = cursor
            return cursor

    def _shard_iterator(self, stream_name: str, partition_id: str, token: Optional[str]) -> str:
        kwargs: Dict[str, Any] = {"StreamName": stream_name, "ShardId": partition_id}

        if token is None:
            kwargs["ShardIteratorType"] = "TRIM_HORIZON"
        else:
            kwargs["ShardIteratorType"] = "AFTER_SEQUENCE_NUMBER"
            kwargs["StartingSequenceNumber"] = token

        response = self._client.get_shard_iterator(**kwargs)

        logger.debug(
            "Obtained shard iterator",
            stream=stream_name,
            shard=partition_id,
            iterator_type=kwargs["ShardIteratorType"],
        )

        return response["ShardIterator"]
