"""
Consumption of a single partition.
"""

from typing import Any, Callable, Optional

from streamstate.consumer.predicates import StopPredicate
from streamstate.consumer.registry import ConsumerFailurePolicy
from streamstate.core.codec import Codec, json_codec
from streamstate.core.errors import ConsumerInvocationError
from streamstate.core.event import Event
from streamstate.transport.base import LogClient
from streamstate.utils.logging import get_logger, log_context

logger = get_logger(__name__)


class PartitionConsumer:
    """
    Drains one partition until a stop predicate fires.

    Records are read one at a time after the start token, decoded and handed
    to the event callback in sequence order. The stop predicate sees every
    event before it is processed, and None whenever the partition is idle.
    """

    def __init__(
        self,
        log_client: LogClient,
        stream_name: str,
        codec: Codec = json_codec,
        poll_timeout_ms: int = 1000,
        failure_policy: ConsumerFailurePolicy = ConsumerFailurePolicy.FAIL,
    ):
        """
        Initialize partition consumer.

        Args:
            log_client: Client used to read records
            stream_name: Stream to read
            codec: Payload decoder
            poll_timeout_ms: How long a read waits for a record
            failure_policy: Handling of ConsumerInvocationError raised by the
                event callback
        """
        self.log_client = log_client
        self.stream_name = stream_name
        self.codec = codec
        self.poll_timeout_ms = poll_timeout_ms
        self.failure_policy = ConsumerFailurePolicy(failure_policy)

    def consume(
        self,
        partition_id: str,
        start_token: Optional[str],
        stop_predicate: StopPredicate,
        on_event: Callable[[Event], Any],
    ) -> Optional[str]:
        """
        Consume a partition.

        Args:
            partition_id: Partition to consume
            start_token: Last consumed token (None = start of partition)
            stop_predicate: Decides when to stop
            on_event: Called with every consumed event

        Returns:
            Token of the last consumed record, or start_token if nothing was
            consumed

        Raises:
            DecodeError: If a record cannot be decoded
            TransportError: If reading fails
            ConsumerInvocationError: If on_event fails under the FAIL policy
        """
        with log_context(stream=self.stream_name, partition=partition_id):
            return self._consume(partition_id, start_token, stop_predicate, on_event)

    def _consume(
        self,
        partition_id: str,
        start_token: Optional[str],
        stop_predicate: StopPredicate,
        on_event: Callable[[Event], Any],
    ) -> Optional[str]:
        last_token = start_token
        consumed = 0
        timeout = self.poll_timeout_ms / 1000.0

        logger.info("Starting partition consumption", start_token=start_token)

        while True:
            record = self.log_client.read_from(
                self.stream_name,
                partition_id,
                last_token,
                timeout,
            )

            if record is None:
                if stop_predicate(None):
                    break
                continue

            event = Event.from_record(record, self.codec, partition_id)

            if stop_predicate(event):
                break

            try:
                on_event(event)
            except ConsumerInvocationError as e:
                if self.failure_policy == ConsumerFailurePolicy.FAIL:
                    raise

                if self.failure_policy == ConsumerFailurePolicy.STOP_PARTITION:
                    logger.error(
                        "Consumer failed, stopping partition",
                        sequence_token=record.sequence_token,
                        consumer=e.consumer_name,
                        error=str(e),
                    )
                    break

                logger.error(
                    "Consumer failed, skipping event",
                    sequence_token=record.sequence_token,
                    consumer=e.consumer_name,
                    error=str(e),
                )

            last_token = record.sequence_token
            consumed += 1

            logger.debug("Consumed event", key=event.key, sequence_token=last_token)

        logger.info(
            "Stopped partition consumption",
            consumed=consumed,
            last_token=last_token,
        )

        return last_token
