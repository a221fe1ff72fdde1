"""
Fan-out consumption of all open partitions of a stream.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, List, Optional

from streamstate.consumer.partition import PartitionConsumer
from streamstate.consumer.predicates import StopPredicate
from streamstate.consumer.registry import ConsumerFailurePolicy
from streamstate.core.codec import Codec, json_codec
from streamstate.core.event import Event, OffsetVector
from streamstate.transport.base import LogClient
from streamstate.utils.logging import get_logger

logger = get_logger(__name__)


class LogEventSource:
    """
    Consumes every open partition of a stream concurrently.

    One thread per partition runs a PartitionConsumer. The call returns only
    after every partition has stopped; the resulting OffsetVector is built
    from the joined results, so a failed round never publishes partial
    positions.

    Example:
        source = LogEventSource("orders", log_client)
        vector = source.consume_all(OffsetVector.empty(), on_idle, handle_event)
    """

    def __init__(
        self,
        stream_name: str,
        log_client: LogClient,
        codec: Codec = json_codec,
        poll_timeout_ms: int = 1000,
        failure_policy: ConsumerFailurePolicy = ConsumerFailurePolicy.FAIL,
        max_workers: Optional[int] = None,
    ):
        """
        Initialize log event source.

        Args:
            stream_name: Stream to consume
            log_client: Client used to list partitions and read records
            codec: Payload decoder
            poll_timeout_ms: How long a read waits for a record
            failure_policy: Handling of failing consumer callbacks
            max_workers: Thread limit (None = one thread per partition).
                With fewer threads than partitions, extra partitions start
                only after others have stopped.
        """
        self.stream_name = stream_name
        self.log_client = log_client
        self.max_workers = max_workers

        self._partition_consumer = PartitionConsumer(
            log_client=log_client,
            stream_name=stream_name,
            codec=codec,
            poll_timeout_ms=poll_timeout_ms,
            failure_policy=failure_policy,
        )

    def consume_all(
        self,
        start_vector: OffsetVector,
        stop_predicate: StopPredicate,
        on_event: Callable[[Event], Any],
    ) -> OffsetVector:
        """
        Consume all open partitions until the stop predicate halts each one.

        Args:
            start_vector: Positions to resume from; partitions missing from
                it start at the beginning
            stop_predicate: Evaluated per event and on idle, per partition
            on_event: Called with every event, from partition threads

        Returns:
            Positions of the open partitions after this round

        Raises:
            Exception: The first partition failure, after all partitions
                have finished
        """
        partitions = sorted(self.log_client.list_open_partitions(self.stream_name))

        dropped = set(start_vector) - set(partitions)
        if dropped:
            logger.info(
                "Dropping partitions that are no longer open",
                stream=self.stream_name,
                partitions=sorted(dropped),
            )

        if not partitions:
            logger.warning("No open partitions", stream=self.stream_name)
            return OffsetVector.empty()

        tokens: Dict[str, Optional[str]] = {}
        errors: List[Exception] = []

        with ThreadPoolExecutor(
            max_workers=self.max_workers or len(partitions),
            thread_name_prefix=f"consumer-{self.stream_name}",
        ) as executor:
            futures = {
                executor.submit(
                    self._partition_consumer.consume,
                    partition_id,
                    start_vector.position_of(partition_id),
                    stop_predicate,
                    on_event,
                ): partition_id
                for partition_id in partitions
            }

            for future in as_completed(futures):
                partition_id = futures[future]
                try:
                    tokens[partition_id] = future.result()
                except Exception as e:
                    logger.error(
                        "Partition consumption failed",
                        stream=self.stream_name,
                        partition=partition_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    errors.append(e)

        if errors:
            raise errors[0]

        vector = OffsetVector(
            {partition_id: token for partition_id, token in tokens.items() if token is not None}
        )

        logger.info(
            "Consumed all partitions",
            stream=self.stream_name,
            partitions=len(partitions),
            positions=dict(vector),
        )

        return vector
