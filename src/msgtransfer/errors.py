"""
Error sink for failed transfers.

The error sink is an append-only channel on a dedicated broker queue.
Each record is a JSON document describing one failure with enough context
to diagnose or manually recover it without logs. Records are sent as
immediately active messages so they can be peeked for inspection and
drained by cleanup.

Record types:
    PARTIAL_FAILURE_LOST: Cancelled at the source, not scheduled at the
        destination. Carries the full payload for manual recovery.
    TRANSFER_ERROR: A transfer failed before anything was touched.
"""

import base64
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from msgtransfer.broker.interface import MessageQueue, OutgoingMessage, QueueRecord
from msgtransfer.exceptions import ErrorKind, SerializationError
from msgtransfer.observability import (
    ATTR_BATCH_SIZE,
    ATTR_ERROR_KIND,
    ATTR_MESSAGE_ID,
    ATTR_MESSAGING_DESTINATION,
    Tracer,
    create_tracer,
)
from msgtransfer.serialization import format_timestamp, json_dumps, json_loads

logger = logging.getLogger(__name__)

PARTIAL_FAILURE_LOST = "PARTIAL_FAILURE_LOST"
TRANSFER_ERROR = "TRANSFER_ERROR"
ERROR_RECORD_CONTENT_TYPE = "application/json"


class ErrorSink:
    """
    Append-only failure channel backed by a broker queue.

    Sending raises whatever the queue raises; callers decide whether a lost
    error record is fatal.

    Example:
        >>> sink = ErrorSink(InMemoryMessageQueue("poc-dead-letter"))
        >>> await sink.record_partial_failure(record, "source", "broker timeout")
        >>> await sink.peek(10)
        [{'type': 'PARTIAL_FAILURE_LOST', 'orderId': ...}]
    """

    def __init__(
        self,
        queue: MessageQueue,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._queue = queue
        self._clock = clock
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def queue(self) -> MessageQueue:
        return self._queue

    @property
    def queue_name(self) -> str:
        return self._queue.name

    async def _send(self, record_type: str, order_id: str, body: dict[str, Any]) -> int:
        message = OutgoingMessage(
            order_id=str(uuid4()),
            payload=json_dumps(body).encode("utf-8"),
            content_type=ERROR_RECORD_CONTENT_TYPE,
            correlation_id=order_id,
            application_properties={"errorType": record_type, "orderId": order_id},
        )
        with self._tracer.span(
            "msgtransfer.error_sink.send",
            {
                ATTR_MESSAGING_DESTINATION: self._queue.name,
                ATTR_MESSAGE_ID: order_id,
                ATTR_ERROR_KIND: record_type,
            },
        ):
            return await self._queue.send(message)

    async def record_partial_failure(
        self,
        record: QueueRecord,
        source_queue: str,
        reason: str,
    ) -> int:
        """
        Record a message that was cancelled but never rescheduled.

        Args:
            record: The record as peeked from the source queue
            source_queue: Name of the queue it was cancelled from
            reason: Why scheduling at the destination failed

        Returns:
            Sequence number of the error record
        """
        body = {
            "type": PARTIAL_FAILURE_LOST,
            "errorKind": ErrorKind.PARTIAL_FAILURE_LOST.value,
            "orderId": record.order_id,
            "sourceQueue": source_queue,
            "sourceSequence": record.sequence_number,
            "payloadDigest": record.payload_digest,
            "payloadSize": len(record.payload),
            "payload": base64.b64encode(record.payload).decode("ascii"),
            "contentType": record.content_type,
            "correlationId": record.correlation_id,
            "applicationProperties": dict(record.application_properties),
            "originalScheduledFor": format_timestamp(record.scheduled_for),
            "reason": reason,
            "timestamp": format_timestamp(self._clock()),
        }
        seq = await self._send(PARTIAL_FAILURE_LOST, record.order_id, body)
        logger.info(
            "Wrote partial failure record %d for order %s to %s",
            seq,
            record.order_id,
            self._queue.name,
            extra={
                "order_id": record.order_id,
                "source_sequence": record.sequence_number,
                "error_sequence": seq,
            },
        )
        return seq

    async def record_failure(
        self,
        record: QueueRecord,
        error_kind: ErrorKind,
        reason: str,
    ) -> int:
        """
        Record a transfer that failed before the source was touched.

        Returns:
            Sequence number of the error record
        """
        body = {
            "type": TRANSFER_ERROR,
            "errorKind": error_kind.value,
            "orderId": record.order_id,
            "sourceSequence": record.sequence_number,
            "payloadDigest": record.payload_digest,
            "payloadSize": len(record.payload),
            "contentType": record.content_type,
            "originalScheduledFor": format_timestamp(record.scheduled_for),
            "reason": reason,
            "timestamp": format_timestamp(self._clock()),
        }
        return await self._send(TRANSFER_ERROR, record.order_id, body)

    @staticmethod
    def decode(record: QueueRecord) -> dict[str, Any]:
        """
        Decode one error record.

        Raises:
            SerializationError: If the body is not a JSON object
        """
        if record.decode_error is not None:
            raise SerializationError(record.order_id, record.decode_error)
        try:
            body = json_loads(record.payload)
        except ValueError as e:
            raise SerializationError(record.order_id, f"error record is not JSON: {e}") from e
        if not isinstance(body, dict):
            raise SerializationError(record.order_id, "error record is not a JSON object")
        return body

    async def peek(self, count: int) -> list[dict[str, Any]]:
        """
        Inspect up to count error records without removing them.

        Undecodable records are returned with their raw payload instead of
        being dropped.
        """
        with self._tracer.span(
            "msgtransfer.error_sink.peek",
            {ATTR_MESSAGING_DESTINATION: self._queue.name, ATTR_BATCH_SIZE: count},
        ):
            records = await self._queue.peek(count)

        rows = []
        for record in records:
            try:
                body = self.decode(record)
            except SerializationError as e:
                logger.warning("%s", e)
                body = {
                    "type": "UNDECODABLE",
                    "payload": base64.b64encode(record.payload).decode("ascii"),
                }
            rows.append({"sequenceNumber": record.sequence_number, **body})
        return rows

    async def drain(self, batch_size: int, timeout: float) -> int:
        """
        Receive and acknowledge every error record.

        Returns:
            Number of records removed
        """
        drained = 0
        with self._tracer.span(
            "msgtransfer.error_sink.drain",
            {ATTR_MESSAGING_DESTINATION: self._queue.name, ATTR_BATCH_SIZE: batch_size},
        ):
            while True:
                received = await self._queue.receive_and_acknowledge(batch_size, timeout)
                if not received:
                    break
                drained += len(received)
        if drained:
            logger.info("Drained %d error records from %s", drained, self._queue.name)
        return drained


__all__ = [
    "ErrorSink",
    "PARTIAL_FAILURE_LOST",
    "TRANSFER_ERROR",
    "ERROR_RECORD_CONTENT_TYPE",
]
