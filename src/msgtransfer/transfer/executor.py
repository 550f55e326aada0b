"""
Cancel-and-reschedule of a single scheduled message.

TransferExecutor moves one eligible record from the source queue to the
destination queue, keeping its delivery instant, payload, content type and
properties. The broker offers no atomic move, so a transfer is a cancel at
the source followed by a schedule at the destination:

    PEEKED -> CLASSIFIED -> CANCEL_PENDING -> CANCELLED
           -> DEST_SCHEDULE_PENDING -> TRANSFERRED

If the cancel fails, nothing was touched and the record is reported as
failed. If the cancel succeeds and the schedule fails, the message exists in
neither queue: the result is PARTIAL_FAILURE_LOST and a full error record is
written to the error sink for manual recovery. Such a transfer is never
retried automatically because the source message no longer exists to
re-cancel.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from msgtransfer.broker.interface import CancelResult, MessageQueue, OutgoingMessage, QueueRecord
from msgtransfer.errors import ErrorSink
from msgtransfer.exceptions import (
    ErrorKind,
    MessageNotFoundError,
    PartialFailureLostError,
    SerializationError,
    classify_exception,
)
from msgtransfer.observability import (
    ATTR_ERROR_KIND,
    ATTR_MESSAGE_ID,
    ATTR_SEQUENCE_NUMBER,
    ATTR_TRANSFER_OUTCOME,
    Tracer,
    create_tracer,
)
from msgtransfer.serialization import format_timestamp

logger = logging.getLogger(__name__)

TRANSFERRED_FROM = "transferredFrom"
ORIGINAL_SEQUENCE = "originalSequence"
TRANSFERRED_AT = "transferredAt"
RESERVED_PROPERTY_KEYS = (TRANSFERRED_FROM, ORIGINAL_SEQUENCE, TRANSFERRED_AT)


class TransferOutcome(Enum):
    """Outcome of one transfer attempt."""

    TRANSFERRED = "transferred"
    SKIPPED_ACTIVE = "skipped_active"
    FAILED = "failed"
    PARTIAL_FAILURE_LOST = "partial_failure_lost"


class TransferState(Enum):
    """States a record passes through during a transfer."""

    PEEKED = "peeked"
    CLASSIFIED = "classified"
    CANCEL_PENDING = "cancel_pending"
    CANCELLED = "cancelled"
    DEST_SCHEDULE_PENDING = "dest_schedule_pending"
    TRANSFERRED = "transferred"
    SKIPPED_ACTIVE = "skipped_active"
    FAILED_BEFORE_CANCEL = "failed_before_cancel"
    PARTIAL_FAILURE_LOST = "partial_failure_lost"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        TransferState.TRANSFERRED,
        TransferState.SKIPPED_ACTIVE,
        TransferState.FAILED_BEFORE_CANCEL,
        TransferState.PARTIAL_FAILURE_LOST,
    }
)


@dataclass(frozen=True)
class TransferResult:
    """
    Outcome for one candidate record.

    Attributes:
        order_id: Order id of the record
        source_sequence: Sequence number at the source
        outcome: What happened
        state: Terminal state reached
        destination_sequence: Sequence number at the destination, if transferred
        scheduled_for: Delivery instant of the record
        error_kind: Error taxonomy entry, for failures and benign races
        error_message: Human readable failure reason
        error_sink_delivered: Whether the error record reached the sink
            (None when no record was needed)
        cause_kind: Error kind of the destination failure behind a partial
            failure
    """

    order_id: str
    source_sequence: int
    outcome: TransferOutcome
    state: TransferState
    destination_sequence: int | None = None
    scheduled_for: datetime | None = None
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    error_sink_delivered: bool | None = None
    cause_kind: ErrorKind | None = None

    @property
    def is_error(self) -> bool:
        return self.outcome in (TransferOutcome.FAILED, TransferOutcome.PARTIAL_FAILURE_LOST)

    def to_dict(self) -> dict[str, Any]:
        return {
            "orderId": self.order_id,
            "sourceSequence": self.source_sequence,
            "outcome": self.outcome.value,
            "state": self.state.value,
            "destinationSequence": self.destination_sequence,
            "scheduledFor": format_timestamp(self.scheduled_for) or None,
            "errorKind": self.error_kind.value if self.error_kind else None,
            "errorMessage": self.error_message,
            "errorSinkDelivered": self.error_sink_delivered,
            "causeKind": self.cause_kind.value if self.cause_kind else None,
        }


@dataclass(frozen=True)
class TransferProvenance:
    """Properties stamped on every transferred message."""

    transferred_from: str
    original_sequence: int
    transferred_at: datetime

    def as_properties(self) -> dict[str, str]:
        return {
            TRANSFERRED_FROM: self.transferred_from,
            ORIGINAL_SEQUENCE: str(self.original_sequence),
            TRANSFERRED_AT: format_timestamp(self.transferred_at),
        }


def merge_properties(
    original: Mapping[str, str],
    provenance: TransferProvenance,
    *,
    order_id: str = "",
) -> dict[str, str]:
    """
    Merge provenance into a message's properties.

    Original properties keep their order and value. Provenance keys are set
    last; an original property with a reserved name is replaced and the
    collision logged.
    """
    merged = dict(original)
    for key, value in provenance.as_properties().items():
        if key in merged and merged[key] != value:
            logger.warning(
                "Property %s=%r of order %s replaced by transfer provenance %r",
                key,
                merged[key],
                order_id,
                value,
                extra={"order_id": order_id, "property": key},
            )
            del merged[key]
        merged[key] = value
    return merged


def scheduled_time(record: QueueRecord) -> datetime:
    """
    The aware delivery instant of a record.

    Raises:
        SerializationError: If the record has no usable scheduled time
    """
    if record.scheduled_for is None:
        raise SerializationError(record.order_id, "record has no scheduled time")
    if record.scheduled_for.tzinfo is None:
        raise SerializationError(record.order_id, "scheduled time is not timezone-aware")
    return record.scheduled_for


def build_outgoing(record: QueueRecord) -> OutgoingMessage:
    """
    Build the destination message for a record, without provenance.

    Raises:
        SerializationError: If the record cannot be sent as is
    """
    if not isinstance(record.order_id, str) or not record.order_id:
        raise SerializationError(str(record.order_id), "order id must be a non-empty string")
    if record.decode_error is not None:
        raise SerializationError(record.order_id, f"undecodable message: {record.decode_error}")
    scheduled_time(record)
    if not isinstance(record.payload, (bytes, bytearray)):
        raise SerializationError(
            record.order_id, f"payload must be bytes, got {type(record.payload).__name__}"
        )
    for key, value in record.application_properties.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise SerializationError(
                record.order_id, f"property {key!r} is not a string-to-string entry"
            )
    return OutgoingMessage(
        order_id=record.order_id,
        payload=bytes(record.payload),
        content_type=record.content_type,
        correlation_id=record.correlation_id,
        application_properties=dict(record.application_properties),
    )


class TransferExecutor:
    """
    Moves single records from a source queue to a destination queue.

    transfer() never raises for per-record faults; every fault becomes a
    TransferResult.

    Example:
        >>> executor = TransferExecutor(source, destination, ErrorSink(errors))
        >>> result = await executor.transfer(record)
        >>> result.outcome
        <TransferOutcome.TRANSFERRED: 'transferred'>
    """

    def __init__(
        self,
        source: MessageQueue,
        destination: MessageQueue,
        error_sink: ErrorSink | None = None,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the executor.

        Args:
            source: Queue records are cancelled from
            destination: Queue records are scheduled on
            error_sink: Receives partial failure records
            clock: Returns the current aware UTC instant
            tracer: Optional tracer (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._source = source
        self._destination = destination
        self._error_sink = error_sink
        self._clock = clock
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def source(self) -> MessageQueue:
        return self._source

    @property
    def destination(self) -> MessageQueue:
        return self._destination

    async def transfer(self, record: QueueRecord) -> TransferResult:
        """
        Transfer one eligible record.

        Args:
            record: A record classified as eligible

        Returns:
            The terminal result
        """
        with self._tracer.span(
            "msgtransfer.executor.transfer",
            {
                ATTR_MESSAGE_ID: str(record.order_id),
                ATTR_SEQUENCE_NUMBER: record.sequence_number,
            },
        ) as span:
            result = await self._transfer(record)
            if span is not None:
                span.set_attribute(ATTR_TRANSFER_OUTCOME, result.outcome.value)
                if result.error_kind is not None:
                    span.set_attribute(ATTR_ERROR_KIND, result.error_kind.value)
            return result

    async def _transfer(self, record: QueueRecord) -> TransferResult:
        try:
            outgoing = build_outgoing(record)
            scheduled_for = scheduled_time(record)
        except SerializationError as e:
            logger.error("Skipping order %s: %s", record.order_id, e)
            return self._failed(record, e)

        try:
            cancel = await self._source.cancel_scheduled(record.sequence_number)
        except MessageNotFoundError:
            cancel = CancelResult.NOT_FOUND
        except Exception as e:
            logger.error(
                "Cancel of order %s (sequence %d) on %s failed: %s",
                record.order_id,
                record.sequence_number,
                self._source.name,
                e,
            )
            return self._failed(record, e)

        if cancel is CancelResult.NOT_FOUND:
            logger.info(
                "Order %s (sequence %d) is no longer scheduled on %s, skipping",
                record.order_id,
                record.sequence_number,
                self._source.name,
            )
            return TransferResult(
                order_id=record.order_id,
                source_sequence=record.sequence_number,
                outcome=TransferOutcome.SKIPPED_ACTIVE,
                state=TransferState.SKIPPED_ACTIVE,
                scheduled_for=record.scheduled_for,
                error_kind=ErrorKind.NOT_FOUND_ON_CANCEL,
            )

        # From here on the message exists only in memory.
        try:
            provenance = TransferProvenance(
                transferred_from=self._source.name,
                original_sequence=record.sequence_number,
                transferred_at=self._clock(),
            )
            message = OutgoingMessage(
                order_id=outgoing.order_id,
                payload=outgoing.payload,
                content_type=outgoing.content_type,
                correlation_id=outgoing.correlation_id,
                application_properties=merge_properties(
                    outgoing.application_properties, provenance, order_id=record.order_id
                ),
            )
            destination_sequence = await self._destination.schedule_at(message, scheduled_for)
        except Exception as e:
            return await self._partial_failure(record, e)

        logger.info(
            "Transferred order %s from %s:%d to %s:%d for %s",
            record.order_id,
            self._source.name,
            record.sequence_number,
            self._destination.name,
            destination_sequence,
            format_timestamp(record.scheduled_for),
            extra={
                "order_id": record.order_id,
                "source_sequence": record.sequence_number,
                "destination_sequence": destination_sequence,
            },
        )
        return TransferResult(
            order_id=record.order_id,
            source_sequence=record.sequence_number,
            outcome=TransferOutcome.TRANSFERRED,
            state=TransferState.TRANSFERRED,
            destination_sequence=destination_sequence,
            scheduled_for=record.scheduled_for,
        )

    def _failed(self, record: QueueRecord, error: Exception) -> TransferResult:
        return TransferResult(
            order_id=str(record.order_id),
            source_sequence=record.sequence_number,
            outcome=TransferOutcome.FAILED,
            state=TransferState.FAILED_BEFORE_CANCEL,
            scheduled_for=record.scheduled_for,
            error_kind=classify_exception(error),
            error_message=str(error),
        )

    async def _partial_failure(self, record: QueueRecord, error: Exception) -> TransferResult:
        lost = PartialFailureLostError(record.order_id, record.sequence_number, str(error))
        logger.log(
            lost.severity.log_level,
            "%s",
            lost,
            extra={
                "order_id": record.order_id,
                "source_sequence": record.sequence_number,
                "error_kind": lost.kind.value,
            },
        )

        delivered: bool | None = None
        if self._error_sink is not None:
            try:
                await self._error_sink.record_partial_failure(
                    record, self._source.name, str(error)
                )
                delivered = True
            except Exception as sink_error:
                delivered = False
                logger.critical(
                    "Could not write partial failure record for order %s to %s: %s "
                    "(payload sha256 %s)",
                    record.order_id,
                    self._error_sink.queue_name,
                    sink_error,
                    record.payload_digest,
                )

        return TransferResult(
            order_id=record.order_id,
            source_sequence=record.sequence_number,
            outcome=TransferOutcome.PARTIAL_FAILURE_LOST,
            state=TransferState.PARTIAL_FAILURE_LOST,
            scheduled_for=record.scheduled_for,
            error_kind=ErrorKind.PARTIAL_FAILURE_LOST,
            error_message=lost.reason,
            error_sink_delivered=delivered,
            cause_kind=classify_exception(error),
        )


__all__ = [
    "TransferOutcome",
    "TransferState",
    "TransferResult",
    "TransferProvenance",
    "TransferExecutor",
    "merge_properties",
    "build_outgoing",
    "scheduled_time",
    "RESERVED_PROPERTY_KEYS",
]
