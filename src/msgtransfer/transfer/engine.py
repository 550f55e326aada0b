"""
Batched transfer of scheduled messages between queues.

TransferEngine scans the source queue with a BatchPeekCursor, classifies each
record, hands eligible ones to the TransferExecutor and aggregates the
results into a TransferReport. Batches are processed strictly one after
another: the next peek only happens once every record of the previous batch
has a terminal result.

A scan ends early when a peek fails or a transfer reports the broker as
unreachable. Results committed before that point are kept and returned;
running the engine again is safe and picks up where the broker state left
off.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from msgtransfer.broker.interface import QueueRecord
from msgtransfer.config import TransferConfig
from msgtransfer.errors import ErrorSink
from msgtransfer.exceptions import ErrorKind, classify_exception
from msgtransfer.observability import (
    ATTR_ERROR_COUNT,
    ATTR_MAX_MESSAGES,
    ATTR_MESSAGING_DESTINATION,
    ATTR_SKIPPED_ACTIVE,
    ATTR_TRANSFERRED,
    Tracer,
    create_tracer,
)
from msgtransfer.serialization import format_timestamp
from msgtransfer.tracking import QueueLocation, TrackingStore, TransferHistoryEntry
from msgtransfer.transfer.cursor import BatchPeekCursor
from msgtransfer.transfer.executor import (
    TransferExecutor,
    TransferOutcome,
    TransferResult,
)
from msgtransfer.transfer.filter import Classification, classify

logger = logging.getLogger(__name__)


@dataclass
class TransferReport:
    """
    Aggregated outcome of one transfer run.

    Active records skipped by classification are only counted; every other
    candidate has an entry in details.

    Attributes:
        transferred: Records moved to the destination
        skipped_active: Active records left alone, including benign races
        errors: Failed plus partially failed records
        partial_failures: Records lost between the queues
        total_examined: Records peeked and looked at
        batches: Peek calls that returned
        aborted: Whether the scan ended early
        abort_reason: Why it ended early
        details: Per-record results
        sample_metadata: Metadata of the first eligible records, if requested
        started_at: When the run started
        finished_at: When the run finished
    """

    transferred: int = 0
    skipped_active: int = 0
    errors: int = 0
    partial_failures: int = 0
    total_examined: int = 0
    batches: int = 0
    aborted: bool = False
    abort_reason: str | None = None
    details: list[TransferResult] = field(default_factory=list)
    sample_metadata: list[dict[str, Any]] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def summary(self) -> dict[str, Any]:
        """Counts and timing, without per-record details."""
        return {
            "transferred": self.transferred,
            "skippedActive": self.skipped_active,
            "errors": self.errors,
            "partialFailures": self.partial_failures,
            "totalExamined": self.total_examined,
            "batches": self.batches,
            "aborted": self.aborted,
            "abortReason": self.abort_reason,
            "startedAt": format_timestamp(self.started_at) or None,
            "finishedAt": format_timestamp(self.finished_at) or None,
            "durationSeconds": self.duration_seconds,
        }

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation."""
        return {
            **self.summary(),
            "details": [result.to_dict() for result in self.details],
            "sampleMetadata": list(self.sample_metadata),
        }


def record_metadata(record: QueueRecord) -> dict[str, Any]:
    """Metadata of a record as shown in reports and logs."""
    return {
        "orderId": record.order_id,
        "sequenceNumber": record.sequence_number,
        "scheduledFor": format_timestamp(record.scheduled_for) or None,
        "contentType": record.content_type,
        "correlationId": record.correlation_id,
        "applicationProperties": dict(record.application_properties),
    }


class TransferEngine:
    """
    Drives cursor, filter and executor over the source queue.

    Example:
        >>> engine = TransferEngine(executor, config=TransferConfig(), tracking=tracking)
        >>> report = await engine.run(max_messages=500)
        >>> report.transferred, report.errors
        (42, 0)
    """

    def __init__(
        self,
        executor: TransferExecutor,
        *,
        config: TransferConfig,
        tracking: TrackingStore | None = None,
        error_sink: ErrorSink | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the engine.

        Args:
            executor: Performs single transfers
            config: Batch size, limits and report settings
            tracking: Optional tracking mirror, updated after each transfer
            error_sink: Receives records of failed transfers
            clock: Returns the current aware UTC instant
            tracer: Optional tracer (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._executor = executor
        self._config = config
        self._tracking = tracking
        self._error_sink = error_sink
        self._clock = clock
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def run(
        self,
        max_messages: int | None = None,
        emit_sample_metadata: bool = False,
    ) -> TransferReport:
        """
        Transfer every eligible record among the first max_messages of the source.

        Args:
            max_messages: Records to examine, defaults to config.max_total_messages
            emit_sample_metadata: Log each eligible record's metadata and keep
                a sample in the report

        Returns:
            The report, partial if the scan was aborted

        Raises:
            ValueError: If max_messages is not positive
        """
        limit = self._config.max_total_messages if max_messages is None else max_messages
        if limit < 1:
            raise ValueError(f"max_messages must be positive, got {limit}")

        source = self._executor.source
        cursor = BatchPeekCursor(source, limit, tracer=self._tracer)
        report = TransferReport(started_at=self._clock())

        with self._tracer.span(
            "msgtransfer.engine.run",
            {
                ATTR_MESSAGING_DESTINATION: source.name,
                ATTR_MAX_MESSAGES: limit,
            },
        ) as span:
            logger.info(
                "Starting transfer from %s to %s (max %d, batch %d)",
                source.name,
                self._executor.destination.name,
                limit,
                self._config.batch_size,
            )
            try:
                async with aclosing(cursor.scan(self._config.batch_size)) as batches:
                    async for batch in batches:
                        report.batches += 1
                        for record in batch.records:
                            report.total_examined += 1
                            result = await self._process(record, report, emit_sample_metadata)
                            if result is not None and self._aborts_scan(result):
                                report.aborted = True
                                report.abort_reason = self._abort_reason(result)
                                break
                        if report.aborted:
                            logger.error(
                                "Transfer aborted after %d records: %s",
                                report.total_examined,
                                report.abort_reason,
                            )
                            break
            except Exception as e:
                kind = classify_exception(e)
                report.aborted = True
                report.abort_reason = f"{kind.value}: {e}"
                logger.error(
                    "Peek of %s failed after %d records, aborting transfer: %s",
                    source.name,
                    report.total_examined,
                    e,
                    extra={"error_kind": kind.value},
                )

            report.finished_at = self._clock()
            if span is not None:
                span.set_attribute(ATTR_TRANSFERRED, report.transferred)
                span.set_attribute(ATTR_SKIPPED_ACTIVE, report.skipped_active)
                span.set_attribute(ATTR_ERROR_COUNT, report.errors)

        logger.info(
            "Transfer finished: %d transferred, %d skipped active, %d errors "
            "(%d partial failures), %d examined in %d batches",
            report.transferred,
            report.skipped_active,
            report.errors,
            report.partial_failures,
            report.total_examined,
            report.batches,
            extra=report.summary(),
        )
        if self._tracking is not None:
            await self._tracking.store_last_report(report.summary())
        return report

    @staticmethod
    def _aborts_scan(result: TransferResult) -> bool:
        # A destination outage would turn every further transfer into a loss.
        return any(
            kind is not None and kind.aborts_scan
            for kind in (result.error_kind, result.cause_kind)
        )

    @staticmethod
    def _abort_reason(result: TransferResult) -> str:
        kind = result.cause_kind or result.error_kind or ErrorKind.UNEXPECTED
        return f"{kind.value} at order {result.order_id}: {result.error_message}"

    async def _process(
        self,
        record: QueueRecord,
        report: TransferReport,
        emit_sample_metadata: bool,
    ) -> TransferResult | None:
        # Undecodable records always reach the executor, which fails them.
        if record.is_decoded and classify(record, self._clock()) is Classification.ACTIVE_SKIP:
            report.skipped_active += 1
            return None

        if emit_sample_metadata:
            metadata = record_metadata(record)
            logger.info("Eligible record metadata: %s", metadata)
            if len(report.sample_metadata) < self._config.sample_metadata_limit:
                report.sample_metadata.append(metadata)

        result = await self._executor.transfer(record)
        report.details.append(result)

        if result.outcome is TransferOutcome.TRANSFERRED:
            report.transferred += 1
            await self._mirror(result)
        elif result.outcome is TransferOutcome.SKIPPED_ACTIVE:
            report.skipped_active += 1
        elif result.outcome is TransferOutcome.PARTIAL_FAILURE_LOST:
            report.errors += 1
            report.partial_failures += 1
        else:
            report.errors += 1
            await self._report_failure(record, result)
        return result

    async def _mirror(self, result: TransferResult) -> None:
        if self._tracking is None or result.destination_sequence is None:
            return
        await self._tracking.remove_entry(result.order_id, QueueLocation.SOURCE)
        await self._tracking.record_entry(
            self._tracking.new_entry(
                result.order_id,
                QueueLocation.DESTINATION,
                result.destination_sequence,
                result.scheduled_for,
            )
        )
        await self._tracking.record_transfer(
            TransferHistoryEntry(
                order_id=result.order_id,
                source_sequence=result.source_sequence,
                destination_sequence=result.destination_sequence,
                original_scheduled_for=result.scheduled_for,
                transferred_at=self._clock(),
            )
        )

    async def _report_failure(self, record: QueueRecord, result: TransferResult) -> None:
        # Broker outages would only fail again on the error queue.
        if self._error_sink is None or self._aborts_scan(result):
            return
        try:
            await self._error_sink.record_failure(
                record,
                result.error_kind or ErrorKind.UNEXPECTED,
                result.error_message or "",
            )
        except Exception as e:
            logger.warning(
                "Could not write error record for order %s: %s",
                result.order_id,
                e,
            )


__all__ = ["TransferEngine", "TransferReport", "record_metadata"]
