"""
Destructive cleanup of every queue and all tracking data.

CleanupPurger cancels every scheduled message in the source and destination
queues, drains every active message, drains the error sink and deletes all
tracking keys. A second run against an empty system reports zeros.

Nothing here asks for confirmation; the service facade only calls
purge_all() when the caller explicitly confirms the destructive action.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from msgtransfer.broker.interface import CancelResult, MessageQueue
from msgtransfer.config import TransferConfig
from msgtransfer.errors import ErrorSink
from msgtransfer.observability import ATTR_MESSAGING_DESTINATION, Tracer, create_tracer
from msgtransfer.tracking import TrackingStore
from msgtransfer.transfer.cursor import BatchPeekCursor

logger = logging.getLogger(__name__)


@dataclass
class QueuePurgeCounts:
    """Messages removed from one queue."""

    cancelled: int = 0
    drained: int = 0

    @property
    def total(self) -> int:
        return self.cancelled + self.drained


@dataclass
class PurgeSummary:
    """
    Result of purge_all().

    Attributes:
        source: Messages removed from the source queue
        destination: Messages removed from the destination queue
        error_records_drained: Records removed from the error sink
        tracking_keys_deleted: Tracking keys deleted
        errors: Failures encountered; the purge continues past them
    """

    source: QueuePurgeCounts = field(default_factory=QueuePurgeCounts)
    destination: QueuePurgeCounts = field(default_factory=QueuePurgeCounts)
    error_records_drained: int = 0
    tracking_keys_deleted: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def total_deleted(self) -> int:
        return (
            self.source.total
            + self.destination.total
            + self.error_records_drained
            + self.tracking_keys_deleted
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sourceCancelled": self.source.cancelled,
            "sourceDrained": self.source.drained,
            "destinationCancelled": self.destination.cancelled,
            "destinationDrained": self.destination.drained,
            "errorRecordsDrained": self.error_records_drained,
            "trackingKeysDeleted": self.tracking_keys_deleted,
            "totalDeleted": self.total_deleted,
            "errors": list(self.errors),
        }


class CleanupPurger:
    """
    Empties both queues, the error sink and the tracking store.

    Example:
        >>> purger = CleanupPurger(source, destination, sink, tracking, config=config)
        >>> summary = await purger.purge_all()
        >>> summary.total_deleted
        17
    """

    def __init__(
        self,
        source: MessageQueue,
        destination: MessageQueue,
        error_sink: ErrorSink,
        tracking: TrackingStore | None = None,
        *,
        config: TransferConfig,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._source = source
        self._destination = destination
        self._error_sink = error_sink
        self._tracking = tracking
        self._config = config
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def purge_all(self) -> PurgeSummary:
        """
        Remove everything.

        Returns:
            Per-queue counts and any errors; failures in one step do not
            stop the remaining steps
        """
        summary = PurgeSummary()
        with self._tracer.span("msgtransfer.purger.purge_all"):
            summary.source = await self._purge_queue(self._source, summary.errors)
            summary.destination = await self._purge_queue(self._destination, summary.errors)

            try:
                summary.error_records_drained = await self._error_sink.drain(
                    self._config.purge_receive_batch_size,
                    self._config.purge_receive_timeout_seconds,
                )
            except Exception as e:
                logger.error("Draining error sink %s failed: %s", self._error_sink.queue_name, e)
                summary.errors.append(f"Drain of {self._error_sink.queue_name} failed: {e}")

            if self._tracking is not None:
                deleted = await self._tracking.purge()
                if deleted is None:
                    summary.errors.append("Tracking store unavailable, tracking data not purged")
                else:
                    summary.tracking_keys_deleted = deleted

        logger.warning(
            "Purged %d items (source %d, destination %d, error records %d, tracking keys %d)",
            summary.total_deleted,
            summary.source.total,
            summary.destination.total,
            summary.error_records_drained,
            summary.tracking_keys_deleted,
            extra={"errors": summary.errors},
        )
        return summary

    async def _purge_queue(self, queue: MessageQueue, errors: list[str]) -> QueuePurgeCounts:
        counts = QueuePurgeCounts()
        with self._tracer.span(
            "msgtransfer.purger.purge_queue",
            {ATTR_MESSAGING_DESTINATION: queue.name},
        ):
            try:
                while True:
                    cancelled = await self._cancel_scheduled(queue)
                    drained = await self._drain(queue)
                    counts.cancelled += cancelled
                    counts.drained += drained
                    if cancelled == 0 and drained == 0:
                        break
            except Exception as e:
                logger.error("Purging %s failed: %s", queue.name, e)
                errors.append(f"Purge of {queue.name} failed: {e}")
        return counts

    async def _cancel_scheduled(self, queue: MessageQueue) -> int:
        cursor = BatchPeekCursor(queue, self._config.max_total_messages, tracer=self._tracer)
        records = await cursor.collect(self._config.batch_size)
        cancelled = 0
        for record in records:
            if record.scheduled_for is None:
                continue
            if await queue.cancel_scheduled(record.sequence_number) is CancelResult.CANCELLED:
                cancelled += 1
        return cancelled

    async def _drain(self, queue: MessageQueue) -> int:
        drained = 0
        while True:
            received = await queue.receive_and_acknowledge(
                self._config.purge_receive_batch_size,
                self._config.purge_receive_timeout_seconds,
            )
            if not received:
                return drained
            drained += len(received)


__all__ = ["CleanupPurger", "PurgeSummary", "QueuePurgeCounts"]
