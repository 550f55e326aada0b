"""
Service facade over the transfer engine and maintenance operations.

ScheduledTransferService wires queues, tracking store and error sink into
the components of this package and exposes the operations an API layer
calls: scheduling sample orders, transferring, cancelling by order id,
validation, reconciliation, purging and status reports.

Cancelling by order id depends on tracking data: if the tracking store was
never populated, or was purged, an order that is still on the broker is
reported as not found. Run reconcile_tracking_from_broker() first in that
case.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from msgtransfer.broker.interface import CancelResult, MessageQueue, OutgoingMessage
from msgtransfer.config import TransferConfig
from msgtransfer.errors import ErrorSink
from msgtransfer.exceptions import (
    MessageNotFoundError,
    PurgeNotConfirmedError,
    TransferInProgressError,
)
from msgtransfer.maintenance import (
    CleanupPurger,
    PurgeSummary,
    Reconciler,
    ReconcileSummary,
    ValidationReport,
    Validator,
)
from msgtransfer.observability import Tracer, create_tracer
from msgtransfer.orders import ORDER_CONTENT_TYPE, OrderPayload, generate_orders
from msgtransfer.serialization import format_timestamp
from msgtransfer.tracking import KeyValueStore, QueueLocation, TrackingStore
from msgtransfer.transfer import (
    BatchPeekCursor,
    TransferEngine,
    TransferExecutor,
    TransferReport,
    is_eligible,
)

logger = logging.getLogger(__name__)


class CancelStatus(Enum):
    """Outcome of cancel_by_order_id()."""

    CANCELLED_FROM_SOURCE = "cancelled_from_source"
    CANCELLED_FROM_DESTINATION = "cancelled_from_destination"
    ALREADY_GONE = "already_gone"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class CancelOutcome:
    """
    Result of cancel_by_order_id().

    Attributes:
        order_id: Order that was looked up
        status: What happened
        location: Queue the tracking entry pointed to
        sequence_number: Sequence number that was cancelled
        error: Failure message for status ERROR
    """

    order_id: str
    status: CancelStatus
    location: QueueLocation | None = None
    sequence_number: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "orderId": self.order_id,
            "status": self.status.value,
            "location": self.location.value if self.location else None,
            "sequenceNumber": self.sequence_number,
            "error": self.error,
        }


class ScheduledTransferService:
    """
    Entry point for scheduling, transferring and maintaining scheduled orders.

    Example:
        >>> service = ScheduledTransferService(
        ...     source=InMemoryMessageQueue("source"),
        ...     destination=InMemoryMessageQueue("destination"),
        ...     error_queue=InMemoryMessageQueue("poc-dead-letter"),
        ...     key_value_store=InMemoryKeyValueStore(),
        ... )
        >>> await service.schedule_batch(5, delay_seconds=54000)
        >>> report = await service.transfer()
        >>> report.transferred
        5
    """

    def __init__(
        self,
        source: MessageQueue,
        destination: MessageQueue,
        error_queue: MessageQueue,
        key_value_store: KeyValueStore,
        config: TransferConfig | None = None,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        tracer: Tracer | None = None,
    ) -> None:
        """
        Initialize the service.

        Args:
            source: Queue orders are scheduled on and transferred from
            destination: Queue orders are transferred to
            error_queue: Queue backing the error sink
            key_value_store: Store backing the tracking mirror
            config: Service configuration (defaults to TransferConfig())
            clock: Returns the current aware UTC instant
            tracer: Optional tracer shared by all components
        """
        self._config = config or TransferConfig()
        self._source = source
        self._destination = destination
        self._clock = clock
        self._tracer = tracer or create_tracer(__name__, self._config.enable_tracing)

        self._tracking = TrackingStore(
            key_value_store,
            ttl_seconds=self._config.tracking_ttl_seconds,
            clock=clock,
        )
        self._error_sink = ErrorSink(error_queue, clock=clock, tracer=self._tracer)
        self._executor = TransferExecutor(
            source,
            destination,
            self._error_sink,
            clock=clock,
            tracer=self._tracer,
        )
        self._engine = TransferEngine(
            self._executor,
            config=self._config,
            tracking=self._tracking,
            error_sink=self._error_sink,
            clock=clock,
            tracer=self._tracer,
        )
        self._reconciler = Reconciler(
            source,
            destination,
            self._tracking,
            config=self._config,
            clock=clock,
            tracer=self._tracer,
        )
        self._validator = Validator(
            source,
            destination,
            self._tracking,
            config=self._config,
            clock=clock,
            tracer=self._tracer,
        )
        self._purger = CleanupPurger(
            source,
            destination,
            self._error_sink,
            self._tracking,
            config=self._config,
            tracer=self._tracer,
        )
        self._transfer_lock = asyncio.Lock()
        self._last_report: TransferReport | None = None

    @classmethod
    def from_queue_factory(
        cls,
        queue_factory: Callable[[str], MessageQueue],
        key_value_store: KeyValueStore,
        config: TransferConfig | None = None,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        tracer: Tracer | None = None,
    ) -> ScheduledTransferService:
        """
        Build a service whose queues are looked up by their configured names.

        Example:
            >>> broker = RedisMessageBroker(RedisBrokerConfig())
            >>> await broker.connect()
            >>> service = ScheduledTransferService.from_queue_factory(
            ...     broker.queue, RedisKeyValueStore(RedisTrackingStoreConfig())
            ... )

        Args:
            queue_factory: Returns the queue of a given name, e.g.
                RedisMessageBroker.queue
            key_value_store: Store backing the tracking mirror
            config: Supplies the source, destination and error queue names
            clock: Returns the current aware UTC instant
            tracer: Optional tracer shared by all components
        """
        config = config or TransferConfig()
        return cls(
            queue_factory(config.source_queue_name),
            queue_factory(config.destination_queue_name),
            queue_factory(config.error_queue_name),
            key_value_store,
            config,
            clock=clock,
            tracer=tracer,
        )

    @property
    def config(self) -> TransferConfig:
        return self._config

    @property
    def tracking(self) -> TrackingStore:
        return self._tracking

    @property
    def error_sink(self) -> ErrorSink:
        return self._error_sink

    @property
    def last_report(self) -> TransferReport | None:
        """Report of the most recent transfer in this process."""
        return self._last_report

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def schedule_batch(
        self,
        count: int,
        delay_seconds: int | None = None,
    ) -> list[dict[str, Any]]:
        """
        Generate sample orders and schedule them on the source queue.

        Args:
            count: Number of orders
            delay_seconds: Delay from now; negative values are clamped to 0,
                None uses config.default_schedule_delay_seconds

        Returns:
            One row per order with its sequence number, or an error
        """
        orders = generate_orders(count, clock=self._clock)
        return await self.schedule_orders(orders, delay_seconds)

    async def schedule_orders(
        self,
        orders: Sequence[OrderPayload],
        delay_seconds: int | None = None,
    ) -> list[dict[str, Any]]:
        """
        Schedule caller-supplied orders on the source queue.

        A failure is reported on the order's row; the remaining orders are
        still scheduled.
        """
        if delay_seconds is None:
            delay_seconds = self._config.default_schedule_delay_seconds
        scheduled_for = self._clock() + timedelta(seconds=max(delay_seconds, 0))
        stamp = format_timestamp(scheduled_for)

        rows = []
        for order in orders:
            message = OutgoingMessage(
                order_id=order.order_id,
                payload=order.to_bytes(),
                content_type=ORDER_CONTENT_TYPE,
                correlation_id=order.order_id,
                application_properties={
                    "brand": order.metadata.brand,
                    "channel": order.metadata.channel,
                    "version": order.metadata.version,
                    "scheduledFor": stamp,
                },
            )
            try:
                seq = await self._source.schedule_at(message, scheduled_for)
            except Exception as e:
                logger.error("Scheduling order %s failed: %s", order.order_id, e)
                rows.append({"orderId": order.order_id, "error": str(e)})
                continue

            await self._tracking.record_entry(
                self._tracking.new_entry(order.order_id, QueueLocation.SOURCE, seq, scheduled_for)
            )
            rows.append(
                {
                    "orderId": order.order_id,
                    "sequenceNumber": seq,
                    "scheduledFor": stamp,
                }
            )

        logger.info(
            "Scheduled %d of %d orders on %s for %s",
            sum(1 for row in rows if "error" not in row),
            len(rows),
            self._source.name,
            stamp,
        )
        return rows

    # ------------------------------------------------------------------
    # Transfer
    # ------------------------------------------------------------------

    async def transfer(
        self,
        max_messages: int | None = None,
        emit_sample_metadata: bool = False,
    ) -> TransferReport:
        """
        Move every scheduled message from the source to the destination queue.

        Raises:
            TransferInProgressError: If another transfer is running in this process
        """
        if self._transfer_lock.locked():
            raise TransferInProgressError()
        async with self._transfer_lock:
            report = await self._engine.run(max_messages, emit_sample_metadata)
            self._last_report = report
            return report

    async def cancel_by_order_id(self, order_id: str) -> CancelOutcome:
        """
        Cancel an order wherever the tracking store says it is.

        The source entry is tried first, then the destination entry.
        """
        entries = await self._tracking.get_entries_for_order(order_id)
        if not entries:
            return CancelOutcome(order_id=order_id, status=CancelStatus.NOT_FOUND)

        for location, queue, cancelled_status in (
            (QueueLocation.SOURCE, self._source, CancelStatus.CANCELLED_FROM_SOURCE),
            (
                QueueLocation.DESTINATION,
                self._destination,
                CancelStatus.CANCELLED_FROM_DESTINATION,
            ),
        ):
            entry = entries.get(location)
            if entry is None:
                continue

            try:
                result = await queue.cancel_scheduled(entry.sequence_number)
            except MessageNotFoundError:
                result = CancelResult.NOT_FOUND
            except Exception as e:
                logger.error(
                    "Cancel of order %s on %s failed: %s",
                    order_id,
                    queue.name,
                    e,
                )
                return CancelOutcome(
                    order_id=order_id,
                    status=CancelStatus.ERROR,
                    location=location,
                    sequence_number=entry.sequence_number,
                    error=str(e),
                )

            await self._tracking.remove_entry(order_id, location)
            if result is CancelResult.CANCELLED:
                logger.info(
                    "Cancelled order %s (sequence %d) on %s",
                    order_id,
                    entry.sequence_number,
                    queue.name,
                )
                return CancelOutcome(
                    order_id=order_id,
                    status=cancelled_status,
                    location=location,
                    sequence_number=entry.sequence_number,
                )

        return CancelOutcome(order_id=order_id, status=CancelStatus.ALREADY_GONE)

    async def order_status(self, order_id: str) -> dict[str, Any]:
        """Tracked locations and transfer history of one order."""
        entries = await self._tracking.get_entries_for_order(order_id)
        history = await self._tracking.get_history(order_id)
        return {
            "orderId": order_id,
            "trackingAvailable": self._tracking.is_available,
            "locations": {
                location.value: {
                    "sequenceNumber": entry.sequence_number,
                    "scheduledFor": format_timestamp(entry.scheduled_for) or None,
                    "lastUpdated": format_timestamp(entry.last_updated),
                }
                for location, entry in entries.items()
            },
            "history": (
                {
                    "sourceSequence": history.source_sequence,
                    "destinationSequence": history.destination_sequence,
                    "originalScheduledFor": (
                        format_timestamp(history.original_scheduled_for) or None
                    ),
                    "transferredAt": format_timestamp(history.transferred_at),
                }
                if history
                else None
            ),
        }

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def validate(
        self,
        peek_count: int | None = None,
        include_timing_analysis: bool = False,
    ) -> ValidationReport:
        return await self._validator.validate(peek_count, include_timing_analysis)

    async def reconcile_tracking_from_broker(
        self,
        max_messages: int | None = None,
    ) -> ReconcileSummary:
        return await self._reconciler.rebuild(max_messages)

    async def purge_all(self, confirm_destructive: bool = False) -> PurgeSummary:
        """
        Empty both queues, the error sink and the tracking store.

        Raises:
            PurgeNotConfirmedError: Unless confirm_destructive is True
        """
        if not confirm_destructive:
            raise PurgeNotConfirmedError()
        logger.warning(
            "Purging %s, %s, %s and all tracking data",
            self._source.name,
            self._destination.name,
            self._error_sink.queue_name,
        )
        return await self._purger.purge_all()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def _queue_counts(self, queue: MessageQueue) -> dict[str, Any]:
        cursor = BatchPeekCursor(queue, self._config.max_total_messages, tracer=self._tracer)
        try:
            records = await cursor.collect(self._config.batch_size)
        except Exception as e:
            logger.warning("Peek of %s failed: %s", queue.name, e)
            return {"queue": queue.name, "error": str(e)}
        now = self._clock()
        scheduled = sum(1 for record in records if is_eligible(record, now))
        return {
            "queue": queue.name,
            "scheduled": scheduled,
            "active": len(records) - scheduled,
            "truncated": len(records) >= self._config.max_total_messages,
        }

    async def transfer_status(self) -> dict[str, Any]:
        """Queue depths, tracking statistics and the last transfer summary."""
        last_report = (
            self._last_report.summary()
            if self._last_report is not None
            else await self._tracking.load_last_report()
        )
        return {
            "source": await self._queue_counts(self._source),
            "destination": await self._queue_counts(self._destination),
            "errorSink": await self._queue_counts(self._error_sink.queue),
            "tracking": await self._tracking.stats(),
            "trackingAvailable": self._tracking.is_available,
            "transferInProgress": self._transfer_lock.locked(),
            "lastTransfer": last_report,
        }

    async def dead_letter_status(self, peek_count: int | None = None) -> dict[str, Any]:
        """Error sink records, oldest first."""
        count = self._config.default_peek_count if peek_count is None else peek_count
        records = await self._error_sink.peek(count)
        return {
            "queue": self._error_sink.queue_name,
            "count": len(records),
            "records": records,
        }


__all__ = ["ScheduledTransferService", "CancelOutcome", "CancelStatus"]
