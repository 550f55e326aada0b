"""
Paginated, non-destructive reader over a queue's sequence-number space.

Brokers cap how many records a single peek returns. BatchPeekCursor pages
through a queue in batches, advancing by sequence number, and stops after a
configurable total. No scan position is persisted: every scan starts from
the cursor it is given, so an interrupted scan can simply be started again.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field, replace

from msgtransfer.broker.interface import MessageQueue, QueueRecord
from msgtransfer.observability import (
    ATTR_BATCH_SIZE,
    ATTR_FROM_SEQUENCE,
    ATTR_MESSAGING_DESTINATION,
    ATTR_RECORD_COUNT,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchCursor:
    """
    Position of a scan.

    Attributes:
        batch_size: Records requested per peek
        from_sequence_number: First sequence number of the next peek
        total_examined: Records returned so far
    """

    batch_size: int
    from_sequence_number: int = 1
    total_examined: int = 0

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.from_sequence_number < 0:
            raise ValueError(
                f"from_sequence_number must be >= 0, got {self.from_sequence_number}"
            )


@dataclass(frozen=True)
class PeekBatch:
    """
    One page of a scan.

    Attributes:
        records: Records in ascending sequence order
        next_cursor: Cursor for the following page
        exhausted: True when no further page should be requested
    """

    records: list[QueueRecord] = field(default_factory=list)
    next_cursor: BatchCursor | None = None
    exhausted: bool = True

    @property
    def last_sequence_number(self) -> int | None:
        return self.records[-1].sequence_number if self.records else None


class BatchPeekCursor:
    """
    Reads a queue page by page.

    Example:
        >>> cursor = BatchPeekCursor(queue, max_total_messages=1000)
        >>> async for batch in cursor.scan(batch_size=100):
        ...     for record in batch.records:
        ...         print(record.sequence_number)
    """

    def __init__(
        self,
        queue: MessageQueue,
        max_total_messages: int,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the cursor.

        Args:
            queue: Queue to read
            max_total_messages: Ceiling on records returned by one scan
            tracer: Optional tracer (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        if max_total_messages < 1:
            raise ValueError(f"max_total_messages must be positive, got {max_total_messages}")
        self._queue = queue
        self._max_total = max_total_messages
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def queue(self) -> MessageQueue:
        return self._queue

    @property
    def max_total_messages(self) -> int:
        return self._max_total

    async def peek_next(self, cursor: BatchCursor) -> PeekBatch:
        """
        Perform one non-destructive read.

        Requests min(batch_size, remaining allowance) records starting at
        cursor.from_sequence_number. Broker errors propagate.

        Returns:
            The page and the cursor to continue from
        """
        remaining = self._max_total - cursor.total_examined
        if remaining <= 0:
            return PeekBatch(records=[], next_cursor=cursor, exhausted=True)

        requested = min(cursor.batch_size, remaining)
        with self._tracer.span(
            "msgtransfer.cursor.peek",
            {
                ATTR_MESSAGING_DESTINATION: self._queue.name,
                ATTR_FROM_SEQUENCE: cursor.from_sequence_number,
                ATTR_BATCH_SIZE: requested,
            },
        ) as span:
            records = await self._queue.peek(requested, cursor.from_sequence_number)
            if span is not None:
                span.set_attribute(ATTR_RECORD_COUNT, len(records))

        # Never trust the backend to honour the limit.
        records = records[:requested]
        total = cursor.total_examined + len(records)
        next_from = cursor.from_sequence_number
        if records:
            next_from = max(r.sequence_number for r in records) + 1

        exhausted = len(records) < requested or total >= self._max_total
        logger.debug(
            "Peeked %d records from %s starting at %d (total %d, exhausted=%s)",
            len(records),
            self._queue.name,
            cursor.from_sequence_number,
            total,
            exhausted,
        )
        return PeekBatch(
            records=records,
            next_cursor=replace(cursor, from_sequence_number=next_from, total_examined=total),
            exhausted=exhausted,
        )

    async def scan(
        self,
        batch_size: int,
        from_sequence_number: int = 1,
    ) -> AsyncIterator[PeekBatch]:
        """
        Lazily yield successive pages until the queue or the allowance runs out.

        The next page is only requested after the consumer has finished with
        the previous one.
        """
        cursor = BatchCursor(batch_size=batch_size, from_sequence_number=from_sequence_number)
        while True:
            batch = await self.peek_next(cursor)
            yield batch
            if batch.exhausted or batch.next_cursor is None:
                return
            cursor = batch.next_cursor

    async def collect(self, batch_size: int, from_sequence_number: int = 1) -> list[QueueRecord]:
        """Return every record of a bounded scan."""
        records: list[QueueRecord] = []
        async for batch in self.scan(batch_size, from_sequence_number):
            records.extend(batch.records)
        return records


__all__ = ["BatchCursor", "PeekBatch", "BatchPeekCursor"]
