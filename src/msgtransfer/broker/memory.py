"""In-memory message queue implementation.

Suitable for development and testing. Sequence numbers start at 1 and
increase per queue; a scheduled message turns active once the injected
clock passes its delivery instant.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from msgtransfer.broker.interface import (
    CancelResult,
    MessageQueue,
    OutgoingMessage,
    QueueRecord,
)
from msgtransfer.observability import (
    ATTR_BATCH_SIZE,
    ATTR_FROM_SEQUENCE,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_SYSTEM,
    ATTR_SEQUENCE_NUMBER,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(UTC)


class InMemoryMessageQueue(MessageQueue):
    """
    In-memory broker queue.

    Example:
        >>> queue = InMemoryMessageQueue("source")
        >>> seq = await queue.schedule_at(message, datetime.now(UTC) + timedelta(hours=1))
        >>> records = await queue.peek(10)

    Note:
        receive_and_acknowledge() never blocks: in-process state only
        changes when another coroutine runs, so waiting for the timeout
        could not produce new messages.
    """

    def __init__(
        self,
        name: str,
        *,
        clock: Callable[[], datetime] = utc_now,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize an empty queue.

        Args:
            name: Queue name
            clock: Returns the current aware UTC instant
            tracer: Optional tracer (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._name = name
        self._clock = clock
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._messages: dict[int, QueueRecord] = {}
        self._last_sequence = 0
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self._name

    def _is_active(self, record: QueueRecord) -> bool:
        return record.scheduled_for is None or record.scheduled_for <= self._clock()

    def _store(self, message: OutgoingMessage, scheduled_for: datetime | None) -> int:
        self._last_sequence += 1
        self._messages[self._last_sequence] = QueueRecord(
            sequence_number=self._last_sequence,
            order_id=message.order_id,
            scheduled_for=scheduled_for,
            payload=bytes(message.payload),
            content_type=message.content_type,
            correlation_id=message.correlation_id,
            application_properties=dict(message.application_properties),
        )
        return self._last_sequence

    async def peek(self, batch_size: int, from_sequence_number: int = 1) -> list[QueueRecord]:
        with self._tracer.span(
            "msgtransfer.queue.peek",
            {
                ATTR_MESSAGING_SYSTEM: "memory",
                ATTR_MESSAGING_DESTINATION: self._name,
                ATTR_BATCH_SIZE: batch_size,
                ATTR_FROM_SEQUENCE: from_sequence_number,
            },
        ):
            if batch_size <= 0:
                return []
            async with self._lock:
                records = [
                    record
                    for seq, record in sorted(self._messages.items())
                    if seq >= from_sequence_number
                ]
                return records[:batch_size]

    async def schedule_at(self, message: OutgoingMessage, scheduled_for: datetime) -> int:
        if scheduled_for.tzinfo is None:
            raise ValueError(f"scheduled_for must be timezone-aware, got {scheduled_for!r}")

        with self._tracer.span(
            "msgtransfer.queue.schedule",
            {
                ATTR_MESSAGING_SYSTEM: "memory",
                ATTR_MESSAGING_DESTINATION: self._name,
            },
        ):
            async with self._lock:
                seq = self._store(message, scheduled_for.astimezone(UTC))

            logger.debug(
                "Scheduled %s on %s as sequence %d for %s",
                message.order_id,
                self._name,
                seq,
                scheduled_for.isoformat(),
            )
            return seq

    async def cancel_scheduled(self, sequence_number: int) -> CancelResult:
        with self._tracer.span(
            "msgtransfer.queue.cancel",
            {
                ATTR_MESSAGING_SYSTEM: "memory",
                ATTR_MESSAGING_DESTINATION: self._name,
                ATTR_SEQUENCE_NUMBER: sequence_number,
            },
        ):
            async with self._lock:
                record = self._messages.get(sequence_number)
                if record is None or self._is_active(record):
                    return CancelResult.NOT_FOUND
                del self._messages[sequence_number]
                return CancelResult.CANCELLED

    async def receive_and_acknowledge(
        self,
        batch_size: int,
        timeout: float = 0.0,
    ) -> list[QueueRecord]:
        with self._tracer.span(
            "msgtransfer.queue.receive",
            {
                ATTR_MESSAGING_SYSTEM: "memory",
                ATTR_MESSAGING_DESTINATION: self._name,
                ATTR_BATCH_SIZE: batch_size,
            },
        ):
            async with self._lock:
                received: list[QueueRecord] = []
                for seq in sorted(self._messages):
                    if len(received) >= batch_size:
                        break
                    record = self._messages[seq]
                    if self._is_active(record):
                        received.append(record)
                for record in received:
                    del self._messages[record.sequence_number]
                return received

    async def send(self, message: OutgoingMessage) -> int:
        with self._tracer.span(
            "msgtransfer.queue.send",
            {
                ATTR_MESSAGING_SYSTEM: "memory",
                ATTR_MESSAGING_DESTINATION: self._name,
            },
        ):
            async with self._lock:
                return self._store(message, None)

    async def clear(self) -> None:
        """Remove all messages. Sequence numbers keep increasing."""
        async with self._lock:
            self._messages.clear()

    def __len__(self) -> int:
        return len(self._messages)


__all__ = ["InMemoryMessageQueue", "utc_now"]
