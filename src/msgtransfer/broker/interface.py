"""
Message broker interface and core data structures.

The broker holds independently addressable queues (source, destination,
error sink). Each queue assigns increasing sequence numbers, can hold
messages scheduled for future delivery, and supports non-destructive peeks
across both scheduled and active messages.

This module provides:
- QueueRecord: One message as observed via peek or receive
- OutgoingMessage: A message to be scheduled or sent
- CancelResult: Outcome of cancelling a scheduled message
- MessageQueue: Abstract base class for queue implementations
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class CancelResult(Enum):
    """Outcome of cancel_scheduled()."""

    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class QueueRecord:
    """
    One message as observed via peek.

    A later peek of the same sequence number may return nothing because the
    message was consumed or cancelled elsewhere; callers must tolerate that.

    Attributes:
        sequence_number: Broker-assigned, increasing within one queue
        order_id: Business correlation id, also the message identity
        scheduled_for: Delivery instant, None for an active message
        payload: Opaque message body
        content_type: MIME type of the payload
        correlation_id: Correlation identity carried with the message
        application_properties: Ordered auxiliary metadata
        decode_error: Set when the stored message could not be decoded;
            the other fields then hold whatever could be recovered
    """

    sequence_number: int
    order_id: str
    scheduled_for: datetime | None
    payload: bytes
    content_type: str | None = None
    correlation_id: str | None = None
    application_properties: Mapping[str, str] = field(default_factory=dict)
    decode_error: str | None = None

    @property
    def is_decoded(self) -> bool:
        return self.decode_error is None

    @property
    def payload_digest(self) -> str:
        """SHA-256 hex digest of the payload, used in error records."""
        return hashlib.sha256(self.payload).hexdigest()

    def __str__(self) -> str:
        return (
            f"QueueRecord(order={self.order_id}, seq={self.sequence_number}, "
            f"scheduled_for={self.scheduled_for})"
        )


@dataclass(frozen=True)
class OutgoingMessage:
    """
    A message to be scheduled or sent.

    Attributes:
        order_id: Message identity
        payload: Message body
        content_type: MIME type of the payload
        correlation_id: Correlation identity
        application_properties: Ordered auxiliary metadata
    """

    order_id: str
    payload: bytes
    content_type: str | None = None
    correlation_id: str | None = None
    application_properties: Mapping[str, str] = field(default_factory=dict)


class MessageQueue(ABC):
    """
    Abstract base class for a single broker queue.

    All operations are coroutines. Implementations raise
    BrokerUnavailableError when the broker cannot be reached and
    BrokerError for other broker-side failures.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Queue name."""
        pass

    @abstractmethod
    async def peek(self, batch_size: int, from_sequence_number: int = 1) -> list[QueueRecord]:
        """
        Non-destructively read up to batch_size messages.

        Returns scheduled and active messages with sequence numbers
        >= from_sequence_number, in ascending sequence order.

        Args:
            batch_size: Maximum number of records to return
            from_sequence_number: First sequence number to consider

        Returns:
            Ordered list of records (shorter than batch_size at end of queue)
        """
        pass

    @abstractmethod
    async def schedule_at(self, message: OutgoingMessage, scheduled_for: datetime) -> int:
        """
        Schedule a message for delivery at an exact instant.

        Args:
            message: Message to enqueue
            scheduled_for: Timezone-aware delivery instant

        Returns:
            The sequence number assigned by the broker
        """
        pass

    @abstractmethod
    async def cancel_scheduled(self, sequence_number: int) -> CancelResult:
        """
        Cancel a scheduled message.

        A message that no longer exists, or whose delivery time has already
        passed, yields NOT_FOUND.

        Args:
            sequence_number: Sequence number returned by schedule_at()

        Returns:
            CANCELLED or NOT_FOUND
        """
        pass

    @abstractmethod
    async def receive_and_acknowledge(
        self,
        batch_size: int,
        timeout: float = 0.0,
    ) -> list[QueueRecord]:
        """
        Destructively receive up to batch_size active messages.

        Args:
            batch_size: Maximum number of records to receive
            timeout: Seconds to wait for at least one message

        Returns:
            Received records, already removed from the queue
        """
        pass

    @abstractmethod
    async def send(self, message: OutgoingMessage) -> int:
        """
        Enqueue a message for immediate delivery.

        Returns:
            The sequence number assigned by the broker
        """
        pass


__all__ = [
    "CancelResult",
    "QueueRecord",
    "OutgoingMessage",
    "MessageQueue",
]
