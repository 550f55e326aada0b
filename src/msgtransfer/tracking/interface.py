"""
Tracking store interface and data structures.

The tracking store is an external key-value cache that records, per order,
where a scheduled message currently lives and when it is due. It is purely
diagnostic: transfer eligibility is always derived from broker state.

This module provides:
- KeyValueStore: Protocol for the injected key-value capability
- QueueLocation: Which queue an entry refers to
- TrackingEntry: Where one order's message lives
- TransferHistoryEntry: Timing record of one completed transfer
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol, runtime_checkable


class QueueLocation(Enum):
    """Queue an entry refers to."""

    SOURCE = "source"
    DESTINATION = "destination"

    @property
    def key_segment(self) -> str:
        """Key segment used in tracking keys ("source" or "dest")."""
        return "source" if self is QueueLocation.SOURCE else "dest"


@dataclass(frozen=True)
class TrackingEntry:
    """
    Where one order's scheduled message lives.

    Attributes:
        order_id: Business id of the order
        location: Queue holding the message
        sequence_number: Broker sequence number within that queue
        scheduled_for: Delivery instant
        last_updated: When the entry was written
    """

    order_id: str
    location: QueueLocation
    sequence_number: int
    scheduled_for: datetime | None
    last_updated: datetime


@dataclass(frozen=True)
class TransferHistoryEntry:
    """
    Timing record of one completed transfer.

    Attributes:
        order_id: Business id of the order
        source_sequence: Sequence number the message had at the source
        destination_sequence: Sequence number assigned at the destination
        original_scheduled_for: Delivery instant carried over unchanged
        transferred_at: When the transfer happened
    """

    order_id: str
    source_sequence: int
    destination_sequence: int
    original_scheduled_for: datetime | None
    transferred_at: datetime


@runtime_checkable
class KeyValueStore(Protocol):
    """
    Protocol for the external key-value store backing tracking data.

    Every call may fail (connectivity, timeout); callers must treat
    failures as non-fatal.
    """

    async def get(self, key: str) -> str | None:
        """Get a string value, None if absent."""
        ...

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        """Set a string value that expires after ttl_seconds."""
        ...

    async def hash_set_with_ttl(
        self,
        key: str,
        fields: dict[str, str],
        ttl_seconds: int,
    ) -> None:
        """Replace a hash and set its expiry."""
        ...

    async def hash_get_all(self, key: str) -> dict[str, str]:
        """Get all fields of a hash, empty if absent."""
        ...

    async def keys_by_prefix(self, prefix: str) -> list[str]:
        """List keys starting with prefix."""
        ...

    async def delete(self, *keys: str) -> int:
        """Delete keys and return how many existed."""
        ...


__all__ = [
    "QueueLocation",
    "TrackingEntry",
    "TransferHistoryEntry",
    "KeyValueStore",
]
