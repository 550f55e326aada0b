"""
Best-effort tracking store adapter.

TrackingStore mirrors transfer outcomes into an injected KeyValueStore.
Every operation swallows and logs failures: losing the tracking store must
never abort or alter a transfer. Writes return True/False, reads return
None (or an empty mapping) when the store could not be reached.

Key layout:
    order:source:{order_id}      hash  entry for a message in the source queue
    order:dest:{order_id}        hash  entry for a message in the destination queue
    transfer:history:{order_id}  hash  timing record of a completed transfer
    transfer:last-report         str   JSON summary of the latest transfer run
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Collection
from datetime import UTC, datetime
from typing import Any, TypeVar

from msgtransfer.serialization import format_timestamp, json_dumps, json_loads, parse_timestamp
from msgtransfer.tracking.interface import (
    KeyValueStore,
    QueueLocation,
    TrackingEntry,
    TransferHistoryEntry,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ORDER_PREFIX = "order:"
HISTORY_PREFIX = "transfer:history:"
LAST_REPORT_KEY = "transfer:last-report"


def entry_key(order_id: str, location: QueueLocation) -> str:
    """Tracking key of one order in one queue."""
    return f"{ORDER_PREFIX}{location.key_segment}:{order_id}"


def location_prefix(location: QueueLocation) -> str:
    """Key prefix shared by all entries of a queue."""
    return f"{ORDER_PREFIX}{location.key_segment}:"


def history_key(order_id: str) -> str:
    """Tracking key of the transfer history of one order."""
    return f"{HISTORY_PREFIX}{order_id}"


class TrackingStore:
    """
    Write-through, best-effort mirror of where scheduled orders live.

    Example:
        >>> tracking = TrackingStore(InMemoryKeyValueStore(), ttl_seconds=3600)
        >>> await tracking.record_entry(entry)
        True
        >>> await tracking.get_entry("ORD-1", QueueLocation.SOURCE)
        TrackingEntry(...)
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        ttl_seconds: int,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        """
        Initialize the adapter.

        Args:
            store: Key-value capability; every call may fail
            ttl_seconds: Expiry applied to every written key
            clock: Returns the current aware UTC instant
        """
        self._store = store
        self._ttl = ttl_seconds
        self._clock = clock
        self._available = True

    @property
    def is_available(self) -> bool:
        """Whether the most recent operation reached the store."""
        return self._available

    async def _guarded(
        self,
        operation: str,
        key: str,
        call: Callable[[], Awaitable[T]],
        default: T,
    ) -> T:
        try:
            result = await call()
        except Exception as e:
            if self._available:
                logger.warning(
                    "Tracking store %s failed for %s, continuing without it: %s",
                    operation,
                    key,
                    e,
                )
            else:
                logger.debug("Tracking store still unavailable (%s %s): %s", operation, key, e)
            self._available = False
            return default
        if not self._available:
            logger.info("Tracking store reachable again")
        self._available = True
        return result

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def _encode_entry(self, entry: TrackingEntry) -> dict[str, str]:
        return {
            "orderId": entry.order_id,
            "location": entry.location.value,
            "sequenceNumber": str(entry.sequence_number),
            "scheduledFor": format_timestamp(entry.scheduled_for),
            "lastUpdated": format_timestamp(entry.last_updated),
        }

    def _decode_entry(
        self,
        order_id: str,
        location: QueueLocation,
        fields: dict[str, str],
    ) -> TrackingEntry | None:
        if not fields:
            return None
        try:
            return TrackingEntry(
                order_id=fields.get("orderId") or order_id,
                location=location,
                sequence_number=int(fields["sequenceNumber"]),
                scheduled_for=parse_timestamp(fields.get("scheduledFor")),
                last_updated=parse_timestamp(fields.get("lastUpdated")) or self._clock(),
            )
        except (KeyError, ValueError) as e:
            logger.warning("Ignoring malformed tracking entry for %s: %s", order_id, e)
            return None

    def new_entry(
        self,
        order_id: str,
        location: QueueLocation,
        sequence_number: int,
        scheduled_for: datetime | None,
    ) -> TrackingEntry:
        """Build an entry stamped with the current time."""
        return TrackingEntry(
            order_id=order_id,
            location=location,
            sequence_number=sequence_number,
            scheduled_for=scheduled_for,
            last_updated=self._clock(),
        )

    async def record_entry(self, entry: TrackingEntry) -> bool:
        """Write or overwrite an entry. Returns False if the store failed."""
        key = entry_key(entry.order_id, entry.location)

        async def write() -> bool:
            await self._store.hash_set_with_ttl(key, self._encode_entry(entry), self._ttl)
            return True

        return await self._guarded("write", key, write, False)

    async def get_entry(self, order_id: str, location: QueueLocation) -> TrackingEntry | None:
        """Read one entry; None if absent or the store failed."""
        key = entry_key(order_id, location)
        fields = await self._guarded("read", key, lambda: self._store.hash_get_all(key), {})
        return self._decode_entry(order_id, location, fields)

    async def get_entries_for_order(self, order_id: str) -> dict[QueueLocation, TrackingEntry]:
        """All entries of an order, keyed by location."""
        entries = {}
        for location in QueueLocation:
            entry = await self.get_entry(order_id, location)
            if entry is not None:
                entries[location] = entry
        return entries

    async def remove_entry(self, order_id: str, location: QueueLocation) -> bool:
        """Delete an entry. Returns False if the store failed."""
        key = entry_key(order_id, location)

        async def remove() -> bool:
            await self._store.delete(key)
            return True

        return await self._guarded("delete", key, remove, False)

    async def list_entries(self, location: QueueLocation) -> list[TrackingEntry] | None:
        """
        All entries of one queue.

        Returns:
            Entries sorted by sequence number, or None if the store failed
        """
        prefix = location_prefix(location)

        async def read_all() -> list[TrackingEntry]:
            entries = []
            for key in await self._store.keys_by_prefix(prefix):
                order_id = key[len(prefix) :]
                entry = self._decode_entry(
                    order_id, location, await self._store.hash_get_all(key)
                )
                if entry is not None:
                    entries.append(entry)
            entries.sort(key=lambda e: e.sequence_number)
            return entries

        return await self._guarded("list", prefix, read_all, None)

    async def prune_location(
        self,
        location: QueueLocation,
        keep: Collection[str],
        horizon: int | None = None,
    ) -> int | None:
        """
        Delete the entries of one queue whose order id is not in keep.

        Args:
            location: Queue whose entries are pruned
            keep: Order ids whose entries stay
            horizon: If given, entries with a sequence number beyond it are
                also kept; malformed entries are always deleted

        Returns:
            Number of entries deleted, or None if the store failed
        """
        prefix = location_prefix(location)
        keep_ids = set(keep)

        async def prune() -> int:
            stale = []
            for key in await self._store.keys_by_prefix(prefix):
                order_id = key[len(prefix) :]
                if order_id in keep_ids:
                    continue
                if horizon is not None:
                    entry = self._decode_entry(
                        order_id, location, await self._store.hash_get_all(key)
                    )
                    if entry is not None and entry.sequence_number > horizon:
                        continue
                stale.append(key)
            if not stale:
                return 0
            return await self._store.delete(*stale)

        return await self._guarded("prune", prefix, prune, None)

    # ------------------------------------------------------------------
    # Transfer history and reports
    # ------------------------------------------------------------------

    async def record_transfer(self, history: TransferHistoryEntry) -> bool:
        """Store the timing record of a completed transfer."""
        key = history_key(history.order_id)
        fields = {
            "orderId": history.order_id,
            "sourceSequence": str(history.source_sequence),
            "destinationSequence": str(history.destination_sequence),
            "originalScheduledFor": format_timestamp(history.original_scheduled_for),
            "transferredAt": format_timestamp(history.transferred_at),
        }

        async def write() -> bool:
            await self._store.hash_set_with_ttl(key, fields, self._ttl)
            return True

        return await self._guarded("write", key, write, False)

    def _decode_history(self, fields: dict[str, str]) -> TransferHistoryEntry | None:
        try:
            transferred_at = parse_timestamp(fields["transferredAt"])
            if transferred_at is None:
                return None
            return TransferHistoryEntry(
                order_id=fields["orderId"],
                source_sequence=int(fields["sourceSequence"]),
                destination_sequence=int(fields["destinationSequence"]),
                original_scheduled_for=parse_timestamp(fields.get("originalScheduledFor")),
                transferred_at=transferred_at,
            )
        except (KeyError, ValueError) as e:
            logger.warning("Ignoring malformed transfer history: %s", e)
            return None

    async def get_history(self, order_id: str) -> TransferHistoryEntry | None:
        """Transfer history of one order, None if absent or the store failed."""
        key = history_key(order_id)
        fields = await self._guarded("read", key, lambda: self._store.hash_get_all(key), {})
        return self._decode_history(fields) if fields else None

    async def list_history(self) -> list[TransferHistoryEntry] | None:
        """All transfer history records, oldest first; None if the store failed."""

        async def read_all() -> list[TransferHistoryEntry]:
            history = []
            for key in await self._store.keys_by_prefix(HISTORY_PREFIX):
                decoded = self._decode_history(await self._store.hash_get_all(key))
                if decoded is not None:
                    history.append(decoded)
            history.sort(key=lambda h: h.transferred_at)
            return history

        return await self._guarded("list", HISTORY_PREFIX, read_all, None)

    async def store_last_report(self, summary: dict[str, Any]) -> bool:
        """Keep a JSON summary of the latest transfer run."""

        async def write() -> bool:
            await self._store.set_with_ttl(LAST_REPORT_KEY, json_dumps(summary), self._ttl)
            return True

        return await self._guarded("write", LAST_REPORT_KEY, write, False)

    async def load_last_report(self) -> dict[str, Any] | None:
        """The summary written by store_last_report(), if any."""
        raw = await self._guarded(
            "read", LAST_REPORT_KEY, lambda: self._store.get(LAST_REPORT_KEY), None
        )
        if raw is None:
            return None
        try:
            loaded = json_loads(raw)
        except ValueError as e:
            logger.warning("Ignoring malformed last transfer report: %s", e)
            return None
        return loaded if isinstance(loaded, dict) else None

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def stats(self) -> dict[str, int] | None:
        """Key counts per category; None if the store failed."""

        async def count() -> dict[str, int]:
            return {
                "source_entries": len(
                    await self._store.keys_by_prefix(location_prefix(QueueLocation.SOURCE))
                ),
                "destination_entries": len(
                    await self._store.keys_by_prefix(location_prefix(QueueLocation.DESTINATION))
                ),
                "history_entries": len(await self._store.keys_by_prefix(HISTORY_PREFIX)),
            }

        return await self._guarded("stats", ORDER_PREFIX, count, None)

    async def purge(self) -> int | None:
        """
        Delete every tracking key.

        Returns:
            Number of keys deleted, or None if the store failed
        """

        async def delete_all() -> int:
            keys: set[str] = set()
            for prefix in (ORDER_PREFIX, HISTORY_PREFIX):
                keys.update(await self._store.keys_by_prefix(prefix))
            keys.add(LAST_REPORT_KEY)
            return await self._store.delete(*sorted(keys))

        return await self._guarded("purge", "*", delete_all, None)


__all__ = [
    "TrackingStore",
    "entry_key",
    "history_key",
    "location_prefix",
    "LAST_REPORT_KEY",
]
