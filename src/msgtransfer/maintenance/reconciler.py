"""
Rebuild of tracking data from broker state.

The Reconciler repopulates the tracking store after cache data loss. It
reads both queues without mutating them, writes an entry for every
record that is still scheduled and then drops entries of orders the scan
did not find scheduled. When the scan stops at max_messages, entries
beyond the last record it saw are left alone. Running it twice against
unchanged queues produces the same entries.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from msgtransfer.broker.interface import MessageQueue, QueueRecord
from msgtransfer.config import TransferConfig
from msgtransfer.observability import ATTR_MAX_MESSAGES, Tracer, create_tracer
from msgtransfer.tracking import QueueLocation, TrackingStore
from msgtransfer.transfer.cursor import BatchPeekCursor
from msgtransfer.transfer.filter import is_eligible

logger = logging.getLogger(__name__)


@dataclass
class ReconcileSummary:
    """
    Result of a tracking rebuild.

    Attributes:
        source_rebuilt: Source entries written
        dest_rebuilt: Destination entries written
        errors: Peek, tracking write and prune failures
        duration_seconds: Time taken
    """

    source_rebuilt: int = 0
    dest_rebuilt: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "sourceRebuilt": self.source_rebuilt,
            "destRebuilt": self.dest_rebuilt,
            "errors": list(self.errors),
            "durationSeconds": self.duration_seconds,
        }


class Reconciler:
    """
    Writes tracking entries derived solely from the broker.

    Example:
        >>> reconciler = Reconciler(source, destination, tracking, config=config)
        >>> summary = await reconciler.rebuild(max_messages=500)
        >>> summary.source_rebuilt
        12
    """

    def __init__(
        self,
        source: MessageQueue,
        destination: MessageQueue,
        tracking: TrackingStore,
        *,
        config: TransferConfig,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._queues = {
            QueueLocation.SOURCE: source,
            QueueLocation.DESTINATION: destination,
        }
        self._tracking = tracking
        self._config = config
        self._clock = clock
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def rebuild(self, max_messages: int | None = None) -> ReconcileSummary:
        """
        Rebuild tracking entries for both queues.

        Args:
            max_messages: Records to examine per queue, defaults to
                config.max_total_messages

        Returns:
            Counts of entries written and any errors
        """
        limit = self._config.max_total_messages if max_messages is None else max_messages
        if limit < 1:
            raise ValueError(f"max_messages must be positive, got {limit}")

        summary = ReconcileSummary()
        start_time = time.monotonic()
        with self._tracer.span("msgtransfer.reconciler.rebuild", {ATTR_MAX_MESSAGES: limit}):
            for location, queue in self._queues.items():
                written = await self._rebuild_location(location, queue, limit, summary.errors)
                if location is QueueLocation.SOURCE:
                    summary.source_rebuilt = written
                else:
                    summary.dest_rebuilt = written
        summary.duration_seconds = time.monotonic() - start_time

        logger.info(
            "Rebuilt tracking from broker: %d source, %d destination entries, %d errors",
            summary.source_rebuilt,
            summary.dest_rebuilt,
            len(summary.errors),
        )
        return summary

    async def _rebuild_location(
        self,
        location: QueueLocation,
        queue: MessageQueue,
        limit: int,
        errors: list[str],
    ) -> int:
        records: list[QueueRecord] = []
        complete = True
        cursor = BatchPeekCursor(queue, limit, tracer=self._tracer)
        try:
            async with aclosing(cursor.scan(self._config.batch_size)) as batches:
                async for batch in batches:
                    records.extend(batch.records)
        except Exception as e:
            logger.warning("Peek of %s failed during rebuild: %s", queue.name, e)
            errors.append(f"Peek of {queue.name} failed: {e}")
            complete = False

        now = self._clock()
        written = 0
        scheduled = [record for record in records if is_eligible(record, now)]
        for record in scheduled:
            entry = self._tracking.new_entry(
                record.order_id,
                location,
                record.sequence_number,
                record.scheduled_for,
            )
            if await self._tracking.record_entry(entry):
                written += 1
            else:
                errors.append(
                    f"Tracking write failed for {location.value} order {record.order_id}"
                )

        # Entries past a partial scan may still be valid.
        if not complete:
            return written
        horizon = records[-1].sequence_number if len(records) >= limit else None
        pruned = await self._tracking.prune_location(
            location, {record.order_id for record in scheduled}, horizon
        )
        if pruned is None:
            errors.append(f"Tracking prune failed for {location.value}")
        elif pruned:
            logger.info("Removed %d stale %s tracking entries", pruned, location.value)
        return written


__all__ = ["Reconciler", "ReconcileSummary"]
