"""
Read-only comparison of tracking data against broker state.

The Validator snapshots the head of both queues, diffs the order ids of
still-scheduled records against the tracking store, and optionally analyses
the timing of past transfers. It never mutates queues or tracking data.

When a snapshot is cut short by the peek count, tracked entries whose
sequence number lies beyond the last record scanned are not reported as
absent: the validator has simply not looked that far.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from msgtransfer.broker.interface import MessageQueue, QueueRecord
from msgtransfer.config import TransferConfig
from msgtransfer.observability import ATTR_BATCH_SIZE, Tracer, create_tracer
from msgtransfer.serialization import format_timestamp
from msgtransfer.tracking import (
    QueueLocation,
    TrackingEntry,
    TrackingStore,
    TransferHistoryEntry,
)
from msgtransfer.transfer.cursor import BatchPeekCursor
from msgtransfer.transfer.filter import is_eligible

logger = logging.getLogger(__name__)


@dataclass
class QueueSnapshot:
    """
    Head of one queue as observed by the validator.

    Attributes:
        queue_name: Queue that was peeked
        records: Records observed, in sequence order
        truncated: Whether the peek count may have cut the queue short
        error: Peek failure, if any
    """

    queue_name: str
    records: list[QueueRecord] = field(default_factory=list)
    truncated: bool = False
    error: str | None = None

    @property
    def last_sequence_number(self) -> int | None:
        return self.records[-1].sequence_number if self.records else None

    def rows(self, now: datetime) -> list[dict[str, Any]]:
        """JSON-ready rows of the snapshot."""
        rows = []
        for record in self.records:
            row: dict[str, Any] = {
                "orderId": record.order_id,
                "sequenceNumber": record.sequence_number,
                "contentType": record.content_type,
                "correlationId": record.correlation_id,
                "scheduledFor": format_timestamp(record.scheduled_for) or None,
                "state": "SCHEDULED" if is_eligible(record, now) else "ACTIVE",
                "applicationProperties": dict(record.application_properties),
            }
            if record.decode_error is not None:
                row["decodeError"] = record.decode_error
            rows.append(row)
        return rows


@dataclass
class LocationDiff:
    """Order ids on which tracking and broker disagree for one queue."""

    tracked_but_absent: list[str] = field(default_factory=list)
    present_but_untracked: list[str] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.tracked_but_absent and not self.present_but_untracked

    def to_dict(self) -> dict[str, Any]:
        return {
            "trackedButAbsent": list(self.tracked_but_absent),
            "presentButUntracked": list(self.present_but_untracked),
        }


@dataclass(frozen=True)
class TimingAnalysisRow:
    """Timing of one completed transfer relative to now."""

    order_id: str
    original_scheduled_for: datetime | None
    transferred_at: datetime
    now: datetime
    seconds_until_scheduled: float | None
    seconds_between_transfer_and_scheduled: float | None
    still_scheduled: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "orderId": self.order_id,
            "originalScheduledFor": format_timestamp(self.original_scheduled_for) or None,
            "transferredAt": format_timestamp(self.transferred_at),
            "now": format_timestamp(self.now),
            "secondsUntilScheduled": self.seconds_until_scheduled,
            "secondsBetweenTransferAndScheduled": self.seconds_between_transfer_and_scheduled,
            "stillScheduled": self.still_scheduled,
        }


@dataclass
class ValidationReport:
    """
    Result of a validation run.

    Attributes:
        source: Snapshot of the source queue
        destination: Snapshot of the destination queue
        diffs: Tracking disagreements per queue; absent when tracking
            could not be read
        tracking_available: Whether the tracking store answered
        timing: Timing analysis rows, if requested
        checked_at: Evaluation instant
        duration_seconds: Time taken
    """

    source: QueueSnapshot
    destination: QueueSnapshot
    diffs: dict[QueueLocation, LocationDiff] = field(default_factory=dict)
    tracking_available: bool = True
    timing: list[TimingAnalysisRow] | None = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    duration_seconds: float = 0.0

    @property
    def errors(self) -> list[str]:
        errors = [s.error for s in (self.source, self.destination) if s.error]
        if not self.tracking_available:
            errors.append("Tracking store unavailable")
        return errors

    @property
    def is_consistent(self) -> bool:
        return (
            not self.errors
            and len(self.diffs) == len(QueueLocation)
            and all(diff.is_consistent for diff in self.diffs.values())
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "checkedAt": format_timestamp(self.checked_at),
            "consistent": self.is_consistent,
            "trackingAvailable": self.tracking_available,
            "source": {
                "queue": self.source.queue_name,
                "truncated": self.source.truncated,
                "messages": self.source.rows(self.checked_at),
            },
            "destination": {
                "queue": self.destination.queue_name,
                "truncated": self.destination.truncated,
                "messages": self.destination.rows(self.checked_at),
            },
            "diffs": {location.value: diff.to_dict() for location, diff in self.diffs.items()},
            "errors": self.errors,
            "durationSeconds": self.duration_seconds,
        }
        if self.timing is not None:
            result["timingAnalysis"] = [row.to_dict() for row in self.timing]
        return result


class Validator:
    """
    Compares tracking data with what the broker actually holds.

    Example:
        >>> validator = Validator(source, destination, tracking, config=config)
        >>> report = await validator.validate(peek_count=50)
        >>> report.is_consistent
        True
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
        self._source = source
        self._destination = destination
        self._tracking = tracking
        self._config = config
        self._clock = clock
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def validate(
        self,
        peek_count: int | None = None,
        include_timing_analysis: bool = False,
    ) -> ValidationReport:
        """
        Snapshot both queues and diff them against tracking data.

        Args:
            peek_count: Records to snapshot per queue, defaults to
                config.default_peek_count
            include_timing_analysis: Also analyse transfer history timing

        Returns:
            The validation report
        """
        count = self._config.default_peek_count if peek_count is None else peek_count
        if count < 1:
            raise ValueError(f"peek_count must be positive, got {count}")

        start_time = time.monotonic()
        with self._tracer.span("msgtransfer.validator.validate", {ATTR_BATCH_SIZE: count}):
            source = await self._snapshot(self._source, count)
            destination = await self._snapshot(self._destination, count)
            now = self._clock()
            report = ValidationReport(source=source, destination=destination, checked_at=now)

            for location, snapshot in (
                (QueueLocation.SOURCE, source),
                (QueueLocation.DESTINATION, destination),
            ):
                if snapshot.error is not None:
                    continue
                tracked = await self._tracking.list_entries(location)
                if tracked is None:
                    report.tracking_available = False
                    continue
                report.diffs[location] = self._diff(snapshot, tracked, now)

            if include_timing_analysis:
                report.timing = await self._timing(destination, now)
                if report.timing is None:
                    report.tracking_available = False

        report.duration_seconds = time.monotonic() - start_time
        if report.is_consistent:
            logger.info("Tracking data consistent with broker state")
        else:
            logger.warning(
                "Tracking data inconsistent with broker state: %s",
                {location.value: diff.to_dict() for location, diff in report.diffs.items()},
                extra={"errors": report.errors},
            )
        return report

    async def _snapshot(self, queue: MessageQueue, count: int) -> QueueSnapshot:
        cursor = BatchPeekCursor(queue, count, tracer=self._tracer)
        try:
            records = await cursor.collect(min(self._config.batch_size, count))
        except Exception as e:
            logger.warning("Peek of %s failed during validation: %s", queue.name, e)
            return QueueSnapshot(queue_name=queue.name, error=f"Peek of {queue.name} failed: {e}")
        return QueueSnapshot(
            queue_name=queue.name,
            records=records,
            truncated=len(records) >= count,
        )

    @staticmethod
    def _diff(
        snapshot: QueueSnapshot,
        tracked: list[TrackingEntry],
        now: datetime,
    ) -> LocationDiff:
        eligible = [r for r in snapshot.records if is_eligible(r, now)]
        observed_ids = {r.order_id for r in eligible}
        horizon = snapshot.last_sequence_number if snapshot.truncated else None

        tracked_ids: set[str] = set()
        tracked_but_absent = []
        for entry in tracked:
            if horizon is not None and entry.sequence_number > horizon:
                continue
            tracked_ids.add(entry.order_id)
            if entry.order_id not in observed_ids:
                tracked_but_absent.append(entry.order_id)

        present_but_untracked = [r.order_id for r in eligible if r.order_id not in tracked_ids]
        return LocationDiff(
            tracked_but_absent=sorted(tracked_but_absent),
            present_but_untracked=sorted(present_but_untracked),
        )

    async def _timing(
        self,
        destination: QueueSnapshot,
        now: datetime,
    ) -> list[TimingAnalysisRow] | None:
        history = await self._tracking.list_history()
        if history is None:
            return None
        still_scheduled = {r.order_id for r in destination.records if is_eligible(r, now)}
        return [
            self._timing_row(entry, now, entry.order_id in still_scheduled) for entry in history
        ]

    @staticmethod
    def _timing_row(
        entry: TransferHistoryEntry,
        now: datetime,
        still_scheduled: bool,
    ) -> TimingAnalysisRow:
        scheduled_for = entry.original_scheduled_for
        return TimingAnalysisRow(
            order_id=entry.order_id,
            original_scheduled_for=scheduled_for,
            transferred_at=entry.transferred_at,
            now=now,
            seconds_until_scheduled=(
                (scheduled_for - now).total_seconds() if scheduled_for else None
            ),
            seconds_between_transfer_and_scheduled=(
                (scheduled_for - entry.transferred_at).total_seconds() if scheduled_for else None
            ),
            still_scheduled=still_scheduled,
        )


__all__ = [
    "Validator",
    "ValidationReport",
    "QueueSnapshot",
    "LocationDiff",
    "TimingAnalysisRow",
]
