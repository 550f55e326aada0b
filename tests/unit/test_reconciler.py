"""
Unit tests for Reconciler.

Tests cover:
- Rebuilding entries for scheduled records in both queues
- Skipping active records
- Error collection for peek and tracking failures
"""

from datetime import timedelta

import pytest

from msgtransfer import QueueLocation, TrackingStore, TransferConfig
from msgtransfer.exceptions import BrokerUnavailableError
from msgtransfer.maintenance import Reconciler, ReconcileSummary
from tests.fixtures import (
    START_TIME,
    FailingKeyValueStore,
    FlakyMessageQueue,
    ManualClock,
    make_message,
)

SCHEDULED_FOR = START_TIME + timedelta(hours=2)


@pytest.fixture
def reconciler(
    source_queue: FlakyMessageQueue,
    destination_queue: FlakyMessageQueue,
    tracking: TrackingStore,
    config: TransferConfig,
    clock: ManualClock,
) -> Reconciler:
    return Reconciler(
        source_queue,
        destination_queue,
        tracking,
        config=config,
        clock=clock,
        enable_tracing=False,
    )


class TestRebuild:
    """Tests for rebuild()."""

    @pytest.mark.asyncio
    async def test_rebuilds_both_queues(
        self,
        reconciler: Reconciler,
        source_queue: FlakyMessageQueue,
        destination_queue: FlakyMessageQueue,
        tracking: TrackingStore,
    ):
        for i in range(4):
            await source_queue.schedule_at(make_message(f"ORD-S{i}"), SCHEDULED_FOR)
        dest_seq = await destination_queue.schedule_at(make_message("ORD-D0"), SCHEDULED_FOR)

        summary = await reconciler.rebuild()

        assert summary.source_rebuilt == 4
        assert summary.dest_rebuilt == 1
        assert summary.errors == []
        entry = await tracking.get_entry("ORD-D0", QueueLocation.DESTINATION)
        assert entry.sequence_number == dest_seq
        assert entry.scheduled_for == SCHEDULED_FOR

    @pytest.mark.asyncio
    async def test_skips_active_records(
        self,
        reconciler: Reconciler,
        source_queue: FlakyMessageQueue,
        tracking: TrackingStore,
        clock: ManualClock,
    ):
        await source_queue.send(make_message("ORD-ACTIVE"))
        await source_queue.schedule_at(
            make_message("ORD-DUE"), START_TIME + timedelta(seconds=1)
        )
        await source_queue.schedule_at(make_message("ORD-LATER"), SCHEDULED_FOR)
        clock.advance(5)

        summary = await reconciler.rebuild()

        assert summary.source_rebuilt == 1
        entries = await tracking.list_entries(QueueLocation.SOURCE)
        assert [e.order_id for e in entries] == ["ORD-LATER"]

    @pytest.mark.asyncio
    async def test_is_repeatable(
        self,
        reconciler: Reconciler,
        source_queue: FlakyMessageQueue,
        tracking: TrackingStore,
    ):
        await source_queue.schedule_at(make_message("ORD-1"), SCHEDULED_FOR)

        await reconciler.rebuild()
        first = await tracking.list_entries(QueueLocation.SOURCE)
        await reconciler.rebuild()
        second = await tracking.list_entries(QueueLocation.SOURCE)

        assert first == second

    @pytest.mark.asyncio
    async def test_does_not_touch_queues(
        self,
        reconciler: Reconciler,
        source_queue: FlakyMessageQueue,
    ):
        await source_queue.schedule_at(make_message("ORD-1"), SCHEDULED_FOR)

        await reconciler.rebuild()

        assert len(source_queue) == 1
        assert source_queue.cancel_calls == []

    @pytest.mark.asyncio
    async def test_respects_max_messages(
        self,
        reconciler: Reconciler,
        source_queue: FlakyMessageQueue,
    ):
        for i in range(5):
            await source_queue.schedule_at(make_message(f"ORD-{i}"), SCHEDULED_FOR)

        summary = await reconciler.rebuild(max_messages=2)

        assert summary.source_rebuilt == 2

    @pytest.mark.asyncio
    async def test_rejects_non_positive_max_messages(self, reconciler: Reconciler):
        with pytest.raises(ValueError):
            await reconciler.rebuild(max_messages=0)


class TestStaleEntries:
    """Entries the broker no longer backs are dropped."""

    @pytest.mark.asyncio
    async def test_drops_entry_of_order_gone_active(
        self,
        reconciler: Reconciler,
        source_queue: FlakyMessageQueue,
        tracking: TrackingStore,
        clock: ManualClock,
    ):
        due = START_TIME + timedelta(seconds=1)
        due_seq = await source_queue.schedule_at(make_message("ORD-DUE"), due)
        later_seq = await source_queue.schedule_at(make_message("ORD-LATER"), SCHEDULED_FOR)
        await tracking.record_entry(
            tracking.new_entry("ORD-DUE", QueueLocation.SOURCE, due_seq, due)
        )
        await tracking.record_entry(
            tracking.new_entry("ORD-LATER", QueueLocation.SOURCE, later_seq, SCHEDULED_FOR)
        )
        clock.advance(2)

        summary = await reconciler.rebuild()

        assert summary.errors == []
        entries = await tracking.list_entries(QueueLocation.SOURCE)
        assert [e.order_id for e in entries] == ["ORD-LATER"]

    @pytest.mark.asyncio
    async def test_drops_entry_left_behind_by_transfer(
        self,
        reconciler: Reconciler,
        destination_queue: FlakyMessageQueue,
        tracking: TrackingStore,
    ):
        seq = await destination_queue.schedule_at(make_message("ORD-1"), SCHEDULED_FOR)
        await tracking.record_entry(
            tracking.new_entry("ORD-1", QueueLocation.SOURCE, seq, SCHEDULED_FOR)
        )

        await reconciler.rebuild()

        assert await tracking.get_entry("ORD-1", QueueLocation.SOURCE) is None
        assert await tracking.get_entry("ORD-1", QueueLocation.DESTINATION) is not None

    @pytest.mark.asyncio
    async def test_keeps_entries_beyond_a_short_scan(
        self,
        reconciler: Reconciler,
        source_queue: FlakyMessageQueue,
        tracking: TrackingStore,
    ):
        sequences = [
            await source_queue.schedule_at(make_message(f"ORD-{i}"), SCHEDULED_FOR)
            for i in range(4)
        ]
        for i in (2, 3):
            await tracking.record_entry(
                tracking.new_entry(f"ORD-{i}", QueueLocation.SOURCE, sequences[i], SCHEDULED_FOR)
            )
        await tracking.record_entry(
            tracking.new_entry("ORD-STALE", QueueLocation.SOURCE, sequences[0], SCHEDULED_FOR)
        )

        await reconciler.rebuild(max_messages=2)

        entries = await tracking.list_entries(QueueLocation.SOURCE)
        assert [e.order_id for e in entries] == ["ORD-0", "ORD-1", "ORD-2", "ORD-3"]

    @pytest.mark.asyncio
    async def test_failed_peek_leaves_entries_alone(
        self,
        reconciler: Reconciler,
        source_queue: FlakyMessageQueue,
        tracking: TrackingStore,
    ):
        await tracking.record_entry(
            tracking.new_entry("ORD-1", QueueLocation.SOURCE, 1, SCHEDULED_FOR)
        )
        source_queue.peek_error = BrokerUnavailableError("source", "timeout")

        await reconciler.rebuild()

        assert await tracking.get_entry("ORD-1", QueueLocation.SOURCE) is not None


class TestRebuildErrors:
    """Failures are collected, not raised."""

    @pytest.mark.asyncio
    async def test_peek_failure_on_one_queue(
        self,
        reconciler: Reconciler,
        source_queue: FlakyMessageQueue,
        destination_queue: FlakyMessageQueue,
    ):
        await destination_queue.schedule_at(make_message("ORD-D0"), SCHEDULED_FOR)
        source_queue.peek_error = BrokerUnavailableError("source", "timeout")

        summary = await reconciler.rebuild()

        assert summary.source_rebuilt == 0
        assert summary.dest_rebuilt == 1
        assert len(summary.errors) == 1
        assert "source" in summary.errors[0]

    @pytest.mark.asyncio
    async def test_tracking_down(
        self,
        source_queue: FlakyMessageQueue,
        destination_queue: FlakyMessageQueue,
        config: TransferConfig,
        clock: ManualClock,
    ):
        tracking = TrackingStore(FailingKeyValueStore(), ttl_seconds=60, clock=clock)
        reconciler = Reconciler(
            source_queue,
            destination_queue,
            tracking,
            config=config,
            clock=clock,
            enable_tracing=False,
        )
        await source_queue.schedule_at(make_message("ORD-1"), SCHEDULED_FOR)
        await source_queue.schedule_at(make_message("ORD-2"), SCHEDULED_FOR)

        summary = await reconciler.rebuild()

        assert summary.source_rebuilt == 0
        assert len(summary.errors) == 4
        assert sum("write failed" in error for error in summary.errors) == 2
        assert sum("prune failed" in error for error in summary.errors) == 2

    def test_summary_to_dict(self):
        summary = ReconcileSummary(source_rebuilt=2, dest_rebuilt=1, errors=["boom"])

        assert summary.to_dict() == {
            "sourceRebuilt": 2,
            "destRebuilt": 1,
            "errors": ["boom"],
            "durationSeconds": 0.0,
        }
