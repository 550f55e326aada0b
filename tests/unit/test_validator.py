"""
Unit tests for Validator.

Tests cover:
- Consistency after scheduling and after reconciliation
- Stale and missing tracking entries
- The truncation horizon of short snapshots
- Timing analysis of transfer history
"""

from datetime import timedelta

import pytest

from msgtransfer import (
    QueueLocation,
    ScheduledTransferService,
    TrackingStore,
    TransferConfig,
)
from msgtransfer.exceptions import BrokerUnavailableError
from msgtransfer.maintenance import Validator
from tests.fixtures import (
    START_TIME,
    FailingKeyValueStore,
    FlakyMessageQueue,
    ManualClock,
    make_message,
)

SCHEDULED_FOR = START_TIME + timedelta(hours=3)


@pytest.fixture
def validator(
    source_queue: FlakyMessageQueue,
    destination_queue: FlakyMessageQueue,
    tracking: TrackingStore,
    config: TransferConfig,
    clock: ManualClock,
) -> Validator:
    return Validator(
        source_queue,
        destination_queue,
        tracking,
        config=config,
        clock=clock,
        enable_tracing=False,
    )


class TestConsistency:
    """Tests for the consistent / inconsistent verdict."""

    @pytest.mark.asyncio
    async def test_empty_system_is_consistent(self, validator: Validator):
        report = await validator.validate()

        assert report.is_consistent is True
        assert report.errors == []

    @pytest.mark.asyncio
    async def test_scheduled_then_transferred_is_consistent(
        self, service: ScheduledTransferService
    ):
        await service.schedule_batch(4, delay_seconds=3600)
        await service.transfer()

        report = await service.validate(peek_count=50)

        assert report.is_consistent is True
        assert len(report.destination.records) == 4

    @pytest.mark.asyncio
    async def test_untracked_message(
        self,
        validator: Validator,
        source_queue: FlakyMessageQueue,
    ):
        await source_queue.schedule_at(make_message("ORD-1"), SCHEDULED_FOR)

        report = await validator.validate()

        assert report.is_consistent is False
        assert report.diffs[QueueLocation.SOURCE].present_but_untracked == ["ORD-1"]

    @pytest.mark.asyncio
    async def test_stale_entry(
        self,
        validator: Validator,
        tracking: TrackingStore,
    ):
        await tracking.record_entry(
            tracking.new_entry("ORD-GONE", QueueLocation.DESTINATION, 1, SCHEDULED_FOR)
        )

        report = await validator.validate()

        assert report.diffs[QueueLocation.DESTINATION].tracked_but_absent == ["ORD-GONE"]
        assert report.diffs[QueueLocation.SOURCE].is_consistent

    @pytest.mark.asyncio
    async def test_active_messages_are_not_expected_in_tracking(
        self,
        validator: Validator,
        source_queue: FlakyMessageQueue,
    ):
        await source_queue.send(make_message("ORD-ACTIVE"))

        report = await validator.validate()

        assert report.is_consistent is True
        [row] = report.to_dict()["source"]["messages"]
        assert row["state"] == "ACTIVE"
        assert row["scheduledFor"] is None

    @pytest.mark.asyncio
    async def test_reconcile_repairs_lost_tracking(
        self,
        service: ScheduledTransferService,
        kv_store,
    ):
        await service.schedule_batch(3, delay_seconds=3600)
        await kv_store.clear()

        assert (await service.validate()).is_consistent is False
        await service.reconcile_tracking_from_broker()

        assert (await service.validate()).is_consistent is True

    @pytest.mark.asyncio
    async def test_reconcile_drops_entries_of_orders_gone_active(
        self,
        service: ScheduledTransferService,
        clock: ManualClock,
    ):
        [soon] = await service.schedule_batch(1, delay_seconds=1)
        await service.schedule_batch(2, delay_seconds=54000)
        clock.advance(2)

        before = await service.validate()
        assert before.diffs[QueueLocation.SOURCE].tracked_but_absent == [soon["orderId"]]

        summary = await service.reconcile_tracking_from_broker()
        report = await service.validate()

        assert summary.errors == []
        assert summary.source_rebuilt == 2
        assert report.is_consistent is True
        assert await service.tracking.get_entry(soon["orderId"], QueueLocation.SOURCE) is None


class TestTruncation:
    """Entries beyond a truncated snapshot are not reported absent."""

    @pytest.mark.asyncio
    async def test_horizon(
        self,
        validator: Validator,
        source_queue: FlakyMessageQueue,
        tracking: TrackingStore,
    ):
        for i in range(6):
            seq = await source_queue.schedule_at(make_message(f"ORD-{i}"), SCHEDULED_FOR)
            await tracking.record_entry(
                tracking.new_entry(f"ORD-{i}", QueueLocation.SOURCE, seq, SCHEDULED_FOR)
            )

        report = await validator.validate(peek_count=2)

        assert report.source.truncated is True
        assert len(report.source.records) == 2
        assert report.is_consistent is True

    @pytest.mark.asyncio
    async def test_stale_entry_within_horizon(
        self,
        validator: Validator,
        source_queue: FlakyMessageQueue,
        tracking: TrackingStore,
    ):
        sequences = []
        for i in range(4):
            seq = await source_queue.schedule_at(make_message(f"ORD-{i}"), SCHEDULED_FOR)
            sequences.append(seq)
            await tracking.record_entry(
                tracking.new_entry(f"ORD-{i}", QueueLocation.SOURCE, seq, SCHEDULED_FOR)
            )
        await source_queue.cancel_scheduled(sequences[1])

        report = await validator.validate(peek_count=2)

        # Snapshot holds ORD-0 and ORD-2; ORD-1 lies within it and is missing
        assert report.diffs[QueueLocation.SOURCE].tracked_but_absent == ["ORD-1"]

    @pytest.mark.asyncio
    async def test_rejects_non_positive_peek_count(self, validator: Validator):
        with pytest.raises(ValueError, match="peek_count"):
            await validator.validate(peek_count=0)


class TestValidationErrors:
    """Tests for degraded validation."""

    @pytest.mark.asyncio
    async def test_peek_failure(
        self,
        validator: Validator,
        destination_queue: FlakyMessageQueue,
    ):
        destination_queue.peek_error = BrokerUnavailableError("destination", "timeout")

        report = await validator.validate()

        assert report.is_consistent is False
        assert report.destination.error is not None
        assert QueueLocation.DESTINATION not in report.diffs
        assert QueueLocation.SOURCE in report.diffs

    @pytest.mark.asyncio
    async def test_tracking_unavailable(
        self,
        source_queue: FlakyMessageQueue,
        destination_queue: FlakyMessageQueue,
        config: TransferConfig,
        clock: ManualClock,
    ):
        validator = Validator(
            source_queue,
            destination_queue,
            TrackingStore(FailingKeyValueStore(), ttl_seconds=60, clock=clock),
            config=config,
            clock=clock,
            enable_tracing=False,
        )

        report = await validator.validate()

        assert report.tracking_available is False
        assert "Tracking store unavailable" in report.errors
        assert report.is_consistent is False


class TestTimingAnalysis:
    """Tests for include_timing_analysis."""

    @pytest.mark.asyncio
    async def test_rows_for_transferred_orders(
        self,
        service: ScheduledTransferService,
        clock: ManualClock,
    ):
        [row] = await service.schedule_batch(1, delay_seconds=600)
        clock.advance(60)
        await service.transfer()
        clock.advance(60)

        report = await service.validate(include_timing_analysis=True)

        [timing] = report.timing
        assert timing.order_id == row["orderId"]
        assert timing.seconds_until_scheduled == 480
        assert timing.seconds_between_transfer_and_scheduled == 540
        assert timing.still_scheduled is True
        assert "timingAnalysis" in report.to_dict()

    @pytest.mark.asyncio
    async def test_delivered_order_is_not_still_scheduled(
        self,
        service: ScheduledTransferService,
        clock: ManualClock,
    ):
        await service.schedule_batch(1, delay_seconds=600)
        await service.transfer()
        clock.advance(601)

        report = await service.validate(include_timing_analysis=True)

        assert report.timing[0].still_scheduled is False
        assert report.timing[0].seconds_until_scheduled == -1

    @pytest.mark.asyncio
    async def test_omitted_by_default(self, validator: Validator):
        report = await validator.validate()

        assert report.timing is None
        assert "timingAnalysis" not in report.to_dict()
