"""
Integration tests for RedisMessageQueue.

Runs the queue contract against a real Redis container.
"""

from datetime import timedelta

import pytest

from msgtransfer import CancelResult, RedisBrokerConfig, RedisMessageBroker
from msgtransfer.exceptions import BrokerUnavailableError
from tests.fixtures import START_TIME, ManualClock, make_message

from .conftest import overwrite_field, skip_if_no_redis_infra

pytestmark = [pytest.mark.integration, pytest.mark.redis, skip_if_no_redis_infra]

LATER = START_TIME + timedelta(minutes=10)


class TestRedisMessageQueue:
    @pytest.mark.asyncio
    async def test_schedule_and_peek(self, redis_broker: RedisMessageBroker):
        queue = redis_broker.queue("source")
        message = make_message("ORD-1", payload=b"\x00binary", properties={"brand": "x"})

        seq = await queue.schedule_at(message, LATER)
        [record] = await queue.peek(10)

        assert record.sequence_number == seq == 1
        assert record.order_id == "ORD-1"
        assert record.scheduled_for == LATER
        assert record.payload == b"\x00binary"
        assert record.correlation_id == "ORD-1"
        assert dict(record.application_properties) == {"brand": "x"}

    @pytest.mark.asyncio
    async def test_peek_pages(self, redis_broker: RedisMessageBroker):
        queue = redis_broker.queue("source")
        for i in range(5):
            await queue.schedule_at(make_message(f"ORD-{i}"), LATER)

        page = await queue.peek(2, from_sequence_number=3)

        assert [r.sequence_number for r in page] == [3, 4]

    @pytest.mark.asyncio
    async def test_queues_are_independent(self, redis_broker: RedisMessageBroker):
        source = redis_broker.queue("source")
        destination = redis_broker.queue("destination")

        await source.schedule_at(make_message("ORD-1"), LATER)

        assert await destination.peek(10) == []
        assert await destination.send(make_message("ORD-2")) == 1

    @pytest.mark.asyncio
    async def test_cancel(self, redis_broker: RedisMessageBroker):
        queue = redis_broker.queue("source")
        seq = await queue.schedule_at(make_message(), LATER)

        assert await queue.cancel_scheduled(seq) is CancelResult.CANCELLED
        assert await queue.cancel_scheduled(seq) is CancelResult.NOT_FOUND
        assert await queue.peek(10) == []

    @pytest.mark.asyncio
    async def test_active_message_cannot_be_cancelled(
        self, redis_broker: RedisMessageBroker, clock: ManualClock
    ):
        queue = redis_broker.queue("source")
        seq = await queue.schedule_at(make_message(), LATER)
        clock.advance(600)

        assert await queue.cancel_scheduled(seq) is CancelResult.NOT_FOUND

    @pytest.mark.asyncio
    async def test_receive_takes_only_active(
        self, redis_broker: RedisMessageBroker, clock: ManualClock
    ):
        queue = redis_broker.queue("source")
        await queue.schedule_at(make_message("ORD-LATER"), LATER)
        await queue.send(make_message("ORD-NOW"))

        received = await queue.receive_and_acknowledge(10, timeout=0)

        assert [r.order_id for r in received] == ["ORD-NOW"]
        assert [r.order_id for r in await queue.peek(10)] == ["ORD-LATER"]


class TestUndecodableMessages:
    """A corrupt message hash is reported on its own record."""

    @pytest.mark.asyncio
    async def test_peek_marks_corrupt_payload(
        self,
        redis_broker: RedisMessageBroker,
        redis_connection_url: str,
        key_prefix: str,
    ):
        queue = redis_broker.queue("source")
        for i in range(3):
            await queue.schedule_at(make_message(f"ORD-{i}"), LATER)
        await overwrite_field(
            redis_connection_url,
            RedisBrokerConfig(key_prefix=key_prefix).message_key("source", 1),
            "payload",
            "!!not-base64!!",
        )

        records = await queue.peek(10)

        assert [r.sequence_number for r in records] == [1, 2, 3]
        corrupt = records[0]
        assert corrupt.decode_error is not None
        assert corrupt.order_id == "ORD-0"
        assert corrupt.scheduled_for == LATER
        assert all(r.is_decoded for r in records[1:])

    @pytest.mark.asyncio
    async def test_corrupt_schedule_is_treated_as_active(
        self,
        redis_broker: RedisMessageBroker,
        redis_connection_url: str,
        key_prefix: str,
    ):
        queue = redis_broker.queue("source")
        seq = await queue.schedule_at(make_message("ORD-1"), LATER)
        await overwrite_field(
            redis_connection_url,
            RedisBrokerConfig(key_prefix=key_prefix).message_key("source", seq),
            "scheduled_for",
            "not-a-timestamp",
        )

        [record] = await queue.peek(10)

        assert record.decode_error is not None
        assert record.scheduled_for is None
        assert await queue.cancel_scheduled(seq) is CancelResult.NOT_FOUND
        [received] = await queue.receive_and_acknowledge(10)
        assert received.sequence_number == seq
        assert await queue.peek(10) == []


class TestRedisMessageBroker:
    @pytest.mark.asyncio
    async def test_unreachable_broker(self):
        broker = RedisMessageBroker(
            RedisBrokerConfig(
                redis_url="redis://127.0.0.1:1",
                socket_connect_timeout=0.5,
                enable_tracing=False,
            )
        )

        with pytest.raises(BrokerUnavailableError):
            await broker.connect()
        assert broker.is_connected is False

    @pytest.mark.asyncio
    async def test_queue_before_connect(self):
        queue = RedisMessageBroker(RedisBrokerConfig(enable_tracing=False)).queue("source")

        with pytest.raises(BrokerUnavailableError):
            await queue.peek(1)
