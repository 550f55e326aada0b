"""Redis-backed message queue implementation.

Each queue is stored as three kinds of keys under a common prefix:

- ``{prefix}:queue:{name}:seq``: INCR counter handing out sequence numbers
- ``{prefix}:queue:{name}:index``: sorted set of live sequence numbers
  (score == sequence number), used for ordered peeks
- ``{prefix}:queue:{name}:msg:{seq}``: hash holding one message

Removing a member from the index is the atomic claim: cancel and receive
only delete the message hash after their ZREM returned 1, so two processes
can never both cancel or receive the same message.

Example:
    >>> from msgtransfer.broker.redis import RedisMessageBroker, RedisBrokerConfig
    >>>
    >>> broker = RedisMessageBroker(RedisBrokerConfig(redis_url="redis://localhost:6379"))
    >>> await broker.connect()
    >>> source = broker.queue("source")
    >>> records = await source.peek(100)
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import contextlib
import logging
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import redis.asyncio as aioredis
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from msgtransfer.broker.interface import (
    CancelResult,
    MessageQueue,
    OutgoingMessage,
    QueueRecord,
)
from msgtransfer.broker.memory import utc_now
from msgtransfer.exceptions import (
    BrokerError,
    BrokerUnavailableError,
    SerializationError,
)
from msgtransfer.observability import (
    ATTR_BATCH_SIZE,
    ATTR_FROM_SEQUENCE,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_OPERATION,
    ATTR_MESSAGING_SYSTEM,
    ATTR_SEQUENCE_NUMBER,
    SpanKindEnum,
    Tracer,
    create_tracer,
)
from msgtransfer.serialization import (
    format_timestamp,
    json_dumps,
    json_loads,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


@dataclass
class RedisBrokerConfig:
    """Configuration for the Redis-backed broker.

    Attributes:
        redis_url: Redis connection URL (e.g., "redis://localhost:6379")
        key_prefix: Prefix for all queue keys (default: "msgtransfer")
        socket_timeout: Socket timeout in seconds (default: 5.0)
        socket_connect_timeout: Socket connection timeout in seconds (default: 5.0)
        receive_poll_interval: Seconds between polls while receive waits (default: 0.1)
        enable_tracing: Enable OpenTelemetry tracing (default: True)
        single_connection_client: Use single connection instead of pool (default: False).
            Useful for testing to avoid event loop issues.
    """

    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "msgtransfer"
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0
    receive_poll_interval: float = 0.1
    enable_tracing: bool = True
    single_connection_client: bool = False

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.key_prefix:
            raise ValueError("key_prefix must be a non-empty string.")
        if self.receive_poll_interval <= 0:
            raise ValueError(
                f"receive_poll_interval must be positive, got {self.receive_poll_interval}."
            )

    def sequence_key(self, queue_name: str) -> str:
        """Key of the sequence counter for a queue."""
        return f"{self.key_prefix}:queue:{queue_name}:seq"

    def index_key(self, queue_name: str) -> str:
        """Key of the sorted set of live sequence numbers for a queue."""
        return f"{self.key_prefix}:queue:{queue_name}:index"

    def message_key(self, queue_name: str, sequence_number: int) -> str:
        """Key of the hash holding one message."""
        return f"{self.key_prefix}:queue:{queue_name}:msg:{sequence_number}"


@contextlib.asynccontextmanager
async def _translate_errors(queue_name: str) -> AsyncIterator[None]:
    """Re-raise redis exceptions as broker exceptions."""
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError, OSError) as e:
        raise BrokerUnavailableError(queue_name, str(e)) from e
    except RedisError as e:
        raise BrokerError(queue_name, str(e)) from e


def _encode_message(message: OutgoingMessage, scheduled_for: datetime | None) -> dict[str, str]:
    return {
        "order_id": message.order_id,
        "correlation_id": message.correlation_id or "",
        "content_type": message.content_type or "",
        "scheduled_for": format_timestamp(scheduled_for),
        "payload": base64.b64encode(message.payload).decode("ascii"),
        "properties": json_dumps(dict(message.application_properties)),
    }


def _decode_message(sequence_number: int, fields: dict[str, str]) -> QueueRecord:
    order_id = fields.get("order_id", "")
    try:
        properties = json_loads(fields.get("properties") or "{}")
        return QueueRecord(
            sequence_number=sequence_number,
            order_id=order_id,
            scheduled_for=parse_timestamp(fields.get("scheduled_for")),
            payload=base64.b64decode(fields.get("payload", ""), validate=True),
            content_type=fields.get("content_type") or None,
            correlation_id=fields.get("correlation_id") or None,
            application_properties={str(k): str(v) for k, v in properties.items()},
        )
    except (ValueError, binascii.Error, AttributeError) as e:
        raise SerializationError(order_id or f"seq:{sequence_number}", str(e)) from e


def _undecodable_record(
    sequence_number: int,
    fields: dict[str, str],
    error: SerializationError,
) -> QueueRecord:
    """Keep a corrupt message addressable so it can be skipped and reported."""
    try:
        scheduled_for = parse_timestamp(fields.get("scheduled_for"))
    except ValueError:
        scheduled_for = None
    return QueueRecord(
        sequence_number=sequence_number,
        order_id=fields.get("order_id") or f"seq:{sequence_number}",
        scheduled_for=scheduled_for,
        payload=fields.get("payload", "").encode("utf-8", errors="replace"),
        content_type=fields.get("content_type") or None,
        correlation_id=fields.get("correlation_id") or None,
        decode_error=str(error),
    )


class RedisMessageQueue(MessageQueue):
    """
    A single queue stored in Redis.

    Instances are created by RedisMessageBroker.queue() and share the
    broker's connection.
    """

    def __init__(
        self,
        name: str,
        client_provider: Callable[[], Redis],
        config: RedisBrokerConfig,
        *,
        clock: Callable[[], datetime] = utc_now,
        tracer: Tracer | None = None,
    ) -> None:
        self._name = name
        self._client_provider = client_provider
        self._config = config
        self._clock = clock
        self._tracer = tracer or create_tracer(__name__, config.enable_tracing)
        self._index_key = config.index_key(name)

    @property
    def name(self) -> str:
        return self._name

    def _span(self, operation: str, attributes: dict[str, Any] | None = None) -> Any:
        return self._tracer.span_with_kind(
            f"msgtransfer.queue.{operation}",
            kind=SpanKindEnum.CLIENT,
            attributes={
                ATTR_MESSAGING_SYSTEM: "redis",
                ATTR_MESSAGING_DESTINATION: self._name,
                ATTR_MESSAGING_OPERATION: operation,
                **(attributes or {}),
            },
        )

    def _is_active(self, scheduled_for: datetime | None) -> bool:
        return scheduled_for is None or scheduled_for <= self._clock()

    async def _load(self, client: Redis, sequences: list[int]) -> list[QueueRecord]:
        """
        Fetch message hashes, skipping ones removed since the index read.

        A hash that cannot be decoded is returned as a record with
        decode_error set instead of failing the whole page.
        """
        if not sequences:
            return []
        async with client.pipeline(transaction=False) as pipe:
            for seq in sequences:
                pipe.hgetall(self._config.message_key(self._name, seq))
            rows = await pipe.execute()

        records = []
        for seq, fields in zip(sequences, rows, strict=True):
            if not fields:
                logger.debug("Sequence %d on %s vanished during peek", seq, self._name)
                continue
            try:
                records.append(_decode_message(seq, fields))
            except SerializationError as e:
                logger.warning(
                    "Sequence %d on %s could not be decoded: %s",
                    seq,
                    self._name,
                    e,
                    extra={"sequence_number": seq, "queue": self._name},
                )
                records.append(_undecodable_record(seq, fields, e))
        return records

    async def _index_page(self, client: Redis, from_sequence: int, count: int) -> list[int]:
        members = await client.zrangebyscore(
            self._index_key,
            min=from_sequence,
            max="+inf",
            start=0,
            num=count,
        )
        return [int(member) for member in members]

    async def peek(self, batch_size: int, from_sequence_number: int = 1) -> list[QueueRecord]:
        if batch_size <= 0:
            return []
        with self._span(
            "peek",
            {ATTR_BATCH_SIZE: batch_size, ATTR_FROM_SEQUENCE: from_sequence_number},
        ):
            async with _translate_errors(self._name):
                client = self._client_provider()
                sequences = await self._index_page(client, from_sequence_number, batch_size)
                return await self._load(client, sequences)

    async def _enqueue(self, message: OutgoingMessage, scheduled_for: datetime | None) -> int:
        client = self._client_provider()
        seq = int(await client.incr(self._config.sequence_key(self._name)))
        async with client.pipeline(transaction=True) as pipe:
            pipe.hset(
                self._config.message_key(self._name, seq),
                mapping=_encode_message(message, scheduled_for),
            )
            pipe.zadd(self._index_key, {str(seq): seq})
            await pipe.execute()
        return seq

    async def schedule_at(self, message: OutgoingMessage, scheduled_for: datetime) -> int:
        if scheduled_for.tzinfo is None:
            raise ValueError(f"scheduled_for must be timezone-aware, got {scheduled_for!r}")
        with self._span("schedule"):
            async with _translate_errors(self._name):
                seq = await self._enqueue(message, scheduled_for.astimezone(UTC))
        logger.debug(
            "Scheduled %s on %s as sequence %d for %s",
            message.order_id,
            self._name,
            seq,
            scheduled_for.isoformat(),
        )
        return seq

    async def send(self, message: OutgoingMessage) -> int:
        with self._span("send"):
            async with _translate_errors(self._name):
                return await self._enqueue(message, None)

    async def cancel_scheduled(self, sequence_number: int) -> CancelResult:
        with self._span("cancel", {ATTR_SEQUENCE_NUMBER: sequence_number}):
            async with _translate_errors(self._name):
                client = self._client_provider()
                message_key = self._config.message_key(self._name, sequence_number)
                raw_scheduled = await client.hget(message_key, "scheduled_for")
                if raw_scheduled is None:
                    return CancelResult.NOT_FOUND
                try:
                    scheduled_for = parse_timestamp(raw_scheduled)
                except ValueError:
                    # Undecodable records are treated as active.
                    scheduled_for = None
                if self._is_active(scheduled_for):
                    return CancelResult.NOT_FOUND
                if not await client.zrem(self._index_key, str(sequence_number)):
                    return CancelResult.NOT_FOUND
                await client.delete(message_key)
                return CancelResult.CANCELLED

    async def _claim_active(self, batch_size: int) -> list[QueueRecord]:
        client = self._client_provider()
        received: list[QueueRecord] = []
        from_sequence = 1
        page_size = max(batch_size, 100)

        while len(received) < batch_size:
            sequences = await self._index_page(client, from_sequence, page_size)
            if not sequences:
                break
            for record in await self._load(client, sequences):
                if len(received) >= batch_size:
                    break
                if not self._is_active(record.scheduled_for):
                    continue
                if await client.zrem(self._index_key, str(record.sequence_number)):
                    await client.delete(
                        self._config.message_key(self._name, record.sequence_number)
                    )
                    received.append(record)
            if len(sequences) < page_size:
                break
            from_sequence = sequences[-1] + 1

        return received

    async def receive_and_acknowledge(
        self,
        batch_size: int,
        timeout: float = 0.0,
    ) -> list[QueueRecord]:
        if batch_size <= 0:
            return []
        with self._span("receive", {ATTR_BATCH_SIZE: batch_size}):
            deadline = time.monotonic() + max(timeout, 0.0)
            while True:
                async with _translate_errors(self._name):
                    received = await self._claim_active(batch_size)
                remaining = deadline - time.monotonic()
                if received or remaining <= 0:
                    return received
                await asyncio.sleep(min(self._config.receive_poll_interval, remaining))


class RedisMessageBroker:
    """
    Connection owner for Redis-backed queues.

    Example:
        >>> broker = RedisMessageBroker(RedisBrokerConfig())
        >>> await broker.connect()
        >>> source = broker.queue("source")
        >>> await broker.disconnect()
    """

    def __init__(
        self,
        config: RedisBrokerConfig | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        tracer: Tracer | None = None,
    ) -> None:
        self._config = config or RedisBrokerConfig()
        self._clock = clock
        self._tracer = tracer or create_tracer(__name__, self._config.enable_tracing)
        self._redis: Redis | None = None

    @property
    def config(self) -> RedisBrokerConfig:
        """Get the configuration."""
        return self._config

    @property
    def is_connected(self) -> bool:
        """Check if connected to Redis."""
        return self._redis is not None

    async def connect(self) -> None:
        """
        Connect to Redis and verify the connection.

        Raises:
            BrokerUnavailableError: If Redis cannot be reached
        """
        if self._redis is not None:
            logger.warning("RedisMessageBroker already connected")
            return

        client = aioredis.from_url(
            self._config.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=self._config.socket_timeout,
            socket_connect_timeout=self._config.socket_connect_timeout,
            single_connection_client=self._config.single_connection_client,
        )
        try:
            async with _translate_errors("*"):
                await client.ping()
        except BrokerUnavailableError:
            logger.error("Failed to connect to Redis broker", exc_info=True)
            await client.aclose()
            raise

        self._redis = client
        logger.info(
            "Connected to Redis broker",
            extra={"redis_url": self._config.redis_url, "key_prefix": self._config.key_prefix},
        )

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("Disconnected from Redis broker")

    def _client(self) -> Redis:
        if self._redis is None:
            raise BrokerUnavailableError("*", "RedisMessageBroker is not connected")
        return self._redis

    def queue(self, name: str) -> RedisMessageQueue:
        """Get a handle on a named queue. Queues need no creation step."""
        return RedisMessageQueue(
            name,
            self._client,
            self._config,
            clock=self._clock,
            tracer=self._tracer,
        )


__all__ = [
    "RedisBrokerConfig",
    "RedisMessageQueue",
    "RedisMessageBroker",
]
