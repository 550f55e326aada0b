"""Redis implementation of the tracking key-value store.

Example:
    >>> from msgtransfer.tracking.redis import RedisKeyValueStore, RedisTrackingStoreConfig
    >>>
    >>> store = RedisKeyValueStore(RedisTrackingStoreConfig(redis_url="redis://localhost:6379"))
    >>> await store.connect()
    >>> await store.set_with_ttl("order:source:ORD-1", "42", ttl_seconds=3600)
"""

from __future__ import annotations

import contextlib
import logging
import re
from collections.abc import AsyncIterator
from dataclasses import dataclass

import redis.asyncio as aioredis
from redis.asyncio import Redis
from redis.exceptions import RedisError

from msgtransfer.exceptions import TrackingStoreUnavailableError
from msgtransfer.observability import (
    ATTR_DB_SYSTEM,
    ATTR_TRACKING_KEY,
    SpanKindEnum,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = re.compile(r"([\\*?\[\]])")


@dataclass
class RedisTrackingStoreConfig:
    """Configuration for the Redis tracking store.

    Attributes:
        redis_url: Redis connection URL (e.g., "redis://localhost:6379")
        key_prefix: Prefix prepended to every tracking key (default: none)
        socket_timeout: Socket timeout in seconds (default: 2.0)
        socket_connect_timeout: Socket connection timeout in seconds (default: 2.0)
        scan_count: COUNT hint for SCAN when listing keys (default: 500)
        enable_tracing: Enable OpenTelemetry tracing (default: True)
        single_connection_client: Use single connection instead of pool (default: False).
    """

    redis_url: str = "redis://localhost:6379"
    key_prefix: str = ""
    socket_timeout: float = 2.0
    socket_connect_timeout: float = 2.0
    scan_count: int = 500
    enable_tracing: bool = True
    single_connection_client: bool = False

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.scan_count < 1:
            raise ValueError(f"scan_count must be positive, got {self.scan_count}.")


class RedisKeyValueStore:
    """
    KeyValueStore backed by Redis strings and hashes.

    Any redis failure is raised as TrackingStoreUnavailableError; the
    TrackingStore adapter above it logs and ignores those.
    """

    def __init__(
        self,
        config: RedisTrackingStoreConfig | None = None,
        *,
        tracer: Tracer | None = None,
    ) -> None:
        self._config = config or RedisTrackingStoreConfig()
        self._tracer = tracer or create_tracer(__name__, self._config.enable_tracing)
        self._redis: Redis | None = None

    @property
    def is_connected(self) -> bool:
        """Check if connected to Redis."""
        return self._redis is not None

    async def connect(self) -> None:
        """
        Connect to Redis and verify the connection.

        Raises:
            TrackingStoreUnavailableError: If Redis cannot be reached
        """
        if self._redis is not None:
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
            await client.ping()
        except (RedisError, OSError) as e:
            await client.aclose()
            raise TrackingStoreUnavailableError(str(e)) from e
        self._redis = client
        logger.info(
            "Connected to Redis tracking store",
            extra={"redis_url": self._config.redis_url},
        )

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("Disconnected from Redis tracking store")

    def _key(self, key: str) -> str:
        return f"{self._config.key_prefix}{key}"

    def _unprefixed(self, key: str) -> str:
        return key[len(self._config.key_prefix) :]

    @contextlib.asynccontextmanager
    async def _call(self, operation: str, key: str) -> AsyncIterator[Redis]:
        with self._tracer.span_with_kind(
            f"msgtransfer.tracking.{operation}",
            kind=SpanKindEnum.CLIENT,
            attributes={ATTR_DB_SYSTEM: "redis", ATTR_TRACKING_KEY: key},
        ):
            await self.connect()
            if self._redis is None:
                raise TrackingStoreUnavailableError("client not initialized")
            try:
                yield self._redis
            except (RedisError, OSError) as e:
                raise TrackingStoreUnavailableError(f"{operation} {key}: {e}") from e

    async def get(self, key: str) -> str | None:
        async with self._call("get", key) as client:
            value = await client.get(self._key(key))
            return str(value) if value is not None else None

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        async with self._call("set", key) as client:
            await client.set(self._key(key), value, ex=ttl_seconds)

    async def hash_set_with_ttl(
        self,
        key: str,
        fields: dict[str, str],
        ttl_seconds: int,
    ) -> None:
        async with self._call("hset", key) as client:
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(self._key(key))
                pipe.hset(self._key(key), mapping=fields)
                pipe.expire(self._key(key), ttl_seconds)
                await pipe.execute()

    async def hash_get_all(self, key: str) -> dict[str, str]:
        async with self._call("hgetall", key) as client:
            return dict(await client.hgetall(self._key(key)))

    async def keys_by_prefix(self, prefix: str) -> list[str]:
        async with self._call("scan", prefix) as client:
            pattern = _GLOB_SPECIAL.sub(r"\\\1", self._key(prefix)) + "*"
            keys = [
                self._unprefixed(key)
                async for key in client.scan_iter(match=pattern, count=self._config.scan_count)
            ]
            return sorted(set(keys))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        async with self._call("delete", keys[0]) as client:
            return int(await client.delete(*(self._key(key) for key in keys)))


__all__ = ["RedisKeyValueStore", "RedisTrackingStoreConfig"]
