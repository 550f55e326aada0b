"""
Shared pytest fixtures for integration tests.

This module provides fixtures for the Redis test infrastructure using
testcontainers, and Redis-backed queues and tracking stores built on it.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio

from msgtransfer import (
    RedisBrokerConfig,
    RedisKeyValueStore,
    RedisMessageBroker,
    RedisTrackingStoreConfig,
)
from tests.fixtures import ManualClock

# ============================================================================
# Testcontainers Detection
# ============================================================================

TESTCONTAINERS_AVAILABLE = False

try:
    from testcontainers.redis import RedisContainer

    TESTCONTAINERS_AVAILABLE = True
except ImportError:
    RedisContainer = None  # type: ignore[assignment, misc]


def is_docker_available() -> bool:
    """Check if Docker is available for running containers."""
    import subprocess

    try:
        result = subprocess.run(
            ["docker", "info"],
            capture_output=True,
            timeout=5,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, OSError):
        return False


DOCKER_AVAILABLE = is_docker_available()


# ============================================================================
# Skip Conditions
# ============================================================================

skip_if_no_redis_infra = pytest.mark.skipif(
    not (TESTCONTAINERS_AVAILABLE and DOCKER_AVAILABLE),
    reason="Redis test infrastructure not available",
)


# ============================================================================
# Redis Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def redis_container() -> Generator[Any, None, None]:
    """
    Provide Redis container for integration tests.

    Container is shared across all tests in the session.
    """
    if not TESTCONTAINERS_AVAILABLE or not DOCKER_AVAILABLE:
        pytest.skip("Redis testcontainer not available")

    container = RedisContainer("redis:7")
    container.start()

    yield container

    container.stop()


@pytest.fixture(scope="session")
def redis_connection_url(redis_container: Any) -> str:
    """Get Redis connection URL from container."""
    host = redis_container.get_container_host_ip()
    port = redis_container.get_exposed_port(6379)
    return f"redis://{host}:{port}"


@pytest.fixture
def key_prefix() -> str:
    """Unique key prefix so tests never see each other's keys."""
    return f"test-{uuid4().hex[:8]}"


@pytest_asyncio.fixture
async def redis_broker(
    redis_connection_url: str,
    key_prefix: str,
    clock: ManualClock,
) -> AsyncGenerator[RedisMessageBroker, None]:
    """Provide a connected broker; its keys are deleted afterwards."""
    # Use single_connection_client=True to avoid connection pool event loop issues
    broker = RedisMessageBroker(
        RedisBrokerConfig(
            redis_url=redis_connection_url,
            key_prefix=key_prefix,
            enable_tracing=False,
            single_connection_client=True,
        ),
        clock=clock,
    )
    await broker.connect()

    yield broker

    await flush_prefix(redis_connection_url, f"{key_prefix}:")
    await broker.disconnect()


@pytest_asyncio.fixture
async def redis_kv_store(
    redis_connection_url: str,
    key_prefix: str,
) -> AsyncGenerator[RedisKeyValueStore, None]:
    """Provide a connected key-value store; its keys are deleted afterwards."""
    store = RedisKeyValueStore(
        RedisTrackingStoreConfig(
            redis_url=redis_connection_url,
            key_prefix=f"{key_prefix}:tracking:",
            enable_tracing=False,
            single_connection_client=True,
        )
    )
    await store.connect()

    yield store

    await flush_prefix(redis_connection_url, f"{key_prefix}:tracking:")
    await store.disconnect()


async def flush_prefix(redis_url: str, prefix: str) -> None:
    """Delete every key under prefix."""
    import redis.asyncio as redis

    client = redis.from_url(redis_url, decode_responses=True, single_connection_client=True)
    keys = [key async for key in client.scan_iter(match=f"{prefix}*")]
    if keys:
        await client.delete(*keys)
    await client.aclose()


async def overwrite_field(redis_url: str, key: str, field: str, value: str) -> None:
    """Overwrite one field of a hash, bypassing the library."""
    import redis.asyncio as redis

    client = redis.from_url(redis_url, decode_responses=True, single_connection_client=True)
    await client.hset(key, field, value)
    await client.aclose()
