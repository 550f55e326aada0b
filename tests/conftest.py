"""
Shared pytest fixtures for the msgtransfer tests.

This module provides:
- clock: A ManualClock shared by every queue and service in a test
- Queue fixtures (source_queue, destination_queue, error_queue)
- Tracking fixtures (kv_store, tracking)
- Service fixtures (config, service, service_without_tracking)
- mock_tracer: Records span names for assertions
"""

from __future__ import annotations

import pytest

from msgtransfer import (
    ErrorSink,
    InMemoryKeyValueStore,
    ScheduledTransferService,
    TrackingStore,
    TransferConfig,
)
from msgtransfer.observability import MockTracer
from tests.fixtures import FailingKeyValueStore, FlakyMessageQueue, ManualClock

# ============================================================================
# Clock
# ============================================================================


@pytest.fixture
def clock() -> ManualClock:
    """Provide a clock fixed at START_TIME."""
    return ManualClock()


# ============================================================================
# Queues
# ============================================================================


@pytest.fixture
def source_queue(clock: ManualClock) -> FlakyMessageQueue:
    """Provide the source queue."""
    return FlakyMessageQueue("source", clock=clock, enable_tracing=False)


@pytest.fixture
def destination_queue(clock: ManualClock) -> FlakyMessageQueue:
    """Provide the destination queue."""
    return FlakyMessageQueue("destination", clock=clock, enable_tracing=False)


@pytest.fixture
def error_queue(clock: ManualClock) -> FlakyMessageQueue:
    """Provide the queue backing the error sink."""
    return FlakyMessageQueue("poc-dead-letter", clock=clock, enable_tracing=False)


@pytest.fixture
def error_sink(error_queue: FlakyMessageQueue, clock: ManualClock) -> ErrorSink:
    """Provide an error sink over error_queue."""
    return ErrorSink(error_queue, clock=clock, enable_tracing=False)


# ============================================================================
# Tracking
# ============================================================================


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    """Provide a fresh in-memory key-value store."""
    return InMemoryKeyValueStore()


@pytest.fixture
def tracking(kv_store: InMemoryKeyValueStore, clock: ManualClock) -> TrackingStore:
    """Provide a tracking adapter over kv_store."""
    return TrackingStore(kv_store, ttl_seconds=3600, clock=clock)


# ============================================================================
# Service
# ============================================================================


@pytest.fixture
def config() -> TransferConfig:
    """Small batches so that pagination is exercised."""
    return TransferConfig(batch_size=3, max_total_messages=100, enable_tracing=False)


@pytest.fixture
def service(
    source_queue: FlakyMessageQueue,
    destination_queue: FlakyMessageQueue,
    error_queue: FlakyMessageQueue,
    kv_store: InMemoryKeyValueStore,
    config: TransferConfig,
    clock: ManualClock,
) -> ScheduledTransferService:
    """Provide a service wired to in-memory queues and tracking."""
    return ScheduledTransferService(
        source_queue,
        destination_queue,
        error_queue,
        kv_store,
        config,
        clock=clock,
    )


@pytest.fixture
def service_without_tracking(
    source_queue: FlakyMessageQueue,
    destination_queue: FlakyMessageQueue,
    error_queue: FlakyMessageQueue,
    config: TransferConfig,
    clock: ManualClock,
) -> ScheduledTransferService:
    """Provide a service whose tracking store is unreachable."""
    return ScheduledTransferService(
        source_queue,
        destination_queue,
        error_queue,
        FailingKeyValueStore(),
        config,
        clock=clock,
    )


@pytest.fixture
def mock_tracer() -> MockTracer:
    """Provide a tracer that records spans."""
    return MockTracer()
