"""
Best-effort tracking of scheduled orders in an external key-value store.

- KeyValueStore: Protocol for the injected store
- InMemoryKeyValueStore / RedisKeyValueStore: Implementations
- TrackingStore: Adapter that never lets store failures escape
"""

from msgtransfer.tracking.interface import (
    KeyValueStore,
    QueueLocation,
    TrackingEntry,
    TransferHistoryEntry,
)
from msgtransfer.tracking.memory import InMemoryKeyValueStore
from msgtransfer.tracking.redis import RedisKeyValueStore, RedisTrackingStoreConfig
from msgtransfer.tracking.store import TrackingStore

__all__ = [
    "KeyValueStore",
    "QueueLocation",
    "TrackingEntry",
    "TransferHistoryEntry",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "RedisTrackingStoreConfig",
    "TrackingStore",
]
