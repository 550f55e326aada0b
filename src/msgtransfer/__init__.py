"""
msgtransfer - Batched transfer of scheduled broker messages.

This library provides:
- Message queue abstraction with In-Memory and Redis backends
- Batched, restartable transfer of scheduled messages between queues,
  preserving delivery time, payload and properties
- Error sink for failed and partially failed transfers
- Best-effort tracking of where each order lives, with rebuild,
  validation and cleanup operations
- ScheduledTransferService facade for an API layer
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("msgtransfer")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from msgtransfer.broker import (
    CancelResult,
    InMemoryMessageQueue,
    MessageQueue,
    OutgoingMessage,
    QueueRecord,
    RedisBrokerConfig,
    RedisMessageBroker,
    RedisMessageQueue,
)
from msgtransfer.config import TransferConfig
from msgtransfer.errors import ErrorSink
from msgtransfer.exceptions import (
    BrokerError,
    BrokerUnavailableError,
    ErrorKind,
    ErrorSeverity,
    MessageNotFoundError,
    MessageTransferError,
    PartialFailureLostError,
    PurgeNotConfirmedError,
    SerializationError,
    TrackingStoreUnavailableError,
    TransferInProgressError,
)
from msgtransfer.maintenance import (
    CleanupPurger,
    PurgeSummary,
    Reconciler,
    ReconcileSummary,
    ValidationReport,
    Validator,
)
from msgtransfer.orders import OrderPayload, generate_orders
from msgtransfer.service import CancelOutcome, CancelStatus, ScheduledTransferService
from msgtransfer.tracking import (
    InMemoryKeyValueStore,
    KeyValueStore,
    QueueLocation,
    RedisKeyValueStore,
    RedisTrackingStoreConfig,
    TrackingEntry,
    TrackingStore,
    TransferHistoryEntry,
)
from msgtransfer.transfer import (
    BatchCursor,
    BatchPeekCursor,
    PeekBatch,
    TransferEngine,
    TransferExecutor,
    TransferOutcome,
    TransferReport,
    TransferResult,
    TransferState,
)

__all__ = [
    "__version__",
    # Broker
    "CancelResult",
    "MessageQueue",
    "OutgoingMessage",
    "QueueRecord",
    "InMemoryMessageQueue",
    "RedisBrokerConfig",
    "RedisMessageBroker",
    "RedisMessageQueue",
    # Config
    "TransferConfig",
    # Exceptions
    "ErrorKind",
    "ErrorSeverity",
    "MessageTransferError",
    "BrokerError",
    "BrokerUnavailableError",
    "MessageNotFoundError",
    "SerializationError",
    "TrackingStoreUnavailableError",
    "PartialFailureLostError",
    "PurgeNotConfirmedError",
    "TransferInProgressError",
    # Transfer
    "BatchCursor",
    "BatchPeekCursor",
    "PeekBatch",
    "TransferEngine",
    "TransferExecutor",
    "TransferOutcome",
    "TransferReport",
    "TransferResult",
    "TransferState",
    # Tracking
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "RedisTrackingStoreConfig",
    "QueueLocation",
    "TrackingEntry",
    "TrackingStore",
    "TransferHistoryEntry",
    # Errors
    "ErrorSink",
    # Maintenance
    "CleanupPurger",
    "PurgeSummary",
    "Reconciler",
    "ReconcileSummary",
    "Validator",
    "ValidationReport",
    # Orders
    "OrderPayload",
    "generate_orders",
    # Service
    "ScheduledTransferService",
    "CancelOutcome",
    "CancelStatus",
]
