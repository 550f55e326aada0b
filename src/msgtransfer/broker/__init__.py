"""
Message broker abstractions and implementations.

- MessageQueue: Abstract base class for one broker queue
- InMemoryMessageQueue: In-process queue for tests and development
- RedisMessageBroker / RedisMessageQueue: Redis-backed queues
"""

from msgtransfer.broker.interface import (
    CancelResult,
    MessageQueue,
    OutgoingMessage,
    QueueRecord,
)
from msgtransfer.broker.memory import InMemoryMessageQueue
from msgtransfer.broker.redis import (
    RedisBrokerConfig,
    RedisMessageBroker,
    RedisMessageQueue,
)

__all__ = [
    "CancelResult",
    "MessageQueue",
    "OutgoingMessage",
    "QueueRecord",
    "InMemoryMessageQueue",
    "RedisBrokerConfig",
    "RedisMessageBroker",
    "RedisMessageQueue",
]
