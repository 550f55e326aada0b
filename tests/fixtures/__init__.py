"""
Shared test helpers for the msgtransfer test suite.

- ManualClock: A settable clock shared by queues and services
- FlakyMessageQueue: In-memory queue with injectable failures
- FailingKeyValueStore: Key-value store that is always unreachable
- make_message / make_record: Builders for queue messages
"""

from tests.fixtures.clock import START_TIME, ManualClock
from tests.fixtures.messages import make_message, make_record
from tests.fixtures.queues import FailingKeyValueStore, FlakyMessageQueue

__all__ = [
    "START_TIME",
    "ManualClock",
    "FlakyMessageQueue",
    "FailingKeyValueStore",
    "make_message",
    "make_record",
]
