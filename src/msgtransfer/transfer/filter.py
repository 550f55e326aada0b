"""Classification of peeked records into transfer candidates and active skips."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from msgtransfer.broker.interface import QueueRecord


class Classification(Enum):
    """Whether a peeked record may be transferred."""

    ELIGIBLE = "scheduled"
    ACTIVE_SKIP = "activeSkip"


def is_eligible(record: QueueRecord, now: datetime) -> bool:
    """A record is eligible iff it has a delivery time strictly after now."""
    return record.scheduled_for is not None and record.scheduled_for > now


def classify(record: QueueRecord, now: datetime) -> Classification:
    """
    Classify a record against the evaluation instant.

    Active messages (no delivery time, or one that is not in the future)
    are never moved: they may already be on their way to a consumer.

    Args:
        record: Record as observed by peek
        now: Aware UTC evaluation instant

    Returns:
        ELIGIBLE or ACTIVE_SKIP
    """
    if is_eligible(record, now):
        return Classification.ELIGIBLE
    return Classification.ACTIVE_SKIP


__all__ = ["Classification", "classify", "is_eligible"]
