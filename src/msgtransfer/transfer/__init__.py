"""
Batched transfer of scheduled messages.

- BatchPeekCursor: Paginated, non-destructive queue reader
- classify(): Eligible vs. active classification
- TransferExecutor: Cancel-and-reschedule of one record
- TransferEngine: Drives a full transfer run into a TransferReport
"""

from msgtransfer.transfer.cursor import BatchCursor, BatchPeekCursor, PeekBatch
from msgtransfer.transfer.engine import TransferEngine, TransferReport, record_metadata
from msgtransfer.transfer.executor import (
    RESERVED_PROPERTY_KEYS,
    TransferExecutor,
    TransferOutcome,
    TransferProvenance,
    TransferResult,
    TransferState,
    build_outgoing,
    scheduled_time,
    merge_properties,
)
from msgtransfer.transfer.filter import Classification, classify, is_eligible

__all__ = [
    "BatchCursor",
    "BatchPeekCursor",
    "PeekBatch",
    "Classification",
    "classify",
    "is_eligible",
    "TransferExecutor",
    "TransferOutcome",
    "TransferProvenance",
    "TransferResult",
    "TransferState",
    "build_outgoing",
    "scheduled_time",
    "merge_properties",
    "RESERVED_PROPERTY_KEYS",
    "TransferEngine",
    "TransferReport",
    "record_metadata",
]
