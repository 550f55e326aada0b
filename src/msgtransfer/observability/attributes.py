"""
Standard span attribute names for msgtransfer tracing.

Messaging attributes follow the OpenTelemetry semantic conventions; the
rest are namespaced under "msgtransfer.".
"""

# =============================================================================
# Messaging Attributes (OpenTelemetry Semantic Conventions)
# =============================================================================

ATTR_MESSAGING_SYSTEM = "messaging.system"
"""Broker backend (e.g. "redis", "memory")."""

ATTR_MESSAGING_DESTINATION = "messaging.destination"
"""Queue name an operation targets."""

ATTR_MESSAGING_OPERATION = "messaging.operation"
"""Broker operation (peek, schedule, cancel, receive, send)."""

ATTR_MESSAGE_ID = "messaging.message.id"
"""Message identity (the order id)."""

# =============================================================================
# Queue Position Attributes
# =============================================================================

ATTR_SEQUENCE_NUMBER = "msgtransfer.sequence_number"
"""Broker sequence number of a single message."""

ATTR_FROM_SEQUENCE = "msgtransfer.from_sequence"
"""First sequence number requested by a peek."""

ATTR_BATCH_SIZE = "msgtransfer.batch.size"
"""Requested batch size."""

ATTR_RECORD_COUNT = "msgtransfer.record.count"
"""Number of records returned or processed."""

ATTR_MAX_MESSAGES = "msgtransfer.max_messages"
"""Ceiling on records examined by a scan."""

# =============================================================================
# Transfer Attributes
# =============================================================================

ATTR_TRANSFER_OUTCOME = "msgtransfer.transfer.outcome"
"""Outcome of a single transfer (transferred, skipped_active, ...)."""

ATTR_TRANSFERRED = "msgtransfer.transfer.transferred"
"""Number of messages moved by an invocation."""

ATTR_SKIPPED_ACTIVE = "msgtransfer.transfer.skipped_active"
"""Number of messages skipped because they were active."""

ATTR_ERROR_COUNT = "msgtransfer.transfer.errors"
"""Number of failed or lost messages."""

ATTR_ERROR_KIND = "msgtransfer.error.kind"
"""ErrorKind value of a failure."""

# =============================================================================
# Tracking Store Attributes
# =============================================================================

ATTR_TRACKING_KEY = "msgtransfer.tracking.key"
"""Key used in the tracking store."""

ATTR_DB_SYSTEM = "db.system"
"""Key-value backend (e.g. "redis", "memory")."""

__all__ = [
    "ATTR_MESSAGING_SYSTEM",
    "ATTR_MESSAGING_DESTINATION",
    "ATTR_MESSAGING_OPERATION",
    "ATTR_MESSAGE_ID",
    "ATTR_SEQUENCE_NUMBER",
    "ATTR_FROM_SEQUENCE",
    "ATTR_BATCH_SIZE",
    "ATTR_RECORD_COUNT",
    "ATTR_MAX_MESSAGES",
    "ATTR_TRANSFER_OUTCOME",
    "ATTR_TRANSFERRED",
    "ATTR_SKIPPED_ACTIVE",
    "ATTR_ERROR_COUNT",
    "ATTR_ERROR_KIND",
    "ATTR_TRACKING_KEY",
    "ATTR_DB_SYSTEM",
]
