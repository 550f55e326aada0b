"""
Library exceptions for the msgtransfer package.

Exception Hierarchy:
    MessageTransferError (base)
    +-- BrokerError
    |   +-- BrokerUnavailableError
    |   +-- MessageNotFoundError
    +-- SerializationError
    +-- TrackingStoreUnavailableError
    +-- PartialFailureLostError
    +-- PurgeNotConfirmedError
    +-- TransferInProgressError

Every exception carries an ErrorKind (what went wrong) and an ErrorSeverity
(how loudly to report it). Per-record errors are caught by the transfer
executor and turned into TransferResult entries; only scan-level and
API-boundary errors ever reach callers.
"""

from __future__ import annotations

import logging
from enum import Enum


class ErrorSeverity(Enum):
    """
    Severity level of transfer errors.

    Attributes:
        CRITICAL: Data may be lost; requires manual recovery.
        ERROR: An operation failed and the caller must be told.
        WARNING: Degraded but correct behavior (e.g. tracking store down).
        INFO: Benign race, not a failure.
    """

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def log_level(self) -> int:
        """
        Get the corresponding Python logging level.

        Returns:
            Python logging level constant.
        """
        level_map = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.INFO: logging.INFO,
        }
        return level_map[self]


class ErrorKind(Enum):
    """Error taxonomy used in transfer results and error sink records."""

    NOT_FOUND_ON_CANCEL = "NotFoundOnCancel"
    BROKER_UNAVAILABLE = "BrokerUnavailable"
    BROKER_ERROR = "BrokerError"
    SERIALIZATION_ERROR = "SerializationError"
    TRACKING_STORE_UNAVAILABLE = "TrackingStoreUnavailable"
    PARTIAL_FAILURE_LOST = "PartialFailureLost"
    UNEXPECTED = "Unexpected"

    @property
    def aborts_scan(self) -> bool:
        """Connection-level errors end the current scan."""
        return self is ErrorKind.BROKER_UNAVAILABLE


class MessageTransferError(Exception):
    """Base exception for msgtransfer library."""

    kind: ErrorKind = ErrorKind.UNEXPECTED
    severity: ErrorSeverity = ErrorSeverity.ERROR


class BrokerError(MessageTransferError):
    """Raised when a broker operation fails."""

    kind = ErrorKind.BROKER_ERROR

    def __init__(self, queue_name: str, message: str) -> None:
        self.queue_name = queue_name
        super().__init__(f"Broker error on queue '{queue_name}': {message}")


class BrokerUnavailableError(BrokerError):
    """Raised when the broker cannot be reached (connectivity, timeout)."""

    kind = ErrorKind.BROKER_UNAVAILABLE


class MessageNotFoundError(BrokerError):
    """
    Raised when a sequence number no longer refers to a scheduled message.

    This is a benign race: the message was delivered or cancelled
    concurrently. Transfers report it as skipped, never as an error.
    """

    kind = ErrorKind.NOT_FOUND_ON_CANCEL
    severity = ErrorSeverity.INFO

    def __init__(self, queue_name: str, sequence_number: int) -> None:
        self.sequence_number = sequence_number
        super().__init__(queue_name, f"no scheduled message with sequence {sequence_number}")


class SerializationError(MessageTransferError):
    """Raised when a record cannot be encoded or decoded."""

    kind = ErrorKind.SERIALIZATION_ERROR

    def __init__(self, order_id: str, message: str) -> None:
        self.order_id = order_id
        super().__init__(f"Serialization error for order {order_id}: {message}")


class TrackingStoreUnavailableError(MessageTransferError):
    """Raised by key-value stores when the backing service cannot be reached."""

    kind = ErrorKind.TRACKING_STORE_UNAVAILABLE
    severity = ErrorSeverity.WARNING

    def __init__(self, message: str) -> None:
        super().__init__(f"Tracking store unavailable: {message}")


class PartialFailureLostError(MessageTransferError):
    """
    A message was cancelled at the source but never confirmed at the destination.

    The message exists in neither queue. It must be recovered manually from
    the error sink record.

    Attributes:
        order_id: Order id of the lost message.
        source_sequence: Sequence number it had in the source queue.
        reason: Why the destination schedule failed.
    """

    kind = ErrorKind.PARTIAL_FAILURE_LOST
    severity = ErrorSeverity.CRITICAL

    def __init__(self, order_id: str, source_sequence: int, reason: str) -> None:
        self.order_id = order_id
        self.source_sequence = source_sequence
        self.reason = reason
        super().__init__(
            f"Order {order_id} (source sequence {source_sequence}) was cancelled at the "
            f"source but not scheduled at the destination: {reason}"
        )


class PurgeNotConfirmedError(MessageTransferError):
    """Raised when purge_all is called without the destructive confirmation."""

    def __init__(self) -> None:
        super().__init__(
            "purge_all drains every queue and deletes all tracking data. "
            "Pass confirm_destructive=True to proceed."
        )


class TransferInProgressError(MessageTransferError):
    """Raised when a transfer is requested while another is still running."""

    def __init__(self) -> None:
        super().__init__("A transfer is already running in this process")


def classify_exception(error: BaseException) -> ErrorKind:
    """
    Map an arbitrary exception to an ErrorKind.

    Args:
        error: The exception raised by a broker or store call.

    Returns:
        The library error kind, UNEXPECTED for foreign exceptions.
    """
    if isinstance(error, MessageTransferError):
        return error.kind
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorKind.BROKER_UNAVAILABLE
    return ErrorKind.UNEXPECTED


__all__ = [
    "ErrorSeverity",
    "ErrorKind",
    "MessageTransferError",
    "BrokerError",
    "BrokerUnavailableError",
    "MessageNotFoundError",
    "SerializationError",
    "TrackingStoreUnavailableError",
    "PartialFailureLostError",
    "PurgeNotConfirmedError",
    "TransferInProgressError",
    "classify_exception",
]
