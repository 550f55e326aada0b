"""
Observability utilities for msgtransfer.

Composition-based tracing (Tracer, create_tracer) and standard span
attribute names shared by every component.

Example:
    >>> from msgtransfer.observability import create_tracer
    >>> tracer = create_tracer(__name__, enable_tracing=False)
"""

from msgtransfer.observability.attributes import (
    ATTR_BATCH_SIZE,
    ATTR_DB_SYSTEM,
    ATTR_ERROR_COUNT,
    ATTR_ERROR_KIND,
    ATTR_FROM_SEQUENCE,
    ATTR_MAX_MESSAGES,
    ATTR_MESSAGE_ID,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_OPERATION,
    ATTR_MESSAGING_SYSTEM,
    ATTR_RECORD_COUNT,
    ATTR_SEQUENCE_NUMBER,
    ATTR_SKIPPED_ACTIVE,
    ATTR_TRACKING_KEY,
    ATTR_TRANSFER_OUTCOME,
    ATTR_TRANSFERRED,
)
from msgtransfer.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanKindEnum,
    Tracer,
    create_tracer,
)

__all__ = [
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "SpanKindEnum",
    "create_tracer",
    "ATTR_BATCH_SIZE",
    "ATTR_DB_SYSTEM",
    "ATTR_ERROR_COUNT",
    "ATTR_ERROR_KIND",
    "ATTR_FROM_SEQUENCE",
    "ATTR_MAX_MESSAGES",
    "ATTR_MESSAGE_ID",
    "ATTR_MESSAGING_DESTINATION",
    "ATTR_MESSAGING_OPERATION",
    "ATTR_MESSAGING_SYSTEM",
    "ATTR_RECORD_COUNT",
    "ATTR_SEQUENCE_NUMBER",
    "ATTR_SKIPPED_ACTIVE",
    "ATTR_TRACKING_KEY",
    "ATTR_TRANSFER_OUTCOME",
    "ATTR_TRANSFERRED",
]
