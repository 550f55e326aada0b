"""
JSON serialization utilities for msgtransfer types.

This module provides utilities for JSON serialization of values that are
not natively JSON-serializable but appear in reports, error records and
tracking entries: UUIDs, datetimes, enums and raw payload bytes.

Example:
    >>> from msgtransfer.serialization import json_dumps, json_loads
    >>> from datetime import UTC, datetime
    >>>
    >>> data = {"at": datetime.now(UTC)}
    >>> json_str = json_dumps(data)
    >>> parsed = json_loads(json_str)
"""

import base64
import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID


class TransferJSONEncoder(json.JSONEncoder):
    """
    Custom JSON encoder for transfer reports and error records.

    Supports:
    - UUID objects: Converted to string representation
    - datetime objects: Converted to ISO 8601 format string
    - Enum members: Converted to their value
    - bytes: Converted to base64 text

    Example:
        >>> import json
        >>> data = {"payload": b"raw", "at": datetime.now(UTC)}
        >>> json_str = json.dumps(data, cls=TransferJSONEncoder)
    """

    def default(self, obj: Any) -> Any:
        """
        Convert non-serializable objects to JSON-serializable formats.

        Args:
            obj: Object to serialize

        Returns:
            JSON-serializable representation

        Raises:
            TypeError: If object type is not supported
        """
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, bytes):
            return base64.b64encode(obj).decode("ascii")
        return super().default(obj)


def json_dumps(obj: Any) -> str:
    """
    Serialize object to JSON string using TransferJSONEncoder.

    Args:
        obj: Object to serialize

    Returns:
        JSON string representation
    """
    return json.dumps(obj, cls=TransferJSONEncoder)


def json_loads(s: str | bytes) -> Any:
    """
    Deserialize JSON text to a Python object.

    Datetime and bytes values are NOT converted back; use parse_timestamp()
    and base64 decoding where the schema says so.

    Args:
        s: JSON text to deserialize

    Returns:
        Python object representation
    """
    return json.loads(s)


def format_timestamp(value: datetime | None) -> str:
    """
    Render an aware datetime as an ISO 8601 UTC string ("" for None).

    Raises:
        ValueError: If the datetime is naive.
    """
    if value is None:
        return ""
    if value.tzinfo is None:
        raise ValueError(f"Timestamp must be timezone-aware, got naive {value!r}")
    return value.astimezone(UTC).isoformat()


def parse_timestamp(value: str | None) -> datetime | None:
    """
    Parse a string produced by format_timestamp() ("" and None give None).

    Naive values are assumed to be UTC.
    """
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


__all__ = [
    "TransferJSONEncoder",
    "json_dumps",
    "json_loads",
    "format_timestamp",
    "parse_timestamp",
]
