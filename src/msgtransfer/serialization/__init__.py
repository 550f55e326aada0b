"""
Serialization utilities for msgtransfer.

JSON serialization with support for UUIDs, datetimes, enums and payload
bytes, plus the UTC timestamp format used by queue backends and the
tracking store.

Example:
    >>> from msgtransfer.serialization import json_dumps, format_timestamp
"""

from msgtransfer.serialization.json import (
    TransferJSONEncoder,
    format_timestamp,
    json_dumps,
    json_loads,
    parse_timestamp,
)

__all__ = [
    "TransferJSONEncoder",
    "json_dumps",
    "json_loads",
    "format_timestamp",
    "parse_timestamp",
]
