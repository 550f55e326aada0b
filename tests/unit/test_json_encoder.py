"""
Unit tests for JSON serialization helpers.
"""

import json
from datetime import UTC, datetime, timedelta, timezone
from uuid import UUID

import pytest

from msgtransfer.exceptions import ErrorKind
from msgtransfer.serialization import (
    TransferJSONEncoder,
    format_timestamp,
    json_dumps,
    json_loads,
    parse_timestamp,
)


class TestTransferJSONEncoder:
    def test_encodes_supported_types(self):
        data = {
            "id": UUID("12345678-1234-5678-1234-567812345678"),
            "at": datetime(2026, 1, 15, 12, 0, tzinfo=UTC),
            "kind": ErrorKind.BROKER_ERROR,
            "payload": b"raw",
        }

        decoded = json_loads(json_dumps(data))

        assert decoded == {
            "id": "12345678-1234-5678-1234-567812345678",
            "at": "2026-01-15T12:00:00+00:00",
            "kind": "BrokerError",
            "payload": "cmF3",
        }

    def test_rejects_unknown_types(self):
        with pytest.raises(TypeError):
            json.dumps({"value": object()}, cls=TransferJSONEncoder)

    def test_loads_bytes(self):
        assert json_loads(b'{"a": 1}') == {"a": 1}


class TestTimestamps:
    def test_format_converts_to_utc(self):
        value = datetime(2026, 1, 15, 14, 0, tzinfo=timezone(timedelta(hours=2)))

        assert format_timestamp(value) == "2026-01-15T12:00:00+00:00"

    def test_format_none(self):
        assert format_timestamp(None) == ""

    def test_format_rejects_naive(self):
        with pytest.raises(ValueError, match="timezone-aware"):
            format_timestamp(datetime(2026, 1, 15, 12, 0))

    def test_parse_round_trip(self):
        value = datetime(2026, 1, 15, 12, 0, 0, 123456, tzinfo=UTC)

        assert parse_timestamp(format_timestamp(value)) == value

    @pytest.mark.parametrize("value", [None, ""])
    def test_parse_empty(self, value):
        assert parse_timestamp(value) is None

    def test_parse_naive_assumes_utc(self):
        assert parse_timestamp("2026-01-15T12:00:00") == datetime(2026, 1, 15, 12, tzinfo=UTC)

    def test_parse_invalid(self):
        with pytest.raises(ValueError):
            parse_timestamp("yesterday")
