"""Tests for shared model helpers."""

import uuid
from datetime import UTC, datetime, timedelta, timezone

import pytest

from covenant.core.errors import InvalidSubscriptionError
from covenant.models.shared import UUIDType, as_utc, parse_subscription_id


class TestParseSubscriptionId:
    def test_valid_string(self):
        value = uuid.uuid4()
        assert parse_subscription_id(str(value)) == value

    def test_surrounding_whitespace(self):
        value = uuid.uuid4()
        assert parse_subscription_id(f"  {value} ") == value

    def test_uuid_passthrough(self):
        value = uuid.uuid4()
        assert parse_subscription_id(value) is value

    @pytest.mark.parametrize("raw", ["", "not-a-uuid", "1234"])
    def test_invalid(self, raw):
        with pytest.raises(InvalidSubscriptionError, match="Invalid subscription id"):
            parse_subscription_id(raw)


class TestAsUtc:
    def test_naive(self):
        assert as_utc(datetime(2026, 1, 1)) == datetime(2026, 1, 1, tzinfo=UTC)

    def test_offset_converted(self):
        minus_five = timezone(timedelta(hours=-5))
        result = as_utc(datetime(2026, 1, 1, 7, tzinfo=minus_five))
        assert result == datetime(2026, 1, 1, 12, tzinfo=UTC)
        assert result.utcoffset() == timedelta(0)


class TestUUIDType:
    def test_bind_and_result(self):
        column_type = UUIDType()
        value = uuid.uuid4()
        assert column_type.process_bind_param(value, None) == str(value)  # type: ignore[arg-type]
        assert column_type.process_result_value(str(value), None) == value  # type: ignore[arg-type]
        assert column_type.process_bind_param(None, None) is None  # type: ignore[arg-type]
