"""
Unit tests for timestamp normalization.
"""

import pytest
from datetime import datetime, timedelta, timezone

from src.merge.errors import MergeError, UnparseableTimestamp
from src.merge.timestamps import parse_timestamp, try_parse_timestamp


EXPECTED = datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc)


class TestParseTimestamp:
    """Test normalization of timestamp values to UTC."""

    @pytest.mark.parametrize("value", [
        "2024-01-15T10:30:00Z",
        "2024-01-15T12:30:00+02:00",
        "2024-01-15 10:30:00",
        "2024-01-15T10:30:00",
    ])
    def test_all_string_shapes_yield_same_instant(self, value):
        """Test that every accepted string shape resolves to the same instant."""
        assert parse_timestamp(value) == EXPECTED

    def test_result_is_utc(self):
        """Test that offsets are converted rather than kept."""
        result = parse_timestamp("2024-01-15T05:30:00-05:00")

        assert result.tzinfo == timezone.utc
        assert result == EXPECTED

    def test_naive_datetime_is_taken_as_utc(self):
        """Test that a naive datetime is interpreted as UTC."""
        result = parse_timestamp(datetime(2024, 1, 15, 10, 30))

        assert result == EXPECTED
        assert result.tzinfo == timezone.utc

    def test_aware_datetime_is_converted(self):
        """Test that an aware datetime is converted to UTC."""
        tz = timezone(timedelta(hours=9))
        result = parse_timestamp(datetime(2024, 1, 15, 19, 30, tzinfo=tz))

        assert result == EXPECTED
        assert result.utcoffset() == timedelta(0)

    def test_fractional_seconds(self):
        """Test fractional seconds of various precision."""
        assert parse_timestamp("2024-01-15T10:30:00.5Z").microsecond == 500000
        assert parse_timestamp("2024-01-15 10:30:00.123456").microsecond == 123456

    def test_nanosecond_precision_is_truncated(self):
        """Test that precision beyond microseconds is dropped."""
        result = parse_timestamp("2024-01-15T10:30:00.123456789Z")

        assert result.microsecond == 123456

    def test_lowercase_separators(self):
        """Test lowercase 't' and 'z' are accepted."""
        assert parse_timestamp("2024-01-15t10:30:00z") == EXPECTED

    @pytest.mark.parametrize("value", [
        "not a timestamp",
        "2024-01-15",
        "2024-13-40T10:30:00Z",
        "2024-01-15T10:30:00+25:00",
        "",
        1705314600,
        None,
        ["2024-01-15T10:30:00Z"],
        "2024-01-15T10:30:00Z\n",
        "2024-01-15 10:30:00\n",
        " 2024-01-15T10:30:00Z",
        "\u0662\u0660\u0662\u0664-01-15T10:30:00Z",
        "2024-01-15 10:30:\u0660\u0660",
    ])
    def test_unparseable_values_raise(self, value):
        """Test that unsupported values raise UnparseableTimestamp."""
        with pytest.raises(UnparseableTimestamp):
            parse_timestamp(value)

    def test_unparseable_is_value_error_and_merge_error(self):
        """Test that UnparseableTimestamp fits both error hierarchies."""
        with pytest.raises(ValueError):
            parse_timestamp("garbage")
        with pytest.raises(MergeError):
            parse_timestamp("garbage")

    def test_error_carries_value(self):
        """Test that the offending value is kept on the error."""
        with pytest.raises(UnparseableTimestamp) as exc_info:
            parse_timestamp("yesterday")

        assert exc_info.value.value == "yesterday"


class TestTryParseTimestamp:
    """Test the non-raising variant."""

    def test_returns_none_for_garbage(self):
        assert try_parse_timestamp("garbage") is None
        assert try_parse_timestamp(None) is None

    def test_returns_datetime_for_valid_value(self):
        assert try_parse_timestamp("2024-01-15T10:30:00Z") == EXPECTED
