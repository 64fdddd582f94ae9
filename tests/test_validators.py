"""
Unit tests for input validation (durations, CLI flags)
"""
import pytest
import sys
import os
from datetime import timedelta

# Add repo root to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from tollgate.validators import (
    format_duration,
    parse_duration,
    validate_namespace,
    validate_request_name_prefix,
    validate_wait_time,
)


class TestDurationParsing:
    """Go-style duration strings"""

    @pytest.mark.parametrize("text,expected", [
        ("30m", timedelta(minutes=30)),
        ("2h", timedelta(hours=2)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("1.5h", timedelta(minutes=90)),
        ("90s", timedelta(seconds=90)),
        ("500ms", timedelta(milliseconds=500)),
        ("+45m", timedelta(minutes=45)),
    ])
    def test_valid_duration(self, text, expected):
        assert parse_duration(text) == expected

    @pytest.mark.parametrize("text", ["", "0", None, "  "])
    def test_absent_duration_is_zero(self, text):
        assert parse_duration(text) == timedelta(0)

    @pytest.mark.parametrize("text", ["abc", "5", "1x", "h", "1h 30m", "1d", "30m!"])
    def test_malformed_duration_rejected(self, text):
        with pytest.raises(ValueError, match="Invalid duration"):
            parse_duration(text)

    def test_negative_duration_rejected(self):
        with pytest.raises(ValueError, match="must not be negative"):
            parse_duration("-1h")

    @pytest.mark.parametrize("text", ["2562048h", "200000000h", "100000000000000h", "1" + "0" * 400 + "s"])
    def test_out_of_range_duration_rejected(self, text):
        with pytest.raises(ValueError, match="out of range"):
            parse_duration(text)

    def test_largest_duration_accepted(self):
        assert parse_duration("2562047h") == timedelta(hours=2562047)

    def test_format_duration(self):
        assert format_duration(timedelta(hours=2)) == "2h"
        assert format_duration(timedelta(minutes=90)) == "1h30m"
        assert format_duration(timedelta(seconds=45)) == "45s"
        assert format_duration(timedelta(0)) == "0s"
        assert format_duration(timedelta(seconds=-5)) == "0s"

    def test_format_sub_second_duration(self):
        assert format_duration(timedelta(milliseconds=500)) == "500ms"
        assert format_duration(timedelta(microseconds=1500)) == "1.5ms"
        assert format_duration(timedelta(microseconds=250)) == "250us"
        assert format_duration(timedelta(seconds=1.5)) == "1.5s"
        assert format_duration(timedelta(minutes=1, milliseconds=250)) == "1m0.25s"


class TestRequestNamePrefix:

    def test_valid_prefix(self):
        assert validate_request_name_prefix("alice") == "alice"
        assert validate_request_name_prefix("ops-bot1") == "ops-bot1"

    @pytest.mark.parametrize("prefix", ["", "Alice", "1abc", "ab", "-abc"])
    def test_invalid_prefix_rejected(self, prefix):
        with pytest.raises(ValueError, match="invalid request name prefix"):
            validate_request_name_prefix(prefix)


class TestWaitTime:

    def test_valid_wait_time(self):
        assert validate_wait_time("10s") == timedelta(seconds=10)
        assert validate_wait_time("2m") == timedelta(minutes=2)

    @pytest.mark.parametrize("value", ["junk", "0s", "0", ""])
    def test_invalid_wait_time_rejected(self, value):
        with pytest.raises(ValueError, match="invalid time supplied"):
            validate_wait_time(value)


class TestNamespace:

    def test_valid_namespace(self):
        assert validate_namespace("team-a") == "team-a"

    def test_empty_namespace_rejected(self):
        with pytest.raises(ValueError, match="cannot be empty"):
            validate_namespace("")

    @pytest.mark.parametrize("namespace", ["Team-A", "team_a", "-team", "a" * 64])
    def test_invalid_namespace_rejected(self, namespace):
        with pytest.raises(ValueError, match="Invalid namespace"):
            validate_namespace(namespace)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
