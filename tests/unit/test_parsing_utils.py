"""Tests for shared date and amount parsing utilities."""

from datetime import date, datetime, timezone, timedelta
from decimal import Decimal

from integrations.parsing_utils import (
    date_to_datetime,
    ensure_utc,
    parse_decimal,
    parse_iso_datetime,
    parse_ms_json_date,
    parse_report_amount,
    parse_scaled_amount,
    parse_unix_timestamp,
)


class TestParseIsoDatetime:
    def test_none_returns_none(self):
        assert parse_iso_datetime(None) is None

    def test_naive_datetime_gets_utc(self):
        result = parse_iso_datetime(datetime(2024, 6, 28, 12, 0, 0))
        assert result == datetime(2024, 6, 28, 12, 0, 0, tzinfo=timezone.utc)

    def test_aware_datetime_passthrough(self):
        dt = datetime(2024, 6, 28, 12, 0, 0, tzinfo=timezone.utc)
        assert parse_iso_datetime(dt) is dt

    def test_date_object(self):
        result = parse_iso_datetime(date(2024, 6, 28))
        assert result == datetime(2024, 6, 28, tzinfo=timezone.utc)

    def test_z_suffix(self):
        """Tink booking timestamps: 2024-01-15T10:30:00Z"""
        result = parse_iso_datetime("2024-01-15T10:30:00Z")
        assert result == datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc)

    def test_no_colon_tz_positive(self):
        result = parse_iso_datetime("2024-01-15T10:30:00+0000")
        assert result == datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc)

    def test_no_colon_tz_negative(self):
        result = parse_iso_datetime("2024-01-15T10:30:00-0500")
        expected_tz = timezone(timedelta(hours=-5))
        assert result == datetime(2024, 1, 15, 10, 30, 0, tzinfo=expected_tz)

    def test_naive_string_gets_utc(self):
        """Xero DateString: 2024-06-28T00:00:00"""
        result = parse_iso_datetime("2024-06-28T00:00:00")
        assert result == datetime(2024, 6, 28, tzinfo=timezone.utc)

    def test_date_only_string(self):
        """Tink bookedDate: 2024-06-28"""
        result = parse_iso_datetime("2024-06-28")
        assert result == datetime(2024, 6, 28, tzinfo=timezone.utc)

    def test_invalid_string_returns_none(self):
        assert parse_iso_datetime("not-a-date") is None

    def test_empty_string_returns_none(self):
        assert parse_iso_datetime("") is None


class TestParseMsJsonDate:
    def test_with_offset(self):
        result = parse_ms_json_date("/Date(1704067200000+0000)/")
        assert result == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_without_offset(self):
        result = parse_ms_json_date("/Date(1704067200000)/")
        assert result == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_offset_does_not_shift_instant(self):
        """The millisecond value is already UTC."""
        result = parse_ms_json_date("/Date(1704067200000+1300)/")
        assert result == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_falls_back_to_iso(self):
        result = parse_ms_json_date("2024-03-01T00:00:00")
        assert result == datetime(2024, 3, 1, tzinfo=timezone.utc)

    def test_none_and_garbage(self):
        assert parse_ms_json_date(None) is None
        assert parse_ms_json_date("/Date(abc)/") is None


class TestParseUnixTimestamp:
    def test_none_returns_none(self):
        assert parse_unix_timestamp(None) is None

    def test_int_timestamp(self):
        result = parse_unix_timestamp(1704067200)
        assert result == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_string_timestamp(self):
        result = parse_unix_timestamp("1704067200")
        assert result == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_invalid_string_returns_none(self):
        assert parse_unix_timestamp("not-a-number") is None


class TestParseAmounts:
    def test_decimal_from_float_keeps_precision(self):
        assert parse_decimal(0.1) == Decimal("0.1")

    def test_decimal_empty_and_invalid(self):
        assert parse_decimal(None) is None
        assert parse_decimal("") is None
        assert parse_decimal("abc") is None

    def test_scaled_amount(self):
        assert parse_scaled_amount("-1050", "2") == Decimal("-10.50")

    def test_scaled_amount_zero_scale(self):
        assert parse_scaled_amount("42", None) == Decimal("42")

    def test_scaled_amount_invalid(self):
        assert parse_scaled_amount(None, "2") is None
        assert parse_scaled_amount("100", "x") is None

    def test_report_amount_brackets_negative(self):
        assert parse_report_amount("(1,234.56)") == Decimal("-1234.56")

    def test_report_amount_plain(self):
        assert parse_report_amount("1,520.40") == Decimal("1520.40")

    def test_report_amount_blank(self):
        assert parse_report_amount("") is None
        assert parse_report_amount(None) is None


class TestEnsureUtc:
    def test_naive_becomes_utc(self):
        result = ensure_utc(datetime(2024, 6, 28, 12, 0, 0))
        assert result.tzinfo == timezone.utc

    def test_aware_passthrough(self):
        tz = timezone(timedelta(hours=5))
        dt = datetime(2024, 6, 28, 12, 0, 0, tzinfo=tz)
        assert ensure_utc(dt) is dt


def test_date_to_datetime_is_midnight_utc():
    result = date_to_datetime(date(2024, 6, 28))
    assert result == datetime(2024, 6, 28, tzinfo=timezone.utc)
