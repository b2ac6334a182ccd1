"""Shared parsing utilities for provider adapters.

Centralises the date/time and amount parsing every provider integration
needs: ISO 8601 strings, Microsoft JSON dates (Xero), Unix timestamps,
scaled decimals (Tink) and accounting-style bracketed amounts.
"""

import re
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

# Xero: "/Date(1700000000000+0000)/" or "/Date(1700000000000)/"
_MS_JSON_DATE_RE = re.compile(r"^/Date\((-?\d+)([+-]\d{4})?\)/$")


def parse_iso_datetime(value) -> datetime | None:
    """Parse an ISO 8601 string (or date/datetime object) to a UTC-aware datetime.

    Handles:
    - Z suffix ("2024-01-15T10:30:00Z")
    - +0000 no-colon offset ("2024-01-15T10:30:00+0000")
    - Standard ISO with colon offset ("2024-06-28 18:42:46+00:00")
    - Date-only strings ("2024-06-28")
    - datetime/date objects passed through with UTC normalisation

    Args:
        value: A string, date, datetime, or None.

    Returns:
        A timezone-aware datetime, or None if the value cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    value_str = str(value)

    if value_str.endswith("Z"):
        value_str = value_str[:-1] + "+00:00"

    if (
        len(value_str) >= 5
        and value_str[-5] in ("+", "-")
        and value_str[-4:].isdigit()
    ):
        value_str = value_str[:-2] + ":" + value_str[-2:]

    try:
        dt = datetime.fromisoformat(value_str)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except (ValueError, TypeError):
        pass

    try:
        d = date.fromisoformat(str(value))
        return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)
    except (ValueError, TypeError):
        return None


def parse_ms_json_date(value) -> datetime | None:
    """Parse a Microsoft JSON date, falling back to ISO 8601.

    Xero returns ``/Date(1700000000000+0000)/`` in most payloads but ISO
    strings in some (``DateString``). The millisecond value is UTC; the
    offset only describes the organisation's local zone.

    Args:
        value: A ``/Date(...)/`` string, an ISO string, or None.

    Returns:
        A UTC-aware datetime, or None if the value cannot be parsed.
    """
    if value is None:
        return None
    match = _MS_JSON_DATE_RE.match(str(value).strip())
    if match:
        millis = int(match.group(1))
        return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=millis)
    return parse_iso_datetime(value)


def parse_unix_timestamp(value) -> datetime | None:
    """Parse a Unix epoch timestamp to a UTC-aware datetime."""
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (ValueError, TypeError, OSError):
        return None


def parse_decimal(value) -> Decimal | None:
    """Parse a number or numeric string to Decimal.

    Floats go through ``str()`` so ``0.1`` stays ``Decimal("0.1")``.
    """
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def parse_scaled_amount(unscaled_value, scale) -> Decimal | None:
    """Parse an ``{unscaledValue, scale}`` pair (Tink) to Decimal.

    ``unscaledValue="-1050", scale="2"`` is ``Decimal("-10.50")``.
    """
    unscaled = parse_decimal(unscaled_value)
    if unscaled is None:
        return None
    try:
        exponent = int(scale or 0)
    except (TypeError, ValueError):
        return None
    return unscaled.scaleb(-exponent)


def parse_report_amount(value) -> Decimal | None:
    """Parse an accounting-report amount such as ``"(1,234.56)"``.

    Parentheses mean negative; thousands separators are ignored.
    """
    if value is None:
        return None
    text = str(value).strip().replace(",", "")
    if not text:
        return None
    negative = text.startswith("(") and text.endswith(")")
    if negative:
        text = text[1:-1]
    amount = parse_decimal(text)
    if amount is None:
        return None
    return -amount if negative else amount


def ensure_utc(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware (UTC).

    SQLite hands back naive datetimes, so anything read from the store
    goes through here before it is compared with ``datetime.now(timezone.utc)``.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def date_to_datetime(d: date) -> datetime:
    """Convert a date to a midnight-UTC datetime."""
    return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)
