"""Shared parsing helpers used by the service boundary.

parse_date_input:  strict ISO calendar date, raises ValueError on bad input
parse_timestamp:   optimistic-concurrency token (ISO datetime, optional 'Z')
normalize_name:    trim + collapse internal whitespace
"""
import re
from datetime import date, datetime, timezone

_WHITESPACE = re.compile(r"\s+")


def parse_date_input(value):
    """Parse a ``YYYY-MM-DD`` string (or a datetime string) to a date.

    Returns None for empty input; raises ValueError on anything else that
    is not a calendar date.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Invalid date value {value!r}. Use YYYY-MM-DD.")
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError as exc:
        raise ValueError(f"Invalid date value {value!r}. Use YYYY-MM-DD.") from exc


def parse_timestamp(value):
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive values (SQLite drops tzinfo on round-trip) are treated as UTC.
    Raises ValueError on malformed input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        ts = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Invalid timestamp {value!r}")
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def normalize_name(value):
    """Trim and collapse runs of whitespace to a single space."""
    if value is None:
        return ""
    return _WHITESPACE.sub(" ", str(value)).strip()
