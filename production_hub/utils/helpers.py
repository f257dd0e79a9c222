"""Shared utility functions for services and blueprints.

parse_date:      lenient date parsing (returns None on bad input)
as_utc:          normalise naive timestamps read back from SQLite
parse_bool_arg:  query-string flag parsing
"""
from datetime import date, datetime, timezone


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY (European format)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def as_utc(value):
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_bool_arg(value):
    """Return True/False for common flag spellings, None when absent."""
    if value is None or value == "":
        return None
    return str(value).strip().lower() in ("1", "true", "yes", "on")
