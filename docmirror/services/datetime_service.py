"""Timestamps for repository records.

Rows store timestamps as text in one fixed UTC format; the API reports
them as ISO 8601.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pendulum

# Stored format: YYYY-MM-DD HH:MM:SS.ffffff+0000
STORAGE_FORMAT = "%Y-%m-%d %H:%M:%S.%f%z"


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_storage(dt: datetime) -> str:
    """Render a datetime for a text column. Naive values are taken as UTC."""
    return _as_utc(dt).strftime(STORAGE_FORMAT)


def from_storage(value: str) -> datetime:
    """Parse a stored timestamp back into an aware UTC datetime.

    Rows written by hand or by older tools may hold any ISO 8601 variant,
    so parsing is lenient; date-only values mean midnight UTC.
    """
    parsed = pendulum.parse(value.strip(), tz="UTC", strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum returns a Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz="UTC"  # type: ignore[union-attr]
        )
    utc = parsed.in_timezone("UTC")
    return datetime(
        utc.year,
        utc.month,
        utc.day,
        utc.hour,
        utc.minute,
        utc.second,
        utc.microsecond,
        tzinfo=timezone.utc,
    )


def to_iso(dt: datetime) -> str:
    """Format a datetime as ISO 8601 in UTC for JSON responses."""
    return _as_utc(dt).isoformat()
