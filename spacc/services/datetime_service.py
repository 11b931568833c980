"""Timestamp parsing and formatting for inventory metadata and report IDs."""

from __future__ import annotations

from datetime import datetime, timezone

import pendulum

# Report IDs embed a compact UTC stamp: YYYYMMDDTHHMMSS
REPORT_STAMP_FORMAT = "%Y%m%dT%H%M%S"


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax datetime string into a timezone-aware datetime.

    Accepts the formats the storage back-ends emit:
    - 2026-02-02T22:21:29Z
    - 2026-02-02T22:21:29.975+00:00
    - 2026-02-02 22:21
    - 2026-02-02

    Missing timezone defaults to default_tz.
    Missing time components default to zeros.
    Raises ValueError when the value cannot be parsed.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value

    value_str = value.strip()
    if not value_str:
        msg = "Empty datetime value"
        raise ValueError(msg)

    parsed = pendulum.parse(value_str, tz=default_tz, strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return parsed  # type: ignore[return-value]


def parse_optional_datetime(value: str | datetime | None) -> datetime | None:
    """Parse a timestamp, returning None for missing or unparseable input."""
    if value is None or value == "":
        return None
    try:
        return parse_datetime(value)
    except ValueError:
        return None


def milliseconds_between(first: datetime, second: datetime) -> int:
    """Return the absolute distance between two datetimes in milliseconds."""
    return abs(round((second - first).total_seconds() * 1000))


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for JSON serialization."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def format_report_stamp(dt: datetime) -> str:
    """Format a datetime as the compact UTC stamp used in report IDs."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(REPORT_STAMP_FORMAT)
