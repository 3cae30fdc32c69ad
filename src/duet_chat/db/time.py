# src/duet_chat/db/time.py
"""Time utilities for database models and wire timestamps."""

from datetime import UTC, datetime

WIRE_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f %z"


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime, truncated to ms."""
    now = datetime.now(UTC)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def format_wire_timestamp(value: datetime) -> str:
    """Render a datetime as ``YYYY-MM-DD HH:MM:SS.mmm +HHMM`` in UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return f"{value:%Y-%m-%d %H:%M:%S}.{value.microsecond // 1000:03d} {value:%z}"


def parse_wire_timestamp(text: str) -> datetime:
    """Parse a wire timestamp into an aware UTC datetime.

    Raises:
        ValueError: If the text does not follow the wire format.
    """
    return datetime.strptime(text, WIRE_TIMESTAMP_FORMAT).astimezone(UTC)
