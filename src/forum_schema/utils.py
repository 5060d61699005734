"""Timestamp helpers shared by records and criteria."""

from datetime import date, datetime, time, timezone

# Exporters written against zero-valued time structs emit this instead of
# leaving the field out.
ZERO_TIMESTAMP = datetime(1, 1, 1, tzinfo=timezone.utc)


def parse_timestamp(raw: str) -> datetime | None:
    """Parse an ISO-8601 / RFC 3339 timestamp.

    Timestamps without an offset are taken to be UTC.

    Args:
        raw: Timestamp string, e.g. "2016-02-01T12:30:00Z".

    Returns:
        A timezone-aware datetime, or None if the string is not a timestamp.
    """
    try:
        value = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def format_timestamp(value: datetime) -> str:
    """Format a datetime as RFC 3339, using "Z" for UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.isoformat()
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def as_timestamp(value: object) -> datetime | None:
    """Coerce a datetime, date or timestamp string to an aware datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time(), tzinfo=timezone.utc)
    if isinstance(value, str):
        return parse_timestamp(value)
    return None
