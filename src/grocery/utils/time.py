"""Timestamp helpers."""

from datetime import UTC, datetime


def utc(value: datetime | None) -> datetime | None:
    """Treat naive timestamps as UTC so stored and fresh values compare."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
