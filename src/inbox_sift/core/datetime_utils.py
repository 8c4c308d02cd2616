"""Datetime helpers shared across the application."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

__all__ = [
    "ensure_utc",
    "days_ago",
    "format_deadline",
    "parse_datetime",
    "serialize_datetime",
    "local_date",
]


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` in UTC, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def serialize_datetime(value: datetime | None) -> str | None:
    """Serialise ``value`` to ISO 8601 in UTC."""
    if value is None:
        return None
    return ensure_utc(value).isoformat()


def parse_datetime(value: str | None) -> datetime | None:
    """Parse an ISO 8601 string into a UTC ``datetime``."""
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def local_date(value: datetime | date) -> date:
    """Return the local calendar date of ``value``."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone()
        return value.date()
    return value


def format_deadline(value: datetime | None) -> str | None:
    """Format a due date as ``Ddd Mmm D`` (for example ``Fri Jan 24``)."""
    if value is None:
        return None
    local = local_date(value)
    return f"{local:%a} {local:%b} {local.day}"


def days_ago(reference: datetime, days: int) -> datetime:
    """Return the instant ``days`` days before ``reference`` in UTC."""
    return ensure_utc(reference) - timedelta(days=days)
