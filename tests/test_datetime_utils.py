"""Tests for datetime helpers."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from inbox_sift.core.datetime_utils import (
    days_ago,
    ensure_utc,
    format_deadline,
    local_date,
    parse_datetime,
    serialize_datetime,
)


def test_naive_values_are_treated_as_utc() -> None:
    assert ensure_utc(datetime(2025, 1, 20, 9, 0)) == datetime(
        2025, 1, 20, 9, 0, tzinfo=timezone.utc
    )


def test_aware_values_are_converted_to_utc() -> None:
    offset = timezone(timedelta(hours=2))
    converted = ensure_utc(datetime(2025, 1, 20, 11, 0, tzinfo=offset))
    assert converted == datetime(2025, 1, 20, 9, 0, tzinfo=timezone.utc)
    assert converted.tzinfo == timezone.utc


def test_serialise_and_parse() -> None:
    value = datetime(2025, 1, 20, 9, 0, tzinfo=timezone.utc)
    assert serialize_datetime(value) == "2025-01-20T09:00:00+00:00"
    assert parse_datetime("2025-01-20T09:00:00+00:00") == value
    assert serialize_datetime(None) is None
    assert parse_datetime(None) is None


def test_format_deadline() -> None:
    assert format_deadline(datetime(2025, 1, 24, 9, 0)) == "Fri Jan 24"
    assert format_deadline(datetime(2025, 2, 3, 9, 0)) == "Mon Feb 3"
    assert format_deadline(None) is None


def test_local_date_and_days_ago() -> None:
    assert local_date(date(2025, 1, 20)) == date(2025, 1, 20)
    assert local_date(datetime(2025, 1, 20, 23, 0)) == date(2025, 1, 20)
    assert days_ago(datetime(2025, 1, 31, 12, 0), 30) == datetime(
        2025, 1, 1, 12, 0, tzinfo=timezone.utc
    )
