"""Tests for the SQLite-backed analysis store."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from inbox_sift.core.config import StorageSettings
from inbox_sift.core.interfaces import StorageError
from inbox_sift.core.models import ActionItem, CacheEntry
from inbox_sift.storage import SqliteAnalysisStore

ANALYZED_AT = datetime(2025, 1, 20, 12, 0, tzinfo=timezone.utc)


def _action(email_id: str) -> ActionItem:
    return ActionItem(
        source="from-analysis",
        id=f"email-{email_id}",
        account="work",
        group="Work",
        summary=f"Reply to {email_id}",
        urgency="this_week",
        reasoning="Asked for a reply",
        date=datetime(2025, 1, 19, 8, 30, tzinfo=timezone.utc),
        is_starred=True,
        person="Bob",
        deadline="Fri Jan 24",
        email_id=email_id,
        thread_id=f"thread-{email_id}",
        subject="Question",
        sender="Bob",
        sender_email="bob@example.com",
    )


def _entry(
    email_id: str, fingerprint: str = "abc", *, actionable: bool = True
) -> CacheEntry:
    return CacheEntry(
        item_id=email_id,
        account="work",
        thread_id=f"thread-{email_id}",
        fingerprint=fingerprint,
        analyzed_at=ANALYZED_AT,
        is_actionable=actionable,
        action_item=_action(email_id) if actionable else None,
    )


@pytest.fixture()
def store(tmp_path: Path) -> Iterator[SqliteAnalysisStore]:
    repository = SqliteAnalysisStore(StorageSettings(db_path=tmp_path / "sift.db"))
    yield repository
    repository.close()


def test_lookup_requires_matching_fingerprint(store: SqliteAnalysisStore) -> None:
    store.write(_entry("m1", "abc"))

    hit = store.lookup("m1", "abc")
    assert hit is not None
    assert hit.is_actionable is True
    assert hit.action_item == _action("m1")
    assert hit.analyzed_at == ANALYZED_AT

    assert store.lookup("m1", "xyz") is None
    assert store.lookup("missing", "abc") is None


def test_non_actionable_entries_round_trip(store: SqliteAnalysisStore) -> None:
    store.write(_entry("m2", actionable=False))

    hit = store.lookup("m2", "abc")
    assert hit is not None
    assert hit.is_actionable is False
    assert hit.action_item is None


def test_write_replaces_existing_entry(store: SqliteAnalysisStore) -> None:
    store.write(_entry("m1", "old"))
    store.write(_entry("m1", "new", actionable=False))

    assert store.lookup("m1", "old") is None
    assert store.lookup("m1", "new") is not None
    assert store.stats().total_entries == 1


def test_bulk_lookup_returns_only_actionable(store: SqliteAnalysisStore) -> None:
    store.bulk_write([_entry("m1"), _entry("m2", actionable=False), _entry("m3")])

    found = store.bulk_lookup(["m1", "m2", "m3", "m4"])
    assert sorted(found) == ["m1", "m3"]
    assert found["m3"].summary == "Reply to m3"
    assert store.bulk_lookup([]) == {}


def test_entries_survive_reopen(tmp_path: Path) -> None:
    settings = StorageSettings(db_path=tmp_path / "nested" / "sift.db")
    with SqliteAnalysisStore(settings) as first:
        first.write(_entry("m1"))

    with SqliteAnalysisStore(settings) as second:
        assert second.lookup("m1", "abc") is not None


def test_remove_and_clear(store: SqliteAnalysisStore) -> None:
    store.bulk_write([_entry("m1"), _entry("m2"), _entry("m3")])

    assert store.remove("m1") is True
    assert store.remove("m1") is False
    assert store.lookup("m1", "abc") is None
    assert store.clear() == 2
    assert store.stats().total_entries == 0


def test_stats_counts_entries(store: SqliteAnalysisStore) -> None:
    older = _entry("m1")
    older.analyzed_at = ANALYZED_AT - timedelta(days=3)
    store.bulk_write([older, _entry("m2", actionable=False)])

    stats = store.stats()
    assert stats.total_entries == 2
    assert stats.actionable_count == 1
    assert stats.oldest_analyzed_at == ANALYZED_AT - timedelta(days=3)


def test_empty_store_stats(store: SqliteAnalysisStore) -> None:
    stats = store.stats()
    assert stats.total_entries == 0
    assert stats.actionable_count == 0
    assert stats.oldest_analyzed_at is None


def test_stats_on_broken_database_raises_storage_error(tmp_path: Path) -> None:
    db_path = tmp_path / "sift.db"
    with SqliteAnalysisStore(StorageSettings(db_path=db_path)) as store:
        with sqlite3.connect(db_path) as conn:
            conn.execute("DROP TABLE analyzed_emails")

        with pytest.raises(StorageError, match="stats"):
            store.stats()


def test_unreadable_row_is_treated_as_miss(tmp_path: Path) -> None:
    db_path = tmp_path / "sift.db"
    with SqliteAnalysisStore(StorageSettings(db_path=db_path)) as store:
        store.write(_entry("m1"))

    with sqlite3.connect(db_path) as conn:
        conn.execute("UPDATE analyzed_emails SET todo_json = '{broken'")

    with SqliteAnalysisStore(StorageSettings(db_path=db_path)) as store:
        assert store.lookup("m1", "abc") is None
        assert store.bulk_lookup(["m1"]) == {}


class _CrashingStore(SqliteAnalysisStore):
    """Store that fails while writing a chosen entry."""

    def __init__(self, settings: StorageSettings, fail_on: str) -> None:
        super().__init__(settings)
        self.fail_on = fail_on

    def _entry_row(self, entry: CacheEntry) -> tuple[Any, ...]:
        if entry.item_id == self.fail_on:
            raise sqlite3.OperationalError("disk I/O error")
        return super()._entry_row(entry)


def test_failed_bulk_write_commits_nothing(tmp_path: Path) -> None:
    store = _CrashingStore(StorageSettings(db_path=tmp_path / "sift.db"), fail_on="b2")
    store.bulk_write([_entry("a1"), _entry("a2")])

    with pytest.raises(StorageError):
        store.bulk_write([_entry("b1"), _entry("b2"), _entry("b3")])

    assert store.lookup("a1", "abc") is not None
    assert store.lookup("a2", "abc") is not None
    assert store.lookup("b1", "abc") is None
    assert store.stats().total_entries == 2
    store.close()


def test_in_memory_database_is_supported() -> None:
    with SqliteAnalysisStore(StorageSettings(db_path=Path(":memory:"))) as store:
        store.write(_entry("m1"))
        assert store.lookup("m1", "abc") is not None
