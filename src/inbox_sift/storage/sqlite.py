"""SQLite-backed analysis store."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable, Sequence
from dataclasses import asdict, fields
from pathlib import Path
from types import TracebackType
from typing import Any

from ..core.config import StorageSettings
from ..core.datetime_utils import parse_datetime, serialize_datetime
from ..core.interfaces import AnalysisStore, StorageError
from ..core.models import ActionItem, CacheEntry, CacheStats

LOGGER = logging.getLogger(__name__)

_MEMORY_PATH = ":memory:"
_ACTION_FIELDS = frozenset(field.name for field in fields(ActionItem))


class SqliteAnalysisStore(AnalysisStore):
    """Persist analysis outcomes keyed by message id using SQLite."""

    def __init__(self, settings: StorageSettings) -> None:
        """Open (or create) the database file and apply migrations."""
        self._settings = settings
        db_path = Path(settings.db_path)
        if str(db_path) != _MEMORY_PATH:
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = sqlite3.connect(db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._connection.execute("PRAGMA journal_mode = WAL")
        self._apply_migrations()

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> SqliteAnalysisStore:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure the connection is closed when exiting context manager."""
        self.close()

    # AnalysisStore API -------------------------------------------------------
    def lookup(self, item_id: str, fingerprint: str) -> CacheEntry | None:
        """Return the cached entry for ``item_id`` when ``fingerprint`` matches."""
        try:
            row = self._connection.execute(
                """
                SELECT email_id, account, thread_id, analyzed_at, email_hash,
                       is_todo, todo_json
                FROM analyzed_emails
                WHERE email_id = ?
                """,
                (item_id,),
            ).fetchone()
        except sqlite3.Error as exc:
            LOGGER.warning("Cache lookup failed for %s: %s", item_id, exc)
            return None

        if row is None:
            return None
        if row["email_hash"] != fingerprint:
            LOGGER.debug("Fingerprint changed for %s; treating as miss", item_id)
            return None

        try:
            return _row_to_entry(row)
        except (ValueError, TypeError, KeyError) as exc:
            LOGGER.warning("Discarding unreadable cache row for %s: %s", item_id, exc)
            return None

    def bulk_lookup(self, item_ids: Iterable[str]) -> dict[str, ActionItem]:
        """Return cached action items for the actionable ids among ``item_ids``."""
        ids = list(dict.fromkeys(item_ids))
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        try:
            rows = self._connection.execute(
                f"""
                SELECT email_id, todo_json
                FROM analyzed_emails
                WHERE email_id IN ({placeholders})
                  AND is_todo = 1
                  AND todo_json IS NOT NULL
                """,
                ids,
            ).fetchall()
        except sqlite3.Error as exc:
            LOGGER.warning("Bulk cache lookup failed: %s", exc)
            return {}

        found: dict[str, ActionItem] = {}
        for row in rows:
            try:
                found[row["email_id"]] = _action_from_json(row["todo_json"])
            except (ValueError, TypeError, KeyError) as exc:
                LOGGER.warning(
                    "Skipping unreadable cached item %s: %s", row["email_id"], exc
                )
        return found

    def write(self, entry: CacheEntry) -> None:
        """Insert or replace a single entry."""
        self.bulk_write([entry])

    def bulk_write(self, entries: Sequence[CacheEntry]) -> None:
        """Insert or replace ``entries`` in a single transaction."""
        if not entries:
            return
        LOGGER.debug("Caching %d analysis result(s)", len(entries))
        try:
            with self._connection:
                for entry in entries:
                    self._connection.execute(
                        """
                        INSERT INTO analyzed_emails (
                            email_id,
                            account,
                            thread_id,
                            analyzed_at,
                            email_hash,
                            is_todo,
                            todo_json
                        ) VALUES (?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(email_id) DO UPDATE SET
                            account=excluded.account,
                            thread_id=excluded.thread_id,
                            analyzed_at=excluded.analyzed_at,
                            email_hash=excluded.email_hash,
                            is_todo=excluded.is_todo,
                            todo_json=excluded.todo_json
                        """,
                        self._entry_row(entry),
                    )
        except sqlite3.Error as exc:
            LOGGER.error(
                "Failed to cache %d analysis result(s): %s",
                len(entries),
                exc,
                exc_info=True,
            )
            raise StorageError(
                f"Failed to cache {len(entries)} analysis result(s): {exc}"
            ) from exc

    def remove(self, item_id: str) -> bool:
        """Delete the cached entry for ``item_id``."""
        LOGGER.debug("Removing cached analysis for %s", item_id)
        try:
            with self._connection:
                cur = self._connection.execute(
                    "DELETE FROM analyzed_emails WHERE email_id = ?",
                    (item_id,),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to remove cached item {item_id}: {exc}") from exc
        return cur.rowcount > 0

    def clear(self) -> int:
        """Delete every cached entry."""
        try:
            with self._connection:
                cur = self._connection.execute("DELETE FROM analyzed_emails")
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to clear analysis cache: {exc}") from exc
        LOGGER.info("Cleared %d cached analysis result(s)", cur.rowcount)
        return cur.rowcount

    def stats(self) -> CacheStats:
        """Return entry counts and the oldest analysis timestamp."""
        try:
            row = self._connection.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(CASE WHEN is_todo = 1 THEN 1 ELSE 0 END), 0) AS todos,
                    MIN(analyzed_at) AS oldest
                FROM analyzed_emails
                """
            ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to read analysis cache stats: {exc}") from exc
        return CacheStats(
            total_entries=row["total"],
            actionable_count=row["todos"],
            oldest_analyzed_at=parse_datetime(row["oldest"]),
        )

    def close(self) -> None:
        """Close the database connection."""
        self._connection.close()

    # Internal helpers ---------------------------------------------------------
    def _entry_row(self, entry: CacheEntry) -> tuple[Any, ...]:
        payload = (
            _action_to_json(entry.action_item)
            if entry.is_actionable and entry.action_item is not None
            else None
        )
        return (
            entry.item_id,
            entry.account,
            entry.thread_id,
            serialize_datetime(entry.analyzed_at),
            entry.fingerprint,
            1 if payload is not None else 0,
            payload,
        )

    def _apply_migrations(self) -> None:
        schema_dir = Path(__file__).resolve().parent / "schema"
        for migration in sorted(schema_dir.glob("*.sql")):
            LOGGER.debug("Applying migration %s", migration.name)
            script = migration.read_text(encoding="utf-8")
            with self._connection:
                self._connection.executescript(script)


def _action_to_json(item: ActionItem) -> str:
    payload = asdict(item)
    payload["date"] = serialize_datetime(item.date)
    return json.dumps(payload)


def _action_from_json(raw: str) -> ActionItem:
    payload = json.loads(raw)
    if not isinstance(payload, dict):
        raise ValueError("cached action item is not an object")
    known = {key: value for key, value in payload.items() if key in _ACTION_FIELDS}
    known["date"] = parse_datetime(known["date"])
    return ActionItem(**known)


def _row_to_entry(row: sqlite3.Row) -> CacheEntry:
    action_item = _action_from_json(row["todo_json"]) if row["todo_json"] else None
    analyzed_at = parse_datetime(row["analyzed_at"])
    if analyzed_at is None:
        raise ValueError("missing analyzed_at")
    return CacheEntry(
        item_id=row["email_id"],
        account=row["account"],
        thread_id=row["thread_id"],
        fingerprint=row["email_hash"],
        analyzed_at=analyzed_at,
        is_actionable=bool(row["is_todo"]) and action_item is not None,
        action_item=action_item,
    )


__all__ = ["SqliteAnalysisStore"]
