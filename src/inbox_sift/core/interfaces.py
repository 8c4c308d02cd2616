"""Protocol interfaces for decoupling components."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol

from .models import (
    ActionItem,
    CacheEntry,
    CacheStats,
    MailItem,
    MailThread,
    TrackerEntry,
)


class StorageError(RuntimeError):
    """Raised when the analysis store cannot persist a change."""


class AnalysisError(RuntimeError):
    """Raised when a triage run cannot analyze its items."""


class TrackerError(RuntimeError):
    """Raised when the external tracker cannot be queried or updated."""


class ProviderError(RuntimeError):
    """Raised when the mail provider rejects a request."""


class AnalysisStore(Protocol):
    """Durable map of message identity to last analysis outcome."""

    def lookup(self, item_id: str, fingerprint: str) -> CacheEntry | None:
        """Return the entry for ``item_id`` if its fingerprint still matches."""
        raise NotImplementedError

    def bulk_lookup(self, item_ids: Iterable[str]) -> dict[str, ActionItem]:
        """Return cached action items for the actionable ids among ``item_ids``."""
        raise NotImplementedError

    def write(self, entry: CacheEntry) -> None:
        """Insert or replace a single entry."""
        raise NotImplementedError

    def bulk_write(self, entries: Sequence[CacheEntry]) -> None:
        """Insert or replace ``entries`` atomically."""
        raise NotImplementedError

    def remove(self, item_id: str) -> bool:
        """Delete the entry for ``item_id``. Returns ``True`` if one existed."""
        raise NotImplementedError

    def clear(self) -> int:
        """Delete every entry and return how many were removed."""
        raise NotImplementedError

    def stats(self) -> CacheStats:
        """Return diagnostic counters."""
        raise NotImplementedError


class MailProvider(Protocol):
    """Read access to an account's messages plus two idempotent commands."""

    account: str

    def list_starred(self, limit: int) -> list[MailItem]:
        """Return up to ``limit`` starred messages, newest first."""
        raise NotImplementedError

    def list_unread(self, limit: int) -> list[MailItem]:
        """Return up to ``limit`` unread messages, newest first."""
        raise NotImplementedError

    def fetch_thread(self, item_id: str) -> MailThread | None:
        """Return the conversation containing ``item_id`` if it still exists."""
        raise NotImplementedError

    def mark_resolved(self, item_id: str) -> None:
        """Unstar and mark read."""
        raise NotImplementedError

    def mark_starred(self, item_id: str) -> None:
        """Star the message."""
        raise NotImplementedError

    def close(self) -> None:
        """Release any network resources."""
        raise NotImplementedError


class TrackerClient(Protocol):
    """Capability interface for the external task tracker."""

    def list_entries(self, list_name: str) -> list[TrackerEntry]:
        """Return every entry of ``list_name`` with its completion state."""
        raise NotImplementedError

    def create_entry(
        self,
        title: str,
        list_name: str,
        notes: str,
        *,
        due: str | None = None,
        priority: str | None = None,
    ) -> None:
        """Create a new entry."""
        raise NotImplementedError

    def complete_by_id(self, entry_id: str) -> None:
        """Mark the entry ``entry_id`` as completed."""
        raise NotImplementedError

    def complete_by_reference(self, item_id: str, list_name: str) -> bool:
        """Complete the entry that back-references ``item_id``, if any."""
        raise NotImplementedError


__all__ = [
    "AnalysisError",
    "AnalysisStore",
    "MailProvider",
    "ProviderError",
    "StorageError",
    "TrackerClient",
    "TrackerError",
]
