"""Core domain models used across the application."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

Urgency = Literal["overdue", "this_week", "when_you_can"]
TrackerState = Literal["none", "pending", "completed"]
ActionSource = Literal["from-analysis", "from-tracker"]

URGENCY_ORDER: tuple[Urgency, ...] = ("overdue", "this_week", "when_you_can")


def urgency_rank(urgency: Urgency) -> int:
    """Return the sort position of ``urgency`` (most urgent first)."""
    return URGENCY_ORDER.index(urgency)


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True, frozen=True)
class MailItem:
    """Starred or unread message as observed at the mail provider."""

    id: str
    thread_id: str | None
    account: str
    subject: str
    sender: str
    sender_email: str
    date: datetime
    snippet: str
    is_starred: bool
    is_unread: bool


@dataclass(slots=True, frozen=True)
class AccountItems:
    """Messages fetched for one account, tagged with the account's group."""

    account: str
    group: str
    items: Sequence[MailItem]


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class ActionItem:
    """A unit of required action, derived from analysis or from the tracker."""

    source: ActionSource
    id: str
    account: str
    group: str
    summary: str
    urgency: Urgency
    reasoning: str
    date: datetime
    is_starred: bool
    person: str
    deadline: str | None
    tracker_state: TrackerState = "none"
    email_id: str | None = None
    thread_id: str | None = None
    tracker_id: str | None = None
    subject: str = ""
    sender: str = ""
    sender_email: str = ""

    def __post_init__(self) -> None:
        if self.source == "from-analysis":
            if not self.email_id or self.tracker_id is not None:
                raise ValueError("analysis items must link an email and no tracker entry")
        elif self.source == "from-tracker":
            if not self.tracker_id or self.email_id is not None:
                raise ValueError("tracker items must link a tracker entry and no email")
        else:
            raise ValueError(f"unknown action source {self.source!r}")
        if self.urgency not in URGENCY_ORDER:
            raise ValueError(f"unknown urgency {self.urgency!r}")


@dataclass(slots=True)
class CacheEntry:
    """Persisted outcome of the last analysis of a message."""

    item_id: str
    account: str
    thread_id: str | None
    fingerprint: str
    analyzed_at: datetime
    is_actionable: bool
    action_item: ActionItem | None = None


@dataclass(slots=True, frozen=True)
class CacheStats:
    """Diagnostic counters for the analysis store."""

    total_entries: int
    actionable_count: int
    oldest_analyzed_at: datetime | None


@dataclass(slots=True, frozen=True)
class TrackerEntry:
    """Entry in an external tracker list."""

    id: str
    title: str
    notes: str | None
    is_completed: bool
    list_name: str
    due_date: datetime | None = None
    priority: int | None = None

    @property
    def is_high_priority(self) -> bool:
        """Whether the tracker flags the entry as high priority."""
        return self.priority == 1


@dataclass(slots=True, frozen=True)
class ThreadMessage:
    """One message of a conversation, used for drafting reminders."""

    sender: str
    date: str
    body: str


@dataclass(slots=True, frozen=True)
class MailThread:
    """Conversation fetched on demand from the mail provider."""

    id: str
    subject: str
    messages: tuple[ThreadMessage, ...] = field(default_factory=tuple)


__all__ = [
    "AccountItems",
    "ActionItem",
    "ActionSource",
    "CacheEntry",
    "CacheStats",
    "MailItem",
    "MailThread",
    "ThreadMessage",
    "TrackerEntry",
    "TrackerState",
    "URGENCY_ORDER",
    "Urgency",
    "urgency_rank",
]
