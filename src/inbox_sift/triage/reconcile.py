"""Merge analysis results with tracker state into one ordered view."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

from inbox_sift.core.config import TrackerListSettings
from inbox_sift.core.datetime_utils import days_ago, ensure_utc, format_deadline, local_date
from inbox_sift.core.interfaces import TrackerClient, TrackerError
from inbox_sift.core.models import ActionItem, TrackerEntry, TrackerState, Urgency, urgency_rank
from inbox_sift.tracker.reminders import extract_reference

LOGGER = logging.getLogger(__name__)

DEFAULT_BACKLOG_DAYS = 30
RELEVANCE_WINDOW_DAYS = 7


@dataclass(slots=True)
class ReconciledView:
    """Action items split into the active list and the backlog."""

    active: list[ActionItem] = field(default_factory=list)
    backlog: list[ActionItem] = field(default_factory=list)


def reconcile(
    analysis_items: Sequence[ActionItem],
    tracker: TrackerClient | None,
    lists: Sequence[TrackerListSettings],
    *,
    today: datetime,
    backlog_days: int = DEFAULT_BACKLOG_DAYS,
) -> ReconciledView:
    """Annotate analysis items with tracker state and add tracker-only items.

    Each configured list is queried once. A list whose query fails adds no
    states and no items; the rest of the view is still produced.
    """
    states: dict[str, TrackerState] = {}
    tracker_items: list[ActionItem] = []

    if tracker is not None:
        for list_settings in lists:
            try:
                entries = tracker.list_entries(list_settings.list)
            except TrackerError as exc:
                LOGGER.warning(
                    "Tracker list '%s' unavailable, continuing without it: %s",
                    list_settings.list,
                    exc,
                )
                continue
            for entry in entries:
                reference = extract_reference(entry.notes)
                if reference is not None:
                    states[reference] = "completed" if entry.is_completed else "pending"
                elif _is_relevant(entry, today):
                    tracker_items.append(_tracker_item(entry, list_settings, today))

    cutoff = days_ago(today, backlog_days)
    view = ReconciledView()
    for item in analysis_items:
        state = states.get(item.email_id or "", "none")
        annotated = replace(item, tracker_state=state)
        if ensure_utc(annotated.date) < cutoff:
            view.backlog.append(annotated)
        else:
            view.active.append(annotated)

    view.active.extend(tracker_items)
    view.active.sort(key=lambda item: urgency_rank(item.urgency))
    view.backlog.sort(key=lambda item: ensure_utc(item.date))
    LOGGER.debug(
        "Reconciled %d active item(s) (%d from tracker), %d in backlog",
        len(view.active),
        len(tracker_items),
        len(view.backlog),
    )
    return view


def filter_by_group(items: Iterable[ActionItem], group: str | None) -> list[ActionItem]:
    """Return items belonging to ``group``, or all items when ``group`` is None."""
    if group is None:
        return list(items)
    return [item for item in items if item.group == group]


def _is_relevant(entry: TrackerEntry, today: datetime) -> bool:
    if entry.is_completed:
        return False
    if entry.is_high_priority:
        return True
    if entry.due_date is None:
        return False
    horizon = local_date(today) + timedelta(days=RELEVANCE_WINDOW_DAYS)
    return local_date(entry.due_date) <= horizon


def _tracker_urgency(entry: TrackerEntry, today: datetime) -> Urgency:
    current = local_date(today)
    if entry.due_date is not None:
        due = local_date(entry.due_date)
        if due < current:
            return "overdue"
        if due <= current + timedelta(days=RELEVANCE_WINDOW_DAYS):
            return "this_week"
    if entry.is_high_priority:
        return "this_week"
    return "when_you_can"


def _tracker_item(
    entry: TrackerEntry, list_settings: TrackerListSettings, today: datetime
) -> ActionItem:
    deadline = format_deadline(entry.due_date)
    return ActionItem(
        source="from-tracker",
        id=f"reminder-{entry.id}",
        account=list_settings.list,
        group=list_settings.group,
        summary=entry.title,
        urgency=_tracker_urgency(entry, today),
        reasoning=f"Due: {deadline}" if deadline else "High priority",
        date=entry.due_date or today,
        is_starred=False,
        person="",
        deadline=deadline,
        tracker_state="pending",
        tracker_id=entry.id,
    )


__all__ = ["DEFAULT_BACKLOG_DAYS", "ReconciledView", "filter_by_group", "reconcile"]
