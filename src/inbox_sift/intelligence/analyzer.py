"""Batch analysis of uncached messages with a persistent result cache."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from inbox_sift.core.interfaces import AnalysisError, AnalysisStore, StorageError
from inbox_sift.core.models import AccountItems, ActionItem, CacheEntry, MailItem

from .fingerprint import fingerprint_item
from .llm import LLMError, ReasoningBackend
from .prompts import build_batch_prompt

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

DEFAULT_BATCH_SIZE = 50


class AnalyzedTodo(BaseModel):
    """One actionable message as reported by the reasoning backend."""

    email_id: str = Field(min_length=1, description="Id of the source email")
    summary: str = Field(description="Brief action description")
    urgency: Literal["overdue", "this_week", "when_you_can"]
    reasoning: str = Field(default="", description="Why this urgency")
    person: str = Field(default="", description="Person the task relates to")
    deadline: str | None = Field(default=None, description="Ddd Mmm DD, ASAP or null")


class BatchAnalysis(BaseModel):
    """Structured output expected for one batch."""

    todos: list[AnalyzedTodo] = Field(default_factory=list)


@dataclass(slots=True)
class AnalysisReport:
    """Outcome of :meth:`BatchAnalyzer.analyze`."""

    action_items: list[ActionItem]
    cached_count: int
    analyzed_count: int
    backend_calls: int
    write_errors: list[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class _PendingItem:
    item: MailItem
    group: str
    fingerprint: str


class BatchAnalyzer:
    """Analyze only what changed, in bounded sequential batches."""

    def __init__(
        self,
        store: AnalysisStore,
        backend: ReasoningBackend,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        """Prepare the analyzer with its cache and backend."""
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._store = store
        self._backend = backend
        self._batch_size = batch_size
        self._progress_callback = progress_callback

    def analyze(
        self, groups: Sequence[AccountItems], today: date | datetime | None = None
    ) -> AnalysisReport:
        """Return action items for every message in ``groups``.

        Cache hits are answered from the store; misses are sent to the backend
        in batches. A backend failure raises :class:`AnalysisError`; batches
        completed before it stay cached.
        """
        reference = _as_date(today)
        cached_items: list[ActionItem] = []
        pending: list[_PendingItem] = []
        hits = 0

        for group in groups:
            for item in group.items:
                item_fingerprint = fingerprint_item(item)
                entry = self._store.lookup(item.id, item_fingerprint)
                if entry is None:
                    pending.append(_PendingItem(item, group.group, item_fingerprint))
                    continue
                hits += 1
                if entry.is_actionable and entry.action_item is not None:
                    cached_items.append(entry.action_item)

        LOGGER.info(
            "Analysis cache: %d hit(s), %d message(s) to analyze", hits, len(pending)
        )
        self._report(hits, len(pending))

        if not pending:
            return AnalysisReport(
                action_items=cached_items,
                cached_count=hits,
                analyzed_count=0,
                backend_calls=0,
            )

        batches = [
            pending[start : start + self._batch_size]
            for start in range(0, len(pending), self._batch_size)
        ]
        new_items: list[ActionItem] = []
        write_errors: list[str] = []
        processed = 0

        for number, batch in enumerate(batches, start=1):
            try:
                batch_items = self._analyze_batch(
                    batch, reference, number, len(batches)
                )
            except LLMError as exc:
                LOGGER.error(
                    "Analysis failed on batch %d/%d: %s", number, len(batches), exc
                )
                raise AnalysisError(
                    f"Analysis failed on batch {number}/{len(batches)}: {exc}"
                ) from exc

            try:
                self._store.bulk_write(_cache_entries(batch, batch_items))
            except StorageError as exc:
                write_errors.append(str(exc))

            new_items.extend(batch_items)
            processed += len(batch)
            self._report(hits + processed, len(pending) - processed)

        return AnalysisReport(
            action_items=cached_items + new_items,
            cached_count=hits,
            analyzed_count=processed,
            backend_calls=len(batches),
            write_errors=write_errors,
        )

    def _analyze_batch(
        self,
        batch: Sequence[_PendingItem],
        today: date,
        number: int,
        total: int,
    ) -> list[ActionItem]:
        prompt = build_batch_prompt(
            [_describe(pending) for pending in batch],
            today=today,
            batch_number=number,
            total_batches=total,
        )
        LOGGER.debug("Submitting batch %d/%d (%d message(s))", number, total, len(batch))
        result = self._backend.invoke(prompt, BatchAnalysis)

        by_id = {pending.item.id: pending for pending in batch}
        linked: dict[str, ActionItem] = {}
        for todo in result.todos:
            source = by_id.get(todo.email_id)
            if source is None:
                LOGGER.warning(
                    "Dropping result for unknown email id %s in batch %d",
                    todo.email_id,
                    number,
                )
                continue
            if todo.email_id in linked:
                LOGGER.debug("Ignoring duplicate result for %s", todo.email_id)
                continue
            linked[todo.email_id] = _to_action_item(todo, source)
        return list(linked.values())

    def _report(self, cached: int, pending: int) -> None:
        if self._progress_callback is not None:
            self._progress_callback(cached, pending)


def _describe(pending: _PendingItem) -> dict[str, object]:
    item = pending.item
    return {
        "id": item.id,
        "account": item.account,
        "group": pending.group,
        "subject": item.subject,
        "from": item.sender,
        "fromEmail": item.sender_email,
        "date": item.date.isoformat(),
        "snippet": item.snippet,
        "isStarred": item.is_starred,
        "isUnread": item.is_unread,
    }


def _to_action_item(todo: AnalyzedTodo, pending: _PendingItem) -> ActionItem:
    item = pending.item
    return ActionItem(
        source="from-analysis",
        id=f"email-{item.id}",
        account=item.account,
        group=pending.group,
        summary=todo.summary.strip() or item.subject,
        urgency=todo.urgency,
        reasoning=todo.reasoning.strip(),
        date=item.date,
        is_starred=item.is_starred,
        person=todo.person.strip() or item.sender,
        deadline=todo.deadline.strip() if todo.deadline else None,
        email_id=item.id,
        thread_id=item.thread_id,
        subject=item.subject,
        sender=item.sender,
        sender_email=item.sender_email,
    )


def _cache_entries(
    batch: Sequence[_PendingItem], action_items: Sequence[ActionItem]
) -> list[CacheEntry]:
    by_email = {action.email_id: action for action in action_items}
    analyzed_at = datetime.now(tz=UTC)
    entries: list[CacheEntry] = []
    for pending in batch:
        action = by_email.get(pending.item.id)
        entries.append(
            CacheEntry(
                item_id=pending.item.id,
                account=pending.item.account,
                thread_id=pending.item.thread_id,
                fingerprint=pending.fingerprint,
                analyzed_at=analyzed_at,
                is_actionable=action is not None,
                action_item=action,
            )
        )
    return entries


def _as_date(value: date | datetime | None) -> date:
    if value is None:
        return datetime.now().date()
    if isinstance(value, datetime):
        return value.date()
    return value


__all__ = [
    "AnalysisReport",
    "AnalyzedTodo",
    "BatchAnalysis",
    "BatchAnalyzer",
    "DEFAULT_BATCH_SIZE",
]
