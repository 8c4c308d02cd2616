"""Fetch, analyze and reconcile inbox items, plus the item actions."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from types import TracebackType

from inbox_sift.core.config import AppSettings
from inbox_sift.core.interfaces import (
    AnalysisStore,
    MailProvider,
    ProviderError,
    StorageError,
    TrackerError,
)
from inbox_sift.core.models import AccountItems, ActionItem, MailItem
from inbox_sift.intelligence.analyzer import AnalysisReport, BatchAnalyzer
from inbox_sift.intelligence.reminder_drafter import ReminderDrafter
from inbox_sift.tracker.reminders import CreateReminderResult, RemindctlClient

from .reconcile import reconcile

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TriageResult:
    """Outcome of one triage run."""

    active: list[ActionItem]
    backlog: list[ActionItem]
    report: AnalysisReport


class TriagePipeline:
    """Coordinate mail providers, the analyzer and the tracker."""

    def __init__(
        self,
        settings: AppSettings,
        providers: Sequence[MailProvider],
        store: AnalysisStore,
        analyzer: BatchAnalyzer,
        tracker: RemindctlClient | None = None,
    ) -> None:
        """Wire the collaborators used by a run."""
        self._settings = settings
        self._providers = {provider.account: provider for provider in providers}
        self._store = store
        self._analyzer = analyzer
        self._tracker = tracker
        self._groups = {account.name: account.group for account in settings.accounts}

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> TriagePipeline:
        """Return the pipeline for use in a ``with`` block."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Close every provider on exit."""
        self.close()

    # Public API ---------------------------------------------------------------
    def fetch(self) -> list[AccountItems]:
        """Return starred then unread items per account, without duplicates.

        An account whose provider fails contributes no items for this run.
        """
        limits = self._settings.analysis
        groups: list[AccountItems] = []
        for account, provider in self._providers.items():
            try:
                fetched = [
                    *provider.list_starred(limits.starred_limit),
                    *provider.list_unread(limits.unread_limit),
                ]
            except ProviderError as exc:
                LOGGER.warning("Skipping account %s: %s", account, exc)
                fetched = []
            seen: set[str] = set()
            items: list[MailItem] = []
            for item in fetched:
                if item.id in seen:
                    continue
                seen.add(item.id)
                items.append(item)
            LOGGER.info("Fetched %d item(s) from %s", len(items), account)
            group = self._groups.get(account, account)
            groups.append(AccountItems(account=account, group=group, items=items))
        return groups

    def run(self, today: datetime | None = None) -> TriageResult:
        """Fetch, analyze and reconcile; returns the active list and backlog."""
        reference = today or datetime.now().astimezone()
        report = self._analyzer.analyze(self.fetch(), today=reference)
        for error in report.write_errors:
            LOGGER.warning("Analysis results not cached: %s", error)
        view = reconcile(
            report.action_items,
            self._tracker,
            self._settings.tracker.lists,
            today=reference,
            backlog_days=self._settings.analysis.backlog_days,
        )
        return TriageResult(active=view.active, backlog=view.backlog, report=report)

    def mark_done(self, item: ActionItem) -> bool:
        """Complete ``item`` everywhere it lives. Returns ``True`` on success."""
        if item.source == "from-tracker":
            if self._tracker is None or item.tracker_id is None:
                return False
            try:
                self._tracker.complete_by_id(item.tracker_id)
            except TrackerError as exc:
                LOGGER.warning("Could not complete reminder %s: %s", item.tracker_id, exc)
                return False
            return True

        email_id = item.email_id or ""
        if item.tracker_state != "none":
            self._complete_reminder(email_id)

        provider = self._provider_for(item)
        if provider is None:
            return False
        try:
            provider.mark_resolved(email_id)
        except ProviderError as exc:
            LOGGER.warning("Could not resolve %s in %s: %s", email_id, item.account, exc)
            return False

        try:
            self._store.remove(email_id)
        except StorageError as exc:
            LOGGER.warning("Could not drop cached analysis for %s: %s", email_id, exc)
        return True

    def star(self, item: ActionItem) -> bool:
        """Star the message behind an analysis item."""
        if item.source != "from-analysis":
            return False
        provider = self._provider_for(item)
        if provider is None:
            return False
        try:
            provider.mark_starred(item.email_id or "")
        except ProviderError as exc:
            LOGGER.warning("Could not star %s in %s: %s", item.email_id, item.account, exc)
            return False
        return True

    def remind(
        self, item: ActionItem, drafter: ReminderDrafter | None = None
    ) -> CreateReminderResult:
        """Create a tracker entry for an analysis item that has none yet."""
        if item.source != "from-analysis":
            return CreateReminderResult(success=False, error="Only email items can be tracked")
        if item.tracker_state != "none":
            return CreateReminderResult(success=False, already_exists=True)
        if self._tracker is None:
            return CreateReminderResult(success=False, error="Tracker is disabled")

        title: str | None = None
        notes: str | None = None
        if drafter is not None:
            title, notes = self._draft(item, drafter)
        return self._tracker.create_from_action(
            item, self._settings.tracker.default_list, title=title, notes=notes
        )

    def close(self) -> None:
        """Release provider connections."""
        for provider in self._providers.values():
            provider.close()

    # Internal helpers ---------------------------------------------------------
    def _provider_for(self, item: ActionItem) -> MailProvider | None:
        provider = self._providers.get(item.account)
        if provider is None:
            LOGGER.warning("No mail provider configured for account %s", item.account)
        return provider

    def _complete_reminder(self, email_id: str) -> None:
        if self._tracker is None:
            return
        for list_settings in self._settings.tracker.lists:
            try:
                if self._tracker.complete_by_reference(email_id, list_settings.list):
                    return
            except TrackerError as exc:
                LOGGER.warning(
                    "Could not complete reminder for %s in '%s': %s",
                    email_id,
                    list_settings.list,
                    exc,
                )

    def _draft(
        self, item: ActionItem, drafter: ReminderDrafter
    ) -> tuple[str | None, str | None]:
        provider = self._provider_for(item)
        if provider is None:
            return None, None
        try:
            thread = provider.fetch_thread(item.email_id or "")
        except ProviderError as exc:
            LOGGER.warning("Could not load thread for %s: %s", item.email_id, exc)
            return None, None
        if thread is None:
            return None, None
        draft = drafter.draft(thread, item.summary)
        return draft.title, draft.notes or None


__all__ = ["TriagePipeline", "TriageResult"]
