"""Tests for the end-to-end triage pipeline."""

from __future__ import annotations

import json
import re
from collections.abc import Iterator
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from inbox_sift.core.config import AppSettings, StorageSettings
from inbox_sift.core.interfaces import ProviderError, TrackerError
from inbox_sift.core.models import (
    ActionItem,
    MailItem,
    MailThread,
    ThreadMessage,
    TrackerEntry,
)
from inbox_sift.intelligence.analyzer import BatchAnalyzer
from inbox_sift.intelligence.fingerprint import fingerprint_item
from inbox_sift.intelligence.llm import ReasoningBackend
from inbox_sift.intelligence.reminder_drafter import ReminderDrafter
from inbox_sift.storage import SqliteAnalysisStore
from inbox_sift.tracker import CreateReminderResult
from inbox_sift.triage import TriagePipeline

TODAY = datetime(2025, 1, 20, 12, 0, tzinfo=timezone.utc)
_ID_PATTERN = re.compile(r'"id": "([^"]+)"')


class ScriptedLLM:
    """Mark every message whose id starts with ``todo`` as actionable."""

    def __init__(self) -> None:
        self.calls = 0

    @property
    def provider_id(self) -> str:
        return "scripted"

    def generate(self, prompt: str) -> str:
        self.calls += 1
        if "create a specific, actionable reminder" in prompt:
            return '{"title": "Send Bob the signed contract", "notes": "Due Friday"}'
        todos = [
            {
                "email_id": email_id,
                "summary": f"Handle {email_id}",
                "urgency": "this_week",
                "reasoning": "Needs a reply",
                "person": "Bob",
                "deadline": None,
            }
            for email_id in _ID_PATTERN.findall(prompt)
            if email_id.startswith("todo")
        ]
        return json.dumps({"todos": todos})


class StubProvider:
    """In-memory mail provider recording commands."""

    def __init__(
        self,
        account: str,
        starred: list[MailItem] | None = None,
        unread: list[MailItem] | None = None,
    ) -> None:
        self.account = account
        self.starred = starred or []
        self.unread = unread or []
        self.resolved: list[str] = []
        self.starred_ids: list[str] = []
        self.fail = False
        self.closed = False

    def list_starred(self, limit: int) -> list[MailItem]:
        if self.fail:
            raise ProviderError("mailbox offline")
        return self.starred[:limit]

    def list_unread(self, limit: int) -> list[MailItem]:
        return self.unread[:limit]

    def fetch_thread(self, item_id: str) -> MailThread | None:
        return MailThread(
            id=f"thread-{item_id}",
            subject="Contract",
            messages=(ThreadMessage("Bob", "Mon", "Please sign the contract"),),
        )

    def mark_resolved(self, item_id: str) -> None:
        if self.fail:
            raise ProviderError("mailbox offline")
        self.resolved.append(item_id)

    def mark_starred(self, item_id: str) -> None:
        if self.fail:
            raise ProviderError("mailbox offline")
        self.starred_ids.append(item_id)

    def close(self) -> None:
        self.closed = True


class StubTracker:
    """Tracker stand-in with scripted entries and recorded commands."""

    def __init__(self, entries: list[TrackerEntry] | None = None) -> None:
        self.entries = entries or []
        self.completed_ids: list[str] = []
        self.completed_refs: list[tuple[str, str]] = []
        self.created: list[dict[str, Any]] = []
        self.fail = False

    def list_entries(self, list_name: str) -> list[TrackerEntry]:
        return [entry for entry in self.entries if entry.list_name == list_name]

    def complete_by_id(self, entry_id: str) -> None:
        if self.fail:
            raise TrackerError("remindctl failed")
        self.completed_ids.append(entry_id)

    def complete_by_reference(self, item_id: str, list_name: str) -> bool:
        if self.fail:
            raise TrackerError("remindctl failed")
        self.completed_refs.append((item_id, list_name))
        return True

    def create_from_action(
        self,
        action: ActionItem,
        list_name: str,
        *,
        title: str | None = None,
        notes: str | None = None,
    ) -> CreateReminderResult:
        self.created.append(
            {"id": action.email_id, "list": list_name, "title": title, "notes": notes}
        )
        return CreateReminderResult(success=True, list_name=list_name)


def _mail(
    item_id: str, *, date: datetime | None = None, unread: bool = False
) -> MailItem:
    return MailItem(
        id=item_id,
        thread_id=f"thread-{item_id}",
        account="work",
        subject=f"Subject {item_id}",
        sender="Bob",
        sender_email="bob@example.com",
        date=date or datetime(2025, 1, 19, 9, 0, tzinfo=timezone.utc),
        snippet="Please reply",
        is_starred=not unread,
        is_unread=unread,
    )


def _settings() -> AppSettings:
    return AppSettings.model_validate(
        {
            "accounts": [{"name": "work", "email": "me@work.test", "group": "Work"}],
            "tracker": {"lists": [{"list": "Work", "group": "Work"}]},
        }
    )


@pytest.fixture()
def store(tmp_path: Path) -> Iterator[SqliteAnalysisStore]:
    repository = SqliteAnalysisStore(StorageSettings(db_path=tmp_path / "sift.db"))
    yield repository
    repository.close()


def _pipeline(
    store: SqliteAnalysisStore,
    provider: StubProvider,
    tracker: StubTracker | None = None,
    llm: ScriptedLLM | None = None,
) -> TriagePipeline:
    analyzer = BatchAnalyzer(store, ReasoningBackend(llm or ScriptedLLM()))
    return TriagePipeline(_settings(), [provider], store, analyzer, tracker)  # type: ignore[arg-type]


def test_fetch_merges_starred_and_unread_without_duplicates(
    store: SqliteAnalysisStore,
) -> None:
    shared = _mail("todo-1")
    provider = StubProvider(
        "work",
        starred=[shared, _mail("todo-2")],
        unread=[shared, _mail("todo-3", unread=True)],
    )

    (group,) = _pipeline(store, provider).fetch()

    assert group.account == "work"
    assert group.group == "Work"
    assert [item.id for item in group.items] == ["todo-1", "todo-2", "todo-3"]


def test_run_reconciles_analysis_with_tracker(store: SqliteAnalysisStore) -> None:
    provider = StubProvider(
        "work",
        starred=[
            _mail("todo-1"),
            _mail("fyi-2"),
            _mail("todo-old", date=datetime(2024, 11, 1, tzinfo=timezone.utc)),
        ],
    )
    tracker = StubTracker(
        [TrackerEntry("r1", "Reply", "sift:email:todo-1", False, "Work")]
    )
    llm = ScriptedLLM()

    result = _pipeline(store, provider, tracker, llm).run(today=TODAY)

    assert [item.email_id for item in result.active] == ["todo-1"]
    assert result.active[0].tracker_state == "pending"
    assert [item.email_id for item in result.backlog] == ["todo-old"]
    assert result.report.backend_calls == 1

    again = _pipeline(store, provider, tracker, llm).run(today=TODAY)
    assert again.report.backend_calls == 0
    assert llm.calls == 1


def test_unreachable_account_contributes_no_items(store: SqliteAnalysisStore) -> None:
    healthy = StubProvider("work", starred=[_mail("todo-1")])
    offline = StubProvider("home", starred=[_mail("todo-9")])
    offline.fail = True
    analyzer = BatchAnalyzer(store, ReasoningBackend(ScriptedLLM()))
    pipeline = TriagePipeline(
        _settings(), [healthy, offline], store, analyzer  # type: ignore[list-item]
    )

    result = pipeline.run(today=TODAY)

    assert [item.email_id for item in result.active] == ["todo-1"]
    assert result.backlog == []
    groups = {group.account: list(group.items) for group in pipeline.fetch()}
    assert groups["home"] == []


def _analysed(
    store: SqliteAnalysisStore,
    provider: StubProvider,
    tracker: StubTracker | None = None,
) -> ActionItem:
    result = _pipeline(store, provider, tracker).run(today=TODAY)
    return result.active[0]


def test_mark_done_completes_reminder_resolves_and_forgets(
    store: SqliteAnalysisStore,
) -> None:
    mail = _mail("todo-1")
    provider = StubProvider("work", starred=[mail])
    tracker = StubTracker(
        [TrackerEntry("r1", "Reply", "sift:email:todo-1", False, "Work")]
    )
    item = _analysed(store, provider, tracker)

    assert _pipeline(store, provider, tracker).mark_done(item) is True

    assert tracker.completed_refs == [("todo-1", "Work")]
    assert provider.resolved == ["todo-1"]
    assert store.lookup("todo-1", fingerprint_item(mail)) is None


def test_mark_done_keeps_cache_when_provider_fails(store: SqliteAnalysisStore) -> None:
    mail = _mail("todo-1")
    provider = StubProvider("work", starred=[mail])
    item = _analysed(store, provider)
    provider.fail = True

    assert _pipeline(store, provider).mark_done(item) is False
    assert store.lookup("todo-1", fingerprint_item(mail)) is not None


def test_mark_done_survives_tracker_failure(store: SqliteAnalysisStore) -> None:
    provider = StubProvider("work", starred=[_mail("todo-1")])
    tracker = StubTracker()
    item = replace(_analysed(store, provider, tracker), tracker_state="pending")
    tracker.fail = True

    assert _pipeline(store, provider, tracker).mark_done(item) is True
    assert provider.resolved == ["todo-1"]


def test_mark_done_untracked_item_skips_tracker(store: SqliteAnalysisStore) -> None:
    provider = StubProvider("work", starred=[_mail("todo-1")])
    tracker = StubTracker()
    item = _analysed(store, provider, tracker)

    assert _pipeline(store, provider, tracker).mark_done(item) is True
    assert tracker.completed_refs == []


def test_mark_done_tracker_item_completes_by_id(store: SqliteAnalysisStore) -> None:
    provider = StubProvider("work")
    tracker = StubTracker(
        [TrackerEntry("r5", "Renew passport", None, False, "Work", priority=1)]
    )
    result = _pipeline(store, provider, tracker).run(today=TODAY)
    (item,) = result.active

    assert _pipeline(store, provider, tracker).mark_done(item) is True
    assert tracker.completed_ids == ["r5"]
    assert provider.resolved == []

    tracker.fail = True
    assert _pipeline(store, provider, tracker).mark_done(item) is False


def test_star_only_applies_to_email_items(store: SqliteAnalysisStore) -> None:
    provider = StubProvider("work", unread=[_mail("todo-1", unread=True)])
    tracker = StubTracker(
        [TrackerEntry("r5", "Renew passport", None, False, "Work", priority=1)]
    )
    result = _pipeline(store, provider, tracker).run(today=TODAY)
    by_source = {item.source: item for item in result.active}
    pipeline = _pipeline(store, provider, tracker)

    assert pipeline.star(by_source["from-analysis"]) is True
    assert provider.starred_ids == ["todo-1"]
    assert pipeline.star(by_source["from-tracker"]) is False

    provider.fail = True
    assert pipeline.star(by_source["from-analysis"]) is False


def test_remind_drafts_title_from_thread(store: SqliteAnalysisStore) -> None:
    provider = StubProvider("work", starred=[_mail("todo-1")])
    tracker = StubTracker()
    item = _analysed(store, provider, tracker)
    drafter = ReminderDrafter(ReasoningBackend(ScriptedLLM()))

    outcome = _pipeline(store, provider, tracker).remind(item, drafter)

    assert outcome.success is True
    assert tracker.created == [
        {
            "id": "todo-1",
            "list": "Work",
            "title": "Send Bob the signed contract",
            "notes": "Due Friday",
        }
    ]


def test_remind_without_drafter_uses_summary(store: SqliteAnalysisStore) -> None:
    provider = StubProvider("work", starred=[_mail("todo-1")])
    tracker = StubTracker()
    item = _analysed(store, provider, tracker)

    _pipeline(store, provider, tracker).remind(item)

    assert tracker.created[0]["title"] is None


def test_remind_refuses_tracked_and_tracker_items(store: SqliteAnalysisStore) -> None:
    provider = StubProvider("work", starred=[_mail("todo-1")])
    tracker = StubTracker()
    item = _analysed(store, provider, tracker)
    pipeline = _pipeline(store, provider, tracker)

    tracked = pipeline.remind(replace(item, tracker_state="pending"))
    assert tracked.already_exists is True

    tracker_item = replace(
        item, source="from-tracker", id="reminder-r1", email_id=None, tracker_id="r1"
    )
    assert pipeline.remind(tracker_item).success is False
    assert tracker.created == []


def test_remind_without_tracker(store: SqliteAnalysisStore) -> None:
    provider = StubProvider("work", starred=[_mail("todo-1")])
    item = _analysed(store, provider)

    outcome = _pipeline(store, provider).remind(item)

    assert outcome.success is False
    assert outcome.error == "Tracker is disabled"


def test_context_manager_closes_providers(store: SqliteAnalysisStore) -> None:
    provider = StubProvider("work")

    with _pipeline(store, provider):
        pass

    assert provider.closed is True
