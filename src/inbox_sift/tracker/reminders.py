"""Apple Reminders access through the ``remindctl`` command-line tool."""

from __future__ import annotations

import json
import logging
import re
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from inbox_sift.core.config import TrackerSettings
from inbox_sift.core.interfaces import TrackerClient, TrackerError
from inbox_sift.core.models import ActionItem, TrackerEntry, Urgency

LOGGER = logging.getLogger(__name__)

REFERENCE_PREFIX = "sift:email:"
_REFERENCE_PATTERN = re.compile(re.escape(REFERENCE_PREFIX) + r"(\S+)")
_PRIORITY_NAMES = {"none": 0, "high": 1, "medium": 5, "low": 9}

Runner = Callable[..., subprocess.CompletedProcess[str]]


def format_reference(item_id: str) -> str:
    """Return the back-reference token embedded in reminder notes."""
    return f"{REFERENCE_PREFIX}{item_id}"


def extract_reference(notes: str | None) -> str | None:
    """Return the email id referenced anywhere in ``notes``."""
    if not notes:
        return None
    match = _REFERENCE_PATTERN.search(notes)
    return match.group(1) if match else None


class _ReminderRecord(BaseModel):
    """Shape of one reminder in ``remindctl list --json`` output."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    title: str = ""
    notes: str | None = None
    is_completed: bool = Field(default=False, alias="isCompleted")
    list_name: str | None = Field(default=None, alias="listName")
    due_date: datetime | None = Field(default=None, alias="dueDate")
    priority: int | None = None

    @field_validator("priority", mode="before")
    @classmethod
    def _normalise_priority(cls, value: object) -> object:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _PRIORITY_NAMES:
                return _PRIORITY_NAMES[lowered]
        return value

    def to_entry(self, list_name: str) -> TrackerEntry:
        return TrackerEntry(
            id=self.id,
            title=self.title,
            notes=self.notes,
            is_completed=self.is_completed,
            list_name=self.list_name or list_name,
            due_date=self.due_date,
            priority=self.priority,
        )


@dataclass(slots=True, frozen=True)
class CreateReminderResult:
    """Outcome of creating a reminder from an action item."""

    success: bool
    already_exists: bool = False
    list_name: str | None = None
    error: str | None = None


class RemindctlClient(TrackerClient):
    """Tracker client shelling out to ``remindctl`` with argument lists."""

    def __init__(self, settings: TrackerSettings, runner: Runner = subprocess.run) -> None:
        """Store settings and the process runner."""
        self._settings = settings
        self._runner = runner

    # TrackerClient API --------------------------------------------------------
    def list_entries(self, list_name: str) -> list[TrackerEntry]:
        """Return every reminder in ``list_name``."""
        output = self._run(["list", list_name, "--json"])
        try:
            raw = json.loads(output or "[]")
        except json.JSONDecodeError as exc:
            raise TrackerError(f"Unreadable reminders for list '{list_name}'") from exc
        if not isinstance(raw, list):
            raise TrackerError(f"Unexpected reminders payload for list '{list_name}'")

        entries: list[TrackerEntry] = []
        for record in raw:
            try:
                entries.append(_ReminderRecord.model_validate(record).to_entry(list_name))
            except ValidationError as exc:
                LOGGER.warning("Skipping malformed reminder in '%s': %s", list_name, exc)
        LOGGER.debug("Loaded %d reminder(s) from '%s'", len(entries), list_name)
        return entries

    def create_entry(
        self,
        title: str,
        list_name: str,
        notes: str,
        *,
        due: str | None = None,
        priority: str | None = None,
    ) -> None:
        """Add a reminder to ``list_name``."""
        args = ["add", title, "--list", list_name, "--notes", notes]
        if due:
            args.extend(["--due", due])
        if priority:
            args.extend(["--priority", priority])
        self._run(args)
        LOGGER.info("Created reminder '%s' in '%s'", title, list_name)

    def complete_by_id(self, entry_id: str) -> None:
        """Complete a reminder by its tracker id."""
        self._run(["complete", entry_id])
        LOGGER.info("Completed reminder %s", entry_id)

    def complete_by_reference(self, item_id: str, list_name: str) -> bool:
        """Complete the reminder that back-references ``item_id``."""
        entry_id = self.find_by_reference(item_id, list_name)
        if entry_id is None:
            return False
        self.complete_by_id(entry_id)
        return True

    # Helpers -----------------------------------------------------------------
    def find_by_reference(self, item_id: str, list_name: str) -> str | None:
        """Return the id of the reminder whose notes reference ``item_id``."""
        for entry in self.list_entries(list_name):
            if extract_reference(entry.notes) == item_id:
                return entry.id
        return None

    def create_from_action(
        self,
        action: ActionItem,
        list_name: str,
        *,
        title: str | None = None,
        notes: str | None = None,
    ) -> CreateReminderResult:
        """Create a reminder for an email-derived action item."""
        if action.source != "from-analysis" or action.email_id is None:
            return CreateReminderResult(success=False, error="No email id")

        try:
            if self.find_by_reference(action.email_id, list_name) is not None:
                return CreateReminderResult(
                    success=False, already_exists=True, list_name=list_name
                )
            self.create_entry(
                title or action.summary,
                list_name,
                build_reminder_notes(
                    action, notes, url_template=self._settings.thread_url_template
                ),
                due=_due_for(action.deadline),
                priority=_priority_for(action.urgency),
            )
        except TrackerError as exc:
            LOGGER.warning("Could not create reminder for %s: %s", action.email_id, exc)
            return CreateReminderResult(success=False, list_name=list_name, error=str(exc))
        return CreateReminderResult(success=True, list_name=list_name)

    def _run(self, args: list[str]) -> str:
        command = [self._settings.command, *args]
        try:
            result = self._runner(
                command,
                capture_output=True,
                text=True,
                timeout=self._settings.timeout_seconds,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise TrackerError(f"{self._settings.command} {args[0]} failed: {exc}") from exc
        if result.returncode != 0:
            detail = (result.stderr or "").strip() or f"exit code {result.returncode}"
            raise TrackerError(f"{self._settings.command} {args[0]} failed: {detail}")
        return result.stdout


def build_reminder_notes(
    action: ActionItem, notes: str | None = None, *, url_template: str | None = None
) -> str:
    """Compose reminder notes ending with the back-reference token."""
    lines: list[str] = []
    if url_template and action.thread_id:
        lines.extend([url_template.format(thread_id=action.thread_id), ""])
    sender = f"From: {action.sender}" if action.sender else "From: (unknown)"
    if notes:
        lines.extend([notes, "", sender])
    else:
        lines.append(sender)
        if action.reasoning:
            lines.extend(["", action.reasoning])
    lines.extend(["", format_reference(action.email_id or "")])
    return "\n".join(lines)


def _due_for(deadline: str | None) -> str | None:
    if not deadline or deadline.upper() == "ASAP":
        return None
    return deadline


def _priority_for(urgency: Urgency) -> str | None:
    return "high" if urgency == "overdue" else None


__all__ = [
    "CreateReminderResult",
    "REFERENCE_PREFIX",
    "RemindctlClient",
    "build_reminder_notes",
    "extract_reference",
    "format_reference",
]
