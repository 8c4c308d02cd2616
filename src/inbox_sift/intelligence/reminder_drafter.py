"""Draft specific reminder titles from an email thread."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pydantic import BaseModel, Field

from inbox_sift.core.models import MailThread

from .llm import LLMError, ReasoningBackend
from .prompts import build_reminder_prompt

LOGGER = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 60


class _ReminderPayload(BaseModel):
    title: str = Field(min_length=1)
    notes: str = ""


@dataclass(slots=True, frozen=True)
class ReminderDraft:
    """Title and notes for a tracker entry."""

    title: str
    notes: str


class ReminderDrafter:
    """Turn a thread into a verb-first reminder, falling back to the summary."""

    def __init__(self, backend: ReasoningBackend) -> None:
        """Store the backend used for drafting."""
        self._backend = backend

    def draft(self, thread: MailThread, summary: str) -> ReminderDraft:
        """Return a reminder draft for ``thread``."""
        prompt = build_reminder_prompt(thread, summary)
        try:
            payload = self._backend.invoke(prompt, _ReminderPayload)
        except LLMError as exc:
            LOGGER.warning("Reminder drafting failed for thread %s: %s", thread.id, exc)
            return ReminderDraft(title=summary, notes="")
        return ReminderDraft(
            title=payload.title.strip()[:MAX_TITLE_LENGTH],
            notes=payload.notes.strip(),
        )


__all__ = ["MAX_TITLE_LENGTH", "ReminderDraft", "ReminderDrafter"]
