"""External task tracker integration."""

from .reminders import (
    CreateReminderResult,
    RemindctlClient,
    build_reminder_notes,
    extract_reference,
    format_reference,
)

__all__ = [
    "CreateReminderResult",
    "RemindctlClient",
    "build_reminder_notes",
    "extract_reference",
    "format_reference",
]
