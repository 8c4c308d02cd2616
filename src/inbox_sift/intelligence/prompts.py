"""Prompt templates for batch triage and reminder drafting."""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import date
from textwrap import dedent

from inbox_sift.core.models import MailThread

_MAX_THREAD_BODY = 1500


def build_batch_prompt(
    emails: Sequence[dict[str, object]],
    *,
    today: date,
    batch_number: int,
    total_batches: int,
) -> str:
    """Compose the JSON-only triage prompt for one batch of messages."""
    serialized = json.dumps(list(emails), indent=2)

    prompt = f"""
    You are analyzing emails to extract actionable todos. Today is {today.isoformat()}.

    For each email, determine:
    1. Does this require a response or action from the user? (yes/no)
    2. If yes, what is the specific task?
    3. Urgency based on TIME AWARENESS:
       - "overdue": a deadline mentioned in the email has passed, or it says
         "next week" but was sent more than 7 days ago
       - "this_week": an upcoming deadline this week, or an important sender
       - "when_you_can": no time pressure
    4. The PERSON (first and last name when available) the task relates to.
    5. Any DEADLINE mentioned, formatted as "Ddd Mmm DD" (e.g. "Fri Jan 24"),
       "ASAP" for urgent requests without a date, or null.

    Consider when the email was sent versus what it says: "Can we meet next
    week?" sent 7 days ago is OVERDUE.

    STARRED emails were marked by the user for a reason: assume they need
    action unless clearly already handled.

    ALWAYS SKIP low-value automated mail, even when starred: security alerts
    and sign-in notices, verification emails, password or 2FA messages,
    notifications from noreply@/no-reply@/notifications@ senders, receipts for
    completed transactions, newsletters and marketing.

    Only include emails that need a HUMAN RESPONSE or DECISION from the user.

    Emails to analyze (batch {batch_number}/{total_batches}):
    @EMAILS@

    Respond with ONLY valid JSON in this exact format:
    {{
      "todos": [
        {{
          "email_id": "<COPY the 'id' field of the input email EXACTLY>",
          "summary": "Brief action description (e.g. 'Reply about contract')",
          "urgency": "overdue" | "this_week" | "when_you_can",
          "reasoning": "Why this urgency (e.g. 'Asked for next week, 7 days ago')",
          "person": "First Last",
          "deadline": "Ddd Mmm DD" | "ASAP" | null
        }}
      ]
    }}
    Emails that need no action must be left out of "todos".
    """

    return dedent(prompt).strip().replace("@EMAILS@", serialized)


def build_reminder_prompt(thread: MailThread, summary: str) -> str:
    """Compose a prompt asking for a specific, actionable reminder."""
    messages = "\n\n".join(
        f"--- {message.sender} ({message.date}) ---\n{message.body[:_MAX_THREAD_BODY]}"
        for message in thread.messages
    )

    prompt = f"""
    Analyze this email thread and create a specific, actionable reminder.

    Subject: {thread.subject}

    Messages (most recent last):
    @MESSAGES@

    Current summary: "{summary}"

    Create a reminder that says EXACTLY what needs to be done.
    Bad: "Check email from John", "Reply to thread", "Follow up".
    Good: "Reply to John: confirm meeting for Thursday 2pm",
    "Send Sarah the Q4 budget spreadsheet she requested".

    Respond with ONLY valid JSON:
    {{
      "title": "Short action (max 60 chars, starts with a verb)",
      "notes": "Context: key details, deadlines, what they are waiting for"
    }}
    """

    return dedent(prompt).strip().replace("@MESSAGES@", messages)


__all__ = ["build_batch_prompt", "build_reminder_prompt"]
