"""Prompt templates for model classification.

The system instruction is fixed; the user prompt is assembled per message
from the subject, sender and normalized body, and asks for a JSON object
with summary, priority, action and dueDate.

Usage:
    from mailtriage.classifier.prompts import SYSTEM_PROMPT, build_user_prompt

    prompt = build_user_prompt(subject="Team sync", sender="alice@corp.com", content="...")
"""

from __future__ import annotations

SYSTEM_PROMPT = (
    "You are an email classifier. Analyze emails objectively and return valid JSON only. "
    "Default to MEDIUM priority unless clearly urgent or clearly unimportant."
)

# Fields the model is asked for; anything else in its answer is ignored
RESPONSE_FIELDS = ("summary", "priority", "action", "dueDate")

_USER_PROMPT_TEMPLATE = """\
Analyze this email and extract key information.

Subject: {subject}
From: {sender}
Content: {content}

Respond with JSON only:
{{
  "summary": "2-3 sentence summary of the email's purpose and key points",
  "priority": "high|medium|low",
  "action": "specific action needed from recipient, or null",
  "dueDate": "YYYY-MM-DD HH:mm if there's a specific time, or YYYY-MM-DD if only date, otherwise null"
}}

Priority guidelines:
- HIGH: Urgent deadlines (today/tomorrow), critical decisions needed, time-sensitive meetings
- MEDIUM: Standard work tasks, scheduled meetings, requests needing response within a week
- LOW: FYI updates, marketing, automated notifications, OTPs, receipts, newsletters

Due date guidelines:
- Set ONLY for: meetings, appointments, project deadlines, payment due dates
- DO NOT set for: OTP expiry, promotional offer ends, newsletter dates, transaction timestamps
{today_line}"""


def build_user_prompt(
    subject: str,
    sender: str,
    content: str,
    today: str | None = None,
) -> str:
    """Assemble the per-message user prompt.

    Args:
        subject: Email subject line
        sender: Sender as received
        content: Normalized body text (already bounded)
        today: ISO date of the classification day, so relative dates
            ("tomorrow") resolve correctly

    Returns:
        Complete user prompt string
    """
    today_line = f"\nToday's date is {today}." if today else ""
    return _USER_PROMPT_TEMPLATE.format(
        subject=subject.strip() or "(no subject)",
        sender=sender.strip() or "(unknown sender)",
        content=content or "(empty body)",
        today_line=today_line,
    )
