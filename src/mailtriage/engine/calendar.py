"""Calendar-event candidates for meeting emails.

A classified message becomes a one-hour calendar event request when it
reads like a meeting and has both a due date and a due time. Creating the
event is left to the caller's calendar integration.

Usage:
    from mailtriage.engine.calendar import calendar_event_for

    event = calendar_event_for(message, result, timezone="Asia/Kolkata")
    if event:
        calendar_api.insert(event.to_dict())
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any

from mailtriage.classifier.models import ClassificationResult, InboundMessage
from mailtriage.classifier.rules import RulePolicy, default_policy
from mailtriage.core.logging import get_logger

logger = get_logger(__name__)

EVENT_DURATION = timedelta(hours=1)


@dataclass(frozen=True, slots=True)
class CalendarEventRequest:
    """Event to create for a meeting email.

    Attributes:
        summary: Event title (the email subject)
        start: Naive local start time
        end: Naive local end time
        timezone: IANA timezone the times are expressed in
        description: Classification summary
    """

    summary: str
    start: datetime
    end: datetime
    timezone: str
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Calendar API event body (start/end with dateTime and timeZone)."""
        return {
            "summary": self.summary,
            "description": self.description,
            "start": {"dateTime": self.start.isoformat(), "timeZone": self.timezone},
            "end": {"dateTime": self.end.isoformat(), "timeZone": self.timezone},
        }


def calendar_event_for(
    message: InboundMessage,
    result: ClassificationResult,
    timezone: str,
    policy: RulePolicy | None = None,
) -> CalendarEventRequest | None:
    """Build an event request, or None when the message doesn't qualify.

    Qualifies only when the subject or body names a meeting and the result
    carries both a due date and a due time.
    """
    if result.due_date is None or result.due_time is None:
        return None

    policy = policy or default_policy()
    if not policy.is_meeting_email(message.subject, message.body):
        return None

    try:
        hour, minute = (int(part) for part in result.due_time.split(":", 1))
        start = datetime.combine(result.due_date, time(hour, minute))
    except ValueError:
        logger.warning("calendar_event_bad_time", message_id=message.id, due_time=result.due_time)
        return None

    return CalendarEventRequest(
        summary=message.subject or "(no subject)",
        start=start,
        end=start + EVENT_DURATION,
        timezone=timezone,
        description=result.summary,
    )
