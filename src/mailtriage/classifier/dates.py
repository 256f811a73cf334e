"""Due date/time resolution.

Resolves an optional (date, time) pair for a message from, in order:

1. Exclusion rules (OTP, expiry windows, no-reply, statements, marketing)
   -> no due date at all
2. The model's dueDate string, parsed as an absolute date/time
3. A natural-language parse of the subject (forward-looking)
4. A natural-language parse of the body, only with actionable context

A candidate is accepted only if its date is not before today in the
configured timezone. A clock time is reported only when the source states
the hour; date-only candidates get time None.

Usage:
    from mailtriage.classifier.dates import DateResolver

    resolver = DateResolver(timezone="Asia/Kolkata")
    due = resolver.resolve(ai_due_date, subject, body, sender)
    due.date, due.time
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime
from datetime import time as dt_time
from typing import Any, NamedTuple
from zoneinfo import ZoneInfo

import parsedatetime
import regex
from dateutil import parser as date_parser

from mailtriage.classifier.rules import RulePolicy, combined_text, default_policy
from mailtriage.core.logging import get_logger

logger = get_logger(__name__)

REGEX_TIMEOUT = 1.0

# Separators allowed between a date phrase and a time phrase ("tomorrow at 3pm")
_JOIN_GAP_PATTERN = regex.compile(r"\s*(?:at|@|,)?\s*", regex.IGNORECASE)

# Matches that are only numbers (years, order ids, versions) are not dates
_NUMERIC_ONLY_PATTERN = regex.compile(r"^[\d.\-/]+$")

# An explicitly stated clock time: "3pm", "9:30", "noon", "at 4"
_CLOCK_MARKER_PATTERN = regex.compile(
    r"\d\s*[ap]\.?m\b\.?|\d:\d\d|\b(?:noon|midnight)\b|\bat\s+\d",
    regex.IGNORECASE,
)


class DueDate(NamedTuple):
    """Resolved due date. Both fields None when nothing was accepted."""

    date: date | None
    time: str | None
    source: str | None = None  # 'ai', 'subject', 'body'


NO_DUE_DATE = DueDate(None, None, None)


def _has_time(flag: Any) -> bool:
    """Whether a parsedatetime result flag states a clock time."""
    if hasattr(flag, "hasTime"):
        return bool(flag.hasTime)
    return int(flag) in (2, 3)


def _has_date(flag: Any) -> bool:
    if hasattr(flag, "hasDate"):
        return bool(flag.hasDate)
    return int(flag) in (1, 3)


def _is_numeric_only(matched: str) -> bool:
    return _NUMERIC_ONLY_PATTERN.fullmatch(matched.strip(), timeout=REGEX_TIMEOUT) is not None


def _states_clock_time(matched: str) -> bool:
    return _CLOCK_MARKER_PATTERN.search(matched, timeout=REGEX_TIMEOUT) is not None


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(*value[:6])


def _format_time(value: datetime) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


class DateResolver:
    """Resolves due dates from model output, subject and body.

    Attributes:
        tz: Timezone that defines "today"
        policy: Rule policy providing block and actionable-context rules
    """

    def __init__(
        self,
        timezone: str = "UTC",
        policy: RulePolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.tz = ZoneInfo(timezone)
        self.policy = policy or default_policy()
        self._clock = clock
        self._calendar = parsedatetime.Calendar(version=parsedatetime.VERSION_CONTEXT_STYLE)

    def now(self) -> datetime:
        """Current local time as a naive datetime in the configured timezone."""
        if self._clock is not None:
            current = self._clock()
        else:
            current = datetime.now(self.tz)
        if current.tzinfo is not None:
            current = current.astimezone(self.tz).replace(tzinfo=None)
        return current

    def resolve(
        self,
        ai_due_date: Any,
        subject: str,
        body: str,
        sender: str,
        now: datetime | None = None,
    ) -> DueDate:
        """Resolve the due date for a message.

        Args:
            ai_due_date: Model's dueDate value (None, "null" or a date string)
            subject: Subject line
            body: Normalized body text
            sender: Sender
            now: Override for the current time (naive, local)

        Returns:
            DueDate; never raises
        """
        current = now or self.now()
        try:
            return self._resolve(ai_due_date, subject or "", body or "", sender or "", current)
        except Exception as e:
            # Date parsing is best-effort: a parser fault means no due date
            logger.warning("due_date_resolution_failed", error_type=type(e).__name__, error=str(e))
            return NO_DUE_DATE

    def _resolve(
        self,
        ai_due_date: Any,
        subject: str,
        body: str,
        sender: str,
        now: datetime,
    ) -> DueDate:
        text = combined_text(subject, body, sender)

        blocked = self.policy.blocks_due_date(text)
        if blocked:
            logger.debug("due_date_blocked", rule=blocked.rule)
            return NO_DUE_DATE

        if isinstance(ai_due_date, str) and ai_due_date.strip().lower() not in ("", "null", "none"):
            due = self.parse_absolute(ai_due_date, now)
            if due.date:
                return due

        due = self.parse_natural(subject, now, source="subject")
        if due.date:
            return due

        if self.policy.has_actionable_context(text):
            due = self.parse_natural(body, now, source="body")
            if due.date:
                return due

        return NO_DUE_DATE

    def parse_absolute(self, value: str, now: datetime) -> DueDate:
        """Parse a model-supplied date string ("YYYY-MM-DD[ HH:mm]" and similar).

        Missing components default to today at midnight; a midnight result
        is treated as date-only.
        """
        default = datetime.combine(now.date(), dt_time.min)
        try:
            parsed = date_parser.parse(value.strip(), default=default)
        except (ValueError, OverflowError) as e:
            logger.debug("ai_due_date_unparseable", value=value[:40], error=str(e))
            return NO_DUE_DATE

        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(self.tz).replace(tzinfo=None)

        if parsed.date() < now.date():
            logger.debug("ai_due_date_in_past", due_date=parsed.date().isoformat())
            return NO_DUE_DATE

        has_clock = parsed.hour != 0 or parsed.minute != 0
        return DueDate(parsed.date(), _format_time(parsed) if has_clock else None, "ai")

    def parse_natural(self, text: str, now: datetime, source: str) -> DueDate:
        """Extract the first natural-language date/time expression in text.

        Relative expressions resolve forward ("friday" is the next Friday).
        Bare numbers are skipped, and a time is kept only when the text
        states one ("3pm", "15:30", "noon", "at 4").
        """
        if not text or not text.strip():
            return NO_DUE_DATE

        matches = [
            match
            for match in self._calendar.nlp(text, sourceTime=now.timetuple()) or ()
            if not _is_numeric_only(match[4])
        ]
        if not matches:
            return NO_DUE_DATE

        value, _flag, _start, end, matched = matches[0]
        value = _to_datetime(value)
        certain_time = _states_clock_time(matched)

        # "tomorrow" followed by "3pm": merge into one instant
        if not certain_time and len(matches) > 1:
            _next_value, next_flag, next_start, _next_end, next_text = matches[1]
            gap = text[end:next_start]
            if (
                _states_clock_time(next_text)
                and not _has_date(next_flag)
                and _JOIN_GAP_PATTERN.fullmatch(gap, timeout=REGEX_TIMEOUT)
            ):
                joined, joined_flag = self._calendar.parseDT(
                    f"{matched} {next_text}", sourceTime=now.timetuple()
                )
                if _has_time(joined_flag):
                    value = _to_datetime(joined)
                    certain_time = True

        if value.date() < now.date():
            logger.debug("natural_due_date_in_past", source=source, due_date=value.date().isoformat())
            return NO_DUE_DATE

        return DueDate(value.date(), _format_time(value) if certain_time else None, source)
