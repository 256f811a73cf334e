"""Tests for due date resolution.

All tests pin "now" to Monday 2025-03-10 09:00 via the resolver fixture.
"""

from datetime import date, datetime
from unittest.mock import patch

from mailtriage.classifier.dates import NO_DUE_DATE, DateResolver

NOW = datetime(2025, 3, 10, 9, 0)


class TestExclusions:
    def test_otp_message_has_no_due_date(self, resolver: DateResolver) -> None:
        due = resolver.resolve(
            "2025-03-11",
            "Your OTP is 482913",
            "Valid for 10 minutes. Do not share.",
            "noreply@bank.com",
        )
        assert due == NO_DUE_DATE

    def test_no_reply_sender_blocks_model_date(self, resolver: DateResolver) -> None:
        due = resolver.resolve("2025-03-12", "Meeting tomorrow", "", "no-reply@tool.com")
        assert due.date is None
        assert due.time is None

    def test_offer_end_blocked(self, resolver: DateResolver) -> None:
        due = resolver.resolve(None, "Sale ends friday", "Huge deals", "shop@store.com")
        assert due.date is None


class TestModelDueDate:
    def test_date_and_time(self, resolver: DateResolver) -> None:
        due = resolver.resolve("2025-03-11 15:00", "Team sync", "", "alice@company.com")
        assert due.date == date(2025, 3, 11)
        assert due.time == "15:00"
        assert due.source == "ai"

    def test_date_only_has_no_time(self, resolver: DateResolver) -> None:
        due = resolver.resolve("2025-03-14", "Report", "", "alice@company.com")
        assert due.date == date(2025, 3, 14)
        assert due.time is None

    def test_today_is_accepted(self, resolver: DateResolver) -> None:
        due = resolver.resolve("2025-03-10 17:30", "Standup", "", "alice@company.com")
        assert due.date == date(2025, 3, 10)
        assert due.time == "17:30"

    def test_past_date_rejected(self, resolver: DateResolver) -> None:
        due = resolver.resolve("2025-03-01", "Old thing", "", "alice@company.com")
        assert due.date is None

    def test_unparseable_falls_through_to_subject(self, resolver: DateResolver) -> None:
        due = resolver.resolve("whenever works", "Plan review", "", "alice@company.com")
        assert due.date is None

    def test_null_strings_ignored(self, resolver: DateResolver) -> None:
        for value in ("null", "None", "", None):
            assert resolver.resolve(value, "Hello", "", "a@b.com").date is None

    def test_timezone_aware_value_converted(self) -> None:
        resolver = DateResolver(timezone="Asia/Kolkata", clock=lambda: NOW)
        due = resolver.resolve("2025-03-11T09:30:00+00:00", "Sync", "", "alice@company.com")
        assert due.date == date(2025, 3, 11)
        assert due.time == "15:00"


class TestNaturalLanguage:
    def test_subject_tomorrow_with_time(self, resolver: DateResolver) -> None:
        due = resolver.resolve(None, "Team sync tomorrow 3pm", "", "alice@company.com")
        assert due.date == date(2025, 3, 11)
        assert due.time == "15:00"
        assert due.source == "subject"

    def test_subject_weekday_date_only(self, resolver: DateResolver) -> None:
        due = resolver.resolve(None, "Report due Friday", "", "alice@company.com")
        assert due.date == date(2025, 3, 14)
        assert due.time is None

    def test_body_needs_actionable_context(self, resolver: DateResolver) -> None:
        due = resolver.resolve(None, "Hello", "We had fun, see you tomorrow", "a@b.com")
        assert due.date is None

    def test_body_with_actionable_context(self, resolver: DateResolver) -> None:
        due = resolver.resolve(None, "Hello", "Please submit the form by tomorrow", "a@b.com")
        assert due.date == date(2025, 3, 11)
        assert due.source == "body"

    def test_subject_preferred_over_body(self, resolver: DateResolver) -> None:
        due = resolver.resolve(None, "Review tomorrow", "Deadline is Friday", "a@b.com")
        assert due.date == date(2025, 3, 11)
        assert due.source == "subject"

    def test_no_date_expression(self, resolver: DateResolver) -> None:
        assert resolver.resolve(None, "Hello", "How are you", "a@b.com") == NO_DUE_DATE

    def test_parse_natural_empty(self, resolver: DateResolver) -> None:
        assert resolver.parse_natural("   ", NOW, source="subject") == NO_DUE_DATE


class TestBareNumbers:
    """Numbers that are not dates must not produce a due date or time."""

    def test_year_in_subject(self, resolver: DateResolver) -> None:
        assert resolver.resolve(None, "Re: Q3 2025 budget", "", "alice.com") == NO_DUE_DATE

    def test_invoice_number(self, resolver: DateResolver) -> None:
        assert resolver.resolve(None, "Invoice 2024-001", "", "billing.com") == NO_DUE_DATE

    def test_order_number(self, resolver: DateResolver) -> None:
        assert resolver.resolve(None, "Order 12345 shipped", "", "shop.com") == NO_DUE_DATE

    def test_version_strings(self, resolver: DateResolver) -> None:
        assert resolver.resolve(None, "Build 1.2.3 ready", "", "ci.com") == NO_DUE_DATE
        assert resolver.resolve(None, "Version 2.0 released", "", "ci.com") == NO_DUE_DATE

    def test_meeting_with_year_gets_no_event_time(self, resolver: DateResolver) -> None:
        due = resolver.resolve(None, "2025 planning meeting", "", "alice.com")
        assert due.time is None


class TestClockMarkers:
    def test_explicit_clock_time_kept(self, resolver: DateResolver) -> None:
        due = resolver.resolve(None, "Call tomorrow at 10:30", "", "alice.com")
        assert due.date == date(2025, 3, 11)
        assert due.time == "10:30"

    def test_weekday_without_clock_has_no_time(self, resolver: DateResolver) -> None:
        due = resolver.resolve(None, "Sync on Wednesday", "", "alice.com")
        assert due.date == date(2025, 3, 12)
        assert due.time is None


class TestNeverRaises:
    def test_internal_error_yields_no_due_date(self, resolver: DateResolver) -> None:
        with patch.object(DateResolver, "parse_natural", side_effect=RuntimeError("boom")):
            due = resolver.resolve(None, "Meeting tomorrow", "", "a@b.com")
        assert due == NO_DUE_DATE

    def test_explicit_now_overrides_clock(self, resolver: DateResolver) -> None:
        later = datetime(2025, 3, 20, 9, 0)
        due = resolver.resolve("2025-03-14", "Report", "", "a@b.com", now=later)
        assert due.date is None


class TestClock:
    def test_aware_clock_converted_to_local(self) -> None:
        from zoneinfo import ZoneInfo

        resolver = DateResolver(
            timezone="Asia/Kolkata",
            clock=lambda: datetime(2025, 3, 10, 20, 0, tzinfo=ZoneInfo("UTC")),
        )
        # 20:00 UTC is already the 11th in India
        assert resolver.now() == datetime(2025, 3, 11, 1, 30)
