"""Batch processing engines.

This package provides what sits around the per-message classifier:
- Result cache keyed by message identity
- Throughput governor for rate-limited batch classification
- Calendar-event candidates for meeting emails
"""

from mailtriage.engine.batch import BatchSummary, ThroughputGovernor
from mailtriage.engine.cache import ResultCache
from mailtriage.engine.calendar import CalendarEventRequest, calendar_event_for

__all__ = [
    # Batch
    "BatchSummary",
    "ThroughputGovernor",
    # Cache
    "ResultCache",
    # Calendar
    "CalendarEventRequest",
    "calendar_event_for",
]
