"""Tests for the throughput governor.

Uses a mocked classifier and a near-zero scheduler interval.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from mailtriage.classifier.models import ClassificationResult, InboundMessage
from mailtriage.config_schema import AppConfig
from mailtriage.core.logging import get_correlation_id
from mailtriage.core.rate_limiter import IntervalScheduler
from mailtriage.engine.batch import ThroughputGovernor
from mailtriage.engine.cache import ResultCache

# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------


def _message(n: int, subject: str | None = None) -> InboundMessage:
    return InboundMessage(
        id=f"msg-{n}",
        subject=subject or f"Subject {n}",
        sender="bob@corp.com",
        body=f"Body {n}",
    )


def _result_for(message: InboundMessage, method: str = "ai") -> ClassificationResult:
    return ClassificationResult(
        subject=message.subject,
        summary=f"Summary of {message.id}",
        priority="medium",
        method=method,
    )


@pytest.fixture
def mock_classifier() -> MagicMock:
    """Classifier echoing each message into a result."""
    classifier = MagicMock()

    async def classify(message: InboundMessage) -> ClassificationResult:
        return _result_for(message)

    classifier.classify = AsyncMock(side_effect=classify)
    classifier.rule_based_result = MagicMock(
        side_effect=lambda message: _result_for(message, method="rules_fallback")
    )
    return classifier


@pytest.fixture
def governor(mock_classifier: MagicMock) -> ThroughputGovernor:
    return ThroughputGovernor(
        classifier=mock_classifier,
        scheduler=IntervalScheduler(interval_seconds=0.001),
        cache=ResultCache(capacity=100),
    )


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestProcessBatch:
    async def test_preserves_order_and_length(self, governor: ThroughputGovernor) -> None:
        messages = [_message(n) for n in range(5)]

        results = await governor.process_batch(messages)

        assert len(results) == 5
        assert [r.subject for r in results] == [m.subject for m in messages]

    async def test_empty_batch(self, governor: ThroughputGovernor) -> None:
        assert await governor.process_batch([]) == []
        assert governor.last_summary is not None
        assert governor.last_summary.total == 0

    async def test_progress_reported_per_message(self, governor: ThroughputGovernor) -> None:
        calls: list[tuple[int, int]] = []

        await governor.process_batch(
            [_message(1), _message(2), _message(3)],
            on_progress=lambda done, total: calls.append((done, total)),
        )

        assert calls == [(1, 3), (2, 3), (3, 3)]

    async def test_failure_isolated(
        self,
        governor: ThroughputGovernor,
        mock_classifier: MagicMock,
    ) -> None:
        async def classify(message: InboundMessage) -> ClassificationResult:
            if message.id == "msg-2":
                raise RuntimeError("boom")
            return _result_for(message)

        mock_classifier.classify.side_effect = classify
        messages = [_message(n) for n in range(1, 4)]

        results = await governor.process_batch(messages)

        assert len(results) == 3
        assert [r.method for r in results] == ["ai", "rules_fallback", "ai"]
        assert results[1].subject == "Subject 2"
        assert governor.last_summary.failed == 1

    async def test_cache_hit_skips_classifier_and_scheduler(
        self,
        governor: ThroughputGovernor,
        mock_classifier: MagicMock,
    ) -> None:
        message = _message(1)
        calls: list[tuple[int, int]] = []

        results = await governor.process_batch(
            [message, message],
            on_progress=lambda done, total: calls.append((done, total)),
        )

        assert results[0] == results[1]
        assert mock_classifier.classify.await_count == 1
        assert governor.scheduler.admitted == 1
        assert governor.last_summary.cache_hits == 1
        assert calls == [(1, 2), (2, 2)]

    async def test_cache_persists_across_batches(
        self,
        governor: ThroughputGovernor,
        mock_classifier: MagicMock,
    ) -> None:
        await governor.process_batch([_message(1)])
        await governor.process_batch([_message(1)])

        assert mock_classifier.classify.await_count == 1

    async def test_changed_subject_is_reclassified(
        self,
        governor: ThroughputGovernor,
        mock_classifier: MagicMock,
    ) -> None:
        await governor.process_batch([_message(1, subject="First")])
        await governor.process_batch([_message(1, subject="Second")])

        assert mock_classifier.classify.await_count == 2

    async def test_failed_item_is_reclassified_next_batch(
        self,
        governor: ThroughputGovernor,
        mock_classifier: MagicMock,
    ) -> None:
        mock_classifier.classify.side_effect = [RuntimeError("down"), _result_for(_message(1))]

        first = await governor.process_batch([_message(1)])
        second = await governor.process_batch([_message(1)])

        assert first[0].method == "rules_fallback"
        assert second[0].method == "ai"
        assert mock_classifier.classify.await_count == 2
        assert _message(1).cache_key in governor.cache

    async def test_fallback_result_not_cached(
        self,
        governor: ThroughputGovernor,
        mock_classifier: MagicMock,
    ) -> None:
        mock_classifier.classify.side_effect = [
            _result_for(_message(1), method="rules_fallback"),
            _result_for(_message(1)),
        ]

        first = await governor.process_batch([_message(1)])
        assert first[0].method == "rules_fallback"
        assert _message(1).cache_key not in governor.cache

        second = await governor.process_batch([_message(1)])
        assert second[0].method == "ai"
        assert mock_classifier.classify.await_count == 2

    async def test_skip_results_are_cached(
        self,
        governor: ThroughputGovernor,
        mock_classifier: MagicMock,
    ) -> None:
        mock_classifier.classify.side_effect = [_result_for(_message(1), method="rules_skip")]

        await governor.process_batch([_message(1)])
        results = await governor.process_batch([_message(1)])

        assert results[0].method == "rules_skip"
        assert mock_classifier.classify.await_count == 1

    async def test_summary_counts(
        self,
        governor: ThroughputGovernor,
    ) -> None:
        await governor.process_batch([_message(1), _message(2)])

        summary = governor.last_summary
        assert summary.total == 2
        assert summary.by_priority == {"medium": 2}
        assert summary.by_method == {"ai": 2}

    async def test_correlation_id_set_during_batch(
        self,
        governor: ThroughputGovernor,
        mock_classifier: MagicMock,
    ) -> None:
        seen: list[str | None] = []

        async def classify(message: InboundMessage) -> ClassificationResult:
            seen.append(get_correlation_id())
            return _result_for(message)

        mock_classifier.classify.side_effect = classify

        await governor.process_batch([_message(1)])

        assert seen[0] == governor.last_summary.batch_id
        assert get_correlation_id() is None


class TestFromConfig:
    def test_uses_governor_settings(self, sample_config: AppConfig) -> None:
        governor = ThroughputGovernor.from_config(sample_config, MagicMock())

        assert governor.scheduler.interval_seconds == 0.01
        assert governor.cache.capacity == 50

    def test_defaults(self) -> None:
        governor = ThroughputGovernor(classifier=MagicMock())

        assert governor.scheduler.interval_seconds == 2.1
        assert len(governor.cache) == 0
