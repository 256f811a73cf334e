"""Throughput governor for batch classification.

Runs messages through the classifier one at a time, no more often than
the scheduler interval, with a result cache in front.

Per message:
1. Cache hit on (id, subject) -> reuse the result, no scheduler admission
2. Otherwise classify through the interval scheduler
3. An unexpected failure yields the rule-based result for that message
4. Cache successful results ('ai', 'rules_skip') and report progress

Fallback results are not cached, so a message that hit a provider outage
is classified again in a later batch.

Each batch generates a UUID4 batch_id for log correlation.

Usage:
    from mailtriage.engine.batch import ThroughputGovernor

    governor = ThroughputGovernor.from_config(config, classifier)
    results = await governor.process_batch(messages, on_progress=print_progress)
"""

from __future__ import annotations

import time
import uuid
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from mailtriage.core.logging import get_logger, set_correlation_id
from mailtriage.core.rate_limiter import IntervalScheduler
from mailtriage.engine.cache import ResultCache

if TYPE_CHECKING:
    from mailtriage.classifier.models import ClassificationResult, InboundMessage
    from mailtriage.classifier.orchestrator import EmailClassifier
    from mailtriage.config_schema import AppConfig

logger = get_logger(__name__)

# Result methods written to the cache
CACHEABLE_METHODS = frozenset({"ai", "rules_skip"})

type ProgressCallback = Callable[[int, int], None]


@dataclass
class BatchSummary:
    """Counts for one processed batch."""

    batch_id: str
    total: int = 0
    cache_hits: int = 0
    failed: int = 0
    duration_ms: int = 0
    by_priority: Counter[str] = field(default_factory=Counter)
    by_method: Counter[str] = field(default_factory=Counter)


class ThroughputGovernor:
    """Rate-limited, cached batch runner around an EmailClassifier.

    Attributes:
        classifier: Per-message classifier
        scheduler: Interval scheduler owned by this governor
        cache: Result cache owned by this governor
        last_summary: Summary of the most recent batch, if any
    """

    def __init__(
        self,
        classifier: EmailClassifier,
        scheduler: IntervalScheduler | None = None,
        cache: ResultCache | None = None,
    ):
        self.classifier = classifier
        self.scheduler = scheduler or IntervalScheduler()
        self.cache = cache if cache is not None else ResultCache()
        self.last_summary: BatchSummary | None = None

    @classmethod
    def from_config(cls, config: AppConfig, classifier: EmailClassifier) -> ThroughputGovernor:
        return cls(
            classifier=classifier,
            scheduler=IntervalScheduler(interval_seconds=config.governor.interval_seconds),
            cache=ResultCache(capacity=config.governor.cache_capacity),
        )

    async def process_batch(
        self,
        messages: Sequence[InboundMessage],
        on_progress: ProgressCallback | None = None,
    ) -> list[ClassificationResult]:
        """Classify a batch, preserving input order.

        Args:
            messages: Messages to classify
            on_progress: Called with (done, total) after each message

        Returns:
            One result per input message, in input order
        """
        batch_id = str(uuid.uuid4())
        set_correlation_id(batch_id)
        start_time = time.monotonic()

        total = len(messages)
        summary = BatchSummary(batch_id=batch_id, total=total)
        results: list[ClassificationResult] = []

        logger.info("batch_start", total=total, cached_entries=len(self.cache))

        try:
            for done, message in enumerate(messages, start=1):
                result = self.cache.get(message.cache_key)
                if result is not None:
                    summary.cache_hits += 1
                    logger.debug("batch_cache_hit", message_id=message.id)
                else:
                    try:
                        result = await self.scheduler.run(self.classifier.classify, message)
                    except Exception as e:
                        logger.error(
                            "batch_item_failed",
                            message_id=message.id,
                            error_type=type(e).__name__,
                            error=str(e),
                        )
                        summary.failed += 1
                        result = self.classifier.rule_based_result(message)
                    if result.method in CACHEABLE_METHODS:
                        self.cache.put(message.cache_key, result)

                results.append(result)
                summary.by_priority[result.priority] += 1
                summary.by_method[result.method] += 1

                if on_progress is not None:
                    on_progress(done, total)
        finally:
            summary.duration_ms = int((time.monotonic() - start_time) * 1000)
            self.last_summary = summary

            logger.info(
                "batch_complete",
                duration_ms=summary.duration_ms,
                total=summary.total,
                processed=len(results),
                cache_hits=summary.cache_hits,
                failed=summary.failed,
                by_priority=dict(summary.by_priority),
                by_method=dict(summary.by_method),
            )

            set_correlation_id(None)

        return results
