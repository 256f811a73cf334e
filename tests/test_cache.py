"""Tests for the LRU result cache."""

import pytest

from mailtriage.classifier.models import ClassificationResult
from mailtriage.engine.cache import ResultCache


def _result(subject: str = "s") -> ClassificationResult:
    return ClassificationResult(subject=subject, summary="summary", priority="medium")


class TestResultCache:
    def test_get_miss_and_hit(self) -> None:
        cache = ResultCache(capacity=2)
        assert cache.get(("a", "s")) is None

        result = _result()
        cache.put(("a", "s"), result)

        assert cache.get(("a", "s")) is result
        assert cache.hits == 1
        assert cache.misses == 1

    def test_key_includes_subject(self) -> None:
        cache = ResultCache()
        cache.put(("a", "old subject"), _result("old subject"))
        assert cache.get(("a", "new subject")) is None

    def test_evicts_least_recently_used(self) -> None:
        cache = ResultCache(capacity=2)
        cache.put(("a", "s"), _result())
        cache.put(("b", "s"), _result())

        # Touch "a" so "b" becomes least recently used
        cache.get(("a", "s"))
        cache.put(("c", "s"), _result())

        assert len(cache) == 2
        assert ("a", "s") in cache
        assert ("b", "s") not in cache
        assert ("c", "s") in cache

    def test_put_existing_key_replaces(self) -> None:
        cache = ResultCache(capacity=2)
        cache.put(("a", "s"), _result("one"))
        cache.put(("a", "s"), _result("two"))

        assert len(cache) == 1
        assert cache.get(("a", "s")).subject == "two"

    def test_clear(self) -> None:
        cache = ResultCache()
        cache.put(("a", "s"), _result())
        cache.clear()
        assert len(cache) == 0

    def test_capacity_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            ResultCache(capacity=0)
