"""Bounded LRU cache of classification results.

Keyed by (message id, subject). When full, the least recently used entry
is evicted. The cache belongs to one governor; with concurrency 1 there is
no locking.
"""

from __future__ import annotations

from collections import OrderedDict

from mailtriage.classifier.models import ClassificationResult
from mailtriage.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CACHE_CAPACITY = 1000

type CacheKey = tuple[str, str]


class ResultCache:
    """LRU mapping of cache key to ClassificationResult.

    Attributes:
        capacity: Maximum number of entries
        hits: Successful lookups
        misses: Failed lookups
    """

    def __init__(self, capacity: int = DEFAULT_CACHE_CAPACITY):
        if capacity < 1:
            raise ValueError(f"Cache capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self.hits = 0
        self.misses = 0
        self._entries: OrderedDict[CacheKey, ClassificationResult] = OrderedDict()

    def get(self, key: CacheKey) -> ClassificationResult | None:
        """Look up a result, marking it most recently used."""
        result = self._entries.get(key)
        if result is None:
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return result

    def put(self, key: CacheKey, result: ClassificationResult) -> None:
        """Store a result, evicting the least recently used entry if full."""
        self._entries[key] = result
        self._entries.move_to_end(key)
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("cache_evicted", message_id=evicted[0])

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
