"""
Process-wide cache of the computed subject ordering.

Entries are keyed by the content version reported by the content store and
expire after a short TTL. Cached values are immutable (tuples/frozensets),
and an update replaces the whole entry, so readers never observe a partially
built graph.
"""
from __future__ import annotations

import threading
import time
from typing import Callable, Optional, Sequence

from cachetools import TTLCache
from loguru import logger

from learnpath.graph.subject_graph import OrderResult, SubjectGraph
from learnpath.models import SubjectNode


class SubjectOrderCache:
    """TTL cache of `SubjectGraph.topological_order()` results."""

    def __init__(
        self,
        ttl_seconds: float = 300,
        maxsize: int = 8,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl_seconds, timer=timer)
        self._lock = threading.Lock()

    def get(self, version: str) -> Optional[OrderResult]:
        with self._lock:
            return self._cache.get(version)

    def get_or_compute(self, version: str, subjects: Sequence[SubjectNode]) -> OrderResult:
        """
        Return the cached ordering for `version`, computing it on a miss.

        The sort runs outside the lock; two concurrent misses may both sort,
        and the later write simply replaces an identical entry.
        """
        cached = self.get(version)
        if cached is not None:
            return cached

        result = SubjectGraph(subjects).topological_order()
        with self._lock:
            self._cache[version] = result
        logger.debug(f"Subject order cached for content version {version}")
        return result

    def invalidate(self) -> None:
        """Drop every cached ordering (call after prerequisite edits)."""
        with self._lock:
            self._cache.clear()
        logger.info("Subject order cache invalidated")

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
