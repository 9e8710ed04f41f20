"""Result cache for correlation analyses.

Results are memoized by a fingerprint of the request parameters plus the
window end date. Identical concurrent requests may both compute; there
is no single-flight deduplication.
"""
import copy
import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import redis

logger = logging.getLogger(__name__)

KEY_PREFIX = "correlation:"


def fingerprint(
    analysis_type: str,
    timeframe: str,
    window_end: date,
    subjects: Sequence[str],
    variables: Sequence[str],
    min_correlation_strength: float,
    include_statistical_tests: bool,
) -> str:
    """Cache key for one analysis request.

    Returns:
        ``correlation:`` followed by a SHA-256 hex digest
    """
    content = {
        "analysis_type": analysis_type,
        "timeframe": timeframe,
        "window_end": window_end.isoformat(),
        "subjects": list(subjects),
        "variables": list(variables),
        "min_correlation_strength": min_correlation_strength,
        "include_statistical_tests": include_statistical_tests,
    }
    content_str = json.dumps(content, sort_keys=True)
    return KEY_PREFIX + hashlib.sha256(content_str.encode()).hexdigest()


class ResultCache(ABC):
    """Key-value store for serialized analysis results."""

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the cached result or None on a miss."""
        pass

    @abstractmethod
    def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        """Store a result for ``ttl_seconds``."""
        pass


class InMemoryResultCache(ResultCache):
    """Process-local TTL cache.

    Expired entries are purged on every write, and the oldest entries are
    evicted past ``max_entries``. Values are copied in and out, so callers
    may mutate the results they get.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 256,
    ):
        self._clock = clock
        self.max_entries = max_entries
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return copy.deepcopy(value)

    def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        now = self._clock()
        for stale in [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]:
            del self._entries[stale]

        self._entries.pop(key, None)
        while len(self._entries) >= self.max_entries:
            # Oldest write first
            del self._entries[next(iter(self._entries))]

        self._entries[key] = (now + ttl_seconds, copy.deepcopy(value))

    def __len__(self) -> int:
        return len(self._entries)


class RedisResultCache(ResultCache):
    """Redis-backed cache shared across service instances.

    Redis errors propagate to the caller unchanged.
    """

    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisResultCache":
        """Create a cache from a Redis URL (e.g. REDIS_URL)."""
        client = redis.Redis.from_url(url, decode_responses=True)
        logger.info("REDIS_RESULT_CACHE_CONFIGURED")
        return cls(client)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        self._client.setex(key, ttl_seconds, json.dumps(value, default=str))
