# -*- coding: utf-8 -*-
"""Location: ./abac_pdp/cache.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Decision cache: TTL-aware LRU.

Architecture
------------
* An ``OrderedDict`` capped at ``max_entries``.  Entries older than
  ``ttl_seconds`` are lazily evicted on read; the least recently used entry
  is evicted on write when the cap is reached.
* The cache key is a deterministic SHA-256 of the policy snapshot version
  and the serialised context.  The request timestamp is truncated to the
  minute so requests within the same minute share an entry while time-window
  constraints stay correct to the minute.  Policies that read the raw
  ``environment.timestamp`` see it to the microsecond, so callers evaluating
  such policies pass ``truncate_timestamp=False`` and get one entry per
  distinct timestamp.  ``orjson`` with ``OPT_SORT_KEYS`` makes the
  serialisation stable.
* A new snapshot version never hits entries from an older one, so policy
  changes need no explicit invalidation.

Thread safety
-------------
All public methods hold a ``threading.Lock`` while touching the dict.

Examples:
    >>> from abac_pdp.models import Effect, EvaluationContext, EvaluationResult
    >>> cache = DecisionCache(ttl_seconds=60, max_entries=2)
    >>> ctx = EvaluationContext.model_validate({"subject": {"id": "u"}, "resource": {"type": "T"}, "action": "read"})
    >>> cache.get(1, ctx) is None
    True
    >>> cache.put(1, ctx, EvaluationResult(allowed=True, final_effect=Effect.ALLOW))
    >>> cache.get(1, ctx).allowed, cache.get(2, ctx) is None
    (True, True)
    >>> cache.stats()["hits"], cache.stats()["misses"]
    (1, 2)
"""

# Standard
from collections import OrderedDict
import hashlib
import logging
import threading
import time
from typing import Any, Dict, Optional

# Third-Party
import orjson

# First-Party
from abac_pdp.models import EvaluationContext, EvaluationResult

logger = logging.getLogger(__name__)


def build_cache_key(version: int, context: EvaluationContext, *, truncate_timestamp: bool = True) -> str:
    """Produce a stable, collision-resistant cache key.

    Args:
        version: Policy snapshot version.
        context: Evaluation context.
        truncate_timestamp: Drop seconds and below from the request timestamp.

    Returns:
        str: Hex SHA-256 digest.
    """
    payload = context.model_dump(mode="json", by_alias=True)
    environment = payload.get("environment") or {}
    timestamp = context.environment.timestamp
    if truncate_timestamp:
        timestamp = timestamp.replace(second=0, microsecond=0)
    environment["timestamp"] = timestamp.isoformat()
    payload["environment"] = environment
    raw = orjson.dumps({"version": version, "context": payload}, option=orjson.OPT_SORT_KEYS)
    return hashlib.sha256(raw).hexdigest()


class _CacheEntry:
    """Thin wrapper that pairs a value with its expiry time."""

    __slots__ = ("value", "expires_at")

    def __init__(self, value: EvaluationResult, ttl_seconds: int):
        self.value = value
        self.expires_at = time.monotonic() + ttl_seconds

    @property
    def expired(self) -> bool:
        return time.monotonic() > self.expires_at


class DecisionCache:
    """In-memory LRU decision cache with TTL.

    Parameters
    ----------
    ttl_seconds : int
        Entry lifetime.
    max_entries : int
        Capacity; the least recently used entry is evicted first.
    """

    def __init__(self, ttl_seconds: int = 300, max_entries: int = 10_000):
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._store: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        # Stats counters
        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, version: int, context: EvaluationContext, *, truncate_timestamp: bool = True) -> Optional[EvaluationResult]:
        """Look up a cached decision.  Returns ``None`` on miss or expiry."""
        key = build_cache_key(version, context, truncate_timestamp=truncate_timestamp)
        with self._lock:
            entry = self._store.get(key)
            if entry is not None:
                if entry.expired:
                    del self._store[key]
                else:
                    self._store.move_to_end(key)
                    self._hits += 1
                    logger.debug("PDP cache HIT key=%s", key[:16])
                    return entry.value
            self._misses += 1
        logger.debug("PDP cache MISS key=%s", key[:16])
        return None

    def put(self, version: int, context: EvaluationContext, result: EvaluationResult, *, truncate_timestamp: bool = True) -> None:
        """Store a decision.  Evicts LRU entries when the cap is reached."""
        key = build_cache_key(version, context, truncate_timestamp=truncate_timestamp)
        with self._lock:
            self._store.pop(key, None)
            while len(self._store) >= self._max_entries:
                self._store.popitem(last=False)
            self._store[key] = _CacheEntry(result, self._ttl)
        logger.debug("PDP cache PUT key=%s", key[:16])

    def invalidate(self) -> int:
        """Drop every entry.

        Returns:
            int: Number of entries removed.
        """
        with self._lock:
            removed = len(self._store)
            self._store.clear()
        if removed:
            logger.info("PDP cache invalidated %d entries", removed)
        return removed

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        """Return hit/miss counters and current size."""
        with self._lock:
            total = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / total, 3) if total else 0.0,
                "size": len(self._store),
                "max_entries": self._max_entries,
                "ttl_seconds": self._ttl,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
