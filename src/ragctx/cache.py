"""TTL cache for assembled contexts."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from ragctx.models import AssembledContext, CacheStats

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_MAX_ENTRIES = 1000


def generate_cache_key(
    user_id: str,
    query: str,
    chat_id: str | None,
    token_budget: int,
    include_memories: bool = True,
    include_messages: bool = True,
    include_documents: bool = True,
) -> str:
    """Deterministic key for a retrieval request."""
    components = [
        user_id,
        query,
        chat_id or "no-chat",
        str(token_budget),
        str(include_memories).lower(),
        str(include_messages).lower(),
        str(include_documents).lower(),
    ]
    return "|".join(components)


@dataclass(frozen=True)
class CacheEntry:
    context: AssembledContext
    cached_at: float
    key: str


class ContextCache:
    """Thread-safe in-memory cache of assembled contexts with TTL expiry.

    Contexts are copied on put() and get(), so callers never share the
    cached instance. Expired entries are evicted lazily on get(). When a put() pushes the
    entry count above max_entries, every expired entry is swept; live
    entries are never evicted, so max_entries is a soft bound.

    Example:
        cache = ContextCache(ttl_seconds=60)
        cache.put(key, context)
        cached = cache.get(key)
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.cached_at > self.ttl_seconds

    def get(self, key: str) -> AssembledContext | None:
        """Return the cached context, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if self._is_expired(entry, self._clock()):
                del self._entries[key]
                self._misses += 1
                logger.debug(f"[CACHE] Expired entry evicted: {key[:80]}")
                return None

            self._hits += 1
            return entry.context.model_copy(deep=True)

    def put(self, key: str, context: AssembledContext) -> None:
        with self._lock:
            now = self._clock()
            if len(self._entries) > self.max_entries:
                self._sweep_expired(now)
            self._entries[key] = CacheEntry(context=context.model_copy(deep=True), cached_at=now, key=key)

    def _sweep_expired(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
        for k in expired:
            del self._entries[k]
        logger.info(f"[CACHE] Swept {len(expired)} expired entries ({len(self._entries)} remain)")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> CacheStats:
        """Entry counts plus a hit-rate estimate (share of entries still valid)."""
        with self._lock:
            now = self._clock()
            valid = sum(1 for e in self._entries.values() if not self._is_expired(e, now))
            total = len(self._entries)
            expired = total - valid
            return CacheStats(
                total_entries=total,
                valid_entries=valid,
                expired_entries=expired,
                hit_rate_estimate=valid / total if total else 0.0,
                ttl_seconds=self.ttl_seconds,
                hits=self._hits,
                misses=self._misses,
            )
