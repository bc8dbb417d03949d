"""
Result cache with TTL, LRU bound and per-key request coalescing.

All bookkeeping happens on the event loop between awaits, so lookups,
inserts, evictions and clears are linearizable without locks. Concurrent
callers with the same key share one in-flight task; distinct keys never wait
on each other.
"""

import asyncio
import functools
import hashlib
import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from hybrid_search.config.logging_config import setup_logger
from hybrid_search.config.settings import config
from hybrid_search.services.errors import CacheError
from hybrid_search.services.models import CacheStats, SearchRequest

logger = setup_logger(__name__)


def build_cache_key(request: SearchRequest) -> str:
    """sha256 over the request fields that determine the ranked output."""
    payload = json.dumps(
        {
            "query": request.query,
            "filters": request.label_filters.to_dict(),
            "top_k": request.top_k,
            "table": request.table_name,
        },
        sort_keys=True,
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    key: str
    value: Any
    created_at: float
    hit_count: int = 0


class ResultCache:
    """
    In-process cache for search responses.

    Lifecycle: construct, inject into the pipeline, ``clear()`` on corpus
    changes. ``clock`` is injectable for TTL tests.
    """

    def __init__(
        self,
        ttl_seconds: float | None = None,
        max_size: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else config.CACHE_TTL_SECONDS
        self.max_size = max_size if max_size is not None else config.CACHE_MAX_SIZE
        if self.ttl_seconds <= 0 or self.max_size <= 0:
            raise ValueError("ttl_seconds and max_size must be positive")
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._inflight: dict[str, asyncio.Task] = {}
        self._generation = 0
        self.hit_count = 0
        self.miss_count = 0

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at >= self.ttl_seconds

    def _read(self, key: str) -> CacheEntry | None:
        try:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._expired(entry, self._clock()):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry
        except Exception as e:
            raise CacheError(f"cache lookup failed: {type(e).__name__}: {e}") from e

    def _store(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(key=key, value=value, created_at=self._clock())
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Cache evicted %s", evicted[:12])

    def peek(self, key: str) -> Any | None:
        """Return a fresh cached value without touching counters or recency."""
        entry = self._entries.get(key)
        if entry is None or self._expired(entry, self._clock()):
            return None
        return entry.value

    # ------------------------------------------------------------------
    # Coalesced compute
    # ------------------------------------------------------------------
    async def _compute(
        self,
        key: str,
        compute_fn: Callable[[], Awaitable[Any]],
        cacheable: Callable[[Any], bool] | None,
        generation: int,
    ) -> Any:
        value = await compute_fn()
        if generation != self._generation:
            logger.info("Cache cleared during computation, result for %s not stored", key[:12])
        elif cacheable is None or cacheable(value):
            self._store(key, value)
        return value

    def _settle(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the exception retrieved when every waiter has gone away
        if not task.cancelled():
            task.exception()

    async def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Awaitable[Any]],
        cacheable: Callable[[Any], bool] | None = None,
    ) -> tuple[Any, bool]:
        """
        Return ``(value, cache_hit)``.

        A fresh entry counts as a hit. A caller that joins an in-flight
        computation counts as a hit only if the shared value was stored;
        a failed or uncacheable computation counts every waiter as a miss.
        The computation is shielded from caller cancellation. Its errors
        propagate to every waiter and nothing is stored.

        Raises:
            CacheError: the stored entry could not be read.
        """
        entry = self._read(key)
        if entry is not None:
            self.hit_count += 1
            entry.hit_count += 1
            return entry.value, True

        task = self._inflight.get(key)
        if task is not None:
            try:
                value = await asyncio.shield(task)
            except Exception:
                self.miss_count += 1
                raise
            # Only a value that actually landed in the cache counts as a hit
            stored = self._entries.get(key)
            if stored is not None and stored.value is value:
                self.hit_count += 1
                stored.hit_count += 1
                return value, True
            self.miss_count += 1
            return value, False

        self.miss_count += 1
        task = asyncio.get_running_loop().create_task(self._compute(key, compute_fn, cacheable, self._generation))
        self._inflight[key] = task
        task.add_done_callback(functools.partial(self._settle, key))
        return await asyncio.shield(task), False

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------
    def clear(self) -> int:
        """
        Drop every entry and detach in-flight computations.

        Hit/miss counters are lifetime totals and survive a clear. Returns the
        number of entries removed.
        """
        removed = len(self._entries)
        self._entries.clear()
        self._inflight.clear()
        self._generation += 1
        logger.info("Result cache cleared (%s entries)", removed)
        return removed

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if self._expired(e, now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def stats(self) -> CacheStats:
        self.purge_expired()
        return CacheStats(size=len(self._entries), hit_count=self.hit_count, miss_count=self.miss_count)

    def __len__(self) -> int:
        return len(self._entries)
