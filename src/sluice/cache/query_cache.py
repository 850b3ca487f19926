"""Query result cache.

Caches shaped read results by a canonical key with a per-entry TTL, a
capacity bound enforced by least-recently-used eviction, and single-flight
collapsing of concurrent misses for the same key.

Example:
    >>> cache = QueryCache(CacheConfig(capacity=256))
    >>> key = CacheKey.build("raw", ["people"], sql="SELECT * FROM people", params=[])
    >>> rows = await cache.get_or_compute(key, 30, load_people, tables=["people"])
"""

import fnmatch
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from sluice.config.models import CacheConfig
from sluice.core import BaseComponent
from sluice.core.utils import StringUtils
from sluice.logging import get_logger
from .single_flight import SingleFlight


class CacheKey:
    """Builds deterministic cache keys.

    Keys read ``{kind}:{tables}:{digest}``. The digest covers a canonical
    JSON rendering of the request shape, so mappings in the shape hash the
    same whatever their key order. The readable prefix lets glob patterns
    target one kind of request or one table.
    """

    @staticmethod
    def build(kind: str, tables: Iterable[str], **shape: Any) -> str:
        table_part = ",".join(sorted(set(tables))) or "-"
        digest = StringUtils.compute_hash(StringUtils.canonical_json(shape))
        return f"{kind}:{table_part}:{digest}"


@dataclass
class CacheEntry:
    """A cached result with its bookkeeping."""

    value: Any
    created_at: float
    ttl: float
    tables: Tuple[str, ...] = ()
    hit_count: int = 0

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.monotonic() if now is None else now
        return now - self.created_at >= self.ttl

    @property
    def age(self) -> float:
        return time.monotonic() - self.created_at


@dataclass
class CacheLookup:
    """Outcome of ``QueryCache.fetch``.

    ``source`` is ``hit`` for a cached value, ``joined`` when the value came
    from another caller's in-flight computation, ``miss`` when this caller
    computed it, and ``bypass`` when caching is disabled.
    """

    value: Any
    source: str
    entry: Optional[CacheEntry] = field(default=None, repr=False)

    @property
    def cached(self) -> bool:
        return self.source in ("hit", "joined")


class QueryCache(BaseComponent[CacheConfig]):
    """Key to result cache with TTL, LRU eviction and single-flight.

    Invalidation by table bumps a per-table generation counter. A computation
    records the generations of its tables when it starts and only stores its
    result if none of them moved, so a write that commits while a read is in
    flight cannot be overwritten by the stale read. Pattern invalidations
    issued while computations are in flight are kept until the next quiet
    invalidation, and a computation whose key matches one issued after it
    started does not store its result.
    """

    component_name = "QueryCache"

    def __init__(self, config: CacheConfig) -> None:
        super().__init__(config)
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._flight = SingleFlight()
        self._generations: Dict[str, int] = {}
        self._epoch = 0
        self._pattern_seq = 0
        self._recent_patterns: List[Tuple[int, str]] = []
        self._stats = {"hits": 0, "misses": 0, "evictions": 0, "expirations": 0, "invalidations": 0}
        self.logger = get_logger("sluice.cache")
        self._initialized = True

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def effective_ttl(self, ttl: Optional[float]) -> float:
        """Clamp a requested TTL to the configured maximum."""
        if ttl is None:
            return self.config.default_ttl
        return min(float(ttl), self.config.max_ttl)

    # Lookup

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for ``key``, refreshing its LRU position."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired():
            del self._entries[key]
            self._stats["expirations"] += 1
            return None
        self._entries.move_to_end(key)
        entry.hit_count += 1
        return entry

    async def fetch(
        self,
        key: str,
        ttl: Optional[float],
        compute: Callable[[], Awaitable[Any]],
        tables: Iterable[str] = (),
    ) -> CacheLookup:
        """Return the cached value for ``key`` or compute it exactly once.

        Args:
            key: Cache key from ``CacheKey.build``
            ttl: Entry TTL in seconds; None uses the default, values above
                the configured maximum are clamped, zero disables storing
            compute: Coroutine factory producing the value on a miss
            tables: Tables the value depends on, for invalidation

        Raises:
            Exception: Whatever ``compute`` raised; nothing is cached
            CacheComputeFailure: If the shared computation was cancelled
        """
        if not self.enabled:
            return CacheLookup(await compute(), "bypass")

        entry = self.get(key)
        if entry is not None:
            self._stats["hits"] += 1
            return CacheLookup(entry.value, "hit", entry)

        tables = tuple(sorted(set(tables)))
        ttl = self.effective_ttl(ttl)
        snapshot = self._snapshot(tables)
        started = self._pattern_seq

        async def run() -> Any:
            value = await compute()
            fresh = self._snapshot(tables) == snapshot and not self._pattern_hit(key, started)
            if ttl > 0 and fresh:
                self._store(key, value, ttl, tables)
            elif ttl > 0:
                self.logger.debug("Discarding result invalidated while in flight", key=key)
            return value

        value, shared = await self._flight.do(key, run)
        if shared:
            return CacheLookup(value, "joined", self._entries.get(key))
        self._stats["misses"] += 1
        return CacheLookup(value, "miss", self._entries.get(key))

    async def get_or_compute(
        self,
        key: str,
        ttl: Optional[float],
        compute: Callable[[], Awaitable[Any]],
        tables: Iterable[str] = (),
    ) -> Any:
        """Like ``fetch`` but return only the value."""
        lookup = await self.fetch(key, ttl, compute, tables)
        return lookup.value

    def _snapshot(self, tables: Tuple[str, ...]) -> Tuple[int, ...]:
        return (self._epoch,) + tuple(self._generations.get(table, 0) for table in tables)

    def _pattern_hit(self, key: str, since: int) -> bool:
        return any(seq > since and fnmatch.fnmatchcase(key, pattern) for seq, pattern in self._recent_patterns)

    def _store(self, key: str, value: Any, ttl: float, tables: Tuple[str, ...]) -> None:
        if key in self._entries:
            del self._entries[key]
        while len(self._entries) >= self.config.capacity:
            evicted, _ = self._entries.popitem(last=False)
            self._stats["evictions"] += 1
            self.logger.debug("Cache entry evicted", key=evicted)
        self._entries[key] = CacheEntry(value=value, created_at=time.monotonic(), ttl=ttl, tables=tables)

    # Invalidation

    def invalidate(self, pattern: Optional[str] = None) -> int:
        """Remove entries whose key matches a glob pattern.

        Args:
            pattern: ``fnmatch`` pattern over keys; None removes everything

        Returns:
            Number of entries removed
        """
        if pattern is None:
            return self.clear()

        self._pattern_seq += 1
        if self._flight.in_flight:
            self._recent_patterns.append((self._pattern_seq, pattern))
        else:
            self._recent_patterns.clear()

        matched = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
        for key in matched:
            del self._entries[key]
        self._stats["invalidations"] += len(matched)
        self.logger.debug("Cache invalidated by pattern", pattern=pattern, removed=len(matched))
        return len(matched)

    def invalidate_tables(self, tables: Iterable[str]) -> int:
        """Remove entries depending on any of ``tables``.

        In-flight computations over these tables will not store their results.
        """
        targets = set(tables)
        if not targets:
            return 0
        for table in targets:
            self._generations[table] = self._generations.get(table, 0) + 1

        matched = [key for key, entry in self._entries.items() if targets.intersection(entry.tables)]
        for key in matched:
            del self._entries[key]
        self._stats["invalidations"] += len(matched)
        self.logger.debug("Cache invalidated by table", tables=sorted(targets), removed=len(matched))
        return len(matched)

    def clear(self) -> int:
        removed = len(self._entries)
        self._entries.clear()
        self._recent_patterns.clear()
        self._epoch += 1
        self._stats["invalidations"] += removed
        self.logger.info("Cache cleared", removed=removed)
        return removed

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were dropped."""
        now = time.monotonic()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self._stats["expirations"] += len(expired)
        return len(expired)

    # Monitoring

    def get_stats(self) -> Dict[str, Any]:
        lookups = self._stats["hits"] + self._stats["misses"] + self._flight.joins
        served = self._stats["hits"] + self._flight.joins
        return {
            "entries": len(self._entries),
            "capacity": self.config.capacity,
            "enabled": self.enabled,
            "hits": self._stats["hits"],
            "misses": self._stats["misses"],
            "joins": self._flight.joins,
            "evictions": self._stats["evictions"],
            "expirations": self._stats["expirations"],
            "invalidations": self._stats["invalidations"],
            "in_flight": self._flight.in_flight,
            "hit_rate": served / lookups if lookups else 0.0,
        }

    def get_metrics(self) -> Dict[str, Any]:
        metrics = super().get_metrics()
        metrics.update(self.get_stats())
        return metrics
