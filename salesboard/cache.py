"""
Two-tier in-process response cache for the dashboard client.

Provides:
- MEMORY tier (short TTL, large) and SESSION tier (long TTL, small)
- Deterministic, parameter-order-independent keys
- Lazy expiry on read plus a periodic background sweep
- Pluggable eviction (insertion order by default, LRU available)
- Lossy compression of large invoice lists to list-rendering fields

Usage:
    from salesboard.cache import ResponseCache, CacheTier, make_cache_key

    cache = ResponseCache()
    key = make_cache_key("/invoices", {"page": 1, "pageSize": 100})
    cache.set(key, payload)
    data = cache.get(key)

    # Long-lived data
    cache.set("/invoices?all", invoices, tier=CacheTier.SESSION)
"""
import asyncio
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from salesboard.config import config
from salesboard.observability import get_logger

logger = get_logger(__name__)

# Fields kept when a large invoice list is compressed
COMPRESSED_FIELDS = (
    "id",
    "invoiceNumber",
    "customerName",
    "salespersonName",
    "total",
    "currency",
    "invoiceDate",
    "createdAt",
    "status",
)


class CacheTier(str, Enum):
    MEMORY = "memory"
    SESSION = "session"


@dataclass
class CacheStats:
    """Cache statistics for monitoring."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0
    expirations: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        return (self.hits / total * 100) if total > 0 else 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "invalidations": self.invalidations,
            "hit_rate_percent": round(self.hit_rate, 2),
        }

    def reset(self) -> None:
        """Reset all counters."""
        self.hits = 0
        self.misses = 0
        self.sets = 0
        self.evictions = 0
        self.expirations = 0
        self.invalidations = 0


@dataclass
class CacheEntry:
    key: str
    value: Any
    created_at: float
    tier: CacheTier
    compressed: bool = False

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return now - self.created_at > ttl_seconds


# ═══════════════════════════════════════════════════════════════════════════════
# EVICTION POLICIES
# ═══════════════════════════════════════════════════════════════════════════════

class EvictionPolicy:
    """Chooses which entry leaves a full tier. Entries are kept in insertion order."""

    name = "base"

    def on_access(self, entries: "OrderedDict[str, CacheEntry]", key: str) -> None:
        """Called on every cache hit."""

    def choose_victim(self, entries: "OrderedDict[str, CacheEntry]") -> str:
        return next(iter(entries))


class InsertionOrderEviction(EvictionPolicy):
    """Evict the oldest-inserted entry."""

    name = "insertion"


class LRUEviction(EvictionPolicy):
    """Evict the least recently read entry."""

    name = "lru"

    def on_access(self, entries: "OrderedDict[str, CacheEntry]", key: str) -> None:
        entries.move_to_end(key)


@dataclass(frozen=True)
class TierPolicy:
    ttl_seconds: float
    max_entries: int
    eviction: EvictionPolicy = field(default_factory=InsertionOrderEviction)


def default_policies() -> Dict[CacheTier, TierPolicy]:
    return {
        CacheTier.MEMORY: TierPolicy(
            config.cache.memory_ttl_seconds, config.cache.memory_max_entries
        ),
        CacheTier.SESSION: TierPolicy(
            config.cache.session_ttl_seconds, config.cache.session_max_entries
        ),
    }


# ═══════════════════════════════════════════════════════════════════════════════
# KEYS AND COMPRESSION
# ═══════════════════════════════════════════════════════════════════════════════

def make_cache_key(endpoint: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """
    Build `endpoint?k1=v1&k2=v2` over sorted parameter names.

    None values are dropped, so omitted and None parameters share a key.
    """
    parts = [
        f"{name}={params[name]}"
        for name in sorted(params or {})
        if params[name] is not None
    ]
    return f"{endpoint}?{'&'.join(parts)}"


def compress_invoices(items: List[Any]) -> List[Any]:
    """Keep only list-rendering fields of each invoice dict."""
    return [
        {name: item[name] for name in COMPRESSED_FIELDS if name in item} if isinstance(item, dict) else item
        for item in items
    ]


# ═══════════════════════════════════════════════════════════════════════════════
# CACHE
# ═══════════════════════════════════════════════════════════════════════════════

class ResponseCache:
    """
    Thread-safe two-tier TTL cache.

    All structural changes happen under one lock, so a reader never sees
    an entry that is half evicted.
    """

    def __init__(
        self,
        policies: Optional[Mapping[CacheTier, TierPolicy]] = None,
        compression_threshold: int = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.policies: Dict[CacheTier, TierPolicy] = {**default_policies(), **(policies or {})}
        self.compression_threshold = (
            compression_threshold
            if compression_threshold is not None
            else config.cache.compression_threshold
        )
        self._clock = clock
        self._entries: Dict[CacheTier, "OrderedDict[str, CacheEntry]"] = {
            tier: OrderedDict() for tier in CacheTier
        }
        self._lock = threading.RLock()
        self._sweeper: Optional[asyncio.Task] = None
        self.stats = CacheStats()

    def get_entry(self, key: str, tier: CacheTier = CacheTier.MEMORY) -> Optional[CacheEntry]:
        """Entry for key, or None if absent or expired (expired entries are removed)."""
        policy = self.policies[tier]
        with self._lock:
            entries = self._entries[tier]
            entry = entries.get(key)
            if entry is None:
                self.stats.misses += 1
                return None
            if entry.is_expired(self._clock(), policy.ttl_seconds):
                del entries[key]
                self.stats.expirations += 1
                self.stats.misses += 1
                return None
            policy.eviction.on_access(entries, key)
            self.stats.hits += 1
            return entry

    def get(self, key: str, tier: CacheTier = CacheTier.MEMORY, default: Any = None) -> Any:
        """Cached value for key, or default. get_entry tells a miss from a cached None."""
        entry = self.get_entry(key, tier)
        return entry.value if entry is not None else default

    def set(
        self,
        key: str,
        value: Any,
        tier: CacheTier = CacheTier.MEMORY,
        compress: bool = True,
    ) -> CacheEntry:
        """
        Store value under key, evicting per the tier policy when full.

        Lists longer than the compression threshold are stored compressed
        unless compress is False.
        """
        compressed = (
            compress
            and isinstance(value, list)
            and len(value) > self.compression_threshold
        )
        if compressed:
            logger.debug(f"Compressed {len(value)} items for caching", extra={"key": key})
            value = compress_invoices(value)

        policy = self.policies[tier]
        with self._lock:
            entries = self._entries[tier]
            if key in entries:
                del entries[key]
            while entries and len(entries) >= policy.max_entries:
                victim = policy.eviction.choose_victim(entries)
                del entries[victim]
                self.stats.evictions += 1
            entry = CacheEntry(
                key=key,
                value=value,
                created_at=self._clock(),
                tier=tier,
                compressed=compressed,
            )
            entries[key] = entry
            self.stats.sets += 1
            return entry

    def delete(self, key: str, tier: Optional[CacheTier] = None) -> bool:
        """Remove key from one tier (or both). Returns True if anything was removed."""
        tiers = [tier] if tier else list(CacheTier)
        removed = False
        with self._lock:
            for t in tiers:
                if self._entries[t].pop(key, None) is not None:
                    removed = True
        return removed

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove every key starting with prefix from both tiers."""
        with self._lock:
            count = 0
            for entries in self._entries.values():
                for key in [k for k in entries if k.startswith(prefix)]:
                    del entries[key]
                    count += 1
            self.stats.invalidations += count
        if count:
            logger.debug(f"Invalidated {count} cache entries", extra={"prefix": prefix})
        return count

    def sweep_expired(self) -> int:
        """Remove expired entries from both tiers."""
        now = self._clock()
        with self._lock:
            count = 0
            for tier, entries in self._entries.items():
                ttl = self.policies[tier].ttl_seconds
                for key in [k for k, e in entries.items() if e.is_expired(now, ttl)]:
                    del entries[key]
                    count += 1
            self.stats.expirations += count
        return count

    def clear(self) -> None:
        """Clear both tiers."""
        with self._lock:
            for entries in self._entries.values():
                entries.clear()
        logger.debug("All cache cleared")

    def size(self, tier: CacheTier = CacheTier.MEMORY) -> int:
        with self._lock:
            return len(self._entries[tier])

    def get_stats(self) -> dict:
        """Counters plus per-tier size and limits."""
        with self._lock:
            tiers = {
                tier.value: {
                    "size": len(self._entries[tier]),
                    "max_entries": self.policies[tier].max_entries,
                    "ttl_seconds": self.policies[tier].ttl_seconds,
                    "eviction": self.policies[tier].eviction.name,
                }
                for tier in CacheTier
            }
        return {**self.stats.to_dict(), "tiers": tiers}

    # ─── Background sweep ────────────────────────────────────────────────────

    def start_sweeper(self, interval: float = None) -> asyncio.Task:
        """Run sweep_expired every interval seconds on the running loop."""
        interval = interval or config.cache.sweep_interval_seconds
        if self._sweeper and not self._sweeper.done():
            return self._sweeper

        async def sweep_loop():
            while True:
                await asyncio.sleep(interval)
                removed = self.sweep_expired()
                if removed:
                    logger.debug(f"Cache sweep removed {removed} expired entries")

        self._sweeper = asyncio.create_task(sweep_loop(), name="cache-sweeper")
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if self._sweeper:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
