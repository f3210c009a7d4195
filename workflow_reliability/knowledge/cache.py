"""Three-tier template cache keyed by normalized intent.

  Tier 1  memory   — bounded dict of CacheEntry, LRU by last_used, short TTL.
  Tier 2  store    — PersistentKeyValueStore (Postgres or SQLite), TTL by source.
  Tier 3  cold     — full discovery, supplied by the caller to lookup().

A Tier-2 hit is promoted into Tier 1. A discovery result is written through
both tiers unless it is the Guaranteed Fallback alone. Every store call goes
through guarded(); store outages and corrupt rows are cache misses.
"""

from __future__ import annotations

import datetime
import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from workflow_reliability.knowledge.intent import Intent, normalize_text
from workflow_reliability.knowledge.templates import TemplateMatch, TemplateSource
from workflow_reliability.persistence.base import CacheRow, PersistentKeyValueStore
from workflow_reliability.pipeline.fallback import is_fallback
from workflow_reliability.pipeline.result import guarded

logger = logging.getLogger("workflow_reliability.knowledge.cache")

KEY_PREFIX = "template:"
DEFAULT_CAPACITY = 100
DEFAULT_MEMORY_TTL = 15 * 60

DEFAULT_SOURCE_TTLS: dict[TemplateSource, int] = {
    TemplateSource.CURATED: 7 * 24 * 3600,
    TemplateSource.COMMUNITY: 24 * 3600,
    TemplateSource.GENERATED: 15 * 60,
}

# Shortest-lived source first; an entry lives as long as its most volatile match.
_SOURCE_VOLATILITY = (TemplateSource.GENERATED, TemplateSource.COMMUNITY, TemplateSource.CURATED)


def cache_key(intent: Intent | str, options: dict[str, Any] | None = None) -> str:
    """"template:" + first 32 hex chars of sha256(normalized intent + options)."""
    text = intent.normalized if isinstance(intent, Intent) else normalize_text(intent)
    payload = text + json.dumps(options or {}, sort_keys=True, separators=(",", ":"))
    return KEY_PREFIX + hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]


def entry_source(matches: list[TemplateMatch]) -> TemplateSource:
    sources = {m.template.source for m in matches}
    for source in _SOURCE_VOLATILITY:
        if source in sources:
            return source
    return TemplateSource.CURATED


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass
class CacheEntry:
    """Tier-1 entry. Timestamps are clock() seconds."""

    key: str
    matches: list[TemplateMatch]
    source: TemplateSource
    created_at: float
    expires_at: float
    hit_count: int = 0
    last_used: float = 0.0

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


@dataclass
class CacheStats:
    memory_hits: int = 0
    store_hits: int = 0
    misses: int = 0
    memory_size: int = 0

    @property
    def total_requests(self) -> int:
        return self.memory_hits + self.store_hits + self.misses

    @property
    def hit_rate(self) -> float:
        total = self.total_requests
        return (self.memory_hits + self.store_hits) / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "memory_hits": self.memory_hits,
            "store_hits": self.store_hits,
            "misses": self.misses,
            "total_requests": self.total_requests,
            "hit_rate": round(self.hit_rate, 4),
            "memory_size": self.memory_size,
        }


@dataclass(frozen=True)
class LookupResult:
    """Outcome of TemplateCache.lookup(). tier is "memory", "store" or "discovery"."""

    matches: list[TemplateMatch] = field(default_factory=list)
    tier: str = "discovery"

    @property
    def hit(self) -> bool:
        return self.tier != "discovery"


# ---------------------------------------------------------------------------
# TemplateCache
# ---------------------------------------------------------------------------


class TemplateCache:
    """Tier 1 + Tier 2 template cache with write-through discovery."""

    def __init__(
        self,
        store: PersistentKeyValueStore | None = None,
        *,
        capacity: int = DEFAULT_CAPACITY,
        memory_ttl: int = DEFAULT_MEMORY_TTL,
        source_ttls: dict[TemplateSource, int] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        ttls = {**DEFAULT_SOURCE_TTLS, **(source_ttls or {})}
        if memory_ttl <= 0 or any(v <= 0 for v in ttls.values()):
            raise ValueError("cache TTLs must be positive")
        self._store = store
        self._capacity = capacity
        self._memory_ttl = memory_ttl
        self._source_ttls = ttls
        self._clock = clock
        self._memory: dict[str, CacheEntry] = {}
        self._stats = CacheStats()

    @property
    def store(self) -> PersistentKeyValueStore | None:
        return self._store

    def ttl_for(self, source: TemplateSource) -> int:
        return self._source_ttls[source]

    def __len__(self) -> int:
        return len(self._memory)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, intent: Intent | str, options: dict[str, Any] | None = None) -> list[TemplateMatch] | None:
        """Tier 1, then Tier 2 (promoting the hit). None on a miss."""
        found = await self._get(cache_key(intent, options))
        return found.matches if found is not None else None

    async def _get(self, key: str) -> LookupResult | None:
        now = self._clock()

        entry = self._memory.get(key)
        if entry is not None:
            if entry.is_expired(now):
                del self._memory[key]
            else:
                entry.hit_count += 1
                entry.last_used = now
                self._stats.memory_hits += 1
                logger.debug("[TemplateCache] memory hit %s", key)
                return LookupResult(list(entry.matches), "memory")

        if self._store is not None:
            fetched = await guarded("tier2", self._store.get(key))
            if fetched.ok and fetched.value:
                matches = self._decode_rows(key, fetched.value)
                if matches:
                    self._stats.store_hits += 1
                    expires = min(r.expires_at.timestamp() for r in fetched.value)
                    self._remember(key, matches, entry_source(matches), now, min(expires, now + self._memory_ttl))
                    logger.debug("[TemplateCache] store hit %s (promoted)", key)
                    return LookupResult(matches, "store")

        self._stats.misses += 1
        return None

    @staticmethod
    def _decode_rows(key: str, rows: list[CacheRow]) -> list[TemplateMatch] | None:
        try:
            matches = [TemplateMatch.from_dict(r.template_data) for r in rows]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("[TemplateCache] Corrupt cache rows for %s treated as miss: %s", key, exc)
            return None
        matches.sort(key=lambda m: (-m.confidence, m.template_id))
        return matches

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def set(
        self,
        intent: Intent | str,
        matches: list[TemplateMatch],
        options: dict[str, Any] | None = None,
    ) -> CacheEntry | None:
        """Write matches through both tiers. Empty lists are not cached."""
        if not matches:
            return None
        key = cache_key(intent, options)
        now = self._clock()
        source = entry_source(matches)
        ttl = self._source_ttls[source]
        entry = self._remember(key, list(matches), source, now, now + min(ttl, self._memory_ttl))

        if self._store is not None:
            user_intent = intent.raw if isinstance(intent, Intent) else intent
            rows = [
                CacheRow(
                    cache_key=key,
                    template_id=m.template_id,
                    user_intent=user_intent,
                    template_data=m.to_dict(),
                    confidence=m.confidence,
                    similarity=m.similarity,
                    reason=m.reason,
                    source=m.template.source.value,
                    keywords=list(m.template.keywords),
                    created_at=_utc(now),
                    expires_at=_utc(now + ttl),
                )
                for m in matches
            ]
            await guarded("tier2", self._store.upsert(key, rows, ttl), default=0)
        return entry

    def _remember(
        self,
        key: str,
        matches: list[TemplateMatch],
        source: TemplateSource,
        now: float,
        expires_at: float,
    ) -> CacheEntry:
        if key not in self._memory and len(self._memory) >= self._capacity:
            self._evict(now)
        entry = CacheEntry(
            key=key,
            matches=matches,
            source=source,
            created_at=now,
            expires_at=max(expires_at, now + 1e-6),
            last_used=now,
        )
        self._memory[key] = entry
        self._stats.memory_size = len(self._memory)
        return entry

    def _evict(self, now: float) -> None:
        expired = [k for k, e in self._memory.items() if e.is_expired(now)]
        for k in expired:
            del self._memory[k]
        if len(self._memory) >= self._capacity:
            lru = min(self._memory.values(), key=lambda e: e.last_used)
            del self._memory[lru.key]
            logger.debug("[TemplateCache] evicted LRU entry %s", lru.key)

    async def lookup(
        self,
        intent: Intent | str,
        discover: Callable[[], Awaitable[list[TemplateMatch]]],
        options: dict[str, Any] | None = None,
    ) -> LookupResult:
        """Cached matches, or run discover() and write its result through.

        A result consisting only of the Guaranteed Fallback is returned but
        not cached, so a later request can still find a real template.
        """
        key = cache_key(intent, options)
        found = await self._get(key)
        if found is not None:
            return found

        matches = await discover()
        if matches and not all(is_fallback(m) for m in matches):
            await self.set(intent, matches, options)
        return LookupResult(list(matches), "discovery")

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def invalidate(self, intent: Intent | str | None = None, options: dict[str, Any] | None = None) -> int:
        """Drop one intent's entry from both tiers, or everything when intent is None.

        Returns entries removed from memory plus rows removed from the store.
        """
        if intent is None:
            removed = len(self._memory)
            self._memory.clear()
            key = None
        else:
            key = cache_key(intent, options)
            removed = 1 if self._memory.pop(key, None) is not None else 0
        self._stats.memory_size = len(self._memory)

        if self._store is not None:
            deleted = await guarded("tier2", self._store.delete(key), default=0)
            removed += int(deleted.value or 0)
        logger.info("[TemplateCache] invalidated %s (%d removed)", key or "all entries", removed)
        return removed

    async def cleanup(self) -> dict[str, int]:
        """Purge expired entries from both tiers."""
        now = self._clock()
        expired = [k for k, e in self._memory.items() if e.is_expired(now)]
        for k in expired:
            del self._memory[k]
        self._stats.memory_size = len(self._memory)

        store_cleared = 0
        if self._store is not None:
            purged = await guarded("tier2", self._store.purge_expired(), default=0)
            store_cleared = int(purged.value or 0)
        logger.info("[TemplateCache] cleanup: memory=%d store=%d", len(expired), store_cleared)
        return {"memory_cleared": len(expired), "store_cleared": store_cleared}

    def stats(self) -> CacheStats:
        self._stats.memory_size = len(self._memory)
        return CacheStats(
            memory_hits=self._stats.memory_hits,
            store_hits=self._stats.store_hits,
            misses=self._stats.misses,
            memory_size=self._stats.memory_size,
        )


def _utc(ts: float) -> datetime.datetime:
    return datetime.datetime.fromtimestamp(ts, tz=datetime.timezone.utc)
