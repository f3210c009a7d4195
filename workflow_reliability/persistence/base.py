"""Tier-2 cache store interface and row type.

Concrete stores:
  PostgresCacheStore (postgres_store.py) — shared across processes.
  SQLiteCacheStore   (sqlite_store.py)   — single host, no server needed.

All methods may raise; the Template Cache wraps every call with guarded()
so a store outage degrades to a cache miss.
"""

from __future__ import annotations

import datetime
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class CacheRow:
    """One (cache_key, template_id) row in the template_cache table."""

    cache_key: str
    template_id: str
    user_intent: str
    template_data: dict[str, Any]
    confidence: float
    source: str
    expires_at: datetime.datetime
    similarity: float = 0.0
    reason: str = ""
    keywords: list[str] = field(default_factory=list)
    created_at: datetime.datetime | None = None
    hit_count: int = 0
    last_used: datetime.datetime | None = None


class PersistentKeyValueStore(ABC):
    """Shared persistent store backing cache Tier 2."""

    async def setup(self) -> None:
        """Create tables if needed. Default: nothing to do."""

    async def close(self) -> None:
        """Release connections. Default: nothing to do."""

    @abstractmethod
    async def get(self, key: str) -> list[CacheRow] | None:
        """Unexpired rows for key, best confidence first, or None.

        Implementations bump hit_count / last_used on the returned rows.
        """
        ...

    @abstractmethod
    async def upsert(self, key: str, rows: list[CacheRow], ttl_seconds: int) -> int:
        """Insert or replace rows on (cache_key, template_id). Returns rows written."""
        ...

    @abstractmethod
    async def delete(self, key: str | None = None) -> int:
        """Delete rows for key, or every row when key is None. Returns rows deleted."""
        ...

    @abstractmethod
    async def purge_expired(self) -> int:
        """Delete rows whose expires_at has passed. Returns rows deleted."""
        ...
