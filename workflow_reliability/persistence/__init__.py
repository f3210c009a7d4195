"""Persistence layer: Tier-2 template cache stores and template statistics."""

from workflow_reliability.persistence.base import CacheRow, PersistentKeyValueStore
from workflow_reliability.persistence.postgres_store import PostgresCacheStore, make_cache_store
from workflow_reliability.persistence.sqlite_store import SQLiteCacheStore
from workflow_reliability.persistence.stats_store import TemplateStatsStore

__all__ = [
    "CacheRow",
    "PersistentKeyValueStore",
    "PostgresCacheStore",
    "SQLiteCacheStore",
    "TemplateStatsStore",
    "make_cache_store",
]
