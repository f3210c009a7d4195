"""SQLite-backed Tier-2 template cache for single-host deployments.

Same row layout as the Postgres store. Timestamps are Unix seconds (REAL);
template_data and keywords are JSON text.

Table schema:
    template_cache (
        cache_key      TEXT NOT NULL,
        template_id    TEXT NOT NULL,
        user_intent    TEXT NOT NULL,
        template_data  TEXT NOT NULL,      -- serialized TemplateMatch
        confidence     REAL NOT NULL,
        similarity     REAL DEFAULT 0,
        reason         TEXT DEFAULT '',
        source         TEXT NOT NULL,
        keywords       TEXT DEFAULT '[]',  -- JSON array
        created_at     REAL NOT NULL,
        expires_at     REAL NOT NULL,
        hit_count      INTEGER DEFAULT 0,
        last_used      REAL NOT NULL,
        PRIMARY KEY (cache_key, template_id)
    )
"""

from __future__ import annotations

import datetime
import json
import logging
import time
from collections.abc import Callable
from typing import Any

from workflow_reliability.persistence.base import CacheRow, PersistentKeyValueStore

logger = logging.getLogger("workflow_reliability.persistence.sqlite_store")


_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS template_cache (
    cache_key      TEXT    NOT NULL,
    template_id    TEXT    NOT NULL,
    user_intent    TEXT    NOT NULL,
    template_data  TEXT    NOT NULL,
    confidence     REAL    NOT NULL,
    similarity     REAL    DEFAULT 0,
    reason         TEXT    DEFAULT '',
    source         TEXT    NOT NULL,
    keywords       TEXT    DEFAULT '[]',
    created_at     REAL    NOT NULL,
    expires_at     REAL    NOT NULL,
    hit_count      INTEGER DEFAULT 0,
    last_used      REAL    NOT NULL,
    PRIMARY KEY (cache_key, template_id),
    CHECK (expires_at > created_at)
)
"""

_CREATE_INDEX = """
CREATE INDEX IF NOT EXISTS idx_template_cache_expires ON template_cache (expires_at)
"""

_UPSERT = """
INSERT INTO template_cache
    (cache_key, template_id, user_intent, template_data, confidence, similarity,
     reason, source, keywords, created_at, expires_at, hit_count, last_used)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (cache_key, template_id) DO UPDATE SET
    user_intent   = excluded.user_intent,
    template_data = excluded.template_data,
    confidence    = excluded.confidence,
    similarity    = excluded.similarity,
    reason        = excluded.reason,
    source        = excluded.source,
    keywords      = excluded.keywords,
    created_at    = excluded.created_at,
    expires_at    = excluded.expires_at,
    last_used     = excluded.last_used
"""

_SELECT = """
SELECT cache_key, template_id, user_intent, template_data, confidence, similarity,
       reason, source, keywords, created_at, expires_at, hit_count, last_used
  FROM template_cache
 WHERE cache_key = ? AND expires_at > ?
 ORDER BY confidence DESC, template_id ASC
"""

_TOUCH = """
UPDATE template_cache
   SET hit_count = hit_count + 1, last_used = ?
 WHERE cache_key = ? AND expires_at > ?
"""


def _from_ts(value: float | None) -> datetime.datetime | None:
    if value is None:
        return None
    return datetime.datetime.fromtimestamp(float(value), tz=datetime.timezone.utc)


class SQLiteCacheStore(PersistentKeyValueStore):
    """Async SQLite implementation of the Tier-2 cache store.

    Lifecycle:
        store = await SQLiteCacheStore.open(db_path)
        rows = await store.get(key)
        await store.close()
    """

    def __init__(self, db_path: str, clock: Callable[[], float] = time.time) -> None:
        self._db_path = db_path
        self._clock = clock
        self._conn = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def setup(self) -> None:
        import aiosqlite
        self._conn = await aiosqlite.connect(self._db_path)
        await self._conn.execute(_CREATE_TABLE)
        await self._conn.execute(_CREATE_INDEX)
        await self._conn.commit()
        logger.info("SQLiteCacheStore ready: %s", self._db_path)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    @classmethod
    async def open(cls, db_path: str, clock: Callable[[], float] = time.time) -> "SQLiteCacheStore":
        store = cls(db_path, clock=clock)
        await store.setup()
        return store

    def _require_conn(self) -> Any:
        if not self._conn:
            raise RuntimeError("SQLiteCacheStore.setup() not called")
        return self._conn

    # ------------------------------------------------------------------
    # PersistentKeyValueStore
    # ------------------------------------------------------------------

    async def get(self, key: str) -> list[CacheRow] | None:
        conn = self._require_conn()
        now = self._clock()
        await conn.execute(_TOUCH, (now, key, now))
        await conn.commit()
        async with conn.execute(_SELECT, (key, now)) as cur:
            rows = await cur.fetchall()
        if not rows:
            return None
        return [self._row_to_cache_row(r) for r in rows]

    async def upsert(self, key: str, rows: list[CacheRow], ttl_seconds: int) -> int:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        conn = self._require_conn()
        now = self._clock()
        for row in rows:
            await conn.execute(
                _UPSERT,
                (
                    key,
                    row.template_id,
                    row.user_intent,
                    json.dumps(row.template_data, sort_keys=True, ensure_ascii=False),
                    row.confidence,
                    row.similarity,
                    row.reason,
                    row.source,
                    json.dumps(list(row.keywords)),
                    now,
                    now + ttl_seconds,
                    row.hit_count,
                    now,
                ),
            )
        await conn.commit()
        logger.debug("SQLiteCacheStore: upserted %d rows for %s (ttl=%ds)", len(rows), key, ttl_seconds)
        return len(rows)

    async def delete(self, key: str | None = None) -> int:
        conn = self._require_conn()
        if key is None:
            cur = await conn.execute("DELETE FROM template_cache")
        else:
            cur = await conn.execute("DELETE FROM template_cache WHERE cache_key = ?", (key,))
        await conn.commit()
        return cur.rowcount

    async def purge_expired(self) -> int:
        conn = self._require_conn()
        cur = await conn.execute("DELETE FROM template_cache WHERE expires_at <= ?", (self._clock(),))
        await conn.commit()
        if cur.rowcount:
            logger.info("SQLiteCacheStore: purged %d expired rows", cur.rowcount)
        return cur.rowcount

    @staticmethod
    def _row_to_cache_row(row: Any) -> CacheRow:
        return CacheRow(
            cache_key=row[0],
            template_id=row[1],
            user_intent=row[2],
            template_data=json.loads(row[3]),
            confidence=row[4],
            similarity=row[5] or 0.0,
            reason=row[6] or "",
            source=row[7],
            keywords=json.loads(row[8] or "[]"),
            created_at=_from_ts(row[9]),
            expires_at=_from_ts(row[10]),
            hit_count=row[11] or 0,
            last_used=_from_ts(row[12]),
        )
