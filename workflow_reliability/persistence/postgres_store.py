"""Postgres-backed Tier-2 template cache.

Table:
  template_cache — (cache_key, template_id) -> serialized TemplateMatch

Rows carry their own expires_at; reads are TTL-gated in SQL and expired rows
are removed by purge_expired(). Writes are ON CONFLICT upserts, so concurrent
writers for the same key converge on the last write.
"""

from __future__ import annotations

import datetime
import json
import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import urlparse, urlunparse

from workflow_reliability.persistence.base import CacheRow, PersistentKeyValueStore

logger = logging.getLogger("workflow_reliability.persistence.postgres_store")

_POOL_MIN = int(os.getenv("POSTGRES_POOL_MIN", "1"))
_POOL_MAX = int(os.getenv("POSTGRES_POOL_MAX", "5"))

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_DDL_CACHE = """
CREATE TABLE IF NOT EXISTS template_cache (
    cache_key      TEXT             NOT NULL,
    template_id    TEXT             NOT NULL,
    user_intent    TEXT             NOT NULL,
    template_data  JSONB            NOT NULL,
    confidence     DOUBLE PRECISION NOT NULL DEFAULT 0,
    similarity     DOUBLE PRECISION NOT NULL DEFAULT 0,
    reason         TEXT             NOT NULL DEFAULT '',
    source         TEXT             NOT NULL,
    keywords       TEXT[]           NOT NULL DEFAULT '{}',
    created_at     TIMESTAMPTZ      NOT NULL DEFAULT now(),
    expires_at     TIMESTAMPTZ      NOT NULL,
    hit_count      INT              NOT NULL DEFAULT 0,
    last_used      TIMESTAMPTZ      NOT NULL DEFAULT now(),
    PRIMARY KEY (cache_key, template_id)
)
"""

_DDL_IDX_EXPIRES = (
    "CREATE INDEX IF NOT EXISTS idx_template_cache_expires "
    "ON template_cache (expires_at)"
)

_DDL_IDX_TEMPLATE = (
    "CREATE INDEX IF NOT EXISTS idx_template_cache_template "
    "ON template_cache (template_id)"
)

# ---------------------------------------------------------------------------
# DML
# ---------------------------------------------------------------------------

_GET = """
UPDATE template_cache
   SET hit_count = hit_count + 1,
       last_used = now()
 WHERE cache_key = %s
   AND expires_at > now()
RETURNING cache_key, template_id, user_intent, template_data, confidence,
          similarity, reason, source, keywords, created_at, expires_at,
          hit_count, last_used
"""

_UPSERT = """
INSERT INTO template_cache
    (cache_key, template_id, user_intent, template_data, confidence,
     similarity, reason, source, keywords, created_at, expires_at, hit_count, last_used)
VALUES (%s, %s, %s, %s::jsonb, %s, %s, %s, %s, %s, now(),
        now() + make_interval(secs => %s), %s, now())
ON CONFLICT (cache_key, template_id) DO UPDATE SET
    user_intent   = EXCLUDED.user_intent,
    template_data = EXCLUDED.template_data,
    confidence    = EXCLUDED.confidence,
    similarity    = EXCLUDED.similarity,
    reason        = EXCLUDED.reason,
    source        = EXCLUDED.source,
    keywords      = EXCLUDED.keywords,
    created_at    = now(),
    expires_at    = EXCLUDED.expires_at,
    last_used     = now()
"""

_DELETE_KEY = "DELETE FROM template_cache WHERE cache_key = %s"

_DELETE_ALL = "DELETE FROM template_cache"

_PURGE = "DELETE FROM template_cache WHERE expires_at <= now()"


# ---------------------------------------------------------------------------
# PostgresCacheStore
# ---------------------------------------------------------------------------


class PostgresCacheStore(PersistentKeyValueStore):
    """Tier-2 store on a psycopg AsyncConnectionPool (dict_row rows)."""

    def __init__(self, pool: Any) -> None:
        self._pool = pool

    async def setup(self) -> None:
        """Execute DDL (IF NOT EXISTS). Safe to call on every startup."""
        async with self._pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(_DDL_CACHE)
                await cur.execute(_DDL_IDX_EXPIRES)
                await cur.execute(_DDL_IDX_TEMPLATE)
        logger.info("[PostgresCacheStore] DDL setup complete")

    async def get(self, key: str) -> list[CacheRow] | None:
        async with self._pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(_GET, (key,))
                rows = await cur.fetchall()
        if not rows:
            return None
        result = [_row_to_cache_row(r) for r in rows]
        result.sort(key=lambda r: (-r.confidence, r.template_id))
        return result

    async def upsert(self, key: str, rows: list[CacheRow], ttl_seconds: int) -> int:
        if not rows:
            return 0
        async with self._pool.connection() as conn:
            async with conn.cursor() as cur:
                for row in rows:
                    await cur.execute(
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
                            list(row.keywords),
                            ttl_seconds,
                            row.hit_count,
                        ),
                    )
        logger.debug("[PostgresCacheStore] upserted %d rows for %s (ttl=%ds)", len(rows), key, ttl_seconds)
        return len(rows)

    async def delete(self, key: str | None = None) -> int:
        async with self._pool.connection() as conn:
            async with conn.cursor() as cur:
                if key is None:
                    await cur.execute(_DELETE_ALL)
                else:
                    await cur.execute(_DELETE_KEY, (key,))
                return cur.rowcount

    async def purge_expired(self) -> int:
        async with self._pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(_PURGE)
                return cur.rowcount


def _row_to_cache_row(row: dict[str, Any]) -> CacheRow:
    data = row["template_data"]
    if isinstance(data, str):
        data = json.loads(data)
    return CacheRow(
        cache_key=row["cache_key"],
        template_id=row["template_id"],
        user_intent=row["user_intent"],
        template_data=data,
        confidence=float(row["confidence"]),
        similarity=float(row.get("similarity") or 0.0),
        reason=row.get("reason") or "",
        source=row["source"],
        keywords=list(row.get("keywords") or []),
        created_at=_aware(row.get("created_at")),
        expires_at=_aware(row["expires_at"]),
        hit_count=int(row.get("hit_count") or 0),
        last_used=_aware(row.get("last_used")),
    )


def _aware(value: datetime.datetime | None) -> datetime.datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


@asynccontextmanager
async def make_cache_store(dsn: str) -> AsyncGenerator[PostgresCacheStore, None]:
    """Async context manager yielding a ready PostgresCacheStore.

    Opens an AsyncConnectionPool (min/max via POSTGRES_POOL_MIN / POSTGRES_POOL_MAX),
    runs setup() and closes the pool on exit.

    Usage::

        async with make_cache_store(os.environ["POSTGRES_DSN"]) as store:
            cache = TemplateCache(store=store)
    """
    from psycopg.rows import dict_row
    from psycopg_pool import AsyncConnectionPool

    logger.info(
        "Using Postgres template cache (pool min=%d max=%d): dsn=%s",
        _POOL_MIN, _POOL_MAX, _redact_dsn(dsn),
    )
    pool = AsyncConnectionPool(
        conninfo=dsn,
        min_size=_POOL_MIN,
        max_size=_POOL_MAX,
        kwargs={"autocommit": True, "prepare_threshold": 0, "row_factory": dict_row},
        open=False,
    )
    await pool.open()
    try:
        store = PostgresCacheStore(pool)
        await store.setup()
        yield store
    finally:
        await pool.close()


def _redact_dsn(dsn: str) -> str:
    """Replace password in DSN with *** for safe logging."""
    parsed = urlparse(dsn)
    if not parsed.password:
        return dsn
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username}:***@{netloc}"
    return urlunparse(parsed._replace(netloc=netloc))
