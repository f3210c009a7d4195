"""Template statistics store — persistent success/usage counters per template.

The Template Library keeps success_rate / usage_count / last_used in memory
and writes every recorded deployment outcome through to this SQLite table so
the moving averages survive restarts.

Table schema:
    template_stats (
        template_id    TEXT PRIMARY KEY,
        success_rate   REAL,               -- EMA of deployment outcomes
        usage_count    INTEGER DEFAULT 0,  -- recorded outcomes
        last_used      REAL DEFAULT NULL,  -- Unix timestamp
        updated_at     REAL NOT NULL
    )

Later migration adds:
    success_count  INTEGER DEFAULT 0
    failure_count  INTEGER DEFAULT 0
"""

from __future__ import annotations

import datetime
import logging
import time
from typing import Any

logger = logging.getLogger("workflow_reliability.persistence.stats_store")


_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS template_stats (
    template_id    TEXT    PRIMARY KEY,
    success_rate   REAL,
    usage_count    INTEGER DEFAULT 0,
    last_used      REAL    DEFAULT NULL,
    updated_at     REAL    NOT NULL,
    success_count  INTEGER DEFAULT 0,
    failure_count  INTEGER DEFAULT 0
)
"""

_COUNTER_COLUMNS: list[tuple[str, str]] = [
    ("success_count", "INTEGER DEFAULT 0"),
    ("failure_count", "INTEGER DEFAULT 0"),
]

_UPSERT = """
INSERT INTO template_stats
    (template_id, success_rate, usage_count, last_used, updated_at, success_count, failure_count)
VALUES (?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (template_id) DO UPDATE SET
    success_rate  = excluded.success_rate,
    usage_count   = excluded.usage_count,
    last_used     = excluded.last_used,
    updated_at    = excluded.updated_at,
    success_count = template_stats.success_count + excluded.success_count,
    failure_count = template_stats.failure_count + excluded.failure_count
"""


def _to_ts(value: datetime.datetime | None) -> float | None:
    return value.timestamp() if value is not None else None


def _from_ts(value: float | None) -> datetime.datetime | None:
    if value is None:
        return None
    return datetime.datetime.fromtimestamp(float(value), tz=datetime.timezone.utc)


class TemplateStatsStore:
    """Async SQLite-backed store for per-template reliability statistics.

    Lifecycle:
        store = await TemplateStatsStore.open(db_path)
        await store.record(...)
        await store.close()
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._conn = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def setup(self) -> None:
        """Open the SQLite connection, create the table, and run migrations."""
        import aiosqlite
        self._conn = await aiosqlite.connect(self._db_path)
        await self._conn.execute(_CREATE_TABLE)
        await self._conn.commit()
        await self._migrate_schema()
        logger.info("TemplateStatsStore ready: %s", self._db_path)

    async def _migrate_schema(self) -> None:
        """Add outcome counter columns to tables created before they existed."""
        if not self._conn:
            return
        existing_cols: set[str] = set()
        async with self._conn.execute("PRAGMA table_info(template_stats)") as cur:
            async for row in cur:
                existing_cols.add(row[1])

        added: list[str] = []
        for col_name, col_def in _COUNTER_COLUMNS:
            if col_name not in existing_cols:
                await self._conn.execute(
                    f"ALTER TABLE template_stats ADD COLUMN {col_name} {col_def}"
                )
                added.append(col_name)

        if added:
            await self._conn.commit()
            logger.info("TemplateStatsStore: migrated schema, added columns: %s", added)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    @classmethod
    async def open(cls, db_path: str) -> "TemplateStatsStore":
        store = cls(db_path)
        await store.setup()
        return store

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def record(
        self,
        template_id: str,
        success_rate: float,
        usage_count: int,
        last_used: datetime.datetime | None,
        success: bool,
    ) -> None:
        """Persist the library's current statistics for one template."""
        if not self._conn:
            raise RuntimeError("TemplateStatsStore.setup() not called")
        await self._conn.execute(
            _UPSERT,
            (
                template_id, success_rate, usage_count, _to_ts(last_used), time.time(),
                1 if success else 0, 0 if success else 1,
            ),
        )
        await self._conn.commit()
        logger.debug(
            "TemplateStatsStore: recorded %s success=%s rate=%.3f",
            template_id, success, success_rate,
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get(self, template_id: str) -> dict[str, Any] | None:
        if not self._conn:
            return None
        async with self._conn.execute(
            "SELECT template_id, success_rate, usage_count, last_used, success_count, failure_count "
            "FROM template_stats WHERE template_id = ?",
            (template_id,),
        ) as cur:
            row = await cur.fetchone()
        return self._row_to_dict(row) if row else None

    async def load_all(self) -> dict[str, dict[str, Any]]:
        """Return {template_id: stats} for every template with recorded outcomes."""
        if not self._conn:
            return {}
        async with self._conn.execute(
            "SELECT template_id, success_rate, usage_count, last_used, success_count, failure_count "
            "FROM template_stats"
        ) as cur:
            rows = await cur.fetchall()
        return {r[0]: self._row_to_dict(r) for r in rows}

    @staticmethod
    def _row_to_dict(row: Any) -> dict[str, Any]:
        return {
            "template_id": row[0],
            "success_rate": row[1],
            "usage_count": row[2],
            "last_used": _from_ts(row[3]),
            "success_count": row[4],
            "failure_count": row[5],
        }
