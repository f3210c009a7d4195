"""SQLiteCacheStore against a real temporary database file."""

from __future__ import annotations

import datetime

import pytest
import pytest_asyncio

from workflow_reliability.persistence.base import CacheRow
from workflow_reliability.persistence.sqlite_store import SQLiteCacheStore


class FakeClock:
    def __init__(self, start: float = 1_760_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def _row(template_id: str, confidence: float) -> CacheRow:
    return CacheRow(
        cache_key="template:k",
        template_id=template_id,
        user_intent="send email",
        template_data={"template": {"id": template_id}, "confidence": confidence},
        confidence=confidence,
        source="curated",
        expires_at=datetime.datetime(2099, 1, 1, tzinfo=datetime.timezone.utc),
        keywords=["send", "email"],
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def store(tmp_path, clock):
    s = await SQLiteCacheStore.open(str(tmp_path / "cache.db"), clock=clock)
    yield s
    await s.close()


class TestSQLiteCacheStore:
    @pytest.mark.asyncio
    async def test_upsert_and_get_sorted(self, store):
        assert await store.upsert("template:k", [_row("b", 0.4), _row("a", 0.9)], 60) == 2
        rows = await store.get("template:k")
        assert [r.template_id for r in rows] == ["a", "b"]
        assert rows[0].template_data["template"]["id"] == "a"
        assert rows[0].keywords == ["send", "email"]
        assert rows[0].hit_count == 1

    @pytest.mark.asyncio
    async def test_upsert_replaces_on_conflict(self, store):
        await store.upsert("template:k", [_row("a", 0.5)], 60)
        await store.upsert("template:k", [_row("a", 0.8)], 60)
        rows = await store.get("template:k")
        assert len(rows) == 1
        assert rows[0].confidence == 0.8

    @pytest.mark.asyncio
    async def test_expired_rows_hidden_and_purged(self, store, clock):
        await store.upsert("template:k", [_row("a", 0.5)], 60)
        clock.now += 61
        assert await store.get("template:k") is None
        assert await store.purge_expired() == 1
        assert await store.purge_expired() == 0

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.upsert("template:k", [_row("a", 0.5), _row("b", 0.5)], 60)
        await store.upsert("template:other", [_row("c", 0.5)], 60)
        assert await store.delete("template:k") == 2
        assert await store.get("template:k") is None
        assert await store.delete() == 1

    @pytest.mark.asyncio
    async def test_non_positive_ttl_rejected(self, store):
        with pytest.raises(ValueError):
            await store.upsert("template:k", [_row("a", 0.5)], 0)

    @pytest.mark.asyncio
    async def test_requires_setup(self, tmp_path):
        with pytest.raises(RuntimeError):
            await SQLiteCacheStore(str(tmp_path / "x.db")).get("template:k")
