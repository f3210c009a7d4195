"""Template discovery: ranking, threshold fallback, cache use and catalogue degradation."""

from __future__ import annotations

import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from workflow_reliability.errors import ExternalServiceError
from workflow_reliability.knowledge.cache import TemplateCache
from workflow_reliability.knowledge.catalogue import parse_catalogue_item
from workflow_reliability.knowledge.intent import extract_intent
from workflow_reliability.knowledge.library import TemplateLibrary
from workflow_reliability.pipeline.discovery import TemplateDiscovery
from workflow_reliability.pipeline.fallback import FALLBACK_TEMPLATE_ID

NOW = datetime.datetime(2026, 3, 1, tzinfo=datetime.timezone.utc)


def _discovery(**kwargs) -> TemplateDiscovery:
    library = kwargs.pop("library", None) or TemplateLibrary()
    return TemplateDiscovery(library, clock=lambda: NOW, **kwargs)


def _community_template():
    return parse_catalogue_item({
        "id": 77,
        "name": "Digest mailer",
        "keywords": ["daily", "email", "digest"],
        "totalViews": 10,
        "workflow": {
            "nodes": [
                {"id": "1", "name": "Start", "type": "n8n-nodes-base.manualTrigger", "parameters": {}},
                {"id": "2", "name": "Mail", "type": "n8n-nodes-base.emailSend",
                 "parameters": {"toEmail": "a@b.io"}},
            ],
            "connections": {"Start": {"main": [[{"node": "Mail", "type": "main", "index": 0}]]}},
        },
    })


class TestDiscover:
    @pytest.mark.asyncio
    async def test_daily_email_digest(self):
        result = await _discovery().discover(extract_intent("send me a daily email digest"))
        assert result.best.template_id == "scheduled-email-digest"
        assert not result.is_fallback
        assert result.tier == "discovery"
        assert all(m.confidence >= 0.3 for m in result.matches)

    @pytest.mark.asyncio
    async def test_max_results(self):
        result = await _discovery(max_results=1).discover(extract_intent("send me a daily email digest"))
        assert len(result.matches) == 1

    @pytest.mark.asyncio
    async def test_empty_intent_gets_fallback(self):
        result = await _discovery().discover(extract_intent("???"))
        assert result.is_fallback
        assert "no usable keywords" in result.best.reason

    @pytest.mark.asyncio
    async def test_no_candidates_gets_fallback(self):
        result = await _discovery().discover(extract_intent("zzzz qqqq"))
        assert result.best.template_id == FALLBACK_TEMPLATE_ID
        assert "No template shares a keyword" in result.best.reason

    @pytest.mark.asyncio
    async def test_below_threshold_gets_fallback(self):
        result = await _discovery(min_confidence=0.99).discover(extract_intent("send me a daily email digest"))
        assert result.is_fallback
        assert "below 0.99" in result.best.reason


class TestCatalogue:
    @pytest.mark.asyncio
    async def test_community_templates_registered(self):
        library = TemplateLibrary()
        catalogue = MagicMock()
        catalogue.search = AsyncMock(return_value=[_community_template()])
        result = await _discovery(library=library, catalogue=catalogue).discover(
            extract_intent("send me a daily email digest"),
        )
        assert "community-77" in library
        assert "community-77" in {m.template_id for m in result.matches}
        assert result.degraded == []

    @pytest.mark.asyncio
    async def test_catalogue_failure_degrades(self):
        catalogue = MagicMock()
        catalogue.search = AsyncMock(side_effect=ExternalServiceError("catalogue", "timed out"))
        result = await _discovery(catalogue=catalogue).discover(extract_intent("send me a daily email digest"))
        assert result.best.template_id == "scheduled-email-digest"
        assert result.degraded == ["catalogue"]


class TestCache:
    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self):
        cache = TemplateCache()
        library = TemplateLibrary()
        discovery = _discovery(library=library, cache=cache)
        intent = extract_intent("send me a daily email digest")

        first = await discovery.discover(intent)
        second = await discovery.discover(intent)
        assert not first.cache_hit
        assert second.cache_hit and second.tier == "memory"
        assert second.best.template_id == first.best.template_id

    @pytest.mark.asyncio
    async def test_empty_intent_skips_cache(self):
        cache = MagicMock()
        cache.lookup = AsyncMock()
        await _discovery(cache=cache).discover(extract_intent(""))
        cache.lookup.assert_not_called()
