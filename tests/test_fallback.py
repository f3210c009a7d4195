"""Guaranteed Fallback: always feasible, re-validated on every hand-out."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from workflow_reliability.errors import FallbackIntegrityError
from workflow_reliability.pipeline.fallback import (
    FALLBACK_CONFIDENCE,
    FALLBACK_TEMPLATE_ID,
    GuaranteedFallback,
    fallback_match,
    fallback_template,
    is_fallback,
)
from workflow_reliability.pipeline.feasibility import FeasibilityChecker, FeasibilityResult


class TestFallbackTemplate:
    def test_passes_feasibility(self):
        result = FeasibilityChecker().check(fallback_template().workflow)
        assert result.passed
        assert result.errors == []

    def test_two_node_webhook_respond(self):
        wf = fallback_template().workflow
        assert [n.type for n in wf.nodes] == [
            "n8n-nodes-base.webhook",
            "n8n-nodes-base.respondToWebhook",
        ]

    def test_match_reason_and_confidence(self):
        match = fallback_match("nothing matched")
        assert match.template_id == FALLBACK_TEMPLATE_ID
        assert match.confidence == FALLBACK_CONFIDENCE
        assert match.reason == "Guaranteed fallback: nothing matched"
        assert is_fallback(match)
        assert is_fallback(match.template)


class TestGuaranteedFallback:
    def test_provide_returns_passing_result(self):
        match, result = GuaranteedFallback().provide("no candidates")
        assert result.passed
        assert is_fallback(match)

    def test_integrity_failure_raises(self, caplog):
        checker = MagicMock()
        checker.check.return_value = FeasibilityResult(node_compliance=False)
        with caplog.at_level("CRITICAL", logger="workflow_reliability.pipeline.fallback"):
            with pytest.raises(FallbackIntegrityError):
                GuaranteedFallback(checker).provide("boom")
        assert any(r.levelname == "CRITICAL" for r in caplog.records)
