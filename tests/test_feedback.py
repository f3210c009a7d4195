"""Error Feedback Loop: signatures, pattern learning and bounded repair strategies."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from workflow_reliability.knowledge.library import TemplateLibrary
from workflow_reliability.pipeline.autofix import AutoFixEngine
from workflow_reliability.pipeline.feasibility import FeasibilityChecker, IssueCode
from workflow_reliability.pipeline.feedback import (
    DeploymentError,
    ErrorCategory,
    ErrorFeedbackLoop,
    ErrorPatternTable,
    ErrorSeverity,
    FixResult,
    categorize,
    severity,
    signature,
)
from workflow_reliability.pipeline.graph_ir import WorkflowGraph, WorkflowNode, chain


def _loop(**kwargs) -> ErrorFeedbackLoop:
    return ErrorFeedbackLoop(
        FeasibilityChecker(),
        AutoFixEngine(clock=lambda: 1_700_000_000.0),
        clock=lambda: 1_700_000_123.5,
        **kwargs,
    )


def _valid_workflow() -> WorkflowGraph:
    return chain("Valid", [
        WorkflowNode("1", "Start", "n8n-nodes-base.manualTrigger"),
        WorkflowNode("2", "Mail", "n8n-nodes-base.emailSend", parameters={"toEmail": "a@b.io"}),
    ])


class TestSignature:
    def test_digits_collapse(self):
        assert signature("node 3 failed") == signature("node 47 failed") == "node N failed"

    def test_quotes_and_case(self):
        assert signature("Parameter 'URL' is missing") == "parameter url is missing"

    def test_truncated(self):
        assert len(signature("x" * 200)) == 50


class TestCategorize:
    @pytest.mark.parametrize("message, expected", [
        ("Missing required parameter url", ErrorCategory.MISSING_PARAMETER),
        ("Connection target node not found", ErrorCategory.INVALID_CONNECTION),
        ("Duplicate node id 'a'", ErrorCategory.DUPLICATE_ID),
        ("Could not parse JSON body", ErrorCategory.MALFORMED_JSON),
        ("Unrecognized node type: n8n-nodes-base.googleSheets", ErrorCategory.BLOCKED_NODE),
        ("Invalid credentials supplied", ErrorCategory.AUTHENTICATION),
        ("Request timeout", ErrorCategory.NETWORK),
        ("Something odd happened", ErrorCategory.UNKNOWN),
    ])
    def test_rules(self, message, expected):
        assert categorize(message) is expected

    def test_severity(self):
        assert severity("missing url") is ErrorSeverity.LOW
        assert severity("auth failed") is ErrorSeverity.HIGH
        assert severity("weird") is ErrorSeverity.MEDIUM


class TestDeploymentError:
    def test_json_detail_message(self):
        err = DeploymentError.from_response(
            {"error": "HTTP 400", "detail": json.dumps({"message": "request/body must have required property 'name'"})},
            intent="x", template_id="t",
        )
        assert err.http_status == 400
        assert err.error == "request/body must have required property 'name'"
        assert (err.intent, err.template_id) == ("x", "t")

    def test_plain_detail_and_no_status(self):
        err = DeploymentError.from_response({"error": "connection refused", "detail": "engine down"})
        assert err.http_status is None
        assert err.error == "engine down"

    def test_error_only(self):
        assert DeploymentError.from_response({"error": "boom"}).error == "boom"


class TestPatternTable:
    def test_seeded(self):
        table = ErrorPatternTable()
        assert len(table) == 5
        assert table.get("missing required parameter").frequency == 25

    def test_record_creates_then_bumps(self):
        table = ErrorPatternTable(seed=False)
        first = table.record("node 3 failed")
        second = table.record("node 47 failed")
        assert first is second
        assert second.frequency == 2
        assert len(table) == 1


class TestProcess:
    @pytest.mark.asyncio
    async def test_missing_parameter_fixed_by_known_rules(self):
        wf = chain("x", [
            WorkflowNode("1", "Start", "n8n-nodes-base.manualTrigger"),
            WorkflowNode("2", "Fetch", "n8n-nodes-base.httpRequest"),
        ])
        result = await _loop().process(DeploymentError("Missing required parameter url"), wf)
        assert result.success
        assert result.strategies == ["known"]
        assert result.confidence == pytest.approx(0.7)
        assert result.category is ErrorCategory.MISSING_PARAMETER
        assert result.workflow.get_node("Fetch").param("url")

    @pytest.mark.asyncio
    async def test_node_and_structural_fixes(self):
        wf = WorkflowGraph(name="", settings=None, nodes=(
            WorkflowNode("1", "Run", "n8n-nodes-base.code"),
            WorkflowNode("2", "Mail", "n8n-nodes-base.emailSend", parameters={"toEmail": "a@b.io"}),
        ))
        result = await _loop().process(DeploymentError("Something odd happened"), wf)
        assert result.strategies == ["node", "structural"]
        assert result.workflow.name == "Workflow 1700000123500"
        assert result.workflow.settings == {"executionOrder": "v1"}
        assert result.workflow.triggers()
        assert result.workflow.get_node("Run").param("jsCode")
        assert result.success
        assert result.confidence == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_webhook_and_http_method(self):
        wf = chain("x", [
            WorkflowNode("1", "Hook", "n8n-nodes-base.webhook"),
            WorkflowNode("2", "Call", "n8n-nodes-base.httpRequest",
                         parameters={"url": "https://x.io", "method": "post"}),
        ])
        result = await _loop().process(DeploymentError("Something odd happened"), wf)
        hook = result.workflow.get_node("Hook")
        assert hook.param("path") == "webhook-123500"
        assert hook.param("httpMethod") == "POST"
        assert result.workflow.get_node("Call").param("method") == "POST"

    @pytest.mark.asyncio
    async def test_nothing_to_fix_fails(self):
        result = await _loop().process(DeploymentError("Something odd happened"), _valid_workflow())
        assert not result.success
        assert result.applied_fixes == []
        assert result.confidence == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_still_invalid_confidence_floor(self):
        wf = chain("x", [
            WorkflowNode("1", "Start", "n8n-nodes-base.manualTrigger"),
            WorkflowNode("2", "Mystery", "n8n-nodes-base.mystery"),
        ])
        result = await _loop().process(DeploymentError("Something odd happened"), wf)
        assert not result.success
        assert result.remaining_errors
        assert 0.1 <= result.confidence <= 0.9
        assert result.confidence == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_learns_codes_for_signature(self):
        loop = _loop()
        wf = chain("x", [
            WorkflowNode("1", "Start", "n8n-nodes-base.manualTrigger"),
            WorkflowNode("2", "Fetch", "n8n-nodes-base.httpRequest"),
        ])
        await loop.process(DeploymentError("Missing required parameter url"), wf)
        pattern = loop.patterns.get(signature("Missing required parameter url"))
        assert pattern.autofix_available
        assert IssueCode.MISSING_URL in pattern.learned_codes
        assert "placeholder url" in pattern.fix_strategy

    @pytest.mark.asyncio
    async def test_failure_recorded_and_cache_invalidated(self):
        library = TemplateLibrary()
        cache = MagicMock()
        cache.invalidate = AsyncMock(return_value=1)
        before = library.get("webhook-to-email")
        await _loop(library=library, cache=cache).process(
            DeploymentError("Something odd happened"), _valid_workflow(),
            template_id="webhook-to-email", intent="send an email",
        )
        after = library.get("webhook-to-email")
        assert after.usage_count == before.usage_count + 1
        assert after.success_rate < before.success_rate
        cache.invalidate.assert_awaited_once_with("send an email")

    @pytest.mark.asyncio
    async def test_record_success(self):
        library = TemplateLibrary()
        before = library.get("webhook-to-email").usage_count
        await _loop(library=library).record_success("webhook-to-email")
        assert library.get("webhook-to-email").usage_count == before + 1


class TestGenerativeStrategy:
    @pytest.mark.asyncio
    async def test_used_only_when_nothing_else_applied(self):
        replacement = chain("Regenerated", [
            WorkflowNode("9", "Hook", "n8n-nodes-base.webhook", parameters={"path": "p"}),
            WorkflowNode("10", "Reply", "n8n-nodes-base.respondToWebhook"),
        ])
        llm = MagicMock()
        llm.complete = AsyncMock(return_value=f"Here you go:\n{replacement.to_workflow_json_str()}\n")
        result = await _loop(llm=llm).process(
            DeploymentError("Something odd happened"), _valid_workflow(), intent="reply to webhooks",
        )
        assert result.strategies == ["generative"]
        assert result.success
        assert [n.name for n in result.workflow.nodes] == ["Hook", "Reply"]
        assert result.confidence == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_skipped_without_intent(self):
        llm = MagicMock()
        llm.complete = AsyncMock(return_value="{}")
        await _loop(llm=llm).process(DeploymentError("Something odd happened"), _valid_workflow())
        llm.complete.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", [
        '{"nodes": "none", "connections": 5}',
        '{"nodes": [7, null], "meta": ["x"]}',
        "not json at all",
        "{broken: json}",
    ])
    async def test_unusable_reply_applies_nothing(self, reply):
        llm = MagicMock()
        llm.complete = AsyncMock(return_value=reply)
        result = await _loop(llm=llm).process(
            DeploymentError("Something odd happened"), _valid_workflow(), intent="do a thing",
        )
        assert isinstance(result, FixResult)
        assert result.strategies == []
        assert not result.success
        llm.complete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_malformed_node_values_tolerated(self):
        reply = json.dumps({
            "nodes": [{"id": "a", "name": "A", "type": "n8n-nodes-base.webhook", "position": [None, 0]}],
            "connections": {"A": {"main": [[{"node": "A", "index": None}], 3]}},
        })
        llm = MagicMock()
        llm.complete = AsyncMock(return_value=reply)
        result = await _loop(llm=llm).process(
            DeploymentError("Something odd happened"), _valid_workflow(), intent="do a thing",
        )
        assert result.strategies == ["generative"]
        assert result.workflow.get_node("A").position == (250, 0)

    @pytest.mark.asyncio
    async def test_llm_failure_degrades(self):
        llm = MagicMock()
        llm.complete = AsyncMock(side_effect=RuntimeError("rate limited"))
        result = await _loop(llm=llm).process(
            DeploymentError("Something odd happened"), _valid_workflow(), intent="x",
        )
        assert not result.success
        assert result.strategies == []


class TestStatistics:
    @pytest.mark.asyncio
    async def test_statistics(self):
        loop = _loop()
        await loop.process(DeploymentError("node 3 failed"), _valid_workflow())
        await loop.process(DeploymentError("node 47 failed"), _valid_workflow())
        stats = loop.statistics()
        assert stats["total_patterns"] == 6
        assert stats["most_frequent"][0]["signature"] == "missing required parameter"
        node_pattern = loop.patterns.get("node N failed")
        assert node_pattern.frequency == 2
        assert stats["categories"]["UNKNOWN"] == 2
