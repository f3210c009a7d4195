"""DeploymentRunner: deploy, feed rejections back, redeploy at most once."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from workflow_reliability.knowledge.library import TemplateLibrary
from workflow_reliability.pipeline.autofix import AutoFixEngine
from workflow_reliability.pipeline.deployment import DeploymentRunner
from workflow_reliability.pipeline.discovery import TemplateDiscovery
from workflow_reliability.pipeline.feasibility import FeasibilityChecker
from workflow_reliability.pipeline.feedback import DeploymentError, ErrorFeedbackLoop, FixResult
from workflow_reliability.pipeline.graph_ir import WorkflowNode, chain
from workflow_reliability.pipeline.orchestrator import ReliabilityPipeline

INTENT = "send me a daily email digest"


def _pipeline(library: TemplateLibrary | None = None) -> ReliabilityPipeline:
    library = library or TemplateLibrary()
    checker = FeasibilityChecker()
    autofix = AutoFixEngine()
    return ReliabilityPipeline(
        TemplateDiscovery(library),
        checker=checker,
        autofix=autofix,
        feedback=ErrorFeedbackLoop(checker, autofix, library),
        library=library,
    )


def _client(*deploy_responses, activate=None) -> MagicMock:
    client = MagicMock()
    client.deploy = AsyncMock(side_effect=list(deploy_responses))
    client.activate = AsyncMock(return_value=activate if activate is not None else {"active": True})
    return client


def _fixed_workflow():
    return chain("Fixed", [
        WorkflowNode("1", "Start", "n8n-nodes-base.manualTrigger"),
        WorkflowNode("2", "Mail", "n8n-nodes-base.emailSend", parameters={"toEmail": "a@b.io"}),
    ])


class TestDeploy:
    @pytest.mark.asyncio
    async def test_success_records_outcome(self):
        library = TemplateLibrary()
        before = library.get("scheduled-email-digest").usage_count
        client = _client({"id": "wf-1"})

        report = await DeploymentRunner(_pipeline(library), client).run(INTENT)

        assert report.deployed
        assert report.workflow_id == "wf-1"
        assert report.attempts == 1
        assert not report.activated
        client.activate.assert_not_called()
        assert library.get("scheduled-email-digest").usage_count == before + 1

    @pytest.mark.asyncio
    async def test_activation(self):
        client = _client({"id": 42})
        report = await DeploymentRunner(_pipeline(), client, activate=True).run(INTENT)
        assert report.activated
        assert report.workflow_id == "42"
        client.activate.assert_awaited_once_with(42)

    @pytest.mark.asyncio
    async def test_activation_failure_still_deployed(self):
        client = _client({"id": "wf-1"}, activate={"error": "HTTP 400"})
        report = await DeploymentRunner(_pipeline(), client, activate=True).run(INTENT)
        assert report.deployed
        assert not report.activated

    @pytest.mark.asyncio
    async def test_rejection_without_feedback_loop(self):
        pipeline = _pipeline()
        pipeline.feedback = None
        client = _client({"error": "HTTP 500", "detail": "internal"})
        report = await DeploymentRunner(pipeline, client).run(INTENT)
        assert not report.deployed
        assert report.error == "internal"
        assert client.deploy.await_count == 1

    @pytest.mark.asyncio
    async def test_response_without_id_is_an_error(self):
        pipeline = _pipeline()
        pipeline.feedback = None
        report = await DeploymentRunner(pipeline, _client({"success": True})).run(INTENT)
        assert not report.deployed


class TestFeedbackRetry:
    def _pipeline_with_fix(self, fix: FixResult) -> ReliabilityPipeline:
        pipeline = _pipeline()
        pipeline.feedback = MagicMock()
        pipeline.feedback.process = AsyncMock(return_value=fix)
        pipeline.feedback.record_success = AsyncMock()
        return pipeline

    @pytest.mark.asyncio
    async def test_fixed_workflow_redeployed(self):
        fix = FixResult(success=True, workflow=_fixed_workflow(), applied_fixes=["Set name"])
        pipeline = self._pipeline_with_fix(fix)
        client = _client({"error": "HTTP 400", "detail": "bad"}, {"id": "wf-2"})

        report = await DeploymentRunner(pipeline, client).run(INTENT)

        assert report.deployed
        assert report.attempts == 2
        assert report.workflow_id == "wf-2"
        assert report.fix is fix
        assert client.deploy.await_args_list[1].args[0] is fix.workflow
        error, workflow, template_id, intent = pipeline.feedback.process.await_args.args
        assert isinstance(error, DeploymentError)
        assert error.http_status == 400
        assert template_id == "scheduled-email-digest"
        assert intent == INTENT
        pipeline.feedback.record_success.assert_not_called()

    @pytest.mark.asyncio
    async def test_unfixable_not_redeployed(self):
        fix = FixResult(success=False, workflow=_fixed_workflow())
        client = _client({"error": "HTTP 400", "detail": "bad"})
        report = await DeploymentRunner(self._pipeline_with_fix(fix), client).run(INTENT)
        assert not report.deployed
        assert report.attempts == 1
        assert report.fix is fix
        assert client.deploy.await_count == 1

    @pytest.mark.asyncio
    async def test_second_rejection_gives_up(self):
        fix = FixResult(success=True, workflow=_fixed_workflow())
        client = _client({"error": "HTTP 400", "detail": "bad"}, {"error": "HTTP 400", "detail": "still bad"})
        report = await DeploymentRunner(self._pipeline_with_fix(fix), client).run(INTENT)
        assert not report.deployed
        assert report.attempts == 2
        assert report.error == "HTTP 400"
        assert client.deploy.await_count == 2

    @pytest.mark.asyncio
    async def test_report_to_dict(self):
        fix = FixResult(success=False, workflow=_fixed_workflow())
        client = _client({"error": "boom"})
        report = await DeploymentRunner(self._pipeline_with_fix(fix), client).run(INTENT)
        payload = report.to_dict()
        assert payload["deployed"] is False
        assert payload["fix"]["success"] is False
        assert payload["generation"]["template_id"] == "scheduled-email-digest"
