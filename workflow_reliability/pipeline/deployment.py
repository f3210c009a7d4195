"""Deployment runner — generate, deploy, and feed engine rejections back.

    generate → deploy ──ok──→ record_success (→ activate)
                  │ error
                  └→ ErrorFeedbackLoop.process → fixed? → redeploy once

At most two deploy calls per run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from workflow_reliability.client.engine_client import WorkflowEngineClient
from workflow_reliability.pipeline.feedback import DeploymentError, FixResult
from workflow_reliability.pipeline.orchestrator import GenerationResult, ReliabilityPipeline

logger = logging.getLogger("workflow_reliability.pipeline.deployment")


def _deploy_error(response: Any) -> bool:
    return not isinstance(response, dict) or "error" in response or "id" not in response


@dataclass
class DeploymentReport:
    generation: GenerationResult
    deployed: bool
    workflow_id: str | None = None
    attempts: int = 1
    activated: bool = False
    error: str | None = None
    fix: FixResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "deployed": self.deployed,
            "workflow_id": self.workflow_id,
            "attempts": self.attempts,
            "activated": self.activated,
            "error": self.error,
            "fix": self.fix.to_dict() if self.fix else None,
            "generation": self.generation.to_dict(),
        }


class DeploymentRunner:
    def __init__(
        self,
        pipeline: ReliabilityPipeline,
        client: WorkflowEngineClient,
        *,
        activate: bool = False,
    ) -> None:
        self._pipeline = pipeline
        self._client = client
        self._activate = activate

    async def run(self, intent_text: str, context: dict[str, Any] | None = None) -> DeploymentReport:
        generation = await self._pipeline.generate(intent_text, context)
        return await self.deploy(generation, intent_text)

    async def deploy(self, generation: GenerationResult, intent_text: str | None = None) -> DeploymentReport:
        feedback = self._pipeline.feedback
        response = await self._client.deploy(generation.workflow)
        if not _deploy_error(response):
            if feedback is not None:
                await feedback.record_success(generation.template_id, intent_text)
            return await self._finish(generation, response["id"], attempts=1)

        error = DeploymentError.from_response(
            response if isinstance(response, dict) else {"error": str(response)},
            intent=intent_text,
            template_id=generation.template_id,
        )
        logger.warning("[Deployment] %s rejected: %s", generation.template_id, error.error)
        if feedback is None:
            return DeploymentReport(generation, deployed=False, error=error.error)

        fix = await feedback.process(error, generation.workflow, generation.template_id, intent_text)
        if not fix.success:
            return DeploymentReport(generation, deployed=False, error=error.error, fix=fix)

        retry = await self._client.deploy(fix.workflow)
        if _deploy_error(retry):
            detail = retry.get("error") if isinstance(retry, dict) else str(retry)
            logger.warning("[Deployment] Redeploy of repaired workflow failed: %s", detail)
            return DeploymentReport(generation, deployed=False, attempts=2, error=str(detail), fix=fix)
        return await self._finish(generation, retry["id"], attempts=2, fix=fix)

    async def _finish(
        self,
        generation: GenerationResult,
        workflow_id: str,
        *,
        attempts: int,
        fix: FixResult | None = None,
    ) -> DeploymentReport:
        activated = False
        if self._activate:
            result = await self._client.activate(workflow_id)
            activated = isinstance(result, dict) and "error" not in result
        logger.info("[Deployment] %s deployed as %s (attempts=%d)", generation.template_id, workflow_id, attempts)
        return DeploymentReport(
            generation,
            deployed=True,
            workflow_id=str(workflow_id),
            attempts=attempts,
            activated=activated,
            fix=fix,
        )
