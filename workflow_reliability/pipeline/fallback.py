"""Guaranteed Fallback — the static, pre-verified reliability floor.

A two-node webhook -> respond workflow that deploys on any engine without
credentials. It is re-validated every time it is handed out; if that ever
fails the package itself is broken, which is logged at CRITICAL and raised
as FallbackIntegrityError.
"""

from __future__ import annotations

import logging

from workflow_reliability.errors import FallbackIntegrityError
from workflow_reliability.knowledge.templates import Complexity, Template, TemplateMatch, TemplateSource
from workflow_reliability.pipeline.actions import ActionType
from workflow_reliability.pipeline.feasibility import FeasibilityChecker, FeasibilityResult
from workflow_reliability.pipeline.graph_ir import WorkflowNode, chain

logger = logging.getLogger("workflow_reliability.pipeline.fallback")

FALLBACK_TEMPLATE_ID = "simple-webhook-fallback"
FALLBACK_CONFIDENCE = 0.95
FALLBACK_SUCCESS_RATE = 0.99


def fallback_template() -> Template:
    workflow = chain("Simple Webhook", [
        WorkflowNode(
            id=f"{FALLBACK_TEMPLATE_ID}-1",
            name="Webhook",
            type=ActionType.WEBHOOK.value,
            parameters={"httpMethod": "POST", "path": "simple-webhook", "responseMode": "responseNode"},
        ),
        WorkflowNode(
            id=f"{FALLBACK_TEMPLATE_ID}-2",
            name="Respond to Webhook",
            type=ActionType.RESPOND_TO_WEBHOOK.value,
            parameters={"respondWith": "json", "responseBody": '={"status": "received"}'},
        ),
    ])
    return Template(
        id=FALLBACK_TEMPLATE_ID,
        name="Simple Webhook",
        description="Minimal webhook that acknowledges every request.",
        category="general",
        keywords=("webhook", "simple", "basic", "fallback"),
        workflow=workflow,
        complexity=Complexity.SIMPLE,
        success_rate=FALLBACK_SUCCESS_RATE,
        usage_count=1000,
        source=TemplateSource.CURATED,
    )


def fallback_match(reason: str = "No template cleared the confidence threshold") -> TemplateMatch:
    return TemplateMatch(
        template=fallback_template(),
        confidence=FALLBACK_CONFIDENCE,
        similarity=0.0,
        reason=f"Guaranteed fallback: {reason}",
    )


def is_fallback(match_or_template: TemplateMatch | Template) -> bool:
    template = match_or_template.template if isinstance(match_or_template, TemplateMatch) else match_or_template
    return template.id == FALLBACK_TEMPLATE_ID


class GuaranteedFallback:
    """Hands out the fallback workflow after verifying it."""

    def __init__(self, checker: FeasibilityChecker | None = None) -> None:
        self._checker = checker or FeasibilityChecker()

    def provide(self, reason: str) -> tuple[TemplateMatch, FeasibilityResult]:
        """Return the fallback match and its (passing) feasibility result.

        Raises FallbackIntegrityError if the static workflow fails validation.
        """
        match = fallback_match(reason)
        result = self._checker.check(match.template.workflow)
        if not result.passed:
            logger.critical(
                "[GuaranteedFallback] Static fallback workflow failed validation: %s",
                result.human_readable,
            )
            raise FallbackIntegrityError(
                f"Fallback workflow {FALLBACK_TEMPLATE_ID!r} failed feasibility: "
                + "; ".join(result.human_readable)
            )
        logger.warning("[GuaranteedFallback] Serving fallback workflow: %s", reason)
        return match, result
