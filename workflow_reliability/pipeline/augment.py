"""Template augmentation — fill user-specific parameters into a matched template."""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Any

from workflow_reliability.knowledge.templates import Template
from workflow_reliability.pipeline.actions import ActionType
from workflow_reliability.pipeline.autofix import PLACEHOLDER_RECIPIENT, PLACEHOLDER_URL
from workflow_reliability.pipeline.graph_ir import WorkflowGraph, WorkflowNode

logger = logging.getLogger("workflow_reliability.pipeline.augment")

_MAX_NAME_LEN = 80
_PLACEHOLDER_EMAIL_DOMAIN = "@example.com"


@dataclass(frozen=True)
class UserContext:
    """Per-request user data used to personalise a template."""

    user_id: str | None = None
    email: str | None = None
    url: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> UserContext:
        raw = raw or {}
        return cls(
            user_id=_text(raw.get("user_id") or raw.get("userId")),
            email=_text(raw.get("email")),
            url=_text(raw.get("url")),
        )


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def workflow_name(intent_text: str, template_name: str) -> str:
    """First three words of the intent plus the template name, max 80 chars."""
    words = " ".join((intent_text or "").split()[:3])
    name = f"{words} - {template_name}" if words else template_name
    return name[:_MAX_NAME_LEN]


def user_webhook_path(user_id: str | None, base_path: str | None, now: datetime.datetime) -> str:
    base = base_path or "webhook"
    if not user_id:
        return base
    stamp = str(int(now.timestamp() * 1000))[-6:]
    return f"usr-{user_id[:8]}-{base}-{stamp}"


def _is_placeholder_recipient(value: Any) -> bool:
    if value is None or not str(value).strip():
        return True
    text = str(value).strip()
    return text == PLACEHOLDER_RECIPIENT or text.endswith(_PLACEHOLDER_EMAIL_DOMAIN)


def _is_placeholder_url(value: Any) -> bool:
    return value is None or not str(value).strip() or str(value).strip() == PLACEHOLDER_URL


def augment(
    template: Template,
    intent_text: str,
    context: UserContext | None = None,
    now: datetime.datetime | None = None,
) -> WorkflowGraph:
    """Return a personalised copy of the template's workflow.

    Scoped name, per-user webhook paths, recipient/URL substitution and a
    meta block recording provenance. The template itself is not modified.
    """
    context = context or UserContext()
    now = now or datetime.datetime.now(datetime.timezone.utc)

    def personalise(node: WorkflowNode) -> WorkflowNode:
        match node.action:
            case ActionType.WEBHOOK if node.param("path") and context.user_id:
                return node.with_parameters(path=user_webhook_path(context.user_id, node.param("path"), now))
            case ActionType.EMAIL_SEND if context.email and _is_placeholder_recipient(node.param("toEmail")):
                return node.with_parameters(toEmail=context.email)
            case ActionType.HTTP_REQUEST if context.url and _is_placeholder_url(node.param("url")):
                return node.with_parameters(url=context.url)
        return node

    workflow = template.workflow.map_nodes(personalise)
    workflow = workflow.with_name(workflow_name(intent_text, template.name)).with_meta(
        baseTemplate=template.id,
        customizedFor=intent_text,
        generatedAt=now.isoformat(),
        userId=context.user_id[:8] if context.user_id else "anonymous",
    )
    logger.debug("[TemplateAugmentation] Customized %s as %r", template.id, workflow.name)
    return workflow
