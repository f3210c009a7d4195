"""Template augmentation: naming, per-user webhook paths and parameter substitution."""

from __future__ import annotations

import datetime

from workflow_reliability.knowledge.library import TemplateLibrary
from workflow_reliability.pipeline.augment import UserContext, augment, user_webhook_path, workflow_name
from workflow_reliability.pipeline.autofix import PLACEHOLDER_RECIPIENT, PLACEHOLDER_URL
from workflow_reliability.pipeline.graph_ir import WorkflowNode, chain
from workflow_reliability.knowledge.templates import Template

NOW = datetime.datetime(2026, 3, 1, 9, 30, tzinfo=datetime.timezone.utc)


def _template(tid: str) -> Template:
    return TemplateLibrary().get(tid)


class TestNaming:
    def test_first_three_words(self):
        assert workflow_name("email me   every morning please", "Digest") == "email me every - Digest"

    def test_empty_intent_uses_template_name(self):
        assert workflow_name("", "Digest") == "Digest"

    def test_truncated(self):
        assert len(workflow_name("a b c", "x" * 200)) == 80


class TestWebhookPath:
    def test_scoped_to_user(self):
        assert user_webhook_path("user-123456789", "hook", NOW) == "usr-user-123-hook-400000"

    def test_anonymous_keeps_base(self):
        assert user_webhook_path(None, "hook", NOW) == "hook"
        assert user_webhook_path(None, None, NOW) == "webhook"


class TestAugment:
    def test_meta_and_template_untouched(self):
        template = _template("webhook-to-email")
        wf = augment(template, "email me on webhook", UserContext(user_id="user-123456789"), NOW)
        assert wf.meta == {
            "baseTemplate": "webhook-to-email",
            "customizedFor": "email me on webhook",
            "generatedAt": NOW.isoformat(),
            "userId": "user-123",
        }
        assert wf.get_node("Webhook").param("path") == "usr-user-123-webhook-to-email-400000"
        assert template.workflow.get_node("Webhook").param("path") == "webhook-to-email"
        assert template.workflow.meta == {}

    def test_anonymous(self):
        wf = augment(_template("webhook-to-email"), "x", None, NOW)
        assert wf.meta["userId"] == "anonymous"
        assert wf.get_node("Webhook").param("path") == "webhook-to-email"

    def test_real_recipient_kept(self):
        template = Template(
            id="t",
            name="T",
            workflow=chain("T", [
                WorkflowNode("1", "Start", "n8n-nodes-base.manualTrigger"),
                WorkflowNode("2", "Mail", "n8n-nodes-base.emailSend", parameters={"toEmail": "boss@acme.io"}),
            ]),
        )
        wf = augment(template, "x", UserContext(email="ops@acme.io"), NOW)
        assert wf.get_node("Mail").param("toEmail") == "boss@acme.io"

    def test_placeholder_recipient_and_url_replaced(self):
        template = Template(
            id="t",
            name="T",
            workflow=chain("T", [
                WorkflowNode("1", "Start", "n8n-nodes-base.manualTrigger"),
                WorkflowNode("2", "Call", "n8n-nodes-base.httpRequest", parameters={"url": PLACEHOLDER_URL}),
                WorkflowNode("3", "Mail", "n8n-nodes-base.emailSend", parameters={"toEmail": PLACEHOLDER_RECIPIENT}),
            ]),
        )
        wf = augment(template, "x", UserContext(email="ops@acme.io", url="https://api.acme.io"), NOW)
        assert wf.get_node("Call").param("url") == "https://api.acme.io"
        assert wf.get_node("Mail").param("toEmail") == "ops@acme.io"

    def test_context_from_dict_accepts_camel_case(self):
        assert UserContext.from_dict({"userId": "u1"}).user_id == "u1"
        assert UserContext.from_dict(None) == UserContext()

    def test_context_from_dict_coerces_to_text(self):
        context = UserContext.from_dict({"user_id": 1234567890, "email": "  ", "url": None})
        assert context == UserContext(user_id="1234567890")

    def test_numeric_user_id_scopes_webhook(self):
        context = UserContext.from_dict({"user_id": 1234567890})
        wf = augment(_template("webhook-to-email"), "x", context, NOW)
        assert wf.get_node("Webhook").param("path") == "usr-12345678-webhook-to-email-400000"
        assert wf.meta["userId"] == "12345678"
