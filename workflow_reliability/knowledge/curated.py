"""Curated, deployment-verified templates that seed the Template Library.

Each template uses only allow-listed action types and carries every
required parameter, so a curated match passes the Feasibility Checker
without repair. Statistics below are the starting point; the library
updates them as deployment outcomes arrive.
"""

from __future__ import annotations

from workflow_reliability.knowledge.templates import Complexity, Template
from workflow_reliability.pipeline.actions import ActionType
from workflow_reliability.pipeline.graph_ir import WorkflowNode, chain

_RECIPIENT_EXPR = '={{$json["email"]}}'


def _node(tid: str, idx: int, name: str, action: ActionType, version: float = 1, **params) -> WorkflowNode:
    return WorkflowNode(
        id=f"{tid}-{idx}",
        name=name,
        type=action.value,
        type_version=version,
        parameters=params,
    )


def _webhook_to_email() -> Template:
    tid = "webhook-to-email"
    workflow = chain("Webhook to Email", [
        _node(tid, 1, "Webhook", ActionType.WEBHOOK, httpMethod="POST", path="webhook-to-email"),
        _node(
            tid, 2, "Send Email", ActionType.EMAIL_SEND, 2,
            fromEmail="={{$credentials.smtp.user}}",
            toEmail=_RECIPIENT_EXPR,
            subject='={{$json["subject"] || "New notification"}}',
            text='={{$json["message"]}}',
        ),
        _node(tid, 3, "Respond to Webhook", ActionType.RESPOND_TO_WEBHOOK, respondWith="json",
              responseBody='={"status": "sent"}'),
    ])
    return Template(
        id=tid,
        name="Webhook to Email",
        description="Receive a webhook call and forward its payload as an email notification.",
        category="communication",
        keywords=("webhook", "email", "notification", "send", "alert", "communication"),
        workflow=workflow,
        complexity=Complexity.SIMPLE,
        success_rate=0.98,
        usage_count=150,
    )


def _scheduled_email_digest() -> Template:
    tid = "scheduled-email-digest"
    workflow = chain("Scheduled Email Digest", [
        _node(tid, 1, "Schedule Trigger", ActionType.SCHEDULE_TRIGGER, 1.1,
              rule={"interval": [{"field": "days", "triggerAtHour": 8}]}),
        _node(
            tid, 2, "Build Digest", ActionType.CODE, 2,
            jsCode=(
                "const lines = $input.all().map(i => `- ${i.json.title || 'item'}`);\n"
                "return [{ json: { subject: 'Your daily digest', text: lines.join('\\n') || 'Nothing new today.' } }];"
            ),
        ),
        _node(
            tid, 3, "Send Digest", ActionType.EMAIL_SEND, 2,
            fromEmail="={{$credentials.smtp.user}}",
            toEmail="digest@example.com",
            subject='={{$json["subject"]}}',
            text='={{$json["text"]}}',
        ),
    ])
    return Template(
        id=tid,
        name="Scheduled Email Digest",
        description="Compile a digest on a daily schedule and email it to a recipient.",
        category="communication",
        keywords=("schedule", "daily", "email", "digest", "send", "communication", "report", "summary"),
        workflow=workflow,
        complexity=Complexity.SIMPLE,
        success_rate=0.96,
        usage_count=120,
    )


def _scheduled_api_fetch() -> Template:
    tid = "scheduled-api-fetch"
    workflow = chain("Scheduled API Fetch", [
        _node(tid, 1, "Schedule Trigger", ActionType.SCHEDULE_TRIGGER, 1.1,
              rule={"interval": [{"field": "hours", "hoursInterval": 1}]}),
        _node(tid, 2, "Fetch Data", ActionType.HTTP_REQUEST, 4,
              url="https://api.example.com/data", method="GET"),
        _node(tid, 3, "Process Response", ActionType.CODE, 2,
              jsCode="return $input.all().map(i => ({ json: { ...i.json, fetchedAt: new Date().toISOString() } }));"),
    ])
    return Template(
        id=tid,
        name="Scheduled API Fetch",
        description="Poll an HTTP API on a schedule and post-process the response.",
        category="integration",
        keywords=("schedule", "api", "fetch", "data", "http", "periodic", "scheduling", "integration"),
        workflow=workflow,
        complexity=Complexity.MODERATE,
        success_rate=0.95,
        usage_count=89,
    )


def _web_scraping_basic() -> Template:
    tid = "web-scraping-basic"
    workflow = chain("Basic Web Scraper", [
        _node(tid, 1, "Manual Trigger", ActionType.MANUAL_TRIGGER),
        _node(tid, 2, "Fetch Page", ActionType.HTTP_REQUEST, 4,
              url="https://example.com", method="GET", options={"response": {"response": {"responseFormat": "text"}}}),
        _node(tid, 3, "Extract Content", ActionType.HTML, 1.2,
              operation="extractHtmlContent",
              extractionValues={"values": [{"key": "title", "cssSelector": "title"}]}),
    ])
    return Template(
        id=tid,
        name="Basic Web Scraper",
        description="Download a web page and extract values with CSS selectors.",
        category="web_scraping",
        keywords=("scrape", "scraping", "website", "html", "extract", "crawl", "page", "web_scraping"),
        workflow=workflow,
        complexity=Complexity.MODERATE,
        success_rate=0.92,
        usage_count=67,
    )


def _webhook_http_forward() -> Template:
    tid = "webhook-http-forward"
    workflow = chain("Webhook to HTTP Forward", [
        _node(tid, 1, "Webhook", ActionType.WEBHOOK, httpMethod="POST", path="forward"),
        _node(tid, 2, "Map Fields", ActionType.SET, 3,
              values={"string": [{"name": "source", "value": "webhook"}]}),
        _node(tid, 3, "Forward Request", ActionType.HTTP_REQUEST, 4,
              url="https://api.example.com/ingest", method="POST", sendBody=True),
        _node(tid, 4, "Respond to Webhook", ActionType.RESPOND_TO_WEBHOOK, respondWith="json",
              responseBody='={"status": "forwarded"}'),
    ])
    return Template(
        id=tid,
        name="Webhook to HTTP Forward",
        description="Accept a webhook, reshape the payload and forward it to another API.",
        category="integration",
        keywords=("webhook", "forward", "api", "http", "sync", "connect", "integration"),
        workflow=workflow,
        complexity=Complexity.MODERATE,
        success_rate=0.94,
        usage_count=75,
    )


def _csv_data_transform() -> Template:
    tid = "csv-data-transform"
    workflow = chain("CSV Data Transform", [
        _node(tid, 1, "Manual Trigger", ActionType.MANUAL_TRIGGER),
        _node(tid, 2, "Read File", ActionType.READ_BINARY_FILE, filePath="/data/input.csv"),
        _node(tid, 3, "Parse CSV", ActionType.SPREADSHEET_FILE, 2, operation="read", fileFormat="csv"),
        _node(tid, 4, "Clean Rows", ActionType.CODE, 2,
              jsCode="return $input.all().filter(i => Object.values(i.json).some(v => v !== ''));"),
        _node(tid, 5, "Write File", ActionType.WRITE_BINARY_FILE, fileName="/data/output.csv"),
    ])
    return Template(
        id=tid,
        name="CSV Data Transform",
        description="Read a CSV file, drop empty rows and write the cleaned result.",
        category="data_processing",
        keywords=("csv", "transform", "data", "clean", "file", "convert", "data_processing"),
        workflow=workflow,
        complexity=Complexity.MODERATE,
        success_rate=0.90,
        usage_count=40,
    )


def _uptime_monitor_alert() -> Template:
    tid = "uptime-monitor-alert"
    nodes = [
        _node(tid, 1, "Every 5 Minutes", ActionType.SCHEDULE_TRIGGER, 1.1,
              rule={"interval": [{"field": "minutes", "minutesInterval": 5}]}),
        _node(tid, 2, "Check Site", ActionType.HTTP_REQUEST, 4,
              url="https://example.com/health", method="GET",
              options={"response": {"response": {"fullResponse": True, "neverError": True}}}),
        _node(tid, 3, "Is Down", ActionType.IF, 2,
              conditions={"number": [{"value1": '={{$json["statusCode"]}}', "operation": "notEqual", "value2": 200}]}),
        _node(
            tid, 4, "Send Alert", ActionType.EMAIL_SEND, 2,
            fromEmail="={{$credentials.smtp.user}}",
            toEmail="alerts@example.com",
            subject="Site is down",
            text='={{"Health check returned " + $json["statusCode"]}}',
        ),
    ]
    # IF output 0 is the "true" branch, which chain() wires to the alert
    workflow = chain("Uptime Monitor Alert", nodes)
    return Template(
        id=tid,
        name="Uptime Monitor Alert",
        description="Poll a health endpoint and email an alert when it stops returning 200.",
        category="monitoring",
        keywords=("monitor", "uptime", "alert", "website", "status", "check", "health", "monitoring"),
        workflow=workflow,
        complexity=Complexity.MODERATE,
        success_rate=0.93,
        usage_count=58,
    )


def curated_templates() -> list[Template]:
    """Fresh list of the curated templates (source = curated)."""
    return [
        _webhook_to_email(),
        _scheduled_email_digest(),
        _scheduled_api_fetch(),
        _web_scraping_basic(),
        _webhook_http_forward(),
        _csv_data_transform(),
        _uptime_monitor_alert(),
    ]
