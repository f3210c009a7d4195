"""WorkflowEngineClient against an httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from workflow_reliability.client import Settings, WorkflowEngineClient
from workflow_reliability.pipeline.graph_ir import WorkflowNode, chain


def _workflow():
    return chain("Hook", [
        WorkflowNode("1", "Webhook", "n8n-nodes-base.webhook", parameters={"path": "p"}),
        WorkflowNode("2", "Reply", "n8n-nodes-base.respondToWebhook"),
    ]).with_meta(baseTemplate="simple-webhook-fallback")


def _client(handler, api_key: str = "secret") -> WorkflowEngineClient:
    settings = Settings(api_key=api_key, api_endpoint="http://engine.local:5678")
    return WorkflowEngineClient(settings, transport=httpx.MockTransport(handler))


class TestSettings:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("N8N_API_KEY", "k")
        monkeypatch.setenv("N8N_API_URL", "https://n8n.acme.io/")
        monkeypatch.setenv("N8N_TIMEOUT", "12")
        s = Settings.from_env()
        assert s.base_url == "https://n8n.acme.io/api/v1"
        assert s.timeout == 12
        assert s.headers["X-N8N-API-KEY"] == "k"

    def test_no_key_no_header(self):
        assert "X-N8N-API-KEY" not in Settings(api_key="").headers

    def test_key_not_in_repr(self):
        assert "hunter2" not in repr(Settings(api_key="hunter2"))


class TestDeploy:
    @pytest.mark.asyncio
    async def test_posts_creation_keys_only(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["key"] = request.headers.get("X-N8N-API-KEY")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "wf-9", "name": "Hook"})

        client = _client(handler)
        result = await client.deploy(_workflow())
        await client.close()

        assert result["id"] == "wf-9"
        assert seen["path"] == "/api/v1/workflows"
        assert seen["key"] == "secret"
        assert set(seen["body"]) == {"name", "nodes", "connections", "settings"}
        assert [n["name"] for n in seen["body"]["nodes"]] == ["Webhook", "Reply"]

    @pytest.mark.asyncio
    async def test_http_error_becomes_error_dict(self):
        client = _client(lambda request: httpx.Response(400, json={"message": "bad node"}))
        result = await client.deploy(_workflow())
        await client.close()
        assert result["error"] == "HTTP 400"
        assert "bad node" in result["detail"]

    @pytest.mark.asyncio
    async def test_transport_error_becomes_error_dict(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)
        result = await client.deploy(_workflow())
        await client.close()
        assert "connection refused" in result["error"]


class TestOtherCalls:
    @pytest.mark.asyncio
    async def test_activate_empty_body(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            return httpx.Response(200, text="")

        client = _client(handler)
        assert await client.activate("wf-9") == {"success": True}
        await client.close()
        assert (seen["method"], seen["path"]) == ("POST", "/api/v1/workflows/wf-9/activate")

    @pytest.mark.asyncio
    async def test_get_workflow(self):
        client = _client(lambda request: httpx.Response(200, json={"id": "wf-9", "active": True}))
        assert (await client.get_workflow("wf-9"))["active"] is True
        await client.close()

    @pytest.mark.asyncio
    async def test_list_executions_unwraps_data(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"data": [{"id": 1}, {"id": 2}], "nextCursor": None})

        client = _client(handler)
        executions = await client.list_executions("wf-9", limit=2)
        await client.close()
        assert executions == [{"id": 1}, {"id": 2}]
        assert seen["params"] == {"workflowId": "wf-9", "limit": "2"}

    @pytest.mark.asyncio
    async def test_list_executions_error_passthrough(self):
        client = _client(lambda request: httpx.Response(404, text="not found"))
        result = await client.list_executions("missing")
        await client.close()
        assert result == {"error": "HTTP 404", "detail": "not found"}
