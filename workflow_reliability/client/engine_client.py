"""Async workflow engine (n8n) REST client using httpx.

Every call returns the decoded JSON body, or an error dict
{"error": "HTTP <status>", "detail": <body text>} / {"error": <message>};
callers check for the "error" key instead of catching exceptions.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from workflow_reliability.client.config import Settings
from workflow_reliability.pipeline.graph_ir import WorkflowGraph

logger = logging.getLogger("workflow_reliability.client")

# Top-level keys the engine accepts on workflow creation.
_CREATE_KEYS = ("name", "nodes", "connections", "settings", "staticData")


class WorkflowEngineClient:
    """Thin async wrapper around the workflow engine's public REST API."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            headers=settings.headers,
            timeout=httpx.Timeout(settings.timeout, connect=10.0),
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _get(self, path: str, params: dict | None = None) -> Any:
        try:
            r = await self._client.get(path, params=params)
            r.raise_for_status()
            return r.json()
        except httpx.HTTPStatusError as e:
            logger.error("GET %s -> %s", path, e.response.status_code)
            return {"error": f"HTTP {e.response.status_code}", "detail": e.response.text}
        except Exception as e:
            logger.error("GET %s failed: %s", path, e)
            return {"error": str(e)}

    async def _post(self, path: str, payload: dict | None = None) -> Any:
        try:
            r = await self._client.post(path, json=payload or {})
            r.raise_for_status()
            return r.json() if r.text.strip() else {"success": True}
        except httpx.HTTPStatusError as e:
            logger.error("POST %s -> %s", path, e.response.status_code)
            return {"error": f"HTTP {e.response.status_code}", "detail": e.response.text}
        except Exception as e:
            logger.error("POST %s failed: %s", path, e)
            return {"error": str(e)}

    # ==================================================================
    # WORKFLOWS
    # ==================================================================

    async def deploy(self, workflow: WorkflowGraph) -> Any:
        """Create the workflow. Returns the engine's record (with "id") or an error dict."""
        body = workflow.to_workflow_json()
        payload = {k: body[k] for k in _CREATE_KEYS if body.get(k) is not None}
        result = await self._post("/workflows", payload)
        if isinstance(result, dict) and "id" in result:
            logger.info("Deployed workflow %r as %s", workflow.name, result["id"])
        return result

    async def activate(self, workflow_id: str) -> Any:
        return await self._post(f"/workflows/{workflow_id}/activate")

    async def get_workflow(self, workflow_id: str) -> Any:
        return await self._get(f"/workflows/{workflow_id}")

    # ==================================================================
    # EXECUTIONS
    # ==================================================================

    async def list_executions(self, workflow_id: str, limit: int = 10) -> Any:
        result = await self._get("/executions", params={"workflowId": workflow_id, "limit": limit})
        if isinstance(result, dict) and "data" in result:
            return result["data"]
        return result
