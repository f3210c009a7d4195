"""Community template catalogue client (cold Tier 3, best effort).

Queries a remote template catalogue over HTTP:

    GET {base_url}/templates/search?search=<keywords>&rows=<limit>
    -> {"workflows": [{"id", "name", "description", "keywords"?, "totalViews"?,
                       "workflow": {"nodes": [...], "connections": {...}}}, ...]}

Items without an inline workflow graph are skipped. Every call is bounded by
asyncio.wait_for and spaced by a minimum interval; a timed-out or failed
call raises ExternalServiceError, which discovery converts into "no
community results" through guarded().
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

import httpx

from workflow_reliability.errors import ExternalServiceError
from workflow_reliability.knowledge.intent import tokenize
from workflow_reliability.knowledge.templates import Complexity, Template, TemplateSource
from workflow_reliability.pipeline.graph_ir import WorkflowGraph

logger = logging.getLogger("workflow_reliability.knowledge.catalogue")

DEFAULT_TIMEOUT = 3.0
DEFAULT_MIN_INTERVAL = 1.0
DEFAULT_LIMIT = 5


def _complexity_for(node_count: int) -> Complexity:
    if node_count <= 3:
        return Complexity.SIMPLE
    if node_count <= 7:
        return Complexity.MODERATE
    return Complexity.COMPLEX


def parse_catalogue_item(item: dict[str, Any]) -> Template | None:
    """Map one catalogue item to a community Template, or None when unusable."""
    raw_workflow = item.get("workflow")
    if not isinstance(raw_workflow, dict) or not raw_workflow.get("nodes"):
        return None
    try:
        workflow = WorkflowGraph.from_workflow_json(raw_workflow)
    except (KeyError, TypeError, ValueError) as exc:
        logger.debug("[Catalogue] Skipping item %r: %s", item.get("id"), exc)
        return None

    name = str(item.get("name") or f"Community template {item.get('id')}")
    keywords = item.get("keywords")
    if not isinstance(keywords, list) or not keywords:
        keywords = tokenize(f"{name} {item.get('description') or ''}")
    try:
        usage_count = int(item.get("totalViews") or 0)
    except (TypeError, ValueError):
        logger.debug("[Catalogue] Skipping item %r: bad totalViews %r", item.get("id"), item.get("totalViews"))
        return None
    return Template(
        id=f"community-{item.get('id')}",
        name=name,
        description=str(item.get("description") or ""),
        category=str(item.get("category") or "general"),
        keywords=tuple(dict.fromkeys(str(k).lower() for k in keywords)),
        workflow=workflow.with_name(workflow.name or name),
        complexity=_complexity_for(len(workflow.nodes)),
        usage_count=usage_count,
        source=TemplateSource.COMMUNITY,
    )


class CommunityCatalogueClient:
    """Rate-limited, timeout-bound async client for the community catalogue."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timeout = timeout
        self._min_interval = min_interval
        self._clock = clock
        self._last_call: float | None = None
        self._lock = asyncio.Lock()
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Accept": "application/json"},
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _throttle(self) -> None:
        async with self._lock:
            if self._last_call is not None:
                wait = self._min_interval - (self._clock() - self._last_call)
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_call = self._clock()

    async def _fetch(self, params: dict[str, Any]) -> Any:
        r = await self._client.get("/templates/search", params=params)
        r.raise_for_status()
        return r.json()

    async def search(self, keywords: list[str] | tuple[str, ...], limit: int = DEFAULT_LIMIT) -> list[Template]:
        """Community templates for the keywords, at most ``limit``.

        Raises ExternalServiceError on timeout, HTTP error or a malformed body.
        """
        if not keywords:
            return []
        await self._throttle()
        params = {"search": " ".join(keywords), "rows": limit}
        try:
            body = await asyncio.wait_for(self._fetch(params), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise ExternalServiceError("catalogue", f"timed out after {self._timeout}s") from e
        except httpx.HTTPStatusError as e:
            logger.error("GET /templates/search -> %s", e.response.status_code)
            raise ExternalServiceError("catalogue", f"HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise ExternalServiceError("catalogue", str(e)) from e

        items = body.get("workflows") if isinstance(body, dict) else None
        if not isinstance(items, list):
            raise ExternalServiceError("catalogue", "response has no 'workflows' list")

        templates = [t for t in (parse_catalogue_item(i) for i in items if isinstance(i, dict)) if t]
        logger.info("[Catalogue] %d/%d usable templates for %r", len(templates), len(items), params["search"])
        return templates[:limit]
