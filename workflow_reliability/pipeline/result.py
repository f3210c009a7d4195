"""Degrade-gracefully envelope for collaborator calls.

Every call into an external collaborator (Tier-2 store, community catalogue,
language model, stats store) goes through guarded(), which returns a
SourceResult instead of raising. Callers must branch on ``ok``; a degraded
result carries the error type and message for logging and metrics.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger("workflow_reliability.pipeline.result")


@dataclass(frozen=True)
class SourceResult(Generic[T]):
    """Result of one collaborator call.

    ok:     True when the call completed.
    source: Collaborator label, e.g. "tier2", "catalogue".
    value:  Call result when ok, else the caller-supplied default.
    error:  {"type", "message"} when not ok.
    """

    ok: bool
    source: str
    value: T
    error: dict[str, str] | None = None

    @property
    def degraded(self) -> bool:
        return not self.ok

    @classmethod
    def success(cls, source: str, value: T) -> SourceResult[T]:
        return cls(ok=True, source=source, value=value)

    @classmethod
    def failure(cls, source: str, default: T, exc: BaseException) -> SourceResult[T]:
        return cls(
            ok=False,
            source=source,
            value=default,
            error={"type": type(exc).__name__, "message": str(exc)},
        )


async def guarded(source: str, call: Awaitable[T], default: Any = None) -> SourceResult[T]:
    """Await a collaborator call; any Exception becomes a degraded SourceResult.

    asyncio.CancelledError (a BaseException) still propagates.
    """
    try:
        value = await call
    except Exception as exc:
        logger.warning("[%s] degraded: %s: %s", source, type(exc).__name__, exc)
        return SourceResult.failure(source, default, exc)
    return SourceResult.success(source, value)
