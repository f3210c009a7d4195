"""Per-stage timing for one orchestrator run.

StageMetrics     — snapshot of one stage's duration and counters.
MetricsCollector — async context manager; read .result / .to_dict() after exit.

Usage::

    async with MetricsCollector("discovery") as m:
        matches = await discover(...)
        m.cache_hit = True
    stages.append(m.to_dict())
"""

from __future__ import annotations

import dataclasses
import time
from typing import Any


@dataclasses.dataclass
class StageMetrics:
    """Timing and counter snapshot for one pipeline stage.

    stage:        "discovery", "augment", "feasibility", "repair", "recheck",
                  "fallback".
    duration_ms:  (end_ts - start_ts) * 1000.
    cache_hit:    Discovery served from Tier 1 or Tier 2.
    fixes:        Repairs applied in this stage.
    errors:       Validation errors reported by this stage.
    """

    stage: str
    start_ts: float
    end_ts: float
    duration_ms: float
    cache_hit: bool = False
    fixes: int = 0
    errors: int = 0


class MetricsCollector:
    """Async context manager that records one stage's timing and counters."""

    def __init__(self, stage: str) -> None:
        self.stage = stage
        self.cache_hit: bool = False
        self.fixes: int = 0
        self.errors: int = 0
        self._start_ts: float = 0.0
        self._result: StageMetrics | None = None

    async def __aenter__(self) -> "MetricsCollector":
        self._start_ts = time.time()
        return self

    async def __aexit__(self, *_args: object) -> None:
        end_ts = time.time()
        self._result = StageMetrics(
            stage=self.stage,
            start_ts=self._start_ts,
            end_ts=end_ts,
            duration_ms=(end_ts - self._start_ts) * 1000,
            cache_hit=self.cache_hit,
            fixes=self.fixes,
            errors=self.errors,
        )

    @property
    def result(self) -> StageMetrics | None:
        return self._result

    def to_dict(self) -> dict[str, Any]:
        """Finalized StageMetrics as a dict, or {} before the block exits."""
        return dataclasses.asdict(self._result) if self._result is not None else {}
