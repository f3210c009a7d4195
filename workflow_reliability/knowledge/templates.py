"""Template value types shared by the library, the cache and the scoring engine."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from workflow_reliability.pipeline.graph_ir import WorkflowGraph


class TemplateSource(str, Enum):
    CURATED = "curated"
    COMMUNITY = "community"
    GENERATED = "generated"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


@dataclass(frozen=True)
class Template:
    """A workflow graph plus the reliability metadata used to rank it.

    success_rate, usage_count and last_used evolve through
    TemplateLibrary.record_outcome(); everything else is static.
    """

    id: str
    name: str
    workflow: WorkflowGraph
    keywords: tuple[str, ...] = ()
    description: str = ""
    category: str = "general"
    complexity: Complexity = Complexity.MODERATE
    success_rate: float | None = None
    usage_count: int = 0
    last_used: datetime.datetime | None = None
    source: TemplateSource = TemplateSource.CURATED

    def with_stats(
        self,
        success_rate: float | None,
        usage_count: int,
        last_used: datetime.datetime | None,
    ) -> Template:
        return replace(self, success_rate=success_rate, usage_count=usage_count, last_used=last_used)

    def with_workflow(self, workflow: WorkflowGraph) -> Template:
        return replace(self, workflow=workflow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "keywords": list(self.keywords),
            "complexity": self.complexity.value,
            "success_rate": self.success_rate,
            "usage_count": self.usage_count,
            "last_used": self.last_used.isoformat() if self.last_used else None,
            "source": self.source.value,
            "workflow": self.workflow.to_workflow_json(),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Template:
        """Inverse of to_dict(). Raises KeyError/ValueError on malformed input."""
        last_used = raw.get("last_used")
        return cls(
            id=raw["id"],
            name=raw["name"],
            workflow=WorkflowGraph.from_workflow_json(raw["workflow"]),
            keywords=tuple(raw.get("keywords") or ()),
            description=raw.get("description", ""),
            category=raw.get("category", "general"),
            complexity=Complexity(raw.get("complexity", Complexity.MODERATE.value)),
            success_rate=raw.get("success_rate"),
            usage_count=int(raw.get("usage_count", 0)),
            last_used=datetime.datetime.fromisoformat(last_used) if last_used else None,
            source=TemplateSource(raw.get("source", TemplateSource.CURATED.value)),
        )


@dataclass(frozen=True)
class TemplateMatch:
    """A scored (intent, template) pairing.

    confidence: weighted six-factor score in [0, 1].
    similarity: keyword-similarity sub-score in [0, 1].
    breakdown:  every sub-score by factor name.
    """

    template: Template
    confidence: float
    similarity: float
    reason: str = ""
    breakdown: dict[str, float] = field(default_factory=dict)

    @property
    def template_id(self) -> str:
        return self.template.id

    def with_template(self, template: Template) -> TemplateMatch:
        return replace(self, template=template)

    def to_dict(self) -> dict[str, Any]:
        return {
            "template": self.template.to_dict(),
            "confidence": self.confidence,
            "similarity": self.similarity,
            "reason": self.reason,
            "breakdown": dict(self.breakdown),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TemplateMatch:
        return cls(
            template=Template.from_dict(raw["template"]),
            confidence=float(raw["confidence"]),
            similarity=float(raw.get("similarity", 0.0)),
            reason=raw.get("reason", ""),
            breakdown={k: float(v) for k, v in (raw.get("breakdown") or {}).items()},
        )
