"""Scoring Engine — six-factor confidence for (intent, template) pairs.

    factor               weight  definition
    keyword_similarity   .25     fuzzy overlap / |template keywords|
    node_compatibility   .20     fraction of allow-listed action types
    success_score        .20     template success_rate (0.5 with no history)
    popularity_score     .15     min(usage_count / 100, 1), floor 0.1
    complexity_score     .10     simple 1.0, moderate 0.7, complex 0.4
    recency_score        .10     1.0 <=1d, .8 <=7d, .6 <=30d, .4 <=90d, else .2

Pure and synchronous. ``now`` is always passed in, so the same inputs give
the same confidence on every call.
"""

from __future__ import annotations

import datetime
from dataclasses import asdict, dataclass
from typing import Iterable

from workflow_reliability.knowledge.intent import Intent, keyword_matches
from workflow_reliability.knowledge.library import NO_HISTORY_SUCCESS_RATE
from workflow_reliability.knowledge.templates import Complexity, Template, TemplateMatch
from workflow_reliability.pipeline.actions import is_allowed

WEIGHTS: dict[str, float] = {
    "keyword_similarity": 0.25,
    "node_compatibility": 0.20,
    "success_score": 0.20,
    "popularity_score": 0.15,
    "complexity_score": 0.10,
    "recency_score": 0.10,
}

_COMPLEXITY_SCORES: dict[Complexity, float] = {
    Complexity.SIMPLE: 1.0,
    Complexity.MODERATE: 0.7,
    Complexity.COMPLEX: 0.4,
}

# (max age in days, score), checked in order
_RECENCY_STEPS: tuple[tuple[float, float], ...] = (
    (1, 1.0),
    (7, 0.8),
    (30, 0.6),
    (90, 0.4),
)
_STALE_RECENCY = 0.2
_POPULARITY_FLOOR = 0.1


@dataclass(frozen=True)
class ScoreBreakdown:
    keyword_similarity: float
    node_compatibility: float
    success_score: float
    popularity_score: float
    complexity_score: float
    recency_score: float

    def weighted(self) -> float:
        total = sum(getattr(self, name) * weight for name, weight in WEIGHTS.items())
        return max(0.0, min(1.0, total))

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Sub-scores
# ---------------------------------------------------------------------------


def keyword_similarity(template: Template, intent: Intent) -> tuple[float, list[str]]:
    """Overlap ratio plus the template keywords that matched."""
    if not template.keywords or intent.is_empty:
        return 0.0, []
    intent_kw = intent.keyword_set
    matched = [kw for kw in template.keywords if keyword_matches(kw, intent_kw)]
    return len(matched) / len(template.keywords), matched


def node_compatibility(template: Template) -> float:
    types = template.workflow.action_types()
    if not types:
        return 0.0
    return sum(1 for t in types if is_allowed(t)) / len(types)


def success_score(template: Template) -> float:
    if template.success_rate is None:
        return NO_HISTORY_SUCCESS_RATE
    return max(0.0, min(1.0, template.success_rate))


def popularity_score(template: Template) -> float:
    return max(_POPULARITY_FLOOR, min(template.usage_count / 100, 1.0))


def complexity_score(template: Template) -> float:
    return _COMPLEXITY_SCORES[template.complexity]


def recency_score(template: Template, now: datetime.datetime) -> float:
    if template.last_used is None:
        return _STALE_RECENCY
    last_used = template.last_used
    if last_used.tzinfo is None:
        last_used = last_used.replace(tzinfo=datetime.timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=datetime.timezone.utc)
    age_days = max(0.0, (now - last_used).total_seconds() / 86400)
    for limit, score in _RECENCY_STEPS:
        if age_days <= limit:
            return score
    return _STALE_RECENCY


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def score(intent: Intent, template: Template, now: datetime.datetime) -> TemplateMatch:
    """Score one template against an intent."""
    similarity, matched = keyword_similarity(template, intent)
    breakdown = ScoreBreakdown(
        keyword_similarity=similarity,
        node_compatibility=node_compatibility(template),
        success_score=success_score(template),
        popularity_score=popularity_score(template),
        complexity_score=complexity_score(template),
        recency_score=recency_score(template, now),
    )
    confidence = round(breakdown.weighted(), 6)
    if matched:
        reason = (
            f"Matched {len(matched)}/{len(template.keywords)} keywords "
            f"({', '.join(matched)}); success rate {breakdown.success_score:.0%}"
        )
    else:
        reason = "No keyword overlap"
    return TemplateMatch(
        template=template,
        confidence=confidence,
        similarity=round(similarity, 6),
        reason=reason,
        breakdown=breakdown.as_dict(),
    )


def sort_key(match: TemplateMatch) -> tuple[float, float, str]:
    """Descending confidence, then descending success_score, then template id."""
    return (-match.confidence, -match.breakdown.get("success_score", 0.0), match.template.id)


def rank(
    intent: Intent,
    templates: Iterable[Template],
    now: datetime.datetime,
) -> list[TemplateMatch]:
    """Score every template with non-zero keyword similarity, best first."""
    matches = [score(intent, t, now) for t in templates]
    matches = [m for m in matches if m.similarity > 0]
    return sorted(matches, key=sort_key)
