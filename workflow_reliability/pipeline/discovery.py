"""Cache-aware template discovery.

    cache (Tier 1 / Tier 2)
      └─ miss → library + community catalogue (Tier 3) → rank → threshold

Never returns an empty list: when no candidate clears ``min_confidence``
(or there are no candidates at all) the result is the Guaranteed Fallback
match with a reason saying why.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from workflow_reliability.knowledge.intent import Intent
from workflow_reliability.knowledge.library import TemplateLibrary
from workflow_reliability.knowledge.templates import Template, TemplateMatch
from workflow_reliability.pipeline.fallback import fallback_match, is_fallback
from workflow_reliability.pipeline.result import guarded
from workflow_reliability.pipeline.scoring import rank

if TYPE_CHECKING:
    from workflow_reliability.knowledge.cache import TemplateCache
    from workflow_reliability.knowledge.catalogue import CommunityCatalogueClient

logger = logging.getLogger("workflow_reliability.pipeline.discovery")

DEFAULT_MIN_CONFIDENCE = 0.3
DEFAULT_MAX_RESULTS = 5


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class DiscoveryResult:
    """Ranked matches for one intent.

    tier:     "memory", "store" or "discovery" (where the matches came from).
    degraded: collaborator labels that failed during this discovery.
    """

    matches: list[TemplateMatch]
    tier: str = "discovery"
    degraded: list[str] = field(default_factory=list)

    @property
    def best(self) -> TemplateMatch:
        return self.matches[0]

    @property
    def cache_hit(self) -> bool:
        return self.tier != "discovery"

    @property
    def is_fallback(self) -> bool:
        return is_fallback(self.best)


class TemplateDiscovery:
    """Finds and ranks templates for an intent, behind the template cache."""

    def __init__(
        self,
        library: TemplateLibrary,
        cache: TemplateCache | None = None,
        catalogue: CommunityCatalogueClient | None = None,
        *,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        max_results: int = DEFAULT_MAX_RESULTS,
        catalogue_limit: int = 5,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._library = library
        self._cache = cache
        self._catalogue = catalogue
        self._min_confidence = min_confidence
        self._max_results = max_results
        self._catalogue_limit = catalogue_limit
        self._clock = clock

    @property
    def min_confidence(self) -> float:
        return self._min_confidence

    async def discover(self, intent: Intent, options: dict[str, Any] | None = None) -> DiscoveryResult:
        if intent.is_empty:
            logger.info("[Discovery] Empty intent %r, serving fallback", intent.raw)
            return DiscoveryResult([fallback_match("Intent has no usable keywords")])

        degraded: list[str] = []
        if self._cache is None:
            return DiscoveryResult(await self._search(intent, degraded), "discovery", degraded)

        found = await self._cache.lookup(intent, lambda: self._search(intent, degraded), options)
        return DiscoveryResult(found.matches, found.tier, degraded)

    async def _candidates(self, intent: Intent, degraded: list[str]) -> list[Template]:
        candidates = self._library.find(intent)
        if self._catalogue is None:
            return candidates

        fetched = await guarded(
            "catalogue",
            self._catalogue.search(list(intent.keywords), self._catalogue_limit),
            default=[],
        )
        if not fetched.ok:
            degraded.append(fetched.source)
            return candidates

        known = {t.id for t in candidates}
        for template in fetched.value:
            registered = self._library.add(template)
            if registered.id not in known:
                candidates.append(registered)
                known.add(registered.id)
        return candidates

    async def _search(self, intent: Intent, degraded: list[str]) -> list[TemplateMatch]:
        candidates = await self._candidates(intent, degraded)
        ranked = rank(intent, candidates, self._clock())
        if not ranked:
            logger.info("[Discovery] No candidates for %r", intent.raw)
            return [fallback_match("No template shares a keyword with the request")]

        accepted = [m for m in ranked if m.confidence >= self._min_confidence]
        if not accepted:
            logger.info(
                "[Discovery] Best candidate %s scored %.3f < %.2f",
                ranked[0].template_id, ranked[0].confidence, self._min_confidence,
            )
            return [fallback_match(
                f"Best candidate {ranked[0].template_id} scored {ranked[0].confidence:.2f}, "
                f"below {self._min_confidence:.2f}"
            )]

        logger.debug(
            "[Discovery] %d/%d candidates accepted for %r (best %s %.3f)",
            len(accepted), len(ranked), intent.raw, accepted[0].template_id, accepted[0].confidence,
        )
        return accepted[: self._max_results]
