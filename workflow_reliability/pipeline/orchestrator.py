"""Orchestrator — turns free-text intent into a deployable workflow.

    extract intent
      → cache-aware discovery
      → augmentation
      → feasibility check ──pass──────────────────────────→ finalize
             │ fail
             └→ auto-fix → re-check ──pass─→ finalize (confidence − penalty)
                                  └─fail─→ Guaranteed Fallback

Any exception raised inside the sequence is logged and answered with the
Guaranteed Fallback. FallbackIntegrityError is the only error that escapes.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import AsyncGenerator
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Callable

from workflow_reliability.errors import FallbackIntegrityError
from workflow_reliability.knowledge.cache import TemplateCache
from workflow_reliability.knowledge.intent import extract_intent
from workflow_reliability.knowledge.library import TemplateLibrary
from workflow_reliability.pipeline.augment import UserContext, augment
from workflow_reliability.pipeline.autofix import AutoFixEngine
from workflow_reliability.pipeline.discovery import TemplateDiscovery
from workflow_reliability.pipeline.fallback import GuaranteedFallback
from workflow_reliability.pipeline.feasibility import FeasibilityChecker, FeasibilityResult
from workflow_reliability.pipeline.feedback import ErrorFeedbackLoop
from workflow_reliability.pipeline.graph_ir import WorkflowGraph
from workflow_reliability.pipeline.metrics import MetricsCollector
from workflow_reliability.pipeline.result import guarded

logger = logging.getLogger("workflow_reliability.pipeline.orchestrator")

DEFAULT_REPAIR_PENALTY = 0.1


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class GenerationResult:
    """Finalized output of one generate() call."""

    workflow: WorkflowGraph
    template_id: str
    confidence: float
    feasibility: FeasibilityResult
    repaired: bool = False
    fallback: bool = False
    fixes: list[str] = field(default_factory=list)
    reason: str = ""
    cache_hit: bool = False
    degraded: list[str] = field(default_factory=list)
    metrics: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow": self.workflow.to_workflow_json(),
            "template_id": self.template_id,
            "confidence": self.confidence,
            "feasibility": self.feasibility.to_dict(),
            "repaired": self.repaired,
            "fallback": self.fallback,
            "fixes": list(self.fixes),
            "reason": self.reason,
            "cache_hit": self.cache_hit,
            "degraded": list(self.degraded),
            "metrics": list(self.metrics),
        }


class ReliabilityPipeline:
    """Discovery → augmentation → validation → repair → finalize or fallback."""

    def __init__(
        self,
        discovery: TemplateDiscovery,
        *,
        checker: FeasibilityChecker | None = None,
        autofix: AutoFixEngine | None = None,
        fallback: GuaranteedFallback | None = None,
        feedback: ErrorFeedbackLoop | None = None,
        library: TemplateLibrary | None = None,
        cache: TemplateCache | None = None,
        repair_penalty: float = DEFAULT_REPAIR_PENALTY,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self.discovery = discovery
        self.checker = checker or FeasibilityChecker()
        self.autofix = autofix or AutoFixEngine()
        self.fallback = fallback or GuaranteedFallback(self.checker)
        self.feedback = feedback
        self.library = library
        self.cache = cache
        self._repair_penalty = max(0.0, min(1.0, repair_penalty))
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(
        self,
        intent_text: str,
        context: UserContext | dict[str, Any] | None = None,
    ) -> GenerationResult:
        """Always returns a workflow that passed the Feasibility Checker."""
        stages: list[dict[str, Any]] = []
        degraded: list[str] = []
        try:
            if not isinstance(context, UserContext):
                context = UserContext.from_dict(context)
            return await self._generate(intent_text or "", context, stages, degraded)
        except FallbackIntegrityError:
            raise
        except Exception as exc:
            logger.exception("[Orchestrator] Unhandled %s, routing to fallback", type(exc).__name__)
            return self._fallback(f"Unhandled {type(exc).__name__}: {exc}", stages, degraded)

    # ------------------------------------------------------------------
    # Sequence
    # ------------------------------------------------------------------

    async def _generate(
        self,
        intent_text: str,
        context: UserContext,
        stages: list[dict[str, Any]],
        degraded: list[str],
    ) -> GenerationResult:
        intent = extract_intent(intent_text)
        logger.info(
            "[Orchestrator] intent=%r category=%s keywords=%s",
            intent_text[:80], intent.category, list(intent.keywords),
        )

        async with MetricsCollector("discovery") as m:
            found = await self.discovery.discover(intent)
            m.cache_hit = found.cache_hit
        stages.append(m.to_dict())
        degraded.extend(found.degraded)

        best = found.best
        if found.is_fallback:
            return self._fallback(best.reason, stages, degraded, cache_hit=found.cache_hit)

        async with MetricsCollector("augment") as m:
            workflow = augment(best.template, intent_text, context, self._clock())
        stages.append(m.to_dict())

        async with MetricsCollector("feasibility") as m:
            result = self.checker.check(workflow)
            m.errors = len(result.errors)
        stages.append(m.to_dict())

        if result.passed:
            return GenerationResult(
                workflow=workflow,
                template_id=best.template_id,
                confidence=max(0.0, min(1.0, best.confidence)),
                feasibility=result,
                reason=best.reason,
                cache_hit=found.cache_hit,
                degraded=degraded,
                metrics=stages,
            )

        async with MetricsCollector("repair") as m:
            outcome = self.autofix.repair(workflow)
            m.fixes = len(outcome.applied)
        stages.append(m.to_dict())

        async with MetricsCollector("recheck") as m:
            rechecked = self.checker.check(outcome.workflow)
            m.errors = len(rechecked.errors)
        stages.append(m.to_dict())

        if not rechecked.passed:
            logger.warning(
                "[Orchestrator] %s still invalid after repair: %s",
                best.template_id, rechecked.human_readable,
            )
            return self._fallback(
                f"Repair of {best.template_id} failed: " + "; ".join(rechecked.human_readable),
                stages, degraded, cache_hit=found.cache_hit,
            )

        confidence = max(0.0, min(1.0, best.confidence - self._repair_penalty))
        logger.info(
            "[Orchestrator] %s repaired (%d fixes), confidence %.3f -> %.3f",
            best.template_id, len(outcome.applied), best.confidence, confidence,
        )
        return GenerationResult(
            workflow=outcome.workflow,
            template_id=best.template_id,
            confidence=confidence,
            feasibility=rechecked,
            repaired=True,
            fixes=outcome.descriptions,
            reason=best.reason,
            cache_hit=found.cache_hit,
            degraded=degraded,
            metrics=stages,
        )

    def _fallback(
        self,
        reason: str,
        stages: list[dict[str, Any]],
        degraded: list[str],
        *,
        cache_hit: bool = False,
    ) -> GenerationResult:
        match, result = self.fallback.provide(reason)
        workflow = match.template.workflow.with_meta(
            baseTemplate=match.template_id,
            generatedAt=self._clock().isoformat(),
        )
        stages.append({"stage": "fallback", "reason": reason})
        return GenerationResult(
            workflow=workflow,
            template_id=match.template_id,
            confidence=match.confidence,
            feasibility=result,
            fallback=True,
            reason=match.reason,
            cache_hit=cache_hit,
            degraded=degraded,
            metrics=stages,
        )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    @asynccontextmanager
    async def from_settings(cls, settings: Any, *, llm: Any = None) -> AsyncGenerator[ReliabilityPipeline, None]:
        """Build the pipeline and its services from ReliabilitySettings.

        Opens the configured Tier-2 store, statistics store and catalogue
        client, and closes them on exit. A store that cannot be opened is
        logged and left out; the pipeline then runs on memory only.
        """
        from workflow_reliability.knowledge.catalogue import CommunityCatalogueClient
        from workflow_reliability.persistence import SQLiteCacheStore, TemplateStatsStore, make_cache_store

        async with AsyncExitStack() as stack:
            store = None
            try:
                if settings.postgres_dsn:
                    store = await stack.enter_async_context(make_cache_store(settings.postgres_dsn))
                elif settings.cache_db_path:
                    store = await SQLiteCacheStore.open(settings.cache_db_path)
                    stack.push_async_callback(store.close)
            except Exception as exc:
                logger.warning("[Orchestrator] Tier-2 store unavailable, memory only: %s", exc)
                store = None

            stats_store = None
            if settings.stats_db_path:
                try:
                    stats_store = await TemplateStatsStore.open(settings.stats_db_path)
                    stack.push_async_callback(stats_store.close)
                except Exception as exc:
                    logger.warning("[Orchestrator] Stats store unavailable: %s", exc)
                    stats_store = None

            catalogue = None
            if settings.catalogue_url:
                catalogue = CommunityCatalogueClient(
                    settings.catalogue_url,
                    timeout=settings.catalogue_timeout,
                    min_interval=settings.catalogue_min_interval,
                )
                stack.push_async_callback(catalogue.close)

            library = TemplateLibrary(alpha=settings.success_rate_alpha, stats_store=stats_store)
            await guarded("stats", library.load_stats(), default=0)
            cache = TemplateCache(
                store,
                capacity=settings.cache_capacity,
                memory_ttl=settings.memory_ttl,
                source_ttls=settings.source_ttls,
            )
            checker = FeasibilityChecker()
            autofix = AutoFixEngine()
            discovery = TemplateDiscovery(
                library, cache, catalogue,
                min_confidence=settings.min_confidence,
                catalogue_limit=settings.catalogue_limit,
            )
            feedback = ErrorFeedbackLoop(checker, autofix, library, cache, llm)
            yield cls(
                discovery,
                checker=checker,
                autofix=autofix,
                feedback=feedback,
                library=library,
                cache=cache,
                repair_penalty=settings.repair_penalty,
            )
