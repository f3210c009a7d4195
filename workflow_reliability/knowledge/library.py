"""Template Library — the catalogue discovery ranks against.

Holds curated templates (always available) plus any community templates
discovered at runtime. Static metadata never changes; success_rate,
usage_count and last_used move only through record_outcome(), which applies
an exponential moving average and writes through to the optional
TemplateStatsStore.
"""

from __future__ import annotations

import datetime
import logging
from typing import TYPE_CHECKING, Iterable

from workflow_reliability.knowledge.curated import curated_templates
from workflow_reliability.knowledge.intent import Intent, keyword_overlap
from workflow_reliability.knowledge.templates import Template

if TYPE_CHECKING:
    from workflow_reliability.persistence.stats_store import TemplateStatsStore

logger = logging.getLogger("workflow_reliability.knowledge.library")

NO_HISTORY_SUCCESS_RATE = 0.5


def ema(previous: float | None, outcome: float, alpha: float) -> float:
    """Exponential moving average step; None history starts from 0.5."""
    prior = NO_HISTORY_SUCCESS_RATE if previous is None else previous
    return max(0.0, min(1.0, prior + alpha * (outcome - prior)))


class TemplateLibrary:
    """In-process template catalogue with evolving reliability statistics."""

    def __init__(
        self,
        templates: Iterable[Template] | None = None,
        *,
        alpha: float = 0.1,
        stats_store: TemplateStatsStore | None = None,
    ) -> None:
        self._alpha = alpha
        self._stats_store = stats_store
        self._templates: dict[str, Template] = {}
        for template in templates if templates is not None else curated_templates():
            self._templates[template.id] = template

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._templates

    @property
    def alpha(self) -> float:
        return self._alpha

    def get(self, template_id: str) -> Template | None:
        return self._templates.get(template_id)

    def all(self) -> list[Template]:
        return list(self._templates.values())

    def add(self, template: Template) -> Template:
        """Register a template. An already-known id keeps its recorded statistics."""
        existing = self._templates.get(template.id)
        if existing is not None:
            template = template.with_stats(existing.success_rate, existing.usage_count, existing.last_used)
        self._templates[template.id] = template
        return template

    def find(self, intent: Intent) -> list[Template]:
        """Templates sharing at least one (fuzzy) keyword with the intent."""
        return [t for t in self._templates.values() if keyword_overlap(t.keywords, intent) > 0]

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def load_stats(self) -> int:
        """Overlay persisted statistics onto known templates. Returns templates updated."""
        if self._stats_store is None:
            return 0
        stored = await self._stats_store.load_all()
        updated = 0
        for template_id, stats in stored.items():
            template = self._templates.get(template_id)
            if template is None:
                continue
            self._templates[template_id] = template.with_stats(
                stats["success_rate"], stats["usage_count"], stats["last_used"],
            )
            updated += 1
        logger.info("[TemplateLibrary] Loaded persisted stats for %d templates", updated)
        return updated

    async def record_outcome(
        self,
        template_id: str,
        success: bool,
        now: datetime.datetime | None = None,
    ) -> Template | None:
        """Fold one deployment outcome into the template's statistics.

        Returns the updated template, or None when the id is unknown.
        """
        template = self._templates.get(template_id)
        if template is None:
            logger.debug("[TemplateLibrary] record_outcome: unknown template %r", template_id)
            return None

        now = now or datetime.datetime.now(datetime.timezone.utc)
        rate = ema(template.success_rate, 1.0 if success else 0.0, self._alpha)
        updated = template.with_stats(rate, template.usage_count + 1, now)
        self._templates[template_id] = updated
        logger.info(
            "[TemplateLibrary] %s outcome=%s success_rate %.3f -> %.3f",
            template_id, "success" if success else "failure",
            template.success_rate if template.success_rate is not None else NO_HISTORY_SUCCESS_RATE,
            rate,
        )

        if self._stats_store is not None:
            await self._stats_store.record(
                template_id, rate, updated.usage_count, now, success,
            )
        return updated
