"""Error Feedback Loop — learn from real deployment failures and repair.

process() runs one bounded repair cycle against a workflow the engine
rejected:

    signature + ErrorPattern update
      (a) known fixes      AutoFixEngine rules for the error category,
                           plus the codes this pattern was fixed with before
      (b) node fixes       webhook path/method, schedule rule, code body,
                           HTTP method
      (c) structural       workflow name, settings, trigger
      (d) generative       LanguageModelService, only when (a)-(c) applied
                           nothing and the intent is known
    one Feasibility re-check → learn → record_outcome(failure) → invalidate cache

Confidence starts at 0.5, gains 0.2 / 0.2 / 0.1 / 0.1 per strategy that
applied something, loses 0.2 if the result is still invalid, and is clamped
to [0.1, 0.9].
"""

from __future__ import annotations

import datetime
import json
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from workflow_reliability.pipeline.actions import ActionType
from workflow_reliability.pipeline.autofix import AutoFixEngine
from workflow_reliability.pipeline.feasibility import FeasibilityChecker, FeasibilityResult, IssueCode
from workflow_reliability.pipeline.graph_ir import WorkflowGraph, WorkflowNode
from workflow_reliability.pipeline.result import guarded

if TYPE_CHECKING:
    from workflow_reliability.knowledge.cache import TemplateCache
    from workflow_reliability.knowledge.library import TemplateLibrary
    from workflow_reliability.reasoning import LanguageModelService

logger = logging.getLogger("workflow_reliability.pipeline.feedback")

SIGNATURE_MAX_LEN = 50

_BASE_CONFIDENCE = 0.5
_STRATEGY_BONUS = {"known": 0.2, "node": 0.2, "structural": 0.1, "generative": 0.1}
_INVALID_PENALTY = 0.2
_MIN_CONFIDENCE = 0.1
_MAX_CONFIDENCE = 0.9

_DEFAULT_SCHEDULE_RULE = {"interval": [{"field": "minutes", "minutesInterval": 10}]}
_DEFAULT_PROCESSING_CODE = (
    "const items = $input.all();\n"
    "return items.map(item => ({\n"
    "  json: { processed: true, timestamp: new Date().toISOString(), ...item.json }\n"
    "}));"
)
_HTTP_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"})
_DEFAULT_SETTINGS = {"executionOrder": "v1"}

_QUOTES = re.compile(r"[\"']")
_DIGITS = re.compile(r"\d+")
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


class ErrorCategory(str, Enum):
    MISSING_PARAMETER = "MISSING_PARAMETER"
    INVALID_CONNECTION = "INVALID_CONNECTION"
    DUPLICATE_ID = "DUPLICATE_ID"
    MALFORMED_JSON = "MALFORMED_JSON"
    BLOCKED_NODE = "BLOCKED_NODE"
    AUTHENTICATION = "AUTHENTICATION"
    NETWORK = "NETWORK"
    UNKNOWN = "UNKNOWN"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# (category, message fragments), first match wins
_CATEGORY_RULES: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (ErrorCategory.BLOCKED_NODE, ("unrecognized node type", "unknown node type", "not installed", "blocked")),
    (ErrorCategory.MISSING_PARAMETER, ("missing", "required")),
    (ErrorCategory.INVALID_CONNECTION, ("connection", "node not found")),
    (ErrorCategory.DUPLICATE_ID, ("duplicate", "unique")),
    (ErrorCategory.MALFORMED_JSON, ("json", "parse")),
    (ErrorCategory.AUTHENTICATION, ("auth", "credential")),
    (ErrorCategory.NETWORK, ("timeout", "network")),
)

# AutoFixEngine rules that address each category
_CATEGORY_CODES: dict[ErrorCategory, frozenset[IssueCode]] = {
    ErrorCategory.MISSING_PARAMETER: frozenset({IssueCode.MISSING_URL, IssueCode.MISSING_EMAIL, IssueCode.MISSING_CODE}),
    ErrorCategory.INVALID_CONNECTION: frozenset({IssueCode.INVALID_CONNECTION_SOURCE, IssueCode.INVALID_CONNECTION_TARGET}),
    ErrorCategory.DUPLICATE_ID: frozenset({IssueCode.DUPLICATE_ID}),
    ErrorCategory.MALFORMED_JSON: frozenset({IssueCode.INCOMPLETE_NODE, IssueCode.INVALID_CONNECTION_SOURCE}),
    ErrorCategory.BLOCKED_NODE: frozenset({IssueCode.BLOCKED_NODE}),
}

_FIX_STRATEGIES: dict[ErrorCategory, str] = {
    ErrorCategory.MISSING_PARAMETER: "Add default/placeholder values",
    ErrorCategory.INVALID_CONNECTION: "Remove invalid connections",
    ErrorCategory.DUPLICATE_ID: "Generate unique IDs",
    ErrorCategory.MALFORMED_JSON: "Fix JSON structure",
    ErrorCategory.BLOCKED_NODE: "Substitute an approved node type",
    ErrorCategory.AUTHENTICATION: "Check credentials configuration",
    ErrorCategory.NETWORK: "Retry with timeout handling",
}


def signature(message: str) -> str:
    """Normalize an error message so recurring errors share one key."""
    text = _QUOTES.sub("", (message or "").lower())
    return _DIGITS.sub("N", text)[:SIGNATURE_MAX_LEN]


def categorize(message: str) -> ErrorCategory:
    text = (message or "").lower()
    for category, fragments in _CATEGORY_RULES:
        if any(f in text for f in fragments):
            return category
    return ErrorCategory.UNKNOWN


def severity(message: str) -> ErrorSeverity:
    text = (message or "").lower()
    if "missing" in text or "duplicate" in text:
        return ErrorSeverity.LOW
    if "auth" in text or "critical" in text:
        return ErrorSeverity.HIGH
    return ErrorSeverity.MEDIUM


def fix_strategy_for(category: ErrorCategory) -> str:
    return _FIX_STRATEGIES.get(category, "Manual investigation required")


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass
class DeploymentError:
    """One rejected deployment, as reported by the workflow engine."""

    error: str
    workflow_id: str | None = None
    http_status: int | None = None
    node_errors: list[str] = field(default_factory=list)
    timestamp: datetime.datetime = field(default_factory=lambda: datetime.datetime.now(datetime.timezone.utc))
    intent: str | None = None
    template_id: str | None = None

    @classmethod
    def from_response(
        cls,
        response: dict[str, Any],
        *,
        intent: str | None = None,
        template_id: str | None = None,
    ) -> DeploymentError:
        """Build from an engine client error dict ({"error": "HTTP 400", "detail": ...})."""
        error = str(response.get("error") or "unknown error")
        detail = response.get("detail")
        status_match = re.match(r"HTTP (\d{3})", error)
        message = error
        if detail:
            try:
                parsed = json.loads(detail) if isinstance(detail, str) else detail
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, dict) and parsed.get("message"):
                message = str(parsed["message"])
            else:
                message = str(detail)
        return cls(
            error=message,
            workflow_id=response.get("id"),
            http_status=int(status_match.group(1)) if status_match else None,
            intent=intent,
            template_id=template_id,
        )


@dataclass
class ErrorPattern:
    signature: str
    category: ErrorCategory
    message: str
    frequency: int = 1
    autofix_available: bool = False
    fix_strategy: str = ""
    learned_codes: frozenset[IssueCode] = frozenset()
    last_seen: datetime.datetime = field(default_factory=lambda: datetime.datetime.now(datetime.timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "signature": self.signature,
            "category": self.category.value,
            "message": self.message,
            "frequency": self.frequency,
            "autofix_available": self.autofix_available,
            "fix_strategy": self.fix_strategy,
            "last_seen": self.last_seen.isoformat(),
        }


@dataclass
class FixResult:
    """Outcome of one feedback cycle. success requires a fix and a passing re-check."""

    success: bool
    workflow: WorkflowGraph
    applied_fixes: list[str] = field(default_factory=list)
    remaining_errors: list[str] = field(default_factory=list)
    confidence: float = _BASE_CONFIDENCE
    strategies: list[str] = field(default_factory=list)
    feasibility: FeasibilityResult | None = None
    signature: str = ""
    category: ErrorCategory = ErrorCategory.UNKNOWN

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "applied_fixes": list(self.applied_fixes),
            "remaining_errors": list(self.remaining_errors),
            "confidence": self.confidence,
            "strategies": list(self.strategies),
            "signature": self.signature,
            "category": self.category.value,
        }


# ---------------------------------------------------------------------------
# Pattern table
# ---------------------------------------------------------------------------

_SEED_PATTERNS: tuple[tuple[str, ErrorCategory, int], ...] = (
    ("missing required parameter", ErrorCategory.MISSING_PARAMETER, 25),
    ("invalid connection", ErrorCategory.INVALID_CONNECTION, 18),
    ("duplicate node id", ErrorCategory.DUPLICATE_ID, 12),
    ("invalid json", ErrorCategory.MALFORMED_JSON, 22),
    ("unrecognized node type", ErrorCategory.BLOCKED_NODE, 9),
)


class ErrorPatternTable:
    """In-process table of error patterns keyed by signature."""

    def __init__(self, seed: bool = True) -> None:
        self._patterns: dict[str, ErrorPattern] = {}
        if seed:
            for message, category, frequency in _SEED_PATTERNS:
                self._patterns[signature(message)] = ErrorPattern(
                    signature=signature(message),
                    category=category,
                    message=message,
                    frequency=frequency,
                    autofix_available=True,
                    fix_strategy=fix_strategy_for(category),
                )

    def __len__(self) -> int:
        return len(self._patterns)

    def __contains__(self, sig: object) -> bool:
        return sig in self._patterns

    def get(self, sig: str) -> ErrorPattern | None:
        return self._patterns.get(sig)

    def all(self) -> list[ErrorPattern]:
        return list(self._patterns.values())

    def record(self, message: str, now: datetime.datetime | None = None) -> ErrorPattern:
        """Create or bump the pattern for a raw error message."""
        now = now or datetime.datetime.now(datetime.timezone.utc)
        sig = signature(message)
        pattern = self._patterns.get(sig)
        if pattern is None:
            category = categorize(message)
            pattern = ErrorPattern(
                signature=sig,
                category=category,
                message=message,
                autofix_available=category in _CATEGORY_CODES,
                fix_strategy=fix_strategy_for(category),
                last_seen=now,
            )
            self._patterns[sig] = pattern
        else:
            pattern.frequency += 1
            pattern.last_seen = now
        logger.info("[ErrorFeedback] Recorded pattern %r (frequency=%d)", sig, pattern.frequency)
        return pattern


# ---------------------------------------------------------------------------
# ErrorFeedbackLoop
# ---------------------------------------------------------------------------


class ErrorFeedbackLoop:
    """Repairs rejected workflows and feeds the outcome back into the library and cache."""

    def __init__(
        self,
        checker: FeasibilityChecker,
        autofix: AutoFixEngine,
        library: TemplateLibrary | None = None,
        cache: TemplateCache | None = None,
        llm: LanguageModelService | None = None,
        *,
        patterns: ErrorPatternTable | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._checker = checker
        self._autofix = autofix
        self._library = library
        self._cache = cache
        self._llm = llm
        self._patterns = patterns if patterns is not None else ErrorPatternTable()
        self._clock = clock

    @property
    def patterns(self) -> ErrorPatternTable:
        return self._patterns

    async def process(
        self,
        error: DeploymentError,
        workflow: WorkflowGraph,
        template_id: str | None = None,
        intent: str | None = None,
    ) -> FixResult:
        template_id = template_id or error.template_id
        intent = intent or error.intent
        message = " ".join([error.error, *error.node_errors])
        logger.info("[ErrorFeedback] Processing deployment error: %s", error.error)

        pattern = self._patterns.record(error.error)
        current = workflow
        applied: list[str] = []
        strategies: list[str] = []
        learned: set[IssueCode] = set()

        # (a) known fixes
        codes = set(_CATEGORY_CODES.get(categorize(message), frozenset())) | set(pattern.learned_codes)
        if codes:
            outcome = self._autofix.repair(current, codes)
            if outcome.changed:
                current = outcome.workflow
                applied.extend(outcome.descriptions)
                learned.update(f.code for f in outcome.applied)
                strategies.append("known")

        # (b) node-specific
        current, node_fixes = self._apply_node_fixes(current)
        if node_fixes:
            applied.extend(node_fixes)
            strategies.append("node")

        # (c) structural
        current, structural_fixes, structural_codes = self._apply_structural_fixes(current)
        if structural_fixes:
            applied.extend(structural_fixes)
            learned.update(structural_codes)
            strategies.append("structural")

        # (d) generative, last resort
        if not applied and intent and self._llm is not None:
            generated = await self._generative_fix(current, error, intent)
            if generated is not None:
                current = generated
                applied.append("Regenerated workflow from error feedback")
                strategies.append("generative")

        confidence = _BASE_CONFIDENCE + sum(_STRATEGY_BONUS[s] for s in strategies)
        feasibility = self._checker.check(current)
        if not feasibility.passed:
            confidence -= _INVALID_PENALTY
        confidence = round(max(_MIN_CONFIDENCE, min(_MAX_CONFIDENCE, confidence)), 6)

        result = FixResult(
            success=feasibility.passed and bool(applied),
            workflow=current,
            applied_fixes=applied,
            remaining_errors=[i.message for i in feasibility.errors],
            confidence=confidence,
            strategies=strategies,
            feasibility=feasibility,
            signature=pattern.signature,
            category=pattern.category,
        )
        self._learn(pattern, result, learned)
        await self._record_failure(template_id, intent)
        logger.info(
            "[ErrorFeedback] Fix attempt %s (%d fixes, strategies=%s, confidence=%.2f)",
            "SUCCESS" if result.success else "FAILED", len(applied), strategies, confidence,
        )
        return result

    async def record_success(self, template_id: str | None, intent: str | None = None) -> None:
        """A deployment succeeded; fold it into the template's statistics."""
        if template_id is None or self._library is None:
            return
        await guarded("stats", self._library.record_outcome(template_id, success=True))
        logger.debug("[ErrorFeedback] Recorded success for %s (intent=%r)", template_id, intent)

    def statistics(self) -> dict[str, Any]:
        patterns = self._patterns.all()
        categories: dict[str, int] = {}
        for p in patterns:
            categories[p.category.value] = categories.get(p.category.value, 0) + p.frequency
        most_frequent = sorted(patterns, key=lambda p: (-p.frequency, p.signature))[:10]
        return {
            "total_patterns": len(patterns),
            "autofix_available": sum(1 for p in patterns if p.autofix_available),
            "most_frequent": [
                {"signature": p.signature, "frequency": p.frequency, "category": p.category.value}
                for p in most_frequent
            ],
            "categories": categories,
        }

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _apply_node_fixes(self, wf: WorkflowGraph) -> tuple[WorkflowGraph, list[str]]:
        fixes: list[str] = []
        stamp = str(int(self._clock() * 1000))[-6:]

        def fix(node: WorkflowNode) -> WorkflowNode:
            match node.action:
                case ActionType.WEBHOOK if not node.param("path"):
                    fixes.append(f"Fixed webhook configuration for {node.name}")
                    return node.with_parameters(
                        path=f"webhook-{stamp}",
                        httpMethod=node.param("httpMethod") or "POST",
                    )
                case ActionType.SCHEDULE_TRIGGER if not node.param("rule"):
                    fixes.append(f"Fixed schedule configuration for {node.name}")
                    return node.with_parameters(rule=json.loads(json.dumps(_DEFAULT_SCHEDULE_RULE)))
                case ActionType.CODE | ActionType.FUNCTION if not (
                    node.param("jsCode") or node.param("functionCode") or node.param("pythonCode")
                ):
                    fixes.append(f"Added default code to {node.name}")
                    return node.with_parameters(jsCode=_DEFAULT_PROCESSING_CODE)
                case ActionType.HTTP_REQUEST if node.param("method") not in (None, *_HTTP_METHODS):
                    method = str(node.param("method")).upper()
                    method = method if method in _HTTP_METHODS else "GET"
                    fixes.append(f"Normalized HTTP method for {node.name} to {method}")
                    return node.with_parameters(method=method)
            return node

        return wf.map_nodes(fix), fixes

    def _apply_structural_fixes(self, wf: WorkflowGraph) -> tuple[WorkflowGraph, list[str], set[IssueCode]]:
        fixes: list[str] = []
        codes: set[IssueCode] = set()
        if not wf.name:
            wf = wf.with_name(f"Workflow {int(self._clock() * 1000)}")
            fixes.append("Added workflow name")
        if wf.settings is None:
            wf = wf.with_settings(dict(_DEFAULT_SETTINGS))
            fixes.append("Added workflow settings")
        if wf.nodes and not wf.triggers():
            outcome = self._autofix.repair(wf, [IssueCode.NO_TRIGGER])
            if outcome.changed:
                wf = outcome.workflow
                fixes.extend(outcome.descriptions)
                codes.add(IssueCode.NO_TRIGGER)
        return wf, fixes, codes

    async def _generative_fix(self, wf: WorkflowGraph, error: DeploymentError, intent: str) -> WorkflowGraph | None:
        prompt = (
            f"The workflow below was rejected by the workflow engine.\n"
            f"User request: {intent}\n"
            f"Engine error: {error.error}\n"
            f"Node errors: {'; '.join(error.node_errors) or 'none'}\n\n"
            f"Workflow JSON:\n{wf.to_workflow_json_str()}\n\n"
            "Return only the corrected workflow as a single JSON object."
        )
        reply = await guarded(
            "llm",
            self._llm.complete(prompt, system="You repair n8n workflow JSON. Reply with JSON only."),
            default="",
        )
        if not reply.ok or not reply.value:
            return None
        found = _JSON_OBJECT.search(reply.value)
        if not found:
            logger.info("[ErrorFeedback] Generative fix returned no JSON object")
            return None
        try:
            candidate = WorkflowGraph.from_workflow_json(found.group(0))
        except (KeyError, TypeError, ValueError) as exc:
            logger.info("[ErrorFeedback] Generative fix unparseable: %s", exc)
            return None
        if not candidate.nodes:
            return None
        return candidate.with_name(candidate.name or wf.name).with_meta(**wf.meta)

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def _learn(self, pattern: ErrorPattern, result: FixResult, learned: set[IssueCode]) -> None:
        pattern.autofix_available = result.success
        if result.success and result.applied_fixes:
            pattern.fix_strategy = "; ".join(result.applied_fixes)
            pattern.learned_codes = frozenset(pattern.learned_codes | learned)

    async def _record_failure(self, template_id: str | None, intent: str | None) -> None:
        if template_id is not None and self._library is not None:
            await guarded("stats", self._library.record_outcome(template_id, success=False))
        if intent and self._cache is not None:
            await self._cache.invalidate(intent)
