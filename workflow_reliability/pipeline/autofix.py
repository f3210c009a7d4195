"""Auto-Fix Engine — deterministic repair table keyed by issue code.

Each rule takes an immutable WorkflowGraph and returns a new graph plus the
fixes it applied. A rule only acts when its condition is present, so running
repair() twice leaves an already-repaired graph unchanged.

Rule order (one pass):
    INCOMPLETE_NODE     fill missing id/name, drop nodes with no type
    BLOCKED_NODE        substitute an approved action type
    MISSING_URL         placeholder endpoint
    MISSING_EMAIL       placeholder recipient expression
    MISSING_CODE        pass-through code body
    DUPLICATE_ID        time-derived suffix
    INVALID_CONNECTION  prune edges with a missing source or target
    NO_TRIGGER          insert a manual trigger wired to the entry node

UNKNOWN_NODE has no rule: an unrecognised type has no safe equivalent.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Iterable

from workflow_reliability.pipeline.actions import ActionType, substitute_for
from workflow_reliability.pipeline.feasibility import IssueCode
from workflow_reliability.pipeline.graph_ir import Connection, WorkflowGraph, WorkflowNode

logger = logging.getLogger("workflow_reliability.pipeline.autofix")

PLACEHOLDER_URL = "https://api.example.com/endpoint"
PLACEHOLDER_RECIPIENT = '={{$json["email"]}}'
PLACEHOLDER_JS_CODE = "return $input.all();"
PLACEHOLDER_FUNCTION_CODE = "return items;"
DEFAULT_TRIGGER_NAME = "Manual Trigger"
DEFAULT_TRIGGER_POSITION = (250, 300)


@dataclass(frozen=True)
class AppliedFix:
    code: IssueCode
    node: str | None
    description: str


@dataclass(frozen=True)
class RepairOutcome:
    workflow: WorkflowGraph
    applied: tuple[AppliedFix, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.applied)

    @property
    def descriptions(self) -> list[str]:
        return [f.description for f in self.applied]


RuleResult = tuple[WorkflowGraph, list[AppliedFix]]


def _unique(candidate: str, taken: set[str]) -> str:
    if candidate not in taken:
        return candidate
    n = 2
    while f"{candidate} {n}" in taken:
        n += 1
    return f"{candidate} {n}"


class AutoFixEngine:
    """Applies the repair table to a workflow in a single pass.

    clock: seconds-since-epoch source for duplicate-id suffixes.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._rules: dict[IssueCode, Callable[[WorkflowGraph], RuleResult]] = {
            IssueCode.INCOMPLETE_NODE: self._fix_incomplete_nodes,
            IssueCode.BLOCKED_NODE: self._substitute_blocked,
            IssueCode.MISSING_URL: self._fill_url,
            IssueCode.MISSING_EMAIL: self._fill_recipient,
            IssueCode.MISSING_CODE: self._fill_code,
            IssueCode.DUPLICATE_ID: self._dedupe_ids,
            IssueCode.INVALID_CONNECTION_SOURCE: self._prune_connections,
            IssueCode.INVALID_CONNECTION_TARGET: self._prune_connections,
            IssueCode.NO_TRIGGER: self._insert_trigger,
        }

    @property
    def supported_codes(self) -> frozenset[IssueCode]:
        return frozenset(self._rules)

    def can_fix(self, code: IssueCode) -> bool:
        return code in self._rules

    def repair(
        self,
        workflow: WorkflowGraph,
        codes: Iterable[IssueCode] | None = None,
    ) -> RepairOutcome:
        """Run the rules for ``codes`` (every rule when None) in table order."""
        wanted = set(self._rules) if codes is None else set(codes)
        applied: list[AppliedFix] = []
        seen: set[Callable[[WorkflowGraph], RuleResult]] = set()

        for code, rule in self._rules.items():
            if code not in wanted or rule in seen:
                continue
            seen.add(rule)
            workflow, fixes = rule(workflow)
            applied.extend(fixes)

        if applied:
            logger.info(
                "[AutoFix] %r: applied %d fixes: %s",
                workflow.name, len(applied), [f.code.value for f in applied],
            )
        return RepairOutcome(workflow=workflow, applied=tuple(applied))

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _fix_incomplete_nodes(self, wf: WorkflowGraph) -> RuleResult:
        fixes: list[AppliedFix] = []
        dropped: set[str] = set()
        nodes: list[WorkflowNode] = []
        names = {n.name for n in wf.nodes if n.name}
        ids = {n.id for n in wf.nodes if n.id}

        for idx, node in enumerate(wf.nodes):
            if not node.type:
                if node.name:
                    dropped.add(node.name)
                fixes.append(AppliedFix(IssueCode.INCOMPLETE_NODE, node.name or None,
                                        f"Removed node without a type at index {idx}"))
                continue
            if not node.name:
                action = node.action
                short = action.short_name if action is not None else "node"
                name = _unique(short[:1].upper() + short[1:], names)
                names.add(name)
                node = replace(node, name=name)
                fixes.append(AppliedFix(IssueCode.INCOMPLETE_NODE, name, f"Named unnamed node '{name}'"))
            if not node.id:
                node_id = _unique(f"node_{idx + 1}", ids).replace(" ", "_")
                ids.add(node_id)
                node = replace(node, id=node_id)
                fixes.append(AppliedFix(IssueCode.INCOMPLETE_NODE, node.name, f"Assigned id '{node_id}'"))
            nodes.append(node)

        if not fixes:
            return wf, []
        wf = wf.with_nodes(nodes)
        if dropped:
            wf = wf.with_connections(
                c for c in wf.connections if c.source not in dropped and c.target not in dropped
            )
        return wf, fixes

    def _substitute_blocked(self, wf: WorkflowGraph) -> RuleResult:
        fixes: list[AppliedFix] = []

        def swap(node: WorkflowNode) -> WorkflowNode:
            sub = substitute_for(node.type)
            blocked = node.action
            if sub is None or blocked is None:
                return node
            fixes.append(AppliedFix(
                IssueCode.BLOCKED_NODE, node.name,
                f"Replaced {blocked.short_name} with {sub.target.short_name} on '{node.name}'",
            ))
            return replace(
                node.with_type(sub.target.value, sub.parameters_for(blocked, node.parameters)),
                type_version=1,
            )

        new_wf = wf.map_nodes(swap)
        return (new_wf, fixes) if fixes else (wf, [])

    def _fill_parameter(
        self,
        wf: WorkflowGraph,
        code: IssueCode,
        actions: set[ActionType],
        key_for: Callable[[WorkflowNode], str | None],
        value_for: Callable[[WorkflowNode], str],
    ) -> RuleResult:
        fixes: list[AppliedFix] = []

        def fill(node: WorkflowNode) -> WorkflowNode:
            if node.action not in actions:
                return node
            key = key_for(node)
            if key is None:
                return node
            fixes.append(AppliedFix(code, node.name, f"Set placeholder {key} on '{node.name}'"))
            return node.with_parameters(**{key: value_for(node)})

        new_wf = wf.map_nodes(fill)
        return (new_wf, fixes) if fixes else (wf, [])

    def _fill_url(self, wf: WorkflowGraph) -> RuleResult:
        return self._fill_parameter(
            wf, IssueCode.MISSING_URL, {ActionType.HTTP_REQUEST},
            lambda n: "url" if not str(n.param("url") or "").strip() else None,
            lambda n: PLACEHOLDER_URL,
        )

    def _fill_recipient(self, wf: WorkflowGraph) -> RuleResult:
        return self._fill_parameter(
            wf, IssueCode.MISSING_EMAIL, {ActionType.EMAIL_SEND},
            lambda n: "toEmail" if not str(n.param("toEmail") or "").strip() else None,
            lambda n: PLACEHOLDER_RECIPIENT,
        )

    def _fill_code(self, wf: WorkflowGraph) -> RuleResult:
        def missing(n: WorkflowNode) -> str | None:
            if any(str(n.param(k) or "").strip() for k in ("jsCode", "functionCode", "pythonCode")):
                return None
            return "functionCode" if n.action is ActionType.FUNCTION else "jsCode"

        return self._fill_parameter(
            wf, IssueCode.MISSING_CODE, {ActionType.CODE, ActionType.FUNCTION},
            missing,
            lambda n: PLACEHOLDER_FUNCTION_CODE if n.action is ActionType.FUNCTION else PLACEHOLDER_JS_CODE,
        )

    def _dedupe_ids(self, wf: WorkflowGraph) -> RuleResult:
        fixes: list[AppliedFix] = []
        taken = {n.id for n in wf.nodes}
        seen: set[str] = set()
        suffix = int(self._clock() * 1000) % 10000
        nodes: list[WorkflowNode] = []

        for node in wf.nodes:
            if node.id and node.id in seen:
                candidate = f"{node.id}_{suffix:04d}"
                while candidate in taken:
                    suffix = (suffix + 1) % 10000
                    candidate = f"{node.id}_{suffix:04d}"
                taken.add(candidate)
                fixes.append(AppliedFix(
                    IssueCode.DUPLICATE_ID, node.name,
                    f"Renamed duplicate id '{node.id}' to '{candidate}'",
                ))
                node = replace(node, id=candidate)
            seen.add(node.id)
            nodes.append(node)

        return (wf.with_nodes(nodes), fixes) if fixes else (wf, [])

    def _prune_connections(self, wf: WorkflowGraph) -> RuleResult:
        names = wf.node_names()
        kept = [c for c in wf.connections if c.source in names and c.target in names]
        if len(kept) == len(wf.connections):
            return wf, []
        fixes = [
            AppliedFix(
                IssueCode.INVALID_CONNECTION_SOURCE if c.source not in names
                else IssueCode.INVALID_CONNECTION_TARGET,
                c.source,
                f"Removed connection {c.source!r} -> {c.target!r}",
            )
            for c in wf.connections
            if c not in kept
        ]
        return wf.with_connections(kept), fixes

    def _insert_trigger(self, wf: WorkflowGraph) -> RuleResult:
        if wf.triggers():
            return wf, []
        names = wf.node_names()
        ids = set(wf.node_ids())
        name = _unique(DEFAULT_TRIGGER_NAME, names)
        node_id = _unique("manual_trigger", ids).replace(" ", "_")
        trigger = WorkflowNode(
            id=node_id,
            name=name,
            type=ActionType.MANUAL_TRIGGER.value,
            position=DEFAULT_TRIGGER_POSITION,
        )
        targets = {c.target for c in wf.connections}
        entry = next((n for n in wf.nodes if n.name not in targets), wf.nodes[0] if wf.nodes else None)

        new_wf = wf.prepend_node(trigger)
        if entry is not None:
            new_wf = new_wf.add_connection(Connection(source=name, target=entry.name))
        return new_wf, [AppliedFix(
            IssueCode.NO_TRIGGER, name,
            f"Inserted '{name}'" + (f" wired to '{entry.name}'" if entry is not None else ""),
        )]
