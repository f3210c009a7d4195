"""Feasibility Checker — strict three-stage gate before a workflow is deployable.

Stages run in order and stop at the first stage that reports an error:

  1. node_compliance      every node is complete and uses an allow-listed type
  2. config_completeness  type-specific required parameters are present
  3. dry_run              triggers, connection integrity, duplicates, shape

Warnings never fail a stage. The checker is deterministic and makes no
network calls; results are aggregated ValidationIssue values, never exceptions.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

from workflow_reliability.pipeline.actions import (
    OUTPUT_ACTION_TYPES,
    ActionType,
    is_allowed,
    is_blocked,
    substitute_for,
)
from workflow_reliability.pipeline.graph_ir import WorkflowGraph, WorkflowNode

logger = logging.getLogger("workflow_reliability.pipeline.feasibility")

MIN_NODE_COUNT = 2


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class Stage(str, Enum):
    NODE_COMPLIANCE = "node_compliance"
    CONFIG_COMPLETENESS = "config_completeness"
    DRY_RUN = "dry_run"


class IssueCode(str, Enum):
    # node compliance
    INCOMPLETE_NODE = "INCOMPLETE_NODE"
    BLOCKED_NODE = "BLOCKED_NODE"
    UNKNOWN_NODE = "UNKNOWN_NODE"
    ALTERNATIVE_AVAILABLE = "ALTERNATIVE_AVAILABLE"
    # config completeness
    MISSING_URL = "MISSING_URL"
    MISSING_EMAIL = "MISSING_EMAIL"
    MISSING_CODE = "MISSING_CODE"
    MISSING_WEBHOOK_PATH = "MISSING_WEBHOOK_PATH"
    # dry run
    NO_TRIGGER = "NO_TRIGGER"
    DUPLICATE_ID = "DUPLICATE_ID"
    INVALID_CONNECTION_SOURCE = "INVALID_CONNECTION_SOURCE"
    INVALID_CONNECTION_TARGET = "INVALID_CONNECTION_TARGET"
    ORPHANED_NODE = "ORPHANED_NODE"
    TOO_SIMPLE = "TOO_SIMPLE"
    NO_OUTPUT = "NO_OUTPUT"


@dataclass(frozen=True)
class ValidationIssue:
    """A single feasibility finding."""

    code: IssueCode
    message: str
    stage: Stage
    severity: Severity = Severity.ERROR
    node: str | None = None
    parameter: str | None = None
    suggestion: str | None = None

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR


@dataclass
class FeasibilityResult:
    """Outcome of one check() call.

    Stage booleans are None for stages that did not run.
    """

    node_compliance: bool | None = None
    config_completeness: bool | None = None
    dry_run: bool | None = None
    issues: list[ValidationIssue] = field(default_factory=list)
    stages_run: list[Stage] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return bool(self.node_compliance and self.config_completeness and self.dry_run)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity is Severity.ERROR]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity is Severity.WARNING]

    @property
    def error_codes(self) -> list[IssueCode]:
        return [i.code for i in self.errors]

    @property
    def score(self) -> int:
        """Reliability score 0-100: -20 per error, -5 per warning."""
        return max(0, min(100, 100 - 20 * len(self.errors) - 5 * len(self.warnings)))

    @property
    def human_readable(self) -> list[str]:
        return [
            f"[{i.severity.value.upper()}] {i.code.value}"
            + (f" ({i.node})" if i.node else "")
            + f": {i.message}"
            for i in self.issues
        ]

    def to_dict(self) -> dict:
        return {
            "passed": self.passed,
            "node_compliance": self.node_compliance,
            "config_completeness": self.config_completeness,
            "dry_run": self.dry_run,
            "stages_run": [s.value for s in self.stages_run],
            "score": self.score,
            "errors": [self._issue_dict(i) for i in self.errors],
            "warnings": [self._issue_dict(i) for i in self.warnings],
        }

    @staticmethod
    def _issue_dict(issue: ValidationIssue) -> dict:
        return {
            "code": issue.code.value,
            "message": issue.message,
            "stage": issue.stage.value,
            "node": issue.node,
            "parameter": issue.parameter,
            "suggestion": issue.suggestion,
        }


def _blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class FeasibilityChecker:
    """Three-stage short-circuiting validator.

    Each stage is a public method returning its issues, so callers and tests
    can run or observe stages individually.
    """

    def check(self, workflow: WorkflowGraph) -> FeasibilityResult:
        result = FeasibilityResult()

        for stage, run in (
            (Stage.NODE_COMPLIANCE, self.check_node_compliance),
            (Stage.CONFIG_COMPLETENESS, self.check_config_completeness),
            (Stage.DRY_RUN, self.dry_run),
        ):
            issues = run(workflow)
            result.issues.extend(issues)
            result.stages_run.append(stage)
            ok = not any(i.is_error for i in issues)
            setattr(result, stage.value, ok)
            if not ok:
                break

        for w in result.warnings:
            logger.debug("[FeasibilityChecker] %s: %s", w.code.value, w.message)
        logger.info(
            "[FeasibilityChecker] %r passed=%s stages=%s errors=%d warnings=%d",
            workflow.name, result.passed, [s.value for s in result.stages_run],
            len(result.errors), len(result.warnings),
        )
        return result

    # ------------------------------------------------------------------
    # Stage 1 — node compliance
    # ------------------------------------------------------------------

    def check_node_compliance(self, workflow: WorkflowGraph) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        stage = Stage.NODE_COMPLIANCE
        for node in workflow.nodes:
            label = node.name or node.id or "unknown"
            if not (node.id and node.name and node.type):
                issues.append(ValidationIssue(
                    code=IssueCode.INCOMPLETE_NODE,
                    message="Node missing required fields (id, name, or type)",
                    stage=stage,
                    node=label,
                ))
                continue

            if is_blocked(node.type):
                issues.append(ValidationIssue(
                    code=IssueCode.BLOCKED_NODE,
                    message=f"Node type '{node.type}' requires per-user OAuth and is not deployable",
                    stage=stage,
                    node=label,
                ))
                sub = substitute_for(node.type)
                if sub is not None:
                    issues.append(ValidationIssue(
                        code=IssueCode.ALTERNATIVE_AVAILABLE,
                        message=f"Consider using '{sub.hint}' instead of '{node.type}'",
                        stage=stage,
                        severity=Severity.WARNING,
                        node=label,
                        suggestion=sub.target.value,
                    ))
            elif not is_allowed(node.type):
                issues.append(ValidationIssue(
                    code=IssueCode.UNKNOWN_NODE,
                    message=f"Node type '{node.type}' is not on the approved list",
                    stage=stage,
                    node=label,
                ))
        return issues

    # ------------------------------------------------------------------
    # Stage 2 — config completeness
    # ------------------------------------------------------------------

    def check_config_completeness(self, workflow: WorkflowGraph) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for node in workflow.nodes:
            issue = self._config_issue(node)
            if issue is not None:
                issues.append(issue)
        return issues

    @staticmethod
    def _config_issue(node: WorkflowNode) -> ValidationIssue | None:
        stage = Stage.CONFIG_COMPLETENESS
        match node.action:
            case ActionType.HTTP_REQUEST if _blank(node.param("url")):
                return ValidationIssue(
                    code=IssueCode.MISSING_URL,
                    message="HTTP Request node requires a URL",
                    stage=stage, node=node.name, parameter="url",
                )
            case ActionType.EMAIL_SEND if _blank(node.param("toEmail")):
                return ValidationIssue(
                    code=IssueCode.MISSING_EMAIL,
                    message="Email Send node requires a toEmail recipient",
                    stage=stage, node=node.name, parameter="toEmail",
                )
            case ActionType.CODE | ActionType.FUNCTION if all(
                _blank(node.param(k)) for k in ("jsCode", "functionCode", "pythonCode")
            ):
                return ValidationIssue(
                    code=IssueCode.MISSING_CODE,
                    message="Code node requires jsCode or functionCode",
                    stage=stage, node=node.name, parameter="jsCode",
                )
            case ActionType.WEBHOOK if _blank(node.param("path")):
                return ValidationIssue(
                    code=IssueCode.MISSING_WEBHOOK_PATH,
                    message="Webhook node should have a path",
                    stage=stage, severity=Severity.WARNING, node=node.name, parameter="path",
                )
        return None

    # ------------------------------------------------------------------
    # Stage 3 — structural dry run
    # ------------------------------------------------------------------

    def dry_run(self, workflow: WorkflowGraph) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        stage = Stage.DRY_RUN
        names = workflow.node_names()

        if not workflow.triggers():
            issues.append(ValidationIssue(
                code=IssueCode.NO_TRIGGER,
                message="Workflow must have at least one trigger node",
                stage=stage,
            ))

        id_counts = Counter(n.id for n in workflow.nodes if n.id)
        for node_id, count in sorted(id_counts.items()):
            if count > 1:
                issues.append(ValidationIssue(
                    code=IssueCode.DUPLICATE_ID,
                    message=f"Node id '{node_id}' is used by {count} nodes",
                    stage=stage,
                    node=node_id,
                ))

        reported_sources: set[str] = set()
        for conn in workflow.connections:
            if conn.source not in names:
                if conn.source not in reported_sources:
                    reported_sources.add(conn.source)
                    issues.append(ValidationIssue(
                        code=IssueCode.INVALID_CONNECTION_SOURCE,
                        message=f"Connection source '{conn.source}' does not exist",
                        stage=stage,
                        node=conn.source,
                    ))
                continue
            if conn.target not in names:
                issues.append(ValidationIssue(
                    code=IssueCode.INVALID_CONNECTION_TARGET,
                    message=f"Connection target '{conn.target}' does not exist",
                    stage=stage,
                    node=conn.source,
                ))

        targets = {c.target for c in workflow.connections if c.source in names}
        for node in workflow.nodes:
            if not node.is_trigger and node.name not in targets:
                issues.append(ValidationIssue(
                    code=IssueCode.ORPHANED_NODE,
                    message=f"Node '{node.name}' is not connected",
                    stage=stage,
                    severity=Severity.WARNING,
                    node=node.name,
                ))

        if len(workflow.nodes) < MIN_NODE_COUNT:
            issues.append(ValidationIssue(
                code=IssueCode.TOO_SIMPLE,
                message=f"Workflow has fewer than {MIN_NODE_COUNT} nodes",
                stage=stage,
                severity=Severity.WARNING,
            ))

        if not any(n.action in OUTPUT_ACTION_TYPES for n in workflow.nodes):
            issues.append(ValidationIssue(
                code=IssueCode.NO_OUTPUT,
                message="Workflow has no side-effecting output action",
                stage=stage,
                severity=Severity.WARNING,
                suggestion="Add an Email Send, HTTP Request, or Respond to Webhook node",
            ))
        return issues
