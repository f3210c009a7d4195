"""Immutable workflow graph IR with an n8n JSON codec.

A WorkflowGraph is constructed from raw engine JSON via from_workflow_json()
and written back with to_workflow_json(). Nodes and connections are frozen
dataclasses; every edit returns a new graph (copy-on-write at node/edge
granularity), so repairs never alias the template they started from.

n8n wires nodes by *name*:

    "connections": {
        "Webhook": {"main": [[{"node": "Send Email", "type": "main", "index": 0}]]}
    }

The IR flattens this into Connection(source, target, output_index, input_index)
records and keeps dangling references intact, so the Feasibility Checker can
report them.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable

from workflow_reliability.pipeline.actions import ActionType, is_side_effect, is_trigger

_START_X = 250
_START_Y = 300
_STEP_X = 220


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (OverflowError, TypeError, ValueError):
        return default


# ---------------------------------------------------------------------------
# Nodes and connections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowNode:
    """One action unit in a workflow.

    id:           Engine node ID (unique within a workflow).
    name:         Display name; connections refer to nodes by this value.
    type:         Engine type string, e.g. "n8n-nodes-base.emailSend".
    type_version: Engine node version.
    position:     (x, y) canvas coordinates.
    parameters:   Node parameters. Treat as read-only; use with_parameters().
    """

    id: str
    name: str
    type: str
    type_version: float = 1
    position: tuple[int, int] = (_START_X, _START_Y)
    parameters: dict[str, Any] = field(default_factory=dict)
    credentials: dict[str, Any] | None = None

    @property
    def action(self) -> ActionType | None:
        return ActionType.parse(self.type)

    @property
    def is_trigger(self) -> bool:
        return is_trigger(self.type)

    @property
    def is_side_effect(self) -> bool:
        return is_side_effect(self.type)

    def param(self, key: str, default: Any = None) -> Any:
        return self.parameters.get(key, default)

    def with_parameters(self, **updates: Any) -> WorkflowNode:
        """Return a copy with the given parameters set (others preserved)."""
        return replace(self, parameters={**copy.deepcopy(self.parameters), **updates})

    def with_type(self, type_name: str, parameters: dict[str, Any]) -> WorkflowNode:
        return replace(self, type=type_name, parameters=dict(parameters), credentials=None)

    def to_json(self) -> dict[str, Any]:
        raw: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "typeVersion": self.type_version,
            "position": [self.position[0], self.position[1]],
            "parameters": copy.deepcopy(self.parameters),
        }
        if self.credentials:
            raw["credentials"] = copy.deepcopy(self.credentials)
        return raw

    @classmethod
    def from_json(cls, raw: dict[str, Any]) -> WorkflowNode:
        """Malformed fields fall back to their defaults; never raises."""
        position = raw.get("position")
        if isinstance(position, (list, tuple)) and len(position) == 2:
            pos = (_as_int(position[0], _START_X), _as_int(position[1], _START_Y))
        else:
            pos = (_START_X, _START_Y)
        params = raw.get("parameters")
        creds = raw.get("credentials")
        version = raw.get("typeVersion", 1)
        return cls(
            id=str(raw.get("id") or ""),
            name=str(raw.get("name") or ""),
            type=str(raw.get("type") or ""),
            type_version=version if isinstance(version, (int, float)) and not isinstance(version, bool) else 1,
            position=pos,
            parameters=copy.deepcopy(params) if isinstance(params, dict) else {},
            credentials=copy.deepcopy(creds) if isinstance(creds, dict) and creds else None,
        )


@dataclass(frozen=True)
class Connection:
    """A directed edge between two nodes, addressed by node name."""

    source: str
    target: str
    output_index: int = 0
    input_index: int = 0
    kind: str = "main"


# ---------------------------------------------------------------------------
# WorkflowGraph
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowGraph:
    """Canonical representation of an n8n workflow.

    ``settings`` is None when the source JSON had no settings block, and
    ``name`` is empty when it had no name; the structural repairs in the
    Error Feedback Loop rely on that distinction.
    """

    name: str = ""
    nodes: tuple[WorkflowNode, ...] = ()
    connections: tuple[Connection, ...] = ()
    settings: dict[str, Any] | None = field(default_factory=lambda: {"executionOrder": "v1"})
    static_data: dict[str, Any] | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    # -- lookups -----------------------------------------------------------

    def node_names(self) -> set[str]:
        return {n.name for n in self.nodes}

    def node_ids(self) -> list[str]:
        return [n.id for n in self.nodes]

    def get_node(self, name: str) -> WorkflowNode | None:
        return next((n for n in self.nodes if n.name == name), None)

    def triggers(self) -> list[WorkflowNode]:
        return [n for n in self.nodes if n.is_trigger]

    def action_types(self) -> list[str]:
        return [n.type for n in self.nodes]

    def outgoing(self, name: str) -> list[Connection]:
        return [c for c in self.connections if c.source == name]

    def incoming(self, name: str) -> list[Connection]:
        return [c for c in self.connections if c.target == name]

    # -- copy-on-write edits ----------------------------------------------

    def with_name(self, name: str) -> WorkflowGraph:
        return replace(self, name=name)

    def with_settings(self, settings: dict[str, Any]) -> WorkflowGraph:
        return replace(self, settings=dict(settings))

    def with_meta(self, **updates: Any) -> WorkflowGraph:
        return replace(self, meta={**self.meta, **updates})

    def with_nodes(self, nodes: Iterable[WorkflowNode]) -> WorkflowGraph:
        return replace(self, nodes=tuple(nodes))

    def with_connections(self, connections: Iterable[Connection]) -> WorkflowGraph:
        return replace(self, connections=tuple(connections))

    def replace_node(self, index: int, node: WorkflowNode) -> WorkflowGraph:
        nodes = list(self.nodes)
        nodes[index] = node
        return replace(self, nodes=tuple(nodes))

    def map_nodes(self, fn: Callable[[WorkflowNode], WorkflowNode]) -> WorkflowGraph:
        """Apply fn to every node; unchanged nodes keep their identity."""
        return replace(self, nodes=tuple(fn(n) for n in self.nodes))

    def prepend_node(self, node: WorkflowNode) -> WorkflowGraph:
        return replace(self, nodes=(node, *self.nodes))

    def add_connection(self, conn: Connection) -> WorkflowGraph:
        return replace(self, connections=(*self.connections, conn))

    # -- codec -------------------------------------------------------------

    def to_workflow_json(self) -> dict[str, Any]:
        """Convert to the n8n workflow dict used by the engine REST API."""
        connections: dict[str, dict[str, list[list[dict[str, Any]]]]] = {}
        for c in self.connections:
            outputs = connections.setdefault(c.source, {}).setdefault(c.kind, [])
            while len(outputs) <= c.output_index:
                outputs.append([])
            outputs[c.output_index].append(
                {"node": c.target, "type": c.kind, "index": c.input_index}
            )
        workflow: dict[str, Any] = {
            "name": self.name,
            "nodes": [n.to_json() for n in self.nodes],
            "connections": connections,
        }
        if self.settings is not None:
            workflow["settings"] = copy.deepcopy(self.settings)
        if self.static_data is not None:
            workflow["staticData"] = copy.deepcopy(self.static_data)
        if self.meta:
            workflow["meta"] = copy.deepcopy(self.meta)
        return workflow

    def to_workflow_json_str(self) -> str:
        """Serialize to a compact JSON string (no whitespace)."""
        return json.dumps(self.to_workflow_json(), separators=(",", ":"))

    @classmethod
    def from_workflow_json(cls, workflow: dict[str, Any] | str) -> WorkflowGraph:
        """Parse raw engine JSON into a WorkflowGraph.

        Raises ValueError on a JSON string that does not decode to an object.
        Missing or malformed keys are tolerated and fall back to defaults.
        """
        if isinstance(workflow, str):
            workflow = json.loads(workflow)
        if not isinstance(workflow, dict):
            raise ValueError("workflow JSON must be an object")

        raw_nodes = workflow.get("nodes")
        nodes = tuple(
            WorkflowNode.from_json(raw)
            for raw in (raw_nodes if isinstance(raw_nodes, list) else [])
            if isinstance(raw, dict)
        )

        connections: list[Connection] = []
        raw_conns = workflow.get("connections")
        if isinstance(raw_conns, dict):
            for source, by_kind in raw_conns.items():
                if not isinstance(by_kind, dict):
                    continue
                for kind, outputs in by_kind.items():
                    if not isinstance(outputs, list):
                        continue
                    for out_idx, group in enumerate(outputs):
                        if not isinstance(group, list):
                            continue
                        for link in group:
                            if not isinstance(link, dict):
                                continue
                            connections.append(Connection(
                                source=source,
                                target=str(link.get("node") or ""),
                                output_index=out_idx,
                                input_index=_as_int(link.get("index"), 0),
                                kind=str(link.get("type") or kind),
                            ))

        settings = workflow.get("settings")
        meta = workflow.get("meta")
        return cls(
            name=str(workflow.get("name") or ""),
            nodes=nodes,
            connections=tuple(connections),
            settings=copy.deepcopy(settings) if isinstance(settings, dict) else None,
            static_data=copy.deepcopy(workflow.get("staticData")),
            meta=copy.deepcopy(meta) if isinstance(meta, dict) else {},
        )


def chain(name: str, nodes: list[WorkflowNode]) -> WorkflowGraph:
    """Build a linear graph wiring each node's main output to the next node."""
    positioned = [
        replace(n, position=(_START_X + i * _STEP_X, _START_Y)) for i, n in enumerate(nodes)
    ]
    connections = [
        Connection(source=a.name, target=b.name) for a, b in zip(positioned, positioned[1:])
    ]
    return WorkflowGraph(name=name, nodes=tuple(positioned), connections=tuple(connections))
