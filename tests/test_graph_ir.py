"""WorkflowGraph IR: n8n JSON codec and copy-on-write edits."""

from __future__ import annotations

import json

import pytest

from workflow_reliability.pipeline.graph_ir import Connection, WorkflowGraph, WorkflowNode, chain


def _raw_workflow() -> dict:
    return {
        "name": "Webhook to Email",
        "nodes": [
            {
                "id": "a", "name": "Webhook", "type": "n8n-nodes-base.webhook",
                "typeVersion": 1, "position": [250, 300],
                "parameters": {"path": "hook", "httpMethod": "POST"},
            },
            {
                "id": "b", "name": "Send Email", "type": "n8n-nodes-base.emailSend",
                "typeVersion": 2, "position": [470, 300],
                "parameters": {"toEmail": "ops@acme.io"},
                "credentials": {"smtp": {"id": "1"}},
            },
        ],
        "connections": {
            "Webhook": {"main": [[{"node": "Send Email", "type": "main", "index": 0}]]},
        },
        "settings": {"executionOrder": "v1"},
    }


class TestCodec:
    def test_parse_nodes_and_connections(self):
        wf = WorkflowGraph.from_workflow_json(_raw_workflow())
        assert wf.name == "Webhook to Email"
        assert [n.name for n in wf.nodes] == ["Webhook", "Send Email"]
        assert wf.nodes[1].type_version == 2
        assert wf.nodes[1].credentials == {"smtp": {"id": "1"}}
        assert wf.connections == (Connection("Webhook", "Send Email"),)

    def test_round_trip_preserves_engine_json(self):
        raw = _raw_workflow()
        assert WorkflowGraph.from_workflow_json(raw).to_workflow_json() == raw

    def test_accepts_json_string(self):
        wf = WorkflowGraph.from_workflow_json(json.dumps(_raw_workflow()))
        assert len(wf.nodes) == 2

    def test_non_object_raises_value_error(self):
        with pytest.raises(ValueError):
            WorkflowGraph.from_workflow_json("[1, 2]")

    def test_missing_settings_stays_none(self):
        raw = _raw_workflow()
        del raw["settings"]
        wf = WorkflowGraph.from_workflow_json(raw)
        assert wf.settings is None
        assert "settings" not in wf.to_workflow_json()

    def test_dangling_connection_kept(self):
        raw = _raw_workflow()
        raw["connections"]["Ghost"] = {"main": [[{"node": "Webhook", "type": "main", "index": 0}]]}
        wf = WorkflowGraph.from_workflow_json(raw)
        assert Connection("Ghost", "Webhook") in wf.connections

    def test_second_output_index(self):
        raw = _raw_workflow()
        raw["connections"]["Webhook"]["main"] = [[], [{"node": "Send Email", "type": "main", "index": 0}]]
        wf = WorkflowGraph.from_workflow_json(raw)
        assert wf.connections[0].output_index == 1
        assert wf.to_workflow_json()["connections"]["Webhook"]["main"][0] == []

    def test_malformed_fields_fall_back_to_defaults(self):
        wf = WorkflowGraph.from_workflow_json({
            "nodes": [
                {"id": "a", "name": "A", "type": "n8n-nodes-base.webhook",
                 "position": [None, "x"], "typeVersion": "two", "credentials": ["smtp"]},
            ],
            "connections": {
                "A": {"main": [7, [{"node": "B", "index": None}], None]},
                "B": {"main": [[{"node": "A", "index": "first"}]]},
            },
            "meta": ["not", "a", "dict"],
        })
        node = wf.get_node("A")
        assert node.position == (250, 300)
        assert node.type_version == 1
        assert node.credentials is None
        assert [(c.source, c.target, c.output_index, c.input_index) for c in wf.connections] == [
            ("A", "B", 1, 0),
            ("B", "A", 0, 0),
        ]
        assert wf.meta == {}

    def test_non_list_nodes_ignored(self):
        assert WorkflowGraph.from_workflow_json({"nodes": 3, "connections": []}).nodes == ()

    def test_compact_string(self):
        text = chain("x", [WorkflowNode("1", "A", "n8n-nodes-base.manualTrigger")]).to_workflow_json_str()
        assert " " not in text.replace("n8n-nodes-base", "")


class TestEdits:
    def test_with_parameters_does_not_alias(self):
        node = WorkflowNode("1", "Fetch", "n8n-nodes-base.httpRequest", parameters={"options": {"a": 1}})
        updated = node.with_parameters(url="https://x.io")
        updated.parameters["options"]["a"] = 2
        assert node.parameters == {"options": {"a": 1}}
        assert updated.param("url") == "https://x.io"

    def test_map_nodes_returns_new_graph(self):
        wf = WorkflowGraph.from_workflow_json(_raw_workflow())
        renamed = wf.map_nodes(lambda n: n.with_parameters(tag="x"))
        assert renamed is not wf
        assert all("tag" not in n.parameters for n in wf.nodes)
        assert all(n.param("tag") == "x" for n in renamed.nodes)

    def test_with_meta_merges(self):
        wf = WorkflowGraph(meta={"a": 1}).with_meta(b=2)
        assert wf.meta == {"a": 1, "b": 2}

    def test_prepend_and_connect(self):
        wf = WorkflowGraph.from_workflow_json(_raw_workflow())
        trigger = WorkflowNode("t", "Start", "n8n-nodes-base.manualTrigger")
        wf2 = wf.prepend_node(trigger).add_connection(Connection("Start", "Webhook"))
        assert wf2.nodes[0] is trigger
        assert wf2.outgoing("Start") == [Connection("Start", "Webhook")]
        assert len(wf.nodes) == 2

    def test_triggers(self):
        wf = WorkflowGraph.from_workflow_json(_raw_workflow())
        assert [n.name for n in wf.triggers()] == ["Webhook"]


class TestChain:
    def test_linear_wiring_and_positions(self):
        nodes = [
            WorkflowNode("1", "A", "n8n-nodes-base.manualTrigger"),
            WorkflowNode("2", "B", "n8n-nodes-base.set"),
            WorkflowNode("3", "C", "n8n-nodes-base.noOp"),
        ]
        wf = chain("Chain", nodes)
        assert [(c.source, c.target) for c in wf.connections] == [("A", "B"), ("B", "C")]
        xs = [n.position[0] for n in wf.nodes]
        assert xs == sorted(xs) and len(set(xs)) == 3
        assert wf.settings == {"executionOrder": "v1"}
