"""
Tests for the three validation layers and the orchestrator.

Covers: autoheal/validate_structure.py, autoheal/validate_business_logic.py,
autoheal/validate_compatibility.py, autoheal/validate_workflow.py,
autoheal/graph_integrity_check.py
"""

from unittest.mock import MagicMock, patch

from autoheal.graph_integrity_check import find_cycles, graph_integrity_check
from autoheal.validate_business_logic import find_orphaned_nodes, validate_business_logic
from autoheal.validate_compatibility import validate_compatibility
from autoheal.validate_structure import validate_structure
from autoheal.validate_workflow import first_failing_layer, validate_workflow


def _types(errors):
    return [e["type"] for e in errors]


def _chain(length, closed=False):
    """Linear workflow N0 -> N1 -> ... with N0 as the manual trigger."""
    nodes = [
        {
            "id": f"n{i}",
            "name": f"N{i}",
            "type": "n8n-nodes-base.manualTrigger" if i == 0 else "n8n-nodes-base.set",
            "position": [250 + (i % 3) * 200, 300 + (i // 3) * 150],
            "parameters": {},
        }
        for i in range(length)
    ]
    connections = {
        f"N{i}": {"main": [[{"node": f"N{i + 1}", "type": "main", "index": 0}]]}
        for i in range(length - 1)
    }
    if closed:
        connections[f"N{length - 1}"] = {"main": [[{"node": "N0", "type": "main", "index": 0}]]}
    return {"name": "Long", "nodes": nodes, "connections": connections, "settings": {}}


# ── Structure ────────────────────────────────────────────────

class TestValidateStructure:
    def test_valid_document_has_no_errors(self, valid_workflow):
        assert validate_structure(valid_workflow) == []

    def test_missing_connections(self, valid_workflow):
        del valid_workflow["connections"]
        errors = validate_structure(valid_workflow)
        assert len(errors) == 1
        err = errors[0]
        assert err["layer"] == "structure"
        assert err["type"] == "required"
        assert err["path"] == "connections"
        assert err["severity"] == "critical"
        assert err["fixable"] is True

    def test_wrong_type_counts_as_missing(self, valid_workflow):
        valid_workflow["settings"] = "nope"
        errors = validate_structure(valid_workflow)
        assert _types(errors) == ["required"]
        assert errors[0]["path"] == "settings"

    def test_empty_name(self, valid_workflow):
        valid_workflow["name"] = "   "
        errors = validate_structure(valid_workflow)
        assert errors[0]["path"] == "name"

    def test_non_object_document(self):
        errors = validate_structure(["not", "a", "workflow"])
        assert [e["path"] for e in errors] == ["name", "nodes", "connections", "settings"]
        assert all(e["type"] == "required" for e in errors)

    def test_empty_nodes_is_unfixable(self, valid_workflow):
        valid_workflow["nodes"] = []
        errors = validate_structure(valid_workflow)
        assert _types(errors) == ["minItems"]
        assert errors[0]["fixable"] is False

    def test_node_without_id(self, valid_workflow):
        valid_workflow["nodes"][1]["id"] = ""
        errors = validate_structure(valid_workflow)
        assert _types(errors) == ["minLength"]
        assert errors[0]["path"] == "nodes[1].id"
        assert errors[0]["severity"] == "high"

    def test_bad_positions(self, valid_workflow):
        valid_workflow["nodes"][0]["position"] = "bad"
        valid_workflow["nodes"][1]["position"] = [1, 2, 3]
        valid_workflow["nodes"][2]["position"] = [float("nan"), 0]
        errors = validate_structure(valid_workflow)
        assert _types(errors) == ["invalid_position"] * 3
        assert [e["path"] for e in errors] == [
            "nodes[0].position", "nodes[1].position", "nodes[2].position",
        ]

    def test_boolean_coordinates_rejected(self, valid_workflow):
        valid_workflow["nodes"][0]["position"] = [True, 0]
        assert _types(validate_structure(valid_workflow)) == ["invalid_position"]

    def test_non_object_node(self, valid_workflow):
        valid_workflow["nodes"].append("oops")
        errors = validate_structure(valid_workflow)
        assert errors[0]["type"] == "invalid_node"
        assert errors[0]["fixable"] is False


# ── Business logic ───────────────────────────────────────────

class TestValidateBusinessLogic:
    def test_valid_document_has_no_errors(self, valid_workflow):
        assert validate_business_logic(valid_workflow) == []

    def test_duplicate_ids_aggregated(self, valid_workflow):
        for node in valid_workflow["nodes"]:
            node["id"] = "n1"
        errors = validate_business_logic(valid_workflow)
        assert _types(errors) == ["duplicate_node_ids"]
        assert errors[0]["details"]["indices"] == [1, 2]
        assert errors[0]["details"]["ids"] == ["n1"]

    def test_orphan_detected(self, valid_workflow):
        valid_workflow["connections"] = {"Webhook": {"main": [[{"node": "Set", "type": "main", "index": 0}]]}}
        errors = validate_business_logic(valid_workflow)
        assert _types(errors) == ["orphaned_nodes"]
        assert errors[0]["details"]["nodes"] == ["Slack"]

    def test_triggers_never_orphaned(self):
        nodes = [
            {"name": "Cron", "type": "n8n-nodes-base.cron"},
            {"name": "Manual", "type": "n8n-nodes-base.manualTrigger"},
        ]
        assert find_orphaned_nodes(nodes, set()) == []

    def test_single_node_not_orphaned(self):
        assert find_orphaned_nodes([{"name": "Only", "type": "n8n-nodes-base.set"}], set()) == []

    def test_cycle_reported_once(self, cyclic_workflow):
        errors = validate_business_logic(cyclic_workflow)
        assert _types(errors) == ["circular_dependency"]
        assert errors[0]["details"]["cycle"] == ["A", "B", "C"]
        assert errors[0]["path"] == "connections.C"
        assert "A -> B -> C -> A" in errors[0]["message"]

    def test_tolerates_missing_connections(self, valid_workflow):
        del valid_workflow["connections"]
        errors = validate_business_logic(valid_workflow)
        assert _types(errors) == ["orphaned_nodes"]


class TestGraphIntegrity:
    def test_dag(self, valid_workflow):
        result = graph_integrity_check(valid_workflow)
        assert result["is_dag"] is True
        assert result["adjacency"] == {"Webhook": ["Set"], "Set": ["Slack"]}

    def test_self_loop(self):
        cycles = find_cycles({"A": ["A"]}, ["A"])
        assert cycles == [["A"]]

    def test_two_distinct_cycles(self):
        adj = {"A": ["B"], "B": ["A", "C"], "C": ["D"], "D": ["C"]}
        cycles = find_cycles(adj, ["A", "B", "C", "D"])
        assert cycles == [["A", "B"], ["C", "D"]]

    def test_long_chain_is_a_dag(self):
        report = validate_workflow(_chain(2500))
        assert report["valid"] is True

    def test_long_ring_reports_one_cycle(self):
        result = graph_integrity_check(_chain(2500, closed=True))
        assert len(result["cycles"]) == 1
        assert len(result["cycles"][0]) == 2500
        assert result["cycles"][0][0] == "N0"
        assert result["cycles"][0][-1] == "N2499"

    def test_unknown_targets_ignored(self, valid_workflow):
        valid_workflow["connections"]["Slack"] = {"main": [[{"node": "ghost", "type": "main", "index": 0}]]}
        result = graph_integrity_check(valid_workflow)
        assert "Slack" not in result["adjacency"]
        assert "ghost" in result["connected_names"]


# ── Compatibility ────────────────────────────────────────────

class TestValidateCompatibility:
    def test_valid_document_has_no_errors(self, valid_workflow):
        assert validate_compatibility(valid_workflow) == []

    def test_dangling_target(self, valid_workflow):
        valid_workflow["connections"]["Set"]["main"][0].append({"node": "ghost", "type": "main", "index": 0})
        errors = validate_compatibility(valid_workflow)
        assert _types(errors) == ["invalid_connection"]
        assert errors[0]["path"] == "connections.Set"
        assert errors[0]["details"]["target"] == "ghost"
        assert "ghost" in errors[0]["message"]

    def test_unknown_source_key(self, valid_workflow):
        valid_workflow["connections"]["Removed"] = {"main": [[]]}
        errors = validate_compatibility(valid_workflow)
        assert _types(errors) == ["invalid_connection"]
        assert errors[0]["details"]["source"] == "Removed"
        assert errors[0]["details"]["target"] is None

    def test_forbidden_type(self, valid_workflow):
        valid_workflow["nodes"][1]["type"] = "n8n-nodes-base.executeCommand"
        errors = validate_compatibility(valid_workflow)
        assert _types(errors) == ["forbidden_node_type"]
        assert errors[0]["severity"] == "critical"
        assert errors[0]["path"] == "nodes[1].type"

    def test_forbidden_override(self, valid_workflow):
        errors = validate_compatibility(valid_workflow, forbidden_types={"n8n-nodes-base.slack"})
        assert _types(errors) == ["forbidden_node_type"]

    @patch("autoheal.settings.EXTRA_FORBIDDEN_NODE_TYPES", ["n8n-nodes-base.set"])
    def test_configured_extras(self, valid_workflow):
        errors = validate_compatibility(valid_workflow)
        assert errors[0]["details"]["node_type"] == "n8n-nodes-base.set"


# ── Orchestrator ─────────────────────────────────────────────

class TestValidateWorkflow:
    def test_valid(self, valid_workflow):
        report = validate_workflow(valid_workflow)
        assert report["valid"] is True
        assert report["errors"] == []
        assert report["checks_run"] == 3
        assert "timestamp" in report

    def test_errors_in_layer_order(self, valid_workflow):
        valid_workflow["nodes"][2]["type"] = "dangerous-node"
        valid_workflow["nodes"][1]["position"] = None
        valid_workflow["connections"]["Slack"] = {"main": [[{"node": "Webhook", "type": "main", "index": 0}]]}
        report = validate_workflow(valid_workflow)
        layers = [e["layer"] for e in report["errors"]]
        assert layers == sorted(layers, key=["structure", "business", "compatibility"].index)
        assert report["layers"] == {"structure": 1, "business": 1, "compatibility": 1}
        assert first_failing_layer(report["errors"]) == "structure"

    def test_never_raises_on_garbage(self):
        for doc in (None, 42, "text", [], {"nodes": "x", "connections": [1]}):
            report = validate_workflow(doc)
            assert report["valid"] is False

    def test_non_string_node_type(self, valid_workflow):
        valid_workflow["nodes"][1]["type"] = {"bad": 1}
        report = validate_workflow(valid_workflow)
        assert report["valid"] is False
        error = report["errors"][0]
        assert error["type"] == "invalid_field_type"
        assert error["path"] == "nodes[1].type"
        assert error["fixable"] is False
        assert "forbidden_node_type" not in _types(report["errors"])

    def test_non_string_node_name(self, valid_workflow):
        valid_workflow["nodes"][2]["name"] = ["Slack"]
        report = validate_workflow(valid_workflow)
        assert report["errors"][0]["path"] == "nodes[2].name"
        assert "invalid_connection" in _types(report["errors"])

    def test_non_string_connection_target(self, valid_workflow):
        valid_workflow["connections"]["Set"]["main"] = [[{"node": ["Slack"], "type": "main", "index": 0}]]
        report = validate_workflow(valid_workflow)
        invalid = [e for e in report["errors"] if e["type"] == "invalid_connection"]
        assert len(invalid) == 1
        assert invalid[0]["details"]["target"] == ["Slack"]

    def test_deployment_test_skipped_by_default(self, valid_workflow):
        hook = MagicMock(return_value=[])
        validate_workflow(valid_workflow, deployment_test=hook)
        hook.assert_not_called()

    def test_deployment_test_runs_when_requested(self, valid_workflow):
        hook = MagicMock(return_value=[])
        report = validate_workflow(valid_workflow, skip_deployment_test=False, deployment_test=hook)
        hook.assert_called_once()
        assert report["checks_run"] == 4
        assert report["valid"] is True

    def test_deployment_test_failure_becomes_error(self, valid_workflow):
        hook = MagicMock(side_effect=RuntimeError("engine down"))
        report = validate_workflow(valid_workflow, skip_deployment_test=False, deployment_test=hook)
        assert report["valid"] is False
        assert report["errors"][0]["type"] == "deployment_test_failed"
        assert report["errors"][0]["fixable"] is False
