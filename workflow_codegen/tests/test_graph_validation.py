from __future__ import annotations

import json

import pytest

from workflow_codegen.compiler.parse import parse_workflow_definition
from workflow_codegen.compiler.validate_graph import find_entry_node, validate_definition
from workflow_codegen.errors import DiagnosticCategory, Severity, ValidationPhaseError
from workflow_codegen.schema.models import NodeType, VariableType, WorkflowDefinition


def _definition(nodes, edges=(), variables=()) -> WorkflowDefinition:
    return WorkflowDefinition.model_validate(
        {"name": "Test", "nodes": list(nodes), "edges": list(edges), "variables": list(variables)}
    )


def _errors(diagnostics):
    return [item for item in diagnostics if item.severity == Severity.error]


def _warnings(diagnostics):
    return [item for item in diagnostics if item.severity == Severity.warning]


def test_parse_accepts_camel_case_json_and_ignores_editor_keys() -> None:
    payload = json.dumps(
        {
            "name": "Orders",
            "nodes": [
                {"id": "start", "type": "trigger", "position": {"x": 1, "y": 2}, "data": {"label": "Start"}},
                {
                    "id": "work",
                    "type": "activity",
                    "data": {
                        "componentName": "processOrder",
                        "retryPolicy": {"strategy": "fail-after-x", "maxAttempts": 4},
                    },
                },
            ],
            "edges": [{"id": "e1", "source": "start", "target": "work", "sourceHandle": None}],
            "variables": [{"name": "total", "type": "number", "initialValue": 10}],
        }
    )

    definition = parse_workflow_definition(payload)

    assert definition.name == "Orders"
    assert definition.nodes[0].kind == NodeType.trigger
    assert definition.nodes[1].data.component_name == "processOrder"
    assert definition.nodes[1].data.retry_policy.max_attempts == 4
    assert definition.variables[0].type == VariableType.number
    assert definition.variables[0].resolved_initial_value() == 10


def test_parse_rejects_malformed_payloads() -> None:
    with pytest.raises(ValidationPhaseError):
        parse_workflow_definition("{not json")
    with pytest.raises(ValidationPhaseError):
        parse_workflow_definition("[1, 2]")
    with pytest.raises(ValidationPhaseError):
        parse_workflow_definition({"nodes": [{"id": "x"}]})


def test_parse_copies_existing_definitions() -> None:
    original = _definition([{"id": "t", "type": "trigger"}])
    parsed = parse_workflow_definition(original)

    parsed.settings["workflowType"] = "service"

    assert parsed is not original
    assert original.settings == {}


def test_variable_defaults_follow_declared_type() -> None:
    definition = _definition(
        [],
        variables=[
            {"name": "items", "type": "array"},
            {"name": "count", "type": "integer"},
            {"name": "note", "type": "string", "initialValue": None},
        ],
    )

    items, count, note = definition.variables
    assert items.resolved_initial_value() == []
    assert count.resolved_initial_value() == 0
    assert note.resolved_initial_value() is None


def test_entry_node_is_first_declared_trigger_without_incoming_edges() -> None:
    definition = _definition(
        [
            {"id": "late", "type": "trigger"},
            {"id": "a", "type": "activity", "data": {"activityName": "x"}},
            {"id": "other", "type": "trigger"},
        ],
        edges=[{"id": "e1", "source": "late", "target": "a"}],
    )

    entry, ignored = find_entry_node(definition)

    assert entry.id == "late"
    assert [node.id for node in ignored] == ["other"]

    diagnostics = validate_definition(definition)
    assert not _errors(diagnostics)
    assert any(item.node_id == "other" and "entry candidate" in item.message for item in _warnings(diagnostics))


def test_missing_entry_node_is_a_structural_error() -> None:
    definition = _definition(
        [
            {"id": "a", "type": "activity", "data": {"activityName": "x"}},
            {"id": "t", "type": "trigger"},
        ],
        edges=[{"id": "e1", "source": "a", "target": "t"}],
    )

    errors = _errors(validate_definition(definition))

    assert any("no resolvable entry node" in item.message for item in errors)
    assert all(item.category == DiagnosticCategory.structural for item in errors)


def test_all_structural_problems_are_reported_in_one_pass() -> None:
    definition = _definition(
        [
            {"id": "t", "type": "trigger"},
            {"id": "c", "type": "condition", "data": {"config": {"expression": "x >"}}},
            {"id": "a", "type": "activity", "data": {"activityName": "x", "timeout": "soon"}},
            {"id": "b", "type": "activity", "data": {"activityName": "y"}},
            {"id": "b", "type": "activity", "data": {"activityName": "z"}},
        ],
        edges=[
            {"id": "e1", "source": "t", "target": "c"},
            {"id": "e2", "source": "c", "target": "a", "sourceHandle": "true"},
            {"id": "e3", "source": "c", "target": "b", "sourceHandle": "true"},
            {"id": "e4", "source": "a", "target": "ghost"},
            {"id": "e5", "source": "a", "target": "a"},
        ],
    )

    messages = [item.message for item in _errors(validate_definition(definition))]

    assert any("Duplicate node id 'b'" in message for message in messages)
    assert any("unknown node 'ghost'" in message for message in messages)
    assert any("to itself" in message for message in messages)
    assert any("2 outgoing 'true' edges" in message for message in messages)
    assert any("Invalid condition expression" in message for message in messages)
    assert any("Invalid timeout" in message for message in messages)


def test_unknown_node_type_is_a_handler_error() -> None:
    definition = _definition(
        [{"id": "t", "type": "trigger"}, {"id": "m", "type": "mystery"}],
        edges=[{"id": "e1", "source": "t", "target": "m"}],
    )

    errors = _errors(validate_definition(definition, strict_mode=False))

    assert len(errors) == 1
    assert errors[0].category == DiagnosticCategory.handler
    assert errors[0].node_id == "m"


def test_state_variable_references_are_checked() -> None:
    definition = _definition(
        [
            {"id": "t", "type": "trigger"},
            {"id": "s1", "type": "state-variable", "data": {"config": {"name": "missing"}}},
            {"id": "s2", "type": "state-variable", "data": {"config": {"name": "count", "operation": "explode"}}},
            {"id": "s3", "type": "state-variable", "data": {"config": {}}},
        ],
        edges=[
            {"id": "e1", "source": "t", "target": "s1"},
            {"id": "e2", "source": "s1", "target": "s2"},
            {"id": "e3", "source": "s2", "target": "s3"},
        ],
        variables=[{"name": "count", "type": "number"}],
    )

    errors = {item.node_id: item.message for item in _errors(validate_definition(definition))}

    assert "undeclared variable 'missing'" in errors["s1"]
    assert "Unknown state variable operation" in errors["s2"]
    assert "requires config.name" in errors["s3"]


@pytest.mark.parametrize(
    "operation, variable_type",
    [("increment", "string"), ("decrement", "array"), ("append", "number")],
)
def test_type_consistency_respects_strict_mode(operation: str, variable_type: str) -> None:
    definition = _definition(
        [
            {"id": "t", "type": "trigger"},
            {"id": "s", "type": "state-variable", "data": {"config": {"name": "v", "operation": operation, "value": 1}}},
        ],
        edges=[{"id": "e1", "source": "t", "target": "s"}],
        variables=[{"name": "v", "type": variable_type}],
    )

    strict = validate_definition(definition, strict_mode=True)
    lenient = validate_definition(definition, strict_mode=False)

    assert [item.category for item in _errors(strict)] == [DiagnosticCategory.type_consistency]
    assert not _errors(lenient)
    assert any(item.category == DiagnosticCategory.type_consistency for item in _warnings(lenient))


def test_node_level_configuration_errors() -> None:
    definition = _definition(
        [
            {"id": "t", "type": "trigger"},
            {"id": "sig", "type": "signal"},
            {"id": "child", "type": "child-workflow"},
            {"id": "ph", "type": "phase", "data": {"config": {"sequential": False, "maxConcurrency": 0}}},
            {
                "id": "act",
                "type": "activity",
                "data": {"activityName": "x", "retryPolicy": {"strategy": "exponential-backoff", "maxAttempts": 0}},
            },
            {"id": "r", "type": "retry", "data": {"config": {"backoff": {"type": "random"}}}},
        ],
        edges=[
            {"id": "e1", "source": "t", "target": "sig"},
            {"id": "e2", "source": "sig", "target": "child"},
            {"id": "e3", "source": "child", "target": "ph"},
            {"id": "e4", "source": "ph", "target": "act"},
            {"id": "e5", "source": "act", "target": "r"},
        ],
    )

    errors = {item.node_id for item in _errors(validate_definition(definition))}

    assert errors == {"sig", "child", "ph", "act", "r"}


def test_warnings_for_unreachable_orphaned_and_cyclic_nodes() -> None:
    definition = _definition(
        [
            {"id": "t", "type": "trigger"},
            {"id": "a", "type": "activity"},
            {"id": "b", "type": "activity", "data": {"activityName": "b"}},
            {"id": "lonely", "type": "activity", "data": {"activityName": "l"}},
            {"id": "island", "type": "activity", "data": {"activityName": "i"}},
            {"id": "island2", "type": "activity", "data": {"activityName": "j"}},
        ],
        edges=[
            {"id": "e1", "source": "t", "target": "a"},
            {"id": "e2", "source": "a", "target": "b"},
            {"id": "e3", "source": "b", "target": "a"},
            {"id": "e4", "source": "island", "target": "island2"},
        ],
    )

    diagnostics = validate_definition(definition)
    warnings = {(item.node_id, item.message.split(":")[0]) for item in _warnings(diagnostics)}

    assert not _errors(diagnostics)
    assert ("lonely", "Node has no edges (orphaned)") in warnings
    assert ("island", "Node is not reachable from the entry node") in warnings
    assert ("a", "Cycle detected") in warnings
    assert any(node_id == "a" and "derived from the node id" in message for node_id, message in warnings)


@pytest.mark.parametrize(
    "long_running, field",
    [
        ({"maxHistoryEvents": "lots"}, "settings.longRunning.maxHistoryEvents"),
        ({"maxDurationMs": 0}, "settings.longRunning.maxDurationMs"),
        ({"autoCompact": "sometimes"}, "settings.longRunning.autoCompact"),
        ("fast", "settings.longRunning must be an object"),
    ],
)
def test_long_running_settings_are_checked(long_running, field: str) -> None:
    definition = WorkflowDefinition.model_validate(
        {
            "nodes": [{"id": "start", "type": "trigger"}],
            "settings": {"longRunning": long_running},
        }
    )

    errors = _errors(validate_definition(definition))

    assert len(errors) == 1
    assert errors[0].category == DiagnosticCategory.structural
    assert errors[0].message.startswith(field)


def test_null_long_running_thresholds_are_accepted() -> None:
    definition = WorkflowDefinition.model_validate(
        {
            "nodes": [{"id": "start", "type": "trigger"}],
            "settings": {"longRunning": {"maxHistoryEvents": None, "preserveState": None}},
        }
    )

    assert _errors(validate_definition(definition)) == []
