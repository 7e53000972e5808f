"""
Stage 2: Validate graph structure and type consistency before emission.

Every problem is collected as a `Diagnostic` instead of raised, so one run
reports all of them. Emission only starts when no error-severity diagnostic
was produced.
"""

from __future__ import annotations

import ast
from collections import Counter, deque
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from workflow_codegen.compiler.codegen import parse_duration
from workflow_codegen.compiler.handlers import (
    activity_name_for,
    child_workflow_type_for,
    signal_name_for,
)
from workflow_codegen.compiler.retry_policy import BackoffSpec
from workflow_codegen.errors import Diagnostic, DiagnosticCategory, Severity
from workflow_codegen.schema.models import (
    NUMERIC_VARIABLE_TYPES,
    SETTINGS_LONG_RUNNING,
    LongRunningPolicy,
    Node,
    NodeType,
    RetryStrategy,
    VariableType,
    WorkflowDefinition,
)

STATE_OPERATIONS = frozenset({"set", "append", "increment", "decrement", "get"})
CONDITION_HANDLES = ("true", "false")
EXIT_HANDLE = "exit"
RETRY_MODES = frozenset({"failure", "condition"})


class _Collector:
    def __init__(self, strict_mode: bool) -> None:
        self.strict_mode = strict_mode
        self.items: List[Diagnostic] = []

    def error(self, category: DiagnosticCategory, message: str, node_id: Optional[str] = None) -> None:
        self.items.append(Diagnostic(severity=Severity.error, category=category, message=message, node_id=node_id))

    def warning(self, category: DiagnosticCategory, message: str, node_id: Optional[str] = None) -> None:
        self.items.append(Diagnostic(severity=Severity.warning, category=category, message=message, node_id=node_id))

    def structural(self, message: str, node_id: Optional[str] = None) -> None:
        self.error(DiagnosticCategory.structural, message, node_id)

    def type_mismatch(self, message: str, node_id: Optional[str] = None) -> None:
        if self.strict_mode:
            self.error(DiagnosticCategory.type_consistency, message, node_id)
        else:
            self.warning(DiagnosticCategory.type_consistency, message, node_id)


def find_entry_node(definition: WorkflowDefinition) -> Tuple[Optional[Node], List[Node]]:
    """
    Return `(entry, ignored_candidates)`.

    The entry is the first trigger node, in declaration order, with no incoming
    edge. Further candidates are returned so callers can warn about them.
    """

    targets = {edge.target for edge in definition.edges}
    candidates = [
        node for node in definition.nodes if node.kind == NodeType.trigger and node.id not in targets
    ]
    if not candidates:
        return None, []
    return candidates[0], candidates[1:]


def validate_definition(definition: WorkflowDefinition, *, strict_mode: bool = True) -> List[Diagnostic]:
    out = _Collector(strict_mode)
    node_ids = _check_identities(definition, out)
    _check_edges(definition, node_ids, out)
    _check_settings(definition, out)

    entry, ignored = find_entry_node(definition)
    if entry is None:
        out.structural("Workflow has no resolvable entry node (a trigger node without incoming edges)")
    for candidate in ignored:
        out.warning(
            DiagnosticCategory.structural,
            f"Trigger '{candidate.id}' is also an entry candidate; using '{entry.id}' (first declared)",
            candidate.id,
        )

    variables = {variable.name: variable for variable in definition.variables}
    for node in definition.nodes:
        _check_node(node, variables, out)

    if entry is not None:
        _check_reachability(definition, entry, node_ids, out)
    _check_cycles(definition, node_ids, out)
    return out.items


# ----------------------------------------------------------------------
# Graph shape
# ----------------------------------------------------------------------
def _check_identities(definition: WorkflowDefinition, out: _Collector) -> Set[str]:
    for label, ids in (
        ("node", [node.id for node in definition.nodes]),
        ("edge", [edge.id for edge in definition.edges]),
        ("variable", [variable.name for variable in definition.variables]),
    ):
        for value, count in Counter(ids).items():
            if count > 1:
                out.structural(f"Duplicate {label} id '{value}' ({count} occurrences)")
    return {node.id for node in definition.nodes}


def _check_edges(definition: WorkflowDefinition, node_ids: Set[str], out: _Collector) -> None:
    kinds = {node.id: node.kind for node in definition.nodes}
    handle_counts: Counter = Counter()

    for edge in definition.edges:
        for endpoint in (edge.source, edge.target):
            if endpoint not in node_ids:
                out.structural(f"Edge '{edge.id}' references unknown node '{endpoint}'", edge.source)
        if edge.source == edge.target:
            out.structural(f"Edge '{edge.id}' connects node '{edge.source}' to itself", edge.source)

        if kinds.get(edge.source) == NodeType.condition:
            if edge.source_handle in CONDITION_HANDLES:
                handle_counts[(edge.source, edge.source_handle)] += 1
            else:
                out.warning(
                    DiagnosticCategory.structural,
                    f"Condition edge '{edge.id}' has unrecognised handle {edge.source_handle!r}; it is not emitted",
                    edge.source,
                )

    for (source, handle), count in sorted(handle_counts.items()):
        if count > 1:
            out.structural(f"Condition node has {count} outgoing '{handle}' edges (at most one allowed)", source)


def _check_settings(definition: WorkflowDefinition, out: _Collector) -> None:
    raw = definition.settings.get(SETTINGS_LONG_RUNNING)
    if raw is None:
        return
    if not isinstance(raw, dict):
        out.structural(f"settings.longRunning must be an object, got {type(raw).__name__}")
        return
    try:
        # null values are filled in by the configurator
        policy = LongRunningPolicy.model_validate({key: value for key, value in raw.items() if value is not None})
    except ValidationError as exc:
        for error in exc.errors():
            field = ".".join(str(part) for part in error["loc"])
            out.structural(f"settings.longRunning.{field}: {error['msg']}")
        return
    for field, value in (("maxHistoryEvents", policy.max_history_events), ("maxDurationMs", policy.max_duration_ms)):
        if value is not None and value <= 0:
            out.structural(f"settings.longRunning.{field} must be a positive integer")


def _adjacency(definition: WorkflowDefinition, node_ids: Set[str]) -> Dict[str, List[str]]:
    adjacency: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}
    for edge in definition.edges:
        if edge.source in node_ids and edge.target in node_ids:
            adjacency[edge.source].append(edge.target)
    return adjacency


def _check_reachability(
    definition: WorkflowDefinition, entry: Node, node_ids: Set[str], out: _Collector
) -> None:
    adjacency = _adjacency(definition, node_ids)
    connected = {edge.source for edge in definition.edges} | {edge.target for edge in definition.edges}
    seen = {entry.id}
    queue = deque([entry.id])
    while queue:
        for target in adjacency[queue.popleft()]:
            if target not in seen:
                seen.add(target)
                queue.append(target)

    reported: Set[str] = set()
    for node in definition.nodes:
        if node.id in seen or node.id in reported:
            continue
        reported.add(node.id)
        if node.id not in connected:
            out.warning(DiagnosticCategory.structural, "Node has no edges (orphaned)", node.id)
        else:
            out.warning(DiagnosticCategory.structural, "Node is not reachable from the entry node", node.id)


def _check_cycles(definition: WorkflowDefinition, node_ids: Set[str], out: _Collector) -> None:
    adjacency = _adjacency(definition, node_ids)
    state: Dict[str, int] = {}
    reported: Set[str] = set()

    for root in (node.id for node in definition.nodes):
        if state.get(root):
            continue
        # Iterative DFS: 1 = on stack, 2 = done.
        stack: List[Tuple[str, int]] = [(root, 0)]
        path: List[str] = []
        state[root] = 1
        path.append(root)
        while stack:
            current, index = stack[-1]
            children = adjacency[current]
            if index >= len(children):
                stack.pop()
                path.pop()
                state[current] = 2
                continue
            stack[-1] = (current, index + 1)
            child = children[index]
            if state.get(child) == 1:
                if child not in reported:
                    reported.add(child)
                    cycle = path[path.index(child):] + [child]
                    out.warning(
                        DiagnosticCategory.structural,
                        f"Cycle detected: {' -> '.join(cycle)}; revisits are skipped (use a loop node)",
                        child,
                    )
            elif not state.get(child):
                state[child] = 1
                path.append(child)
                stack.append((child, 0))


# ----------------------------------------------------------------------
# Per node
# ----------------------------------------------------------------------
def _check_expression(node: Node, expression: Any, field: str, out: _Collector) -> None:
    if expression is None:
        return
    if not isinstance(expression, str) or not expression.strip():
        out.structural(f"{field} must be a non-empty expression string", node.id)
        return
    try:
        ast.parse(expression.strip(), mode="eval")
    except SyntaxError as exc:
        out.structural(f"Invalid {field} expression {expression!r}: {exc.msg}", node.id)


def _check_duration(node: Node, value: Any, field: str, out: _Collector) -> None:
    if value is None:
        return
    try:
        parse_duration(value)
    except ValueError as exc:
        out.structural(f"Invalid {field}: {exc}", node.id)


def _check_positive_int(node: Node, value: Any, field: str, out: _Collector, *, minimum: int = 1) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        out.structural(f"{field} must be an integer >= {minimum}, got {value!r}", node.id)


def _check_node(node: Node, variables: Dict[str, Any], out: _Collector) -> None:
    kind = node.kind
    if kind is None:
        out.error(DiagnosticCategory.handler, f"Unknown node type '{node.type}'", node.id)
        return

    config = node.config
    _check_duration(node, node.data.timeout, "timeout", out)

    policy = node.data.retry_policy
    if policy is not None:
        _check_positive_int(node, policy.max_attempts, "retryPolicy.maxAttempts", out)
        if policy.backoff_coefficient is not None and policy.backoff_coefficient < 1:
            out.structural(
                f"retryPolicy.backoffCoefficient must be >= 1, got {policy.backoff_coefficient!r}", node.id
            )
        _check_duration(node, policy.initial_interval, "retryPolicy.initialInterval", out)
        _check_duration(node, policy.max_interval, "retryPolicy.maxInterval", out)
        if policy.strategy == RetryStrategy.fail_after_x and policy.max_attempts is None:
            out.warning(
                DiagnosticCategory.structural,
                "fail-after-x retry policy without maxAttempts; defaulting to 3",
                node.id,
            )

    if kind in (NodeType.activity, NodeType.agent):
        _, fell_back = activity_name_for(node)
        if fell_back:
            out.warning(
                DiagnosticCategory.structural,
                "Activity has no activityName or componentName; using a name derived from the node id",
                node.id,
            )
    elif kind == NodeType.condition:
        _check_expression(node, config.get("expression"), "condition", out)
    elif kind == NodeType.loop:
        max_iterations = config.get("maxIterations")
        if max_iterations is not None and (isinstance(max_iterations, bool) or not isinstance(max_iterations, int)):
            out.structural(f"maxIterations must be an integer, got {max_iterations!r}", node.id)
        _check_expression(node, config.get("condition"), "loop condition", out)
    elif kind == NodeType.retry:
        _check_positive_int(node, config.get("maxAttempts"), "maxAttempts", out)
        retry_on = config.get("retryOn", "failure")
        if retry_on not in RETRY_MODES:
            out.structural(f"retryOn must be 'failure' or 'condition', got {retry_on!r}", node.id)
        _check_expression(node, config.get("condition"), "retry condition", out)
        try:
            BackoffSpec.from_config(config.get("backoff"))
        except (ValueError, AttributeError) as exc:
            out.structural(f"Invalid backoff: {exc}", node.id)
    elif kind == NodeType.phase:
        _check_positive_int(node, config.get("maxConcurrency"), "maxConcurrency", out)
    elif kind == NodeType.signal:
        if not signal_name_for(node):
            out.structural("Signal node requires a signal name", node.id)
    elif kind == NodeType.child_workflow:
        if not child_workflow_type_for(node):
            out.structural("Child workflow node requires config.workflowType or componentName", node.id)
    elif kind == NodeType.state_variable:
        _check_state_variable(node, variables, out)


def _check_state_variable(node: Node, variables: Dict[str, Any], out: _Collector) -> None:
    config = node.config
    name = config.get("name")
    operation = config.get("operation", "set")

    if not name:
        out.structural("State variable node requires config.name", node.id)
        return
    if operation not in STATE_OPERATIONS:
        out.structural(f"Unknown state variable operation {operation!r}", node.id)
        return

    variable = variables.get(name)
    if variable is None:
        out.structural(f"State variable node references undeclared variable '{name}'", node.id)
        return

    if operation in ("increment", "decrement"):
        if variable.type not in NUMERIC_VARIABLE_TYPES:
            out.type_mismatch(
                f"Cannot {operation} variable '{name}' of type '{variable.type.value}' (numeric required)",
                node.id,
            )
        amount = config.get("amount", 1)
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            out.type_mismatch(f"{operation} amount must be numeric, got {amount!r}", node.id)
    elif operation == "append" and variable.type != VariableType.array:
        out.type_mismatch(
            f"Cannot append to variable '{name}' of type '{variable.type.value}' (array required)",
            node.id,
        )
