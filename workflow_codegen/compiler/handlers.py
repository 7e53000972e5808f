"""
Per node-type code generation rules.

Each handler takes `(node, ctx)` and returns a `Fragment`: lines relative to
the node's nesting depth, plus `Slot` placeholders where the traversal engine
splices in the walk of the node's body edges. Handlers never walk the graph
themselves.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Union

from shared.config import config
from workflow_codegen.compiler.codegen import (
    INDENT,
    format_number,
    format_timedelta,
    format_value,
    parse_duration,
    to_camel_case,
    to_identifier,
)
from workflow_codegen.compiler.context import (
    IMPORT_APPLICATION_ERROR,
    IMPORT_ASYNCIO,
    IMPORT_RETRY_POLICY,
    IMPORT_TIMEDELTA,
    BindingKind,
    FragmentKey,
    GeneratorContext,
    PhaseScope,
)
from workflow_codegen.compiler.continue_as_new import generate_compaction_guard
from workflow_codegen.compiler.retry_policy import (
    BackoffSpec,
    backoff_expression,
    encode_retry_policy,
    render_retry_policy,
)
from workflow_codegen.errors import UnknownNodeTypeError
from workflow_codegen.schema.models import (
    PASSIVE_NODE_TYPES,
    VALUE_NODE_TYPES,
    Node,
    NodeType,
    RetryStrategy,
)

DEFAULT_RETRY_CONDITION = 'isinstance(result, dict) and result.get("success") is False'


@dataclass(frozen=True)
class Slot:
    """Where the engine splices the walk of a node's body edges."""

    depth: int = 1
    placeholder: bool = True


@dataclass(frozen=True)
class Deferred:
    """Lines rendered after the preceding slot, given the last value binding emitted in it."""

    render: Callable[[Optional[str]], List[str]]
    depth: int = 0


FragmentItem = Union[str, Slot, Deferred]


@dataclass
class Fragment:
    items: List[FragmentItem] = field(default_factory=list)
    binding: Optional[str] = None
    phase: Optional[PhaseScope] = None


Handler = Callable[[Node, GeneratorContext], Fragment]


# ----------------------------------------------------------------------
# Node accessors (shared with validation)
# ----------------------------------------------------------------------
def activity_name_for(node: Node) -> Tuple[str, bool]:
    """Return `(name, fell_back)`; `fell_back` is True when derived from the node id."""

    name = node.data.activity_name or node.data.component_name or node.config.get("activityName")
    if name:
        return str(name), False
    return to_camel_case(node.id), True


def signal_name_for(node: Node) -> Optional[str]:
    name = node.data.signal_name or node.config.get("signalName")
    return str(name) if name else None


def child_workflow_type_for(node: Node) -> Optional[str]:
    name = node.config.get("workflowType") or node.data.component_name
    return str(name) if name else None


def _node_ident(node: Node) -> str:
    return to_identifier(node.id, prefix="node")


# ----------------------------------------------------------------------
# Inputs
# ----------------------------------------------------------------------
def resolve_input(node: Node, ctx: GeneratorContext) -> str:
    """
    Expression passed as a node's input.

    `config.inputMapping` wins. Otherwise: no value-producing predecessor gives
    the workflow input, one gives its binding, several give a dict keyed by
    source node id.
    """

    mapping = node.config.get("inputMapping")
    if isinstance(mapping, dict) and mapping:
        entries = []
        for key, ref in mapping.items():
            source = ctx.node_map.get(ref) if isinstance(ref, str) else None
            if source is not None and source.kind in VALUE_NODE_TYPES:
                entries.append(f"{format_value(str(key))}: {ctx.binding_name(source.id)}")
            else:
                entries.append(f"{format_value(str(key))}: {format_value(ref)}")
        return "{" + ", ".join(entries) + "}"

    sources: List[str] = []
    for edge in ctx.incoming.get(node.id, []):
        if ctx.node_map[edge.source].kind in VALUE_NODE_TYPES and edge.source not in sources:
            sources.append(edge.source)

    if not sources:
        return "workflow_input"
    if len(sources) == 1:
        return ctx.binding_name(sources[0])
    return "{" + ", ".join(f"{format_value(source)}: {ctx.binding_name(source)}" for source in sources) + "}"


def _call(head: str, args: List[str]) -> List[str]:
    return [f"{head}(", *(f"{INDENT}{arg}," for arg in args), ")"]


# ----------------------------------------------------------------------
# Handlers
# ----------------------------------------------------------------------
def handle_trigger(node: Node, ctx: GeneratorContext) -> Fragment:
    items: List[FragmentItem] = list(ctx.comment(f"Trigger: {node.display_name}"))
    schedule = node.config.get("cronSchedule") or node.config.get("schedule")
    if schedule:
        items += ctx.comment(f"Schedule: {schedule}")
    return Fragment(items)


def handle_activity(node: Node, ctx: GeneratorContext) -> Fragment:
    name, _ = activity_name_for(node)
    input_expr = resolve_input(node, ctx)

    timeout = node.data.timeout if node.data.timeout is not None else config.default_activity_timeout
    ctx.require_import(IMPORT_TIMEDELTA)
    args = [
        format_value(name),
        input_expr,
        f"start_to_close_timeout={format_timedelta(parse_duration(timeout))}",
    ]

    policy = node.data.retry_policy
    if policy is not None and policy.strategy != RetryStrategy.none:
        ctx.require_import(IMPORT_RETRY_POLICY)
        args.append(f"retry_policy={render_retry_policy(encode_retry_policy(policy))}")

    binding = ctx.register_binding(node.id, BindingKind.value)
    kind = "Agent" if node.kind == NodeType.agent else "Activity"
    items: List[FragmentItem] = list(ctx.comment(f"{kind}: {node.display_name}"))
    items += _call(f"{binding} = await workflow.execute_activity", args)
    return Fragment(items, binding=binding)


def handle_condition(node: Node, ctx: GeneratorContext) -> Fragment:
    expression = str(node.config.get("expression") or "True").strip()
    binding = ctx.register_binding(node.id, BindingKind.value)
    items: List[FragmentItem] = list(ctx.comment(f"Condition: {node.display_name}"))
    items.append(f"{binding} = bool({expression})")
    return Fragment(items, binding=binding)


def handle_phase(node: Node, ctx: GeneratorContext) -> Fragment:
    sequential = node.config.get("sequential", True) is not False
    if sequential:
        return Fragment(list(ctx.comment(f"Phase: {node.display_name} (sequential)")))

    limit = node.config.get("maxConcurrency", config.default_phase_concurrency)
    ident = _node_ident(node)
    scope = PhaseScope(
        node_id=node.id,
        pending_var=ctx.allocate(f"phase_{ident}_pending"),
        limit_var=ctx.allocate(f"phase_{ident}_max_concurrency"),
        max_concurrency=limit,
    )
    items: List[FragmentItem] = list(
        ctx.comment(f"Phase: {node.display_name} (at most {limit} concurrent child workflows)")
    )
    items += [f"{scope.pending_var}: list = []", f"{scope.limit_var} = {limit}"]
    return Fragment(items, phase=scope)


def phase_drain(scope: PhaseScope, ctx: GeneratorContext) -> List[str]:
    """Lines awaiting the awaited children a concurrent phase started."""

    if not scope.awaited_children:
        return []
    lines = ctx.comment(f"Wait for child workflows started in phase {scope.node_id}")
    lines += [f"{binding} = await {handle}" for binding, handle in scope.awaited_children]
    return lines


def handle_child_workflow(node: Node, ctx: GeneratorContext) -> Fragment:
    workflow_type = child_workflow_type_for(node) or node.id
    input_expr = resolve_input(node, ctx)
    wait = node.config.get("executionType") == "executeChild"

    id_prefix = json.dumps(f"{node.id}-".replace("{", "{{").replace("}", "}}"))
    args = [format_value(workflow_type), input_expr, f"id=f{id_prefix[:-1]}{{workflow.uuid4()}}\""]
    task_queue = node.config.get("taskQueue")
    if task_queue:
        args.append(f"task_queue={format_value(task_queue)}")
    if node.data.timeout is not None:
        ctx.require_import(IMPORT_TIMEDELTA)
        args.append(f"execution_timeout={format_timedelta(parse_duration(node.data.timeout))}")
    if not wait:
        args.append("parent_close_policy=workflow.ParentClosePolicy.ABANDON")

    binding = ctx.register_binding(node.id, BindingKind.value)
    mode = "wait for result" if wait else "detached"
    items: List[FragmentItem] = list(ctx.comment(f"Child workflow: {node.display_name} ({mode})"))

    scope = ctx.current_phase
    if wait and scope is None:
        items += _call(f"{binding} = await workflow.execute_child_workflow", args)
        return Fragment(items, binding=binding)

    # Only results and workflow ids are bound; handles stay local.
    handle = ctx.allocate(f"child_{_node_ident(node)}_handle")
    if scope is not None:
        items.append(
            f"await workflow.wait_condition(lambda: sum(1 for handle in {scope.pending_var} "
            f"if not handle.done()) < {scope.limit_var})"
        )
    items += _call(f"{handle} = await workflow.start_child_workflow", args)
    if scope is not None:
        items.append(f"{scope.pending_var}.append({handle})")
    if wait:
        scope.awaited_children.append((binding, handle))
    else:
        items.append(f"{binding} = {handle}.id")
    return Fragment(items, binding=binding)


def handle_retry(node: Node, ctx: GeneratorContext) -> Fragment:
    cfg = node.config
    max_attempts = cfg.get("maxAttempts", config.default_retry_attempts)
    backoff = BackoffSpec.from_config(cfg.get("backoff"))
    ident = _node_ident(node)
    attempts = ctx.allocate(f"retry_{ident}_attempts")
    ctx.require_import(IMPORT_ASYNCIO)
    sleep = f"await asyncio.sleep({backoff_expression(backoff, attempts)})"
    label = format_value(node.id)

    items: List[FragmentItem] = list(ctx.comment(f"Retry block: {node.display_name}"))

    if cfg.get("retryOn", "failure") == "condition":
        ctx.require_import(IMPORT_APPLICATION_ERROR)
        should_retry = ctx.allocate(f"retry_{ident}_should_retry")
        result = ctx.allocate(f"retry_{ident}_result")
        condition = str(cfg.get("condition") or DEFAULT_RETRY_CONDITION).strip()
        items += [
            f"def {should_retry}(result: Any) -> bool:",
            f"{INDENT}return bool({condition})",
            f"{attempts} = 0",
            "while True:",
            Slot(depth=1),
            Deferred(lambda last: [f"{result} = {last or 'None'}"], depth=1),
            f"{INDENT}if not {should_retry}({result}):",
            f"{INDENT * 2}break",
            f"{INDENT}{attempts} += 1",
            f"{INDENT}if {attempts} >= {max_attempts}:",
            f"{INDENT * 2}raise ApplicationError(",
            f"{INDENT * 3}{format_value(f'Retry block {node.id} exhausted {max_attempts} attempts')},",
            f"{INDENT * 3}{result},",
            f'{INDENT * 3}type="RetryExhausted",',
            f"{INDENT * 2})",
            f"{INDENT}{sleep}",
        ]
        return Fragment(items)

    error = ctx.allocate(f"retry_{ident}_error")
    items += [
        f"{attempts} = 0",
        "while True:",
        f"{INDENT}try:",
        Slot(depth=2, placeholder=False),
        f"{INDENT * 2}break",
        f"{INDENT}except Exception as {error}:",
        f"{INDENT * 2}{attempts} += 1",
        f"{INDENT * 2}if {attempts} >= {max_attempts}:",
        f"{INDENT * 3}raise",
        f"{INDENT * 2}workflow.logger.warning(",
        f'{INDENT * 3}"Retry block %s attempt %s failed: %s", {label}, {attempts}, {error}',
        f"{INDENT * 2})",
        f"{INDENT * 2}{sleep}",
    ]
    return Fragment(items)


def handle_loop(node: Node, ctx: GeneratorContext) -> Fragment:
    cfg = node.config
    max_iterations = cfg.get("maxIterations")
    condition = cfg.get("condition")
    iterations = ctx.allocate(f"loop_{_node_ident(node)}_iterations")

    guards: List[str] = []
    if isinstance(max_iterations, int) and not isinstance(max_iterations, bool) and max_iterations > 0:
        guards.append(f"{iterations} < {max_iterations}")
    if condition:
        guards.append(f"({str(condition).strip()})")

    items: List[FragmentItem] = list(ctx.comment(f"Loop: {node.display_name}"))
    items += [
        f"{iterations} = 0",
        f"while {' and '.join(guards) or 'True'}:",
        f"{INDENT}{iterations} += 1",
        Slot(depth=1, placeholder=False),
    ]
    items += [f"{INDENT}{line}" for line in generate_compaction_guard(ctx)]
    return Fragment(items)


def _amount_literal(amount: object) -> str:
    if isinstance(amount, (int, float)) and not isinstance(amount, bool):
        return format_number(amount)
    return format_value(amount)


def handle_state_variable(node: Node, ctx: GeneratorContext) -> Fragment:
    cfg = node.config
    name = cfg["name"]
    ident = ctx.variable_ident(name)
    operation = cfg.get("operation", "set")

    items: List[FragmentItem] = list(ctx.comment(f"State variable: {name} ({operation})"))
    if operation == "set":
        items.append(f"{ident} = {format_value(cfg.get('value'))}")
    elif operation == "append":
        items.append(f"{ident}.append({format_value(cfg.get('value'))})")
    elif operation in ("increment", "decrement"):
        symbol = "+=" if operation == "increment" else "-="
        items.append(f"{ident} {symbol} {_amount_literal(cfg.get('amount', 1))}")
    return Fragment(items)


def handle_signal(node: Node, ctx: GeneratorContext) -> Fragment:
    name = format_value(signal_name_for(node))
    if ctx.once(FragmentKey.signal_queue):
        ctx.declare("signal_queue: list = []")

    items: List[FragmentItem] = list(ctx.comment(f"Signal: {node.display_name}"))
    items += _call(
        "workflow.set_signal_handler",
        [name, f'lambda *args: signal_queue.append({{"signal": {name}, "args": list(args)}})'],
    )
    # Loops re-check the guard every iteration; prefer them when present.
    if not any(other.kind == NodeType.loop for other in ctx.node_map.values()):
        items += generate_compaction_guard(ctx)
    return Fragment(items)


def handle_passive(node: Node, ctx: GeneratorContext) -> Fragment:
    binding = ctx.register_binding(node.id, BindingKind.descriptive)
    metadata = {
        "kind": node.type,
        "label": node.data.label,
        "componentName": node.data.component_name,
        "config": node.config,
    }
    items: List[FragmentItem] = list(ctx.comment(f"Configuration ({node.type}): {node.display_name}"))
    items.append(f"{binding} = {format_value(metadata)}")
    return Fragment(items, binding=binding)


# ----------------------------------------------------------------------
# Dispatch
# ----------------------------------------------------------------------
HANDLERS: Dict[NodeType, Handler] = {
    NodeType.trigger: handle_trigger,
    NodeType.activity: handle_activity,
    NodeType.agent: handle_activity,
    NodeType.condition: handle_condition,
    NodeType.phase: handle_phase,
    NodeType.retry: handle_retry,
    NodeType.loop: handle_loop,
    NodeType.state_variable: handle_state_variable,
    NodeType.signal: handle_signal,
    NodeType.child_workflow: handle_child_workflow,
    **{kind: handle_passive for kind in PASSIVE_NODE_TYPES},
}

_uncovered = set(NodeType) ^ set(HANDLERS)
if _uncovered:
    raise RuntimeError(f"Handler table does not match NodeType: {sorted(str(kind) for kind in _uncovered)}")


def dispatch(node: Node, ctx: GeneratorContext) -> Fragment:
    kind = node.kind
    if kind is None:
        raise UnknownNodeTypeError(node.type, node.id)
    return HANDLERS[kind](node, ctx)
