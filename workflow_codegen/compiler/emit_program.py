"""
Stage 4: Walk the graph from its entry node and emit the instruction stream.

The walk is depth-first in edge-declaration order. A node is emitted on its
first visit only; later arrivals (joins, back edges) are no-ops. Condition
nodes are expanded into an `if`/`else` whose branches stop at the join where
they reconverge; the walk then resumes at the join at the condition's own
depth. Loop and retry nodes emit their non-`exit` edges inside their body and
their `exit` edges after it.
"""

from __future__ import annotations

from collections import deque
from typing import Callable, FrozenSet, List, Optional

from shared.logger import get_logger
from workflow_codegen.compiler.codegen import has_statements, indent, indent_lines
from workflow_codegen.compiler.context import GeneratorContext
from workflow_codegen.compiler.handlers import Deferred, Fragment, Slot, dispatch, phase_drain
from workflow_codegen.compiler.validate_graph import EXIT_HANDLE
from workflow_codegen.schema.models import Edge, NodeType

logger = get_logger(__name__)

BODY_NODE_TYPES = frozenset({NodeType.loop, NodeType.retry})

BodyWalker = Callable[[int], List[str]]


class EmissionEngine:
    def __init__(self, ctx: GeneratorContext) -> None:
        self.ctx = ctx

    def emit(self, entry_id: str, depth: int) -> List[str]:
        return self._walk(entry_id, depth, frozenset())

    # ------------------------------------------------------------------
    # Walk
    # ------------------------------------------------------------------
    def _walk(self, node_id: str, depth: int, stops: FrozenSet[str]) -> List[str]:
        ctx = self.ctx
        if node_id in stops or node_id in ctx.visited:
            return []

        node = ctx.node_map[node_id]
        ctx.visited.add(node_id)
        ctx.emission_order.append(node_id)
        ctx.depth = depth
        logger.debug("emit node=%s type=%s depth=%d", node_id, node.type, depth)

        fragment = dispatch(node, ctx)
        edges = ctx.outgoing.get(node_id, [])

        if node.kind == NodeType.condition:
            lines = self._render(fragment, depth, None)
            return lines + self._branches(fragment.binding, edges, depth, stops)

        if node.kind in BODY_NODE_TYPES:
            body_edges = [edge for edge in edges if edge.source_handle != EXIT_HANDLE]
            exit_edges = [edge for edge in edges if edge.source_handle == EXIT_HANDLE]
            body_stops = stops | {edge.target for edge in exit_edges}
            lines = self._render(
                fragment, depth, lambda body_depth: self._walk_edges(body_edges, body_depth, body_stops)
            )
            return lines + self._walk_edges(exit_edges, depth, stops)

        lines = self._render(fragment, depth, None)
        if fragment.phase is None:
            return lines + self._walk_edges(edges, depth, stops)

        ctx.phase_stack.append(fragment.phase)
        try:
            lines += self._walk_edges(edges, depth, stops)
        finally:
            ctx.phase_stack.pop()
        return lines + indent_lines(phase_drain(fragment.phase, ctx), depth)

    def _walk_edges(self, edges: List[Edge], depth: int, stops: FrozenSet[str]) -> List[str]:
        lines: List[str] = []
        for edge in edges:
            lines += self._walk(edge.target, depth, stops)
        return lines

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------
    def _branches(
        self, binding: Optional[str], edges: List[Edge], depth: int, stops: FrozenSet[str]
    ) -> List[str]:
        true_target = next((edge.target for edge in edges if edge.source_handle == "true"), None)
        false_target = next((edge.target for edge in edges if edge.source_handle == "false"), None)

        join = self.find_join(true_target, false_target, stops)
        branch_stops = stops | {join} if join else stops

        true_lines = self._walk(true_target, depth + 1, branch_stops) if true_target else []
        false_lines = self._walk(false_target, depth + 1, branch_stops) if false_target else []

        pad = indent(depth)
        lines: List[str] = []
        if has_statements(true_lines):
            lines += [f"{pad}if {binding}:", *true_lines]
            if has_statements(false_lines):
                lines += [f"{pad}else:", *false_lines]
        elif has_statements(false_lines):
            lines += [f"{pad}if not {binding}:", *false_lines]

        if join and join not in stops:
            lines += self._walk(join, depth, stops)
        return lines

    def find_join(
        self, true_target: Optional[str], false_target: Optional[str], stops: FrozenSet[str]
    ) -> Optional[str]:
        """First node, breadth-first from the true target, also reachable from the false target."""

        if not true_target or not false_target:
            return None
        from_false = set(self._reachable(false_target, stops))
        for node_id in self._reachable(true_target, stops):
            if node_id in from_false:
                return node_id
        return None

    def _reachable(self, start: str, stops: FrozenSet[str]) -> List[str]:
        ctx = self.ctx
        if start in ctx.visited:
            return []
        order = [start]
        seen = {start}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            if current in stops:
                continue
            for edge in ctx.outgoing.get(current, []):
                target = edge.target
                if target in seen or target in ctx.visited:
                    continue
                seen.add(target)
                order.append(target)
                queue.append(target)
        return order

    # ------------------------------------------------------------------
    # Fragments
    # ------------------------------------------------------------------
    def _render(self, fragment: Fragment, depth: int, body: Optional[BodyWalker]) -> List[str]:
        ctx = self.ctx
        lines: List[str] = []
        last_binding: Optional[str] = None

        for item in fragment.items:
            if isinstance(item, Slot):
                before = len(ctx.value_bindings)
                body_depth = depth + item.depth
                body_lines = body(body_depth) if body is not None else []
                if item.placeholder and not has_statements(body_lines):
                    body_lines.append(f"{indent(body_depth)}pass")
                last_binding = ctx.value_bindings[-1] if len(ctx.value_bindings) > before else None
                lines += body_lines
            elif isinstance(item, Deferred):
                lines += indent_lines(item.render(last_binding), depth + item.depth)
            else:
                lines.append(f"{indent(depth)}{item}" if item else item)
        return lines
