"""
Per-compilation generator state.

A `GeneratorContext` is built for one compilation run and discarded after it:
lookup maps, the visited-set, the result-binding table, the one-shot marker
set guarding shared fragments, and the diagnostics collected along the way.
Nothing here is module-level, so two compilations never observe each other.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from workflow_codegen.compiler.codegen import to_identifier
from workflow_codegen.errors import Diagnostic, DiagnosticCategory, EmissionError, Severity
from workflow_codegen.schema.models import (
    Edge,
    LongRunningPolicy,
    Node,
    Variable,
    WorkflowDefinition,
    WorkflowType,
)

IMPORT_ASYNCIO = "import asyncio"
IMPORT_TIMEDELTA = "from datetime import timedelta"
IMPORT_ANY = "from typing import Any"
IMPORT_WORKFLOW = "from temporalio import workflow"
IMPORT_RETRY_POLICY = "from temporalio.common import RetryPolicy"
IMPORT_APPLICATION_ERROR = "from temporalio.exceptions import ApplicationError"

# Canonical order; stdlib first, then the runtime SDK.
KNOWN_IMPORTS = (
    IMPORT_ASYNCIO,
    IMPORT_TIMEDELTA,
    IMPORT_ANY,
    IMPORT_WORKFLOW,
    IMPORT_RETRY_POLICY,
    IMPORT_APPLICATION_ERROR,
)


class FragmentKey(str, Enum):
    """Shared fragments that must be emitted at most once per program."""

    signal_queue = "signal-queue"
    workflow_start_time = "workflow-start-time"
    compaction_guard = "compaction-guard"


class BindingKind(str, Enum):
    value = "value"
    descriptive = "descriptive"


@dataclass(frozen=True)
class ResolvedOptions:
    include_comments: bool
    strict_mode: bool
    workflow_name: str
    class_name: str


@dataclass
class PhaseScope:
    """A concurrent phase whose child-workflow starts share one admission limit."""

    node_id: str
    pending_var: str
    limit_var: str
    max_concurrency: int
    # (binding, handle) pairs resolved when the phase drains
    awaited_children: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class GeneratorContext:
    definition: WorkflowDefinition
    options: ResolvedOptions
    node_map: Dict[str, Node]
    outgoing: Dict[str, List[Edge]]
    incoming: Dict[str, List[Edge]]
    variables: Dict[str, Variable]
    variable_idents: Dict[str, str]
    visited: Set[str] = field(default_factory=set)
    emission_order: List[str] = field(default_factory=list)
    bindings: Dict[str, str] = field(default_factory=dict)
    binding_kinds: Dict[str, BindingKind] = field(default_factory=dict)
    value_bindings: List[str] = field(default_factory=list)
    depth: int = 0
    markers: Set[FragmentKey] = field(default_factory=set)
    imports: Set[str] = field(default_factory=lambda: {IMPORT_ANY, IMPORT_WORKFLOW})
    declarations: List[str] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    phase_stack: List[PhaseScope] = field(default_factory=list)
    _binding_names: Dict[str, str] = field(default_factory=dict)
    _predeclared: List[str] = field(default_factory=list)
    _taken_names: Set[str] = field(default_factory=set)

    @classmethod
    def build(cls, definition: WorkflowDefinition, options: ResolvedOptions) -> "GeneratorContext":
        node_map: Dict[str, Node] = {}
        for node in definition.nodes:
            node_map.setdefault(node.id, node)

        outgoing: Dict[str, List[Edge]] = {}
        incoming: Dict[str, List[Edge]] = {}
        for edge in definition.edges:
            if edge.source not in node_map or edge.target not in node_map:
                continue
            outgoing.setdefault(edge.source, []).append(edge)
            incoming.setdefault(edge.target, []).append(edge)

        variables = {variable.name: variable for variable in definition.variables}
        ctx = cls(
            definition=definition,
            options=options,
            node_map=node_map,
            outgoing=outgoing,
            incoming=incoming,
            variables=variables,
            variable_idents={},
        )
        ctx._taken_names.add(options.class_name)
        for name in variables:
            ctx.variable_idents[name] = ctx.allocate(to_identifier(name, prefix="var"))
        for node_id in node_map:
            ctx._binding_names[node_id] = ctx.allocate(f"result_{to_identifier(node_id, prefix='node')}")
        return ctx

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    @property
    def workflow_type(self) -> WorkflowType:
        return self.definition.workflow_type or WorkflowType.task

    @property
    def long_running(self) -> Optional[LongRunningPolicy]:
        return self.definition.long_running

    # ------------------------------------------------------------------
    # Names and bindings
    # ------------------------------------------------------------------
    def allocate(self, base: str) -> str:
        name = base
        suffix = 2
        while name in self._taken_names:
            name = f"{base}_{suffix}"
            suffix += 1
        self._taken_names.add(name)
        return name

    def binding_name(self, node_id: str) -> str:
        try:
            name = self._binding_names[node_id]
        except KeyError as exc:
            raise EmissionError(f"No binding slot for unknown node '{node_id}'") from exc
        if name not in self._predeclared:
            self._predeclared.append(name)
        return name

    def register_binding(self, node_id: str, kind: BindingKind) -> str:
        name = self.binding_name(node_id)
        self.bindings[node_id] = name
        self.binding_kinds[node_id] = kind
        if kind == BindingKind.value:
            self.value_bindings.append(name)
        return name

    @property
    def predeclared_bindings(self) -> List[str]:
        return list(self._predeclared)

    def variable_ident(self, name: str) -> str:
        try:
            return self.variable_idents[name]
        except KeyError as exc:
            raise EmissionError(f"Variable '{name}' is not declared") from exc

    # ------------------------------------------------------------------
    # Shared fragments
    # ------------------------------------------------------------------
    def once(self, key: FragmentKey) -> bool:
        """True the first time `key` is claimed in this compilation, False after."""

        if key in self.markers:
            return False
        self.markers.add(key)
        return True

    def require_import(self, line: str) -> None:
        if line not in KNOWN_IMPORTS:
            raise EmissionError(f"Unknown import line {line!r}")
        self.imports.add(line)

    def declare(self, line: str) -> None:
        self.declarations.append(line)

    def ordered_imports(self) -> List[str]:
        return [line for line in KNOWN_IMPORTS if line in self.imports]

    # ------------------------------------------------------------------
    # Diagnostics and comments
    # ------------------------------------------------------------------
    def report(
        self,
        severity: Severity,
        category: DiagnosticCategory,
        message: str,
        node_id: Optional[str] = None,
    ) -> None:
        self.diagnostics.append(
            Diagnostic(severity=severity, category=category, message=message, node_id=node_id)
        )

    def comment(self, text: str) -> List[str]:
        if not self.options.include_comments:
            return []
        return [f"# {' '.join(str(text).split())}"]

    @property
    def current_phase(self) -> Optional[PhaseScope]:
        return self.phase_stack[-1] if self.phase_stack else None
