"""
Public entrypoint for compiling visual workflow graphs into Temporal workflow modules.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from shared.config import config
from shared.logger import get_logger
from workflow_codegen.compiler.assemble import RUN_DEPTH, assemble_program
from workflow_codegen.compiler.classify import classify_workflow
from workflow_codegen.compiler.codegen import indent_lines, to_pascal_case
from workflow_codegen.compiler.configure import configure_continue_as_new
from workflow_codegen.compiler.context import GeneratorContext, ResolvedOptions
from workflow_codegen.compiler.continue_as_new import generate_compaction_guard
from workflow_codegen.compiler.emit_program import EmissionEngine
from workflow_codegen.compiler.parse import parse_workflow_definition
from workflow_codegen.compiler.validate_graph import find_entry_node, validate_definition
from workflow_codegen.errors import (
    Diagnostic,
    DiagnosticCategory,
    Severity,
    UnknownNodeTypeError,
    ValidationPhaseError,
    WorkflowCompilerError,
)
from workflow_codegen.schema.models import WorkflowDefinition, WorkflowType
from workflow_codegen.schema.results import CompileOptions, CompileResult

logger = get_logger(__name__)

__all__ = ["CompileOptions", "CompileResult", "compile_workflow", "resolve_options"]


def resolve_options(
    definition: WorkflowDefinition,
    options: Union[CompileOptions, Dict[str, Any], None],
) -> ResolvedOptions:
    if options is None:
        options = CompileOptions()
    elif not isinstance(options, CompileOptions):
        options = CompileOptions.model_validate(options)

    workflow_name = options.workflow_name or definition.name or config.default_workflow_name
    return ResolvedOptions(
        include_comments=config.include_comments if options.include_comments is None else options.include_comments,
        strict_mode=config.strict_mode if options.strict_mode is None else options.strict_mode,
        workflow_name=workflow_name,
        class_name=to_pascal_case(workflow_name),
    )


def compile_workflow(
    payload: Any,
    options: Union[CompileOptions, Dict[str, Any], None] = None,
) -> CompileResult:
    """
    Compile a workflow definition into the text of a Temporal workflow module.

    Never raises for bad input: problems come back as diagnostics and
    `success=False` with an empty program.
    """

    try:
        definition = parse_workflow_definition(payload)
    except ValidationPhaseError as exc:
        logger.warning("Workflow payload rejected: %s", exc)
        return _failure([_fatal(DiagnosticCategory.parse, str(exc))])

    try:
        resolved = resolve_options(definition, options)
    except ValueError as exc:
        return _failure([_fatal(DiagnosticCategory.parse, f"Invalid compile options: {exc}")])

    logger.info(
        "Compiling workflow=%s nodes=%d edges=%d",
        resolved.workflow_name,
        len(definition.nodes),
        len(definition.edges),
    )

    diagnostics = validate_definition(definition, strict_mode=resolved.strict_mode)
    workflow_type = classify_workflow(definition)
    if any(item.is_error for item in diagnostics):
        logger.warning(
            "Compilation of %s failed with %d error(s)",
            resolved.workflow_name,
            sum(1 for item in diagnostics if item.is_error),
        )
        return _failure(diagnostics, workflow_type=workflow_type, definition=definition)

    configured = configure_continue_as_new(definition, workflow_type)
    ctx = GeneratorContext.build(configured, resolved)
    ctx.diagnostics.extend(diagnostics)

    try:
        entry, _ = find_entry_node(configured)
        body = EmissionEngine(ctx).emit(entry.id, RUN_DEPTH)
        body += indent_lines(generate_compaction_guard(ctx), RUN_DEPTH)
        program = assemble_program(ctx, body)
    except UnknownNodeTypeError as exc:
        ctx.report(Severity.error, DiagnosticCategory.handler, str(exc), exc.node_id)
        return _failure(ctx.diagnostics, workflow_type=workflow_type, definition=definition)
    except WorkflowCompilerError as exc:
        logger.warning("Code generation failed: %s", exc)
        ctx.report(Severity.error, DiagnosticCategory.generation, str(exc))
        return _failure(ctx.diagnostics, workflow_type=workflow_type, definition=definition)

    logger.info(
        "Compiled workflow=%s type=%s emitted=%d warnings=%d",
        resolved.workflow_name,
        workflow_type.value,
        len(ctx.emission_order),
        len(ctx.diagnostics),
    )
    return CompileResult(
        success=True,
        program=program,
        diagnostics=ctx.diagnostics,
        workflow_type=workflow_type,
        metadata=_metadata(configured, ctx.emission_order, resolved.class_name),
    )


def _fatal(category: DiagnosticCategory, message: str) -> Diagnostic:
    return Diagnostic(severity=Severity.error, category=category, message=message)


def _metadata(
    definition: WorkflowDefinition,
    emission_order: List[str],
    class_name: Optional[str] = None,
) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {
        "node_count": len(definition.nodes),
        "edge_count": len(definition.edges),
        "emission_order": list(emission_order),
        "settings": dict(definition.settings),
    }
    if class_name is not None:
        metadata["class_name"] = class_name
    return metadata


def _failure(
    diagnostics: List[Diagnostic],
    *,
    workflow_type: Optional[WorkflowType] = None,
    definition: Optional[WorkflowDefinition] = None,
) -> CompileResult:
    metadata = _metadata(definition, []) if definition is not None else {}
    return CompileResult(
        success=False,
        program="",
        diagnostics=list(diagnostics),
        workflow_type=workflow_type,
        metadata=metadata,
    )
