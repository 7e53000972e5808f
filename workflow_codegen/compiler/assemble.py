"""
Stage 5: Assemble imports, the run prologue and the instruction stream into
one workflow module.
"""

from __future__ import annotations

from typing import List

from workflow_codegen.compiler.codegen import comment_text, format_value, indent, indent_lines
from workflow_codegen.compiler.context import GeneratorContext

RUN_DEPTH = 2


def assemble_program(ctx: GeneratorContext, body: List[str]) -> str:
    options = ctx.options
    pad = indent(RUN_DEPTH)
    lines: List[str] = []

    if options.include_comments:
        lines += [
            '"""',
            comment_text(options.workflow_name).replace("\\", "/").replace('"', "'"),
            "",
            "Generated Temporal workflow. Do not edit by hand; recompile the graph instead.",
            f"Workflow type: {ctx.workflow_type.value}",
            '"""',
            "",
        ]

    lines += ["from __future__ import annotations", ""]
    lines += ctx.ordered_imports()
    lines += [
        "",
        "",
        f"@workflow.defn(name={format_value(options.workflow_name)})",
        f"class {options.class_name}:",
        f"{indent(1)}@workflow.run",
        f"{indent(1)}async def run(self, workflow_input: Any = None) -> Any:",
        f"{pad}state = workflow_input if isinstance(workflow_input, dict) else {{}}",
    ]

    for name, variable in ctx.variables.items():
        ident = ctx.variable_idents[name]
        lines.append(
            f"{pad}{ident} = state.get({format_value(name)}, {format_value(variable.resolved_initial_value())})"
        )
    lines += indent_lines(ctx.declarations, RUN_DEPTH)
    lines += [f"{pad}{binding}: Any = None" for binding in ctx.predeclared_bindings]

    if body:
        lines.append("")
        lines += body

    result = ctx.value_bindings[-1] if ctx.value_bindings else "None"
    lines += ["", f"{pad}return {result}", ""]
    return "\n".join(lines)
