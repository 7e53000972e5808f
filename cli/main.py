#!/usr/bin/env python3
"""
CLI for the workflow code generator.

Usage:
    workflow-codegen compile workflow.json -o generated_workflow.py
    workflow-codegen classify workflow.json
    workflow-codegen config
"""
import json
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Load .env before importing codegen modules so settings pick it up
load_dotenv()

console = Console()
err_console = Console(stderr=True)

# Global verbose flag
VERBOSE = False


def _load_definition(path: Path):
    from workflow_codegen.compiler.parse import parse_workflow_definition

    return parse_workflow_definition(path.read_text(encoding="utf-8"))


def _print_diagnostics(diagnostics) -> None:
    if not diagnostics:
        return
    table = Table(title="Diagnostics", box=box.ROUNDED)
    table.add_column("Severity")
    table.add_column("Category", style="dim")
    table.add_column("Node", style="cyan")
    table.add_column("Message")
    for item in diagnostics:
        severity = "[red]error[/red]" if item.is_error else "[yellow]warning[/yellow]"
        table.add_row(severity, item.category.value, item.node_id or "-", item.message)
    err_console.print(table)


@click.group()
@click.version_option(version="0.1.0", prog_name="workflow-codegen")
@click.option('--verbose', '-v', is_flag=True, help='Show full error tracebacks for debugging')
def cli(verbose: bool):
    """
    Workflow code generator - compile visual workflow graphs into Temporal workflows.

    \b
    Commands:
      compile   - Compile a workflow JSON file into a Python workflow module
      classify  - Show whether a workflow is a short task or a long-lived service
      config    - Show current configuration

    \b
    Examples:
      workflow-codegen compile workflow.json -o generated_workflow.py
      workflow-codegen compile workflow.json --workflow-name OrderFulfillment --no-comments
      workflow-codegen classify workflow.json
    """
    global VERBOSE
    VERBOSE = verbose


@cli.command(name="compile")
@click.argument('path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--output', '-o', type=click.Path(dir_okay=False, path_type=Path), help='Write the program to this file')
@click.option('--workflow-name', '-n', default=None, help='Workflow name (defaults to the definition name)')
@click.option('--no-comments', is_flag=True, help='Omit label comments from the generated program')
@click.option('--lenient', is_flag=True, help='Downgrade type-consistency errors to warnings')
def compile_command(path: Path, output, workflow_name, no_comments: bool, lenient: bool):
    """
    Compile a workflow definition.

    Prints the generated module to stdout unless --output is given.
    Diagnostics go to stderr; the exit code is 1 when compilation fails.
    """
    from workflow_codegen import CompileOptions, compile_workflow
    from shared.logger import set_log_level

    # The program itself goes to stdout; keep INFO logs out of it
    if not output and not VERBOSE:
        set_log_level("WARNING")

    options = CompileOptions(
        workflow_name=workflow_name,
        include_comments=False if no_comments else None,
        strict_mode=False if lenient else None,
    )
    try:
        result = compile_workflow(path.read_text(encoding="utf-8"), options)
    except Exception as e:
        err_console.print(f"[red]❌ Compilation crashed: {e}[/red]")
        if VERBOSE:
            import traceback
            err_console.print(traceback.format_exc())
        sys.exit(1)

    _print_diagnostics(result.diagnostics)

    if not result.success:
        err_console.print(f"[red]❌ Compilation failed ({len(result.errors)} error(s))[/red]")
        sys.exit(1)

    if output:
        output.write_text(result.program, encoding="utf-8")
        err_console.print(
            f"[green]✅ Wrote {result.metadata.get('class_name')} "
            f"({result.workflow_type.value}) to {output}[/green]"
        )
    else:
        click.echo(result.program, nl=False)


@cli.command()
@click.argument('path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--format', '-f', 'fmt', type=click.Choice(['json', 'table']), default='table', help='Output format')
def classify(path: Path, fmt: str):
    """
    Classify a workflow as `task` or `service`.

    Also shows the long-running settings the configurator would attach.
    """
    from workflow_codegen.compiler.classify import classify_workflow
    from workflow_codegen.compiler.configure import configure_continue_as_new
    from workflow_codegen.errors import WorkflowCompilerError
    from workflow_codegen.schema.models import SETTINGS_LONG_RUNNING

    try:
        definition = _load_definition(path)
    except WorkflowCompilerError as e:
        err_console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)

    workflow_type = classify_workflow(definition)
    configured = configure_continue_as_new(definition, workflow_type)
    policy = configured.settings.get(SETTINGS_LONG_RUNNING, {})

    if fmt == 'json':
        click.echo(json.dumps({"workflowType": workflow_type.value, "longRunning": policy}, indent=2))
        return

    table = Table(title=definition.name or str(path), box=box.ROUNDED)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("workflowType", workflow_type.value)
    for key, value in policy.items():
        table.add_row(f"longRunning.{key}", str(value))
    console.print(table)


@cli.command()
@click.option('--format', '-f', 'fmt', type=click.Choice(['json', 'table']), default='table', help='Output format')
def config(fmt: str):
    """
    Show current configuration.

    Displays configuration values loaded from environment variables and .env file.
    """
    from shared.config import config as codegen_config

    sections = {
        "Compile Options": [
            ("include_comments", "WORKFLOW_CODEGEN_INCLUDE_COMMENTS"),
            ("strict_mode", "WORKFLOW_CODEGEN_STRICT_MODE"),
            ("default_workflow_name", "WORKFLOW_CODEGEN_DEFAULT_WORKFLOW_NAME"),
        ],
        "Emission Defaults": [
            ("default_activity_timeout", "WORKFLOW_CODEGEN_DEFAULT_ACTIVITY_TIMEOUT"),
            ("default_phase_concurrency", "WORKFLOW_CODEGEN_DEFAULT_PHASE_CONCURRENCY"),
            ("default_retry_attempts", "WORKFLOW_CODEGEN_DEFAULT_RETRY_ATTEMPTS"),
        ],
        "Continue-As-New": [
            ("default_max_history_events", "WORKFLOW_CODEGEN_DEFAULT_MAX_HISTORY_EVENTS"),
            ("default_max_duration_ms", "WORKFLOW_CODEGEN_DEFAULT_MAX_DURATION_MS"),
        ],
        "Logging": [
            ("log_level", "WORKFLOW_CODEGEN_LOG_LEVEL"),
        ],
    }

    if fmt == 'json':
        output = {
            section: {attr: getattr(codegen_config, attr, None) for attr, _ in items}
            for section, items in sections.items()
        }
        click.echo(json.dumps(output, indent=2, default=str))
        return

    console.print(Panel.fit(
        "[bold cyan]Workflow Codegen Configuration[/bold cyan]",
        border_style="cyan"
    ))
    for section, items in sections.items():
        table = Table(title=section, box=box.ROUNDED)
        table.add_column("Setting", style="cyan")
        table.add_column("Env Variable", style="dim")
        table.add_column("Value")
        for attr, env_var in items:
            table.add_row(attr, env_var, str(getattr(codegen_config, attr, None)))
        console.print(table)
        console.print()


if __name__ == "__main__":
    cli()
