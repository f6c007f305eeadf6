"""
Sagaflow CLI Application - Built with Click.

Read-only tooling around definition files:
- validate   check workflow/saga files and report errors and warnings
- graph      show entry points, execution levels and orphaned steps
- simulate   dry-run a definition with injected failures
"""

import asyncio
import json
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sagaflow import __version__
from sagaflow.core.config import EngineConfig
from sagaflow.core.exceptions import SagaflowError
from sagaflow.core.models import Event, SagaDefinition, WorkflowDefinition
from sagaflow.dry_run import DryRunResult, simulate_saga, simulate_workflow
from sagaflow.execution.graph import StepGraph
from sagaflow.execution.validation import validate_saga, validate_workflow
from sagaflow.loader import load_definition

console = Console()


# ============================================================================
# CLI Group
# ============================================================================


class OrderedGroup(click.Group):
    """Click Group that lists commands in the order they were added."""

    def list_commands(self, ctx):
        return list(self.commands.keys())


@click.group(cls=OrderedGroup)
@click.version_option(version=__version__, prog_name="sagaflow")
@click.option(
    "--log-level",
    envvar="SAGAFLOW_LOG_LEVEL",
    default="WARNING",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Engine log level",
)
@click.option("--json-logs", envvar="SAGAFLOW_JSON_LOGS", is_flag=True, help="JSON log lines")
def cli(log_level: str, json_logs: bool):
    """
    Sagaflow - event-triggered workflows and compensating sagas.

    \b
    Commands:
      validate   Validate workflow and saga definition files
      graph      Show the step graph of a definition
      simulate   Dry-run a definition without side effects
      version    Show the installed version
    """
    EngineConfig(logging=False, log_level=log_level, json_logs=json_logs).apply_logging()


def _load_or_exit(path: str):
    try:
        return load_definition(path)
    except (FileNotFoundError, SagaflowError) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


def _kind(definition) -> str:
    return "saga" if isinstance(definition, SagaDefinition) else "workflow"


# ============================================================================
# validate
# ============================================================================


@cli.command(name="validate")
@click.argument("files", nargs=-1, required=True, type=click.Path())
def validate_cmd(files: tuple[str, ...]):
    """Validate workflow and saga definition files."""
    table = Table(title="Definitions", show_header=True)
    table.add_column("File", style="cyan")
    table.add_column("Kind")
    table.add_column("Name")
    table.add_column("Result")

    problems: list[tuple[str, list[str], list[str]]] = []
    all_valid = True

    for path in files:
        name = Path(path).name
        try:
            definition = load_definition(path)
        except (FileNotFoundError, SagaflowError) as e:
            all_valid = False
            table.add_row(name, "-", "-", "[red]unreadable[/red]")
            problems.append((name, [str(e)], []))
            continue

        if isinstance(definition, SagaDefinition):
            result = validate_saga(definition)
        else:
            result = validate_workflow(definition)
        all_valid = all_valid and result.is_valid

        verdict = "[green]valid[/green]" if result.is_valid else "[red]invalid[/red]"
        table.add_row(name, _kind(definition), definition.name, verdict)
        if result.errors or result.warnings:
            problems.append((name, result.errors, result.warnings))

    console.print(table)
    for name, errors, warnings in problems:
        console.print(f"\n[bold]{name}[/bold]")
        for error in errors:
            console.print(f"  [red]✗[/red] {error}")
        for warning in warnings:
            console.print(f"  [yellow]⚠[/yellow] {warning}")

    sys.exit(0 if all_valid else 1)


# ============================================================================
# graph
# ============================================================================


@cli.command(name="graph")
@click.argument("file", type=click.Path())
def graph_cmd(file: str):
    """Show entry points, execution levels and orphaned steps."""
    definition = _load_or_exit(file)

    if isinstance(definition, WorkflowDefinition):
        graph = StepGraph.from_workflow(definition)
        console.print(Panel(f"{definition.name}@{definition.version}", title="Workflow"))
        console.print(f"Entry points: {', '.join(graph.entry_points) or '-'}")
    else:
        graph = StepGraph.from_saga(definition)
        policy = definition.compensation_policy
        console.print(Panel(definition.name, title="Saga"))
        console.print(f"Compensation: {policy.strategy.value}")

    cycle = graph.find_cycle()
    if cycle:
        console.print(f"[red]Cycle:[/red] {' -> '.join(cycle)}")
        sys.exit(1)

    table = Table(title="Execution levels", show_header=True)
    table.add_column("Level", style="cyan")
    table.add_column("Steps", style="green")
    for index, level in enumerate(graph.topological_levels(), start=1):
        table.add_row(str(index), ", ".join(level))
    console.print(table)

    if isinstance(definition, WorkflowDefinition):
        orphans = graph.orphans()
        console.print(f"Orphaned steps: {', '.join(orphans) if orphans else 'none'}")


# ============================================================================
# simulate
# ============================================================================


@cli.command(name="simulate")
@click.argument("file", type=click.Path())
@click.option("--event", "-e", "event_type", default=None, help="Event type to fire (workflows)")
@click.option("--data", "-d", default="{}", help="Event data (workflows) or initial data (sagas), JSON")
@click.option("--fail", "-f", "fail_steps", multiple=True, help="Step id to fail (repeatable)")
@click.option(
    "--fail-compensation",
    "fail_compensations",
    multiple=True,
    help="Compensation action to fail (repeatable)",
)
def simulate_cmd(
    file: str,
    event_type: str | None,
    data: str,
    fail_steps: tuple[str, ...],
    fail_compensations: tuple[str, ...],
):
    """Dry-run a definition and show which steps and compensations run."""
    definition = _load_or_exit(file)
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        console.print(f"[red]Error:[/red] --data is not valid JSON: {e}")
        sys.exit(1)

    if isinstance(definition, SagaDefinition):
        result = asyncio.run(
            simulate_saga(definition, payload, fail_steps, fail_compensations)
        )
    else:
        event = None
        if event_type or payload:
            if event_type is None and definition.triggers:
                event_type = definition.triggers[0].event_type
            event = Event(type=event_type or "", data=payload)
        result = asyncio.run(simulate_workflow(definition, event, fail_steps=fail_steps))

    _display_simulation(result)
    sys.exit(0 if result.status is not None else 1)


def _display_simulation(result: DryRunResult) -> None:
    if result.status is None:
        console.print(Panel("[red]✗ Not executable[/red]", title="Simulation"))
        for error in result.validation_errors or [result.error]:
            console.print(f"  • {error}")
        return

    color = "green" if result.success else "yellow"
    console.print(Panel(f"[{color}]{result.status}[/{color}]", title=f"Simulated {result.kind}"))

    table = Table(show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Executed", " -> ".join(result.execution_order) or "-")
    if result.kind == "saga":
        table.add_row("Compensated", ", ".join(result.compensations) or "-")
    table.add_row("Notifications", ", ".join(result.notifications) or "-")
    console.print(table)

    if result.error:
        console.print(f"[yellow]Error:[/yellow] {result.error}")
    for warning in result.validation_warnings:
        console.print(f"[yellow]⚠[/yellow] {warning}")


# ============================================================================
# version
# ============================================================================


@cli.command(name="version")
def version_cmd():
    """Show the installed version."""
    console.print(f"sagaflow {__version__}")


if __name__ == "__main__":
    cli()
