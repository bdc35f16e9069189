"""Sluice CLI — validate, inspect, normalize and run workflow documents."""

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table as RichTable

from sluice import __version__
from sluice.connectors.duckdb import DuckDBConnector
from sluice.core.config import get_settings
from sluice.dag.scheduler import parallel_groups, topological_order
from sluice.daemon.coordinator import WindowCoordinator
from sluice.daemon.main import configure_logging
from sluice.errors import CyclicDependency, SluiceError
from sluice.execution.executor import TableExecutor
from sluice.models.workflow import Workflow
from sluice.serialization.codec import export_workflows, import_workflows

app = typer.Typer(
    name="sluice",
    help="Windowed, incrementally materialized SQL table workflows",
    no_args_is_help=True,
)
console = Console()

STATUS_COLORS = {
    "success": "green",
    "failed": "red",
    "timeout": "red",
    "dependency_failed": "yellow",
    "partial": "yellow",
}


def _load(file: Path, workflow: Optional[str] = None) -> list[Workflow]:
    """Load workflows from a document, exiting with a readable error on failure."""
    if not file.exists():
        console.print(f"[red]Error:[/red] File not found: {file}")
        raise typer.Exit(1)

    settings = get_settings()
    try:
        workflows = import_workflows(file.read_text(), settings.default_window_size)
    except CyclicDependency as e:
        console.print(f"[red]Cycle:[/red] {' → '.join(e.cycle + e.cycle[:1])}")
        raise typer.Exit(1)
    except SluiceError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if workflow is not None:
        workflows = [w for w in workflows if w.name == workflow]
        if not workflows:
            console.print(f"[red]Error:[/red] No workflow named '{workflow}' in {file}")
            raise typer.Exit(1)
    return workflows


@app.command()
def validate(file: Path = typer.Argument(..., help="Workflow YAML document")):
    """Check a workflow document for duplicate names and cycles."""
    for wf in _load(file):
        graph = wf.graph()
        console.print(
            f"[green]✓[/green] [bold]{wf.name}[/bold] — {len(wf.tables)} tables, "
            f"{len(graph.edges)} dependencies"
        )
        for ref in graph.unresolved:
            console.print(f"  [dim]external source:[/dim] {ref.name} (read by {ref.table})")


@app.command()
def order(
    file: Path = typer.Argument(..., help="Workflow YAML document"),
    workflow: Optional[str] = typer.Option(None, "--workflow", "-w", help="Only this workflow"),
):
    """Show the execution order of each workflow."""
    for wf in _load(file, workflow):
        graph = wf.graph()
        table = RichTable(title=f"Execution order: {wf.name}")
        table.add_column("#", style="dim")
        table.add_column("Table", style="bold")
        table.add_column("Depends on")
        table.add_column("Time column")
        table.add_column("Upsert key")

        for i, t in enumerate(topological_order(graph), start=1):
            table.add_row(
                str(i),
                t.name,
                ", ".join(graph.direct_upstream(t.name)) or "—",
                t.time_column or "—",
                ", ".join(t.upsert_constraints) or "[dim]append[/dim]",
            )
        console.print(table)
        console.print(f"  Levels: {parallel_groups(graph)}")


@app.command()
def graph(
    file: Path = typer.Argument(..., help="Workflow YAML document"),
    workflow: Optional[str] = typer.Option(None, "--workflow", "-w", help="Only this workflow"),
):
    """Print the dependency graph as JSON (nodes, edges, order)."""
    output = {wf.name: wf.graph().to_dict() for wf in _load(file, workflow)}
    typer.echo(json.dumps(output, indent=2))


@app.command()
def export(
    file: Path = typer.Argument(..., help="Workflow YAML document"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write here instead of stdout"),
):
    """Re-export a document in canonical form (stable keys, recomputed depends_on)."""
    text = export_workflows(_load(file))
    if output:
        output.write_text(text)
        console.print(f"[green]✓[/green] Wrote {output}")
    else:
        typer.echo(text, nl=False)


@app.command()
def run(
    file: Path = typer.Argument(..., help="Workflow YAML document"),
    start: datetime = typer.Option(..., "--start", "-s", help="Any moment inside the first window (UTC)"),
    windows: int = typer.Option(1, "--windows", "-n", help="Number of consecutive windows"),
    workflow: Optional[str] = typer.Option(None, "--workflow", "-w", help="Only this workflow"),
    database: Optional[str] = typer.Option(None, "--database", "-d", help="DuckDB database file"),
):
    """Run consecutive windows of a workflow against DuckDB."""
    settings = get_settings(database=database)
    configure_logging(settings.log_level)
    workflows = _load(file, workflow)

    async def _run_all() -> bool:
        ok = True
        for wf in workflows:
            connector = DuckDBConnector(database=settings.database)
            async with connector:
                coordinator = WindowCoordinator(
                    wf,
                    executor=TableExecutor(connector, timeout_seconds=settings.table_timeout_seconds),
                    max_parallel=settings.max_parallel,
                )
                window = wf.window.window_at(start)
                for _ in range(windows):
                    result = await coordinator.run_window(window)
                    _print_window(result)
                    ok = ok and result.status == "success"
                    window = wf.window.following(window)
        return ok

    if not asyncio.run(_run_all()):
        raise typer.Exit(1)


def _print_window(result) -> None:
    color = STATUS_COLORS.get(result.status, "white")
    console.print(f"\n[{color}]●[/{color}] {result.workflow} {result.window} — {result.status}")

    table = RichTable(show_lines=False)
    table.add_column("Table", style="bold")
    table.add_column("Status")
    table.add_column("Rows")
    table.add_column("Strategy")
    table.add_column("Duration")
    table.add_column("Error", max_width=60)

    for name in result.execution_order:
        r = result.results.get(name)
        if r is None:
            continue
        c = STATUS_COLORS.get(r.status.value, "white")
        table.add_row(
            name,
            f"[{c}]{r.status.value}[/{c}]",
            str(r.rows_written),
            r.strategy or "—",
            f"{r.duration_ms}ms" if r.duration_ms is not None else "—",
            (r.error or "")[:200],
        )
    console.print(table)


@app.command()
def version():
    """Show Sluice version."""
    console.print(f"sluice v{__version__}")


if __name__ == "__main__":
    app()
