"""State command: classify models against the last recorded build."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.table import Table

from strata.cli import _load_config, _plan, _resolve_project, app, console

_CLASS_STYLE = {
    "unchanged": "dim",
    "modified": "yellow",
    "new": "green",
    "deleted": "red",
}


@app.command()
def state(
    format: Annotated[str, typer.Option("--format", "-f", help="Output format: table or json")] = "table",
    changed_only: Annotated[bool, typer.Option("--changed", help="Hide unchanged models")] = False,
    env: Annotated[Optional[str], typer.Option("--env", "-e", help="Environment to use")] = None,
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """Show how each model compares to the state of the last build."""
    from strata.engine import summarize

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir, env)
    plan = _plan(config, None)

    if plan.classifications is None:
        console.print(f"[yellow]No previous state at {config.state_path}. Run [bold]strata build[/bold] first.[/yellow]")
        return

    rows = {
        identity: c.value
        for identity, c in plan.classifications.items()
        if not (changed_only and c.value == "unchanged")
    }

    if format == "json":
        console.print(json.dumps(
            {"nodes": rows, "summary": summarize(plan.classifications)},
            indent=2,
        ))
        return

    table = Table(title=f"State vs {config.state.path}")
    table.add_column("Node", style="bold")
    table.add_column("Classification")
    for identity, value in rows.items():
        style = _CLASS_STYLE[value]
        table.add_row(identity, f"[{style}]{value}[/{style}]")
    console.print(table)

    summary = summarize(plan.classifications)
    console.print("  " + ", ".join(f"{count} {name}" for name, count in summary.items()))
