"""Project commands: init, validate."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer

from strata.cli import EXIT_RESOLUTION_ERROR, _load_config, _resolve_project, app, console


@app.command()
def init(
    name: Annotated[str, typer.Argument(help="Project name")] = "my-project",
    directory: Annotated[Optional[Path], typer.Option("--dir", "-d", help="Target directory")] = None,
) -> None:
    """Scaffold a new strata project with sample models and a contract."""
    from strata.templates import (
        PROJECT_YML_TEMPLATE,
        SAMPLE_EXPOSURES_YML,
        SAMPLE_MARTS_REVENUE_SQL,
        SAMPLE_SCHEMA_YML,
        SAMPLE_STAGING_CUSTOMERS_SQL,
        SAMPLE_STAGING_ORDERS_SQL,
    )

    target = directory or Path.cwd() / name
    if (target / "project.yml").exists():
        console.print(f"[red]A project already exists at {target}[/red]")
        raise typer.Exit(1)

    dirs = ["models/staging", "models/marts", "target"]
    for d in dirs:
        (target / d).mkdir(parents=True, exist_ok=True)

    (target / "project.yml").write_text(PROJECT_YML_TEMPLATE.format(name=name))
    (target / "models" / "staging" / "orders.sql").write_text(SAMPLE_STAGING_ORDERS_SQL)
    (target / "models" / "staging" / "customers.sql").write_text(SAMPLE_STAGING_CUSTOMERS_SQL)
    (target / "models" / "marts" / "revenue.sql").write_text(SAMPLE_MARTS_REVENUE_SQL)
    (target / "models" / "schema.yml").write_text(SAMPLE_SCHEMA_YML)
    (target / "exposures.yml").write_text(SAMPLE_EXPOSURES_YML)
    (target / ".gitignore").write_text("warehouse.duckdb\nwarehouse.duckdb.wal\ntarget/\n.env\n")

    console.print(f"[green]Project '{name}' created at {target}[/green]")
    console.print()
    console.print("Quick start:")
    console.print(f"  cd {name}")
    console.print("  strata build                       # build everything, record state")
    console.print("  strata build -s 'state:modified+'  # rebuild what changed and its consumers")


@app.command()
def validate(
    env: Annotated[Optional[str], typer.Option("--env", "-e", help="Environment to use")] = None,
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """Validate project.yml, model discovery, and the dependency graph."""
    import yaml

    from strata.engine import NodeKind, StrataError, load_graph

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir, env)
    console.print("[green]project.yml[/green] parsed successfully")

    try:
        graph = load_graph(config)
    except (StrataError, ValueError, yaml.YAMLError) as e:
        console.print(f"  [red]error[/red] {type(e).__name__}: {e}")
        console.print("[red]Validation failed[/red]")
        raise typer.Exit(EXIT_RESOLUTION_ERROR)

    models = [n for n in graph if n.kind == NodeKind.TRANSFORMATION]
    exposures = [n for n in graph if n.kind == NodeKind.EXPOSURE]
    contracts = [n for n in models if n.contract is not None]
    console.print(
        f"[green]DAG[/green] {len(models)} models, {len(exposures)} exposures, "
        f"{len(graph.edges())} edges, no circular dependencies"
    )
    console.print(f"[green]Contracts[/green] {len(contracts)} declared")
    console.print()
    console.print("[green]Validation passed[/green]")
