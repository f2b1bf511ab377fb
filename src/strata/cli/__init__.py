"""CLI interface for strata.

Split into modules by command group. The Typer app and shared helpers live
here; each module registers its commands.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from strata import setup_logging

app = typer.Typer(
    name="strata",
    help="Selective, state-aware builds for SQL model DAGs on DuckDB.",
    no_args_is_help=True,
)
console = Console()

# Exit codes
EXIT_OK = 0
EXIT_BUILD_FAILED = 1
EXIT_RESOLUTION_ERROR = 2
EXIT_CANCELLED = 130


@app.callback()
def main(
    log_level: Annotated[str, typer.Option("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)")] = "WARNING",
) -> None:
    """Selective, state-aware builds for SQL model DAGs on DuckDB."""
    setup_logging(log_level)


def _resolve_project(project_dir: Path | None = None) -> Path:
    project_dir = project_dir or Path.cwd()
    if not (project_dir / "project.yml").exists():
        console.print(f"[red]No project.yml found in {project_dir}[/red]")
        console.print("Run [bold]strata init[/bold] to create a new project.")
        raise typer.Exit(EXIT_RESOLUTION_ERROR)
    return project_dir


def _load_config(project_dir: Path, env: str | None = None):
    """Load project config with optional environment override."""
    import yaml
    from pydantic import ValidationError

    from strata.config import load_project

    try:
        return load_project(project_dir, env=env)
    except (ValidationError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid project.yml:[/red] {e}")
        raise typer.Exit(EXIT_RESOLUTION_ERROR)


def _plan(config, select: str | None):
    """Plan a build, turning graph/selection/state errors into exit code 2."""
    import yaml

    from strata.engine import StrataError, plan_build

    try:
        return plan_build(config, select)
    except (StrataError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]{type(e).__name__}:[/red] {e}")
        raise typer.Exit(EXIT_RESOLUTION_ERROR)


# Import submodules so they register their commands on `app`.
from strata.cli import build  # noqa: E402, F401
from strata.cli import project  # noqa: E402, F401
from strata.cli import state  # noqa: E402, F401
