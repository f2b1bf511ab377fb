"""Build commands: build, ls."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.table import Table

from strata.cli import (
    EXIT_BUILD_FAILED,
    EXIT_CANCELLED,
    _load_config,
    _plan,
    _resolve_project,
    app,
    console,
)

_STATUS_STYLE = {
    "succeeded": "[green]done[/green]",
    "failed": "[red]fail[/red]",
    "contract_violated": "[red]FAIL[/red]",
    "skipped": "[dim]skip[/dim]",
}


def _print_result(result) -> None:
    """Progress line for a single terminal node."""
    label = f"[bold]{result.identity}[/bold]"
    marker = _STATUS_STYLE.get(result.status.value, result.status.value)
    if result.status.value == "succeeded":
        suffix = f" ({result.row_count:,} rows, {result.duration_ms}ms)" if result.row_count else f" ({result.duration_ms}ms)"
        console.print(f"  {marker}  {label}{suffix}")
        if result.verdict is not None and result.verdict.violations:
            for v in result.verdict.violations:
                console.print(f"         [yellow]warn[/yellow]  contract: {v.message}")
    elif result.status.value == "skipped":
        console.print(f"  {marker}  {label} ({result.skip_reason})")
    elif result.status.value == "contract_violated":
        console.print(f"  {marker}  {label}: contract violated")
        for v in result.verdict.violations:
            console.print(f"         [red]FAIL[/red]  contract: {v.message}")
    else:
        console.print(f"  {marker}  {label}: {result.error}")


def _print_report(run) -> None:
    """Final report: every node's terminal status."""
    table = Table(title="Build Report")
    table.add_column("Node", style="bold")
    table.add_column("Status")
    table.add_column("Contract")
    table.add_column("Detail")

    for identity, result in run.results.items():
        status = result.status.value
        style = {"succeeded": "green", "failed": "red", "contract_violated": "red"}.get(status, "dim")
        contract = result.verdict.status.value if result.verdict is not None else ""
        if result.verdict is not None and result.verdict.violations:
            detail = "; ".join(v.message for v in result.verdict.violations)
        else:
            detail = result.error or result.skip_reason or ""
        table.add_row(identity, f"[{style}]{status}[/{style}]", contract, detail)

    console.print(table)
    console.print("  " + ", ".join(f"{count} {status}" for status, count in run.counts().items()))
    if run.unschedulable:
        console.print(f"  [dim]not in current graph: {', '.join(run.unschedulable)}[/dim]")


@app.command()
def build(
    select: Annotated[Optional[str], typer.Option("--select", "-s", help="Selector, e.g. 'state:modified+' or 'tag:finance'")] = None,
    workers: Annotated[Optional[int], typer.Option("--workers", "-w", min=1, help="Max parallel workers")] = None,
    timeout: Annotated[Optional[float], typer.Option("--timeout", help="Per-model timeout in seconds")] = None,
    continue_on_error: Annotated[Optional[bool], typer.Option("--continue-on-error/--fail-fast", help="Run downstream models even if an upstream failed")] = None,
    env: Annotated[Optional[str], typer.Option("--env", "-e", help="Environment to use (e.g. dev, prod)")] = None,
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """Resolve the selection, build models in dependency order, and record state.

    Exit codes: 0 success, 1 model or contract failures, 2 graph/selection
    errors, 130 cancelled.
    """
    from strata.engine import build_project

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir, env)
    plan = _plan(config, select)

    env_label = f" [dim](env={config.active_environment})[/dim]" if config.active_environment else ""
    console.print(f"[bold]Build[/bold]{env_label}: {len(plan.selected)} of {len(plan.graph)} node(s) selected")
    if plan.snapshot is None:
        console.print("[dim]No previous state found; this build will create the baseline.[/dim]")

    _, run = build_project(
        config,
        workers=workers,
        node_timeout=timeout,
        continue_on_error=continue_on_error,
        on_result=_print_result,
        plan=plan,
    )

    console.print()
    _print_report(run)

    if run.cancelled:
        console.print("[yellow]Build cancelled; state was not updated.[/yellow]")
        raise typer.Exit(EXIT_CANCELLED)
    if not run.success:
        console.print("[red]Build finished with failures.[/red]")
        raise typer.Exit(EXIT_BUILD_FAILED)
    console.print(f"[green]Build completed successfully.[/green] State written to {run.snapshot_path}")


@app.command(name="ls")
def list_nodes(
    select: Annotated[Optional[str], typer.Option("--select", "-s", help="Selector expression")] = None,
    env: Annotated[Optional[str], typer.Option("--env", "-e", help="Environment to use")] = None,
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """List the node identities a selector resolves to, one per line."""
    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir, env)
    plan = _plan(config, select)
    for identity in plan.selected:
        if identity in plan.graph:
            console.print(identity)
        else:
            console.print(f"{identity} [dim](deleted)[/dim]")
