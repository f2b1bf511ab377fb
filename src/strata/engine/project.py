"""Project-level entry points: discover, plan and build a configured project."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from .discovery import discover_nodes
from .execution import DuckDBEngine, ExecutionEngine
from .graph import Graph, build_graph
from .orchestration import ExecutionResult, RunResult, run_build
from .selector import resolve_selector
from .snapshot import Snapshot, load_snapshot
from .state import Classification, diff_state

if TYPE_CHECKING:
    from strata.config import ProjectConfig

logger = logging.getLogger("strata.project")


@dataclass
class BuildPlan:
    graph: Graph
    snapshot: Snapshot | None
    classifications: dict[str, Classification] | None
    selected: list[str]


def load_graph(config: ProjectConfig) -> Graph:
    """Discover the project's nodes and build the graph."""
    nodes = discover_nodes(
        config.project_dir,
        models_dir=config.models_dir,
        default_enforcement=config.contracts.default_enforcement,
    )
    return build_graph(nodes)


def plan_build(config: ProjectConfig, select: str | None = None) -> BuildPlan:
    """Build the graph, load the baseline, classify, and resolve the selection.

    Without a selector every node in the graph is selected. Raises graph,
    snapshot and selection errors before anything runs.
    """
    graph = load_graph(config)
    snapshot = load_snapshot(config.state_path)
    classifications = diff_state(graph, snapshot) if snapshot is not None else None
    if select is None:
        selected = graph.identities
    else:
        selected = resolve_selector(select, graph, classifications)
    logger.info("Selected %d of %d node(s)%s", len(selected), len(graph), "" if select is None else f" with {select!r}")
    return BuildPlan(graph=graph, snapshot=snapshot, classifications=classifications, selected=selected)


def build_project(
    config: ProjectConfig,
    select: str | None = None,
    engine: ExecutionEngine | None = None,
    workers: int | None = None,
    node_timeout: float | None = None,
    continue_on_error: bool | None = None,
    on_result: Callable[[ExecutionResult], None] | None = None,
    cancel_event: threading.Event | None = None,
    plan: BuildPlan | None = None,
) -> tuple[BuildPlan, RunResult]:
    """Plan and run a build. Arguments left as None fall back to project.yml.

    Pass ``plan`` to run a plan the caller already made (and reported on);
    ``select`` is then ignored.
    """
    if plan is None:
        plan = plan_build(config, select)
    engine = engine or DuckDBEngine(config.db_path)
    run = run_build(
        plan.graph,
        engine,
        plan.selected,
        snapshot_path=config.state_path,
        previous=plan.snapshot,
        project=config.name,
        workers=workers or config.build.workers,
        node_timeout=node_timeout if node_timeout is not None else config.build.node_timeout,
        continue_on_error=(
            continue_on_error if continue_on_error is not None else config.build.continue_on_error
        ),
        on_result=on_result,
        cancel_event=cancel_event,
    )
    return plan, run
