"""Graph resolution, state diffing, and contract gating for SQL model builds.

This package re-exports the public symbols:
    from strata.engine import build_graph, resolve_selector, diff_state, run_build, ...
"""

from __future__ import annotations

# Errors
from .errors import (
    ContractDeclarationError,
    ContractViolation,
    CycleError,
    DuplicateIdentityError,
    ExecutionError,
    ExecutionTimeoutError,
    GraphError,
    NoBaselineStateError,
    NodeError,
    SelectionError,
    SelectorSyntaxError,
    SnapshotVersionError,
    StrataError,
    UnresolvedReferenceError,
)

# Graph store
from .graph import Graph, Node, NodeKind, build_graph

# Contracts
from .contracts import (
    ColumnSpec,
    Contract,
    DataType,
    Enforcement,
    Verdict,
    VerdictStatus,
    Violation,
    normalize_schema,
    normalize_type,
    parse_contract,
    validate_contract,
)

# State
from .snapshot import Snapshot, NodeState, carry_forward, load_snapshot, snapshot_from_graph, write_snapshot
from .state import Classification, diff_state, summarize
from .selector import parse_selector, resolve_selector

# Execution and orchestration
from .execution import DuckDBEngine, ExecutionEngine, ExecutionOutcome
from .orchestration import ExecutionResult, NodeStatus, Orchestrator, RunResult, run_build

# Discovery and project entry points
from .discovery import discover_nodes
from .project import BuildPlan, build_project, load_graph, plan_build

__all__ = [
    # Errors
    "ContractDeclarationError",
    "ContractViolation",
    "CycleError",
    "DuplicateIdentityError",
    "ExecutionError",
    "ExecutionTimeoutError",
    "GraphError",
    "NoBaselineStateError",
    "NodeError",
    "SelectionError",
    "SelectorSyntaxError",
    "SnapshotVersionError",
    "StrataError",
    "UnresolvedReferenceError",
    # Graph
    "Graph",
    "Node",
    "NodeKind",
    "build_graph",
    # Contracts
    "ColumnSpec",
    "Contract",
    "DataType",
    "Enforcement",
    "Verdict",
    "VerdictStatus",
    "Violation",
    "normalize_schema",
    "normalize_type",
    "parse_contract",
    "validate_contract",
    # State
    "Classification",
    "NodeState",
    "Snapshot",
    "carry_forward",
    "diff_state",
    "load_snapshot",
    "snapshot_from_graph",
    "summarize",
    "write_snapshot",
    "parse_selector",
    "resolve_selector",
    # Execution
    "DuckDBEngine",
    "ExecutionEngine",
    "ExecutionOutcome",
    "ExecutionResult",
    "NodeStatus",
    "Orchestrator",
    "RunResult",
    "run_build",
    # Project
    "BuildPlan",
    "build_project",
    "discover_nodes",
    "load_graph",
    "plan_build",
]
