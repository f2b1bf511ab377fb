"""Error taxonomy for graph construction, selection, state and execution.

Graph and selection errors abort a build before anything is scheduled.
Node errors are captured per node by the orchestrator and only affect
that node's downstream subtree.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .contracts import Verdict


class StrataError(Exception):
    """Base class for all strata errors."""


# --- Graph construction ---


class GraphError(StrataError):
    """The node definitions do not form a valid DAG."""


class CycleError(GraphError):
    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Cycle detected in dependency graph: {' -> '.join(cycle)}")


class UnresolvedReferenceError(GraphError):
    def __init__(self, missing: list[tuple[str, str]]):
        # (node identity, unresolved reference)
        self.missing = missing
        detail = ", ".join(f"{node} -> {ref}" for node, ref in missing)
        super().__init__(f"Unresolved dependency reference(s): {detail}")


class DuplicateIdentityError(GraphError):
    def __init__(self, identities: list[str]):
        self.identities = identities
        super().__init__(f"Duplicate node identity: {', '.join(identities)}")


# --- Selection ---


class SelectionError(StrataError):
    """A selection expression could not be resolved."""


class SelectorSyntaxError(SelectionError):
    def __init__(self, expression: str, message: str):
        self.expression = expression
        super().__init__(f"Invalid selector {expression!r}: {message}")


class NoBaselineStateError(SelectionError):
    def __init__(self, predicate: str):
        self.predicate = predicate
        super().__init__(
            f"Selector '{predicate}' needs a previous build state to compare against, "
            "but no snapshot was loaded"
        )


# --- State ---


class SnapshotVersionError(StrataError):
    """A persisted snapshot cannot be read by this version."""


class ContractDeclarationError(StrataError):
    """A model declares a contract that cannot be understood."""


# --- Per-node ---


class NodeError(StrataError):
    """Failure isolated to a single node during a run."""

    kind = "NodeError"


class ExecutionError(NodeError):
    kind = "ExecutionError"


class ExecutionTimeoutError(ExecutionError, TimeoutError):
    kind = "TimeoutError"

    def __init__(self, identity: str, timeout: float):
        self.identity = identity
        self.timeout = timeout
        super().__init__(f"{identity} exceeded the node timeout of {timeout:g}s")


class ContractViolation(NodeError):
    kind = "ContractViolation"

    def __init__(self, identity: str, verdict: Verdict):
        self.identity = identity
        self.verdict = verdict
        details = "; ".join(v.message for v in verdict.violations)
        super().__init__(f"Contract violated for {identity}: {details}")
