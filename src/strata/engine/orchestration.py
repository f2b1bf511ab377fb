"""Build orchestration: schedule a selected node set over the DAG.

A single dispatcher owns the ready queue (a ``graphlib.TopologicalSorter``
over the selected subgraph) and every node's result slot. Worker threads
only call the execution engine and hand the outcome back through their
future, so no worker ever touches another node's state.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter, deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from graphlib import TopologicalSorter
from pathlib import Path
from typing import Callable, Iterable

from .contracts import ColumnSpec, Verdict, VerdictStatus, normalize_schema, validate_contract
from .errors import ContractViolation, ExecutionError, ExecutionTimeoutError
from .execution import ExecutionEngine, ExecutionOutcome
from .graph import Graph, Node
from .snapshot import Snapshot, carry_forward, write_snapshot

logger = logging.getLogger("strata.orchestrator")


class NodeStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CONTRACT_VIOLATED = "contract_violated"
    SKIPPED = "skipped"


FAILURE_STATUSES = frozenset({NodeStatus.FAILED, NodeStatus.CONTRACT_VIOLATED})

SKIP_NOT_SELECTED = "not selected"
SKIP_CANCELLED = "cancelled"


@dataclass
class ExecutionResult:
    """Per-node outcome of a run."""

    identity: str
    status: NodeStatus = NodeStatus.PENDING
    columns: list[ColumnSpec] | None = None
    verdict: Verdict | None = None
    error: str | None = None
    error_kind: str | None = None
    duration_ms: int = 0
    row_count: int = 0
    skip_reason: str | None = None


@dataclass
class RunResult:
    results: dict[str, ExecutionResult]
    selected: list[str]
    unschedulable: list[str] = field(default_factory=list)
    execution_order: list[str] = field(default_factory=list)
    cancelled: bool = False
    snapshot_path: Path | None = None

    @property
    def success(self) -> bool:
        return not self.cancelled and not any(r.status in FAILURE_STATUSES for r in self.results.values())

    @property
    def completed(self) -> list[str]:
        return [i for i, r in self.results.items() if r.status == NodeStatus.SUCCEEDED]

    def counts(self) -> dict[str, int]:
        counts = Counter(r.status for r in self.results.values())
        return {s.value: counts.get(s, 0) for s in NodeStatus if counts.get(s, 0)}


@dataclass
class _Attempt:
    """One submitted execution. ``started`` is stamped by the worker thread."""

    identity: str
    started: float | None = None


# How often to look again at a submitted node a worker has not picked up yet
_START_POLL = 0.05


class Orchestrator:
    """Runs a selected set of nodes in dependency order on a worker pool.

    Args:
        graph: The project graph.
        engine: Execution engine used for transformation nodes.
        workers: Max number of nodes running at once.
        node_timeout: Seconds a node may run, counted from when a worker picks it
            up, before it is failed with a TimeoutError.
        continue_on_error: Attempt downstream nodes even when an upstream failed.
        on_result: Called on the dispatcher thread with each terminal result.
        cancel_event: Shared event; setting it cancels the run.
    """

    def __init__(
        self,
        graph: Graph,
        engine: ExecutionEngine,
        workers: int = 4,
        node_timeout: float | None = None,
        continue_on_error: bool = False,
        on_result: Callable[[ExecutionResult], None] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self.graph = graph
        self.engine = engine
        self.workers = workers
        self.node_timeout = node_timeout
        self.continue_on_error = continue_on_error
        self.on_result = on_result
        self._cancel = cancel_event or threading.Event()

    def cancel(self) -> None:
        """Stop dispatching new nodes. Running nodes are allowed to finish."""
        if not self._cancel.is_set():
            logger.warning("Cancellation requested; no new nodes will be started")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self, selected: Iterable[str]) -> RunResult:
        requested = sorted(set(selected))
        selected_set = {i for i in requested if i in self.graph}
        unschedulable = [i for i in requested if i not in self.graph]
        if unschedulable:
            logger.info("Not schedulable (not in the current graph): %s", ", ".join(unschedulable))

        results = {
            identity: ExecutionResult(identity=identity)
            if identity in selected_set
            else ExecutionResult(identity=identity, status=NodeStatus.SKIPPED, skip_reason=SKIP_NOT_SELECTED)
            for identity in self.graph.identities
        }
        run = RunResult(results=results, selected=sorted(selected_set), unschedulable=unschedulable)

        sorter: TopologicalSorter[str] = TopologicalSorter()
        for identity in sorted(selected_set):
            sorter.add(identity, *[p for p in self.graph.parents(identity) if p in selected_set])
        sorter.prepare()

        ready: deque[str] = deque()
        running: dict[Future, _Attempt] = {}
        # Timed out, but the worker thread has not returned; still holds a worker slot
        abandoned: dict[Future, str] = {}
        broken: set[str] = set()  # failed, or skipped because an upstream failed

        executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="strata-worker")
        try:
            while sorter.is_active():
                self._fill(sorter, ready, running, abandoned, executor, run, broken, selected_set)
                if not running and (not abandoned or self._cancel.is_set()):
                    break
                self._wait(sorter, running, abandoned, run, broken)
        except KeyboardInterrupt:
            self.cancel()
            self._interrupt_engine(None)
            finished, _ = wait(list(running))
            for fut in finished:
                self._complete(running.pop(fut), fut, run, broken)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        run.cancelled = self._cancel.is_set()
        for result in results.values():
            if result.status in (NodeStatus.PENDING, NodeStatus.READY, NodeStatus.RUNNING):
                result.status = NodeStatus.SKIPPED
                result.skip_reason = SKIP_CANCELLED if run.cancelled else "not run"
        return run

    # --- dispatcher internals ---

    def _fill(
        self,
        sorter: TopologicalSorter[str],
        ready: deque[str],
        running: dict[Future, _Attempt],
        abandoned: dict[Future, str],
        executor: ThreadPoolExecutor,
        run: RunResult,
        broken: set[str],
        selected_set: set[str],
    ) -> None:
        """Move ready nodes to running until workers are busy or nothing is ready."""
        while not self._cancel.is_set():
            for identity in sorted(sorter.get_ready()):
                run.results[identity].status = NodeStatus.READY
                ready.append(identity)
            if not ready or len(running) + len(abandoned) >= self.workers:
                return

            identity = ready.popleft()
            result = run.results[identity]
            failed_upstream = [
                p for p in self.graph.parents(identity) if p in selected_set and p in broken
            ]
            if failed_upstream and not self.continue_on_error:
                result.status = NodeStatus.SKIPPED
                result.skip_reason = f"upstream failure: {', '.join(failed_upstream)}"
                broken.add(identity)
                self._terminate(result, sorter)
                continue

            node = self.graph.node(identity)
            if not node.executable:
                result.status = NodeStatus.SUCCEEDED
                self._terminate(result, sorter)
                continue

            result.status = NodeStatus.RUNNING
            run.execution_order.append(identity)
            logger.debug("Starting %s", identity)
            attempt = _Attempt(identity)
            running[executor.submit(self._execute, node, attempt)] = attempt

    def _execute(self, node: Node, attempt: _Attempt) -> ExecutionOutcome:
        """Worker entry point. The node's timeout clock starts here."""
        attempt.started = time.monotonic()
        return self.engine.execute(node)

    def _wait(
        self,
        sorter: TopologicalSorter[str],
        running: dict[Future, _Attempt],
        abandoned: dict[Future, str],
        run: RunResult,
        broken: set[str],
    ) -> None:
        timeout = None
        if self.node_timeout is not None and running:
            now = time.monotonic()
            deadlines = [a.started + self.node_timeout - now for a in running.values() if a.started is not None]
            if len(deadlines) < len(running):
                deadlines.append(_START_POLL)
            timeout = max(0.0, min(deadlines))

        finished, _ = wait([*running, *abandoned], timeout=timeout, return_when=FIRST_COMPLETED)
        for fut in finished:
            if fut in abandoned:
                logger.debug("Discarding late result of timed-out node %s", abandoned.pop(fut))
                continue
            attempt = running.pop(fut)
            self._complete(attempt, fut, run, broken)
            sorter.done(attempt.identity)

        if self.node_timeout is None:
            return
        now = time.monotonic()
        for fut, attempt in list(running.items()):
            if attempt.started is None or now - attempt.started < self.node_timeout:
                continue
            identity = attempt.identity
            del running[fut]
            abandoned[fut] = identity
            error = ExecutionTimeoutError(identity, self.node_timeout)
            result = run.results[identity]
            result.status = NodeStatus.FAILED
            result.error = str(error)
            result.error_kind = error.kind
            result.duration_ms = int((now - attempt.started) * 1000)
            broken.add(identity)
            self._interrupt_engine(identity)
            self._terminate(result, sorter)

    def _complete(
        self,
        attempt: _Attempt,
        fut: Future,
        run: RunResult,
        broken: set[str],
    ) -> None:
        """Record a finished execution and gate it through the contract validator."""
        identity = attempt.identity
        node = self.graph.node(identity)
        result = run.results[identity]
        started = attempt.started if attempt.started is not None else time.monotonic()
        result.duration_ms = int((time.monotonic() - started) * 1000)
        try:
            outcome: ExecutionOutcome = fut.result()
            columns = normalize_schema(outcome.columns)
        except Exception as e:
            error = e if isinstance(e, ExecutionError) else ExecutionError(str(e))
            result.status = NodeStatus.FAILED
            result.error = str(error)
            result.error_kind = error.kind
            broken.add(identity)
            self._emit(result)
            return

        result.columns = columns
        result.row_count = outcome.row_count
        result.duration_ms = outcome.duration_ms or result.duration_ms
        verdict = validate_contract(node.contract, columns)
        result.verdict = verdict if verdict.declared else None

        if verdict.status == VerdictStatus.FAIL:
            violation = ContractViolation(identity, verdict)
            result.status = NodeStatus.CONTRACT_VIOLATED
            result.error = str(violation)
            result.error_kind = violation.kind
            broken.add(identity)
        else:
            if verdict.status == VerdictStatus.WARN:
                logger.warning(
                    "Advisory contract mismatch for %s: %s",
                    identity, "; ".join(v.message for v in verdict.violations),
                )
            result.status = NodeStatus.SUCCEEDED
        self._emit(result)

    def _terminate(self, result: ExecutionResult, sorter: TopologicalSorter[str]) -> None:
        sorter.done(result.identity)
        self._emit(result)

    def _emit(self, result: ExecutionResult) -> None:
        logger.info("%s %s%s", result.identity, result.status.value, f": {result.error}" if result.error else "")
        if self.on_result is not None:
            self.on_result(result)

    def _interrupt_engine(self, identity: str | None) -> None:
        cancel_hook = getattr(self.engine, "cancel", None)
        if cancel_hook is None:
            return
        try:
            cancel_hook(identity)
        except Exception as e:
            logger.warning("Engine cancel hook failed: %s", e)


def run_build(
    graph: Graph,
    engine: ExecutionEngine,
    selected: Iterable[str],
    snapshot_path: Path,
    previous: Snapshot | None = None,
    project: str = "",
    workers: int = 4,
    node_timeout: float | None = None,
    continue_on_error: bool = False,
    on_result: Callable[[ExecutionResult], None] | None = None,
    cancel_event: threading.Event | None = None,
) -> RunResult:
    """Run the selected nodes, then write the next snapshot.

    The snapshot is written once, at the very end, and never for a cancelled
    run. Only nodes that succeeded take their new fingerprints; every other
    node keeps its previous baseline entry.
    """
    orchestrator = Orchestrator(
        graph,
        engine,
        workers=workers,
        node_timeout=node_timeout,
        continue_on_error=continue_on_error,
        on_result=on_result,
        cancel_event=cancel_event,
    )
    run = orchestrator.run(selected)
    if run.cancelled:
        logger.warning("Build cancelled; snapshot at %s left untouched", snapshot_path)
        return run

    snapshot = carry_forward(graph, previous, run.completed, project=project)
    run.snapshot_path = write_snapshot(snapshot, snapshot_path)
    return run
