"""Execution engine boundary and the DuckDB implementation.

The orchestrator only sees ``ExecutionEngine``: give it a node, get back
the realized output schema, or an exception. Everything warehouse-specific
lives behind it.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import duckdb

from .database import connect, ensure_meta_table, log_run
from .graph import Node

logger = logging.getLogger("strata.execution")


@dataclass
class ExecutionOutcome:
    """What an engine reports after building a node.

    ``columns`` is loosely typed schema metadata (dicts or tuples); the
    orchestrator normalizes it before contract validation.
    """

    columns: list[Any] = field(default_factory=list)
    row_count: int = 0
    duration_ms: int = 0


@runtime_checkable
class ExecutionEngine(Protocol):
    def execute(self, node: Node) -> ExecutionOutcome:
        """Build a node. Raises on failure."""
        ...


class DuckDBEngine:
    """Materializes SQL models as views or tables in a DuckDB file.

    Each execution uses its own connection so independent models can run
    on separate worker threads.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        self._active: dict[str, duckdb.DuckDBPyConnection] = {}
        conn = connect(self.db_path)
        try:
            ensure_meta_table(conn)
        finally:
            conn.close()

    def execute(self, node: Node) -> ExecutionOutcome:
        materialized = node.config.get("materialized", "view")
        if materialized not in ("view", "table"):
            raise ValueError(f"Unknown materialization: {materialized}")

        conn = connect(self.db_path)
        with self._lock:
            self._active[node.identity] = conn
        start = time.perf_counter()
        try:
            with self._lock:
                # Concurrent CREATE SCHEMA on the same name conflicts in DuckDB
                conn.execute(f"CREATE SCHEMA IF NOT EXISTS {node.schema}")

            kind = "VIEW" if materialized == "view" else "TABLE"
            conn.execute(f"CREATE OR REPLACE {kind} {node.identity} AS\n{node.definition}")

            columns = self._realized_columns(conn, node)
            row_count = 0
            if materialized == "table":
                result = conn.execute(f"SELECT count(*) FROM {node.identity}").fetchone()
                row_count = result[0] if result else 0

            duration_ms = int((time.perf_counter() - start) * 1000)
            log_run(conn, "build", node.identity, "success", duration_ms, row_count)
            return ExecutionOutcome(columns=columns, row_count=row_count, duration_ms=duration_ms)
        except Exception as e:
            try:
                log_run(conn, "build", node.identity, "error", error=str(e))
            except duckdb.Error as e2:
                logger.debug("Failed to log run error: %s", e2)
            raise
        finally:
            with self._lock:
                self._active.pop(node.identity, None)
            conn.close()

    def _realized_columns(self, conn: duckdb.DuckDBPyConnection, node: Node) -> list[dict]:
        """Column names and types from the catalog, nullability from the data."""
        rows = conn.execute(
            "SELECT column_name, data_type FROM information_schema.columns "
            "WHERE table_schema = ? AND table_name = ? ORDER BY ordinal_position",
            [node.schema, node.name],
        ).fetchall()
        if not rows:
            return []

        null_exprs = ", ".join(f'COUNT(*) FILTER (WHERE "{name}" IS NULL)' for name, _ in rows)
        null_counts = conn.execute(f"SELECT {null_exprs} FROM {node.identity}").fetchone()
        return [
            {"name": name, "data_type": data_type, "nullable": bool(nulls)}
            for (name, data_type), nulls in zip(rows, null_counts)
        ]

    def cancel(self, identity: str | None = None) -> None:
        """Interrupt the running query of one node, or of every node."""
        with self._lock:
            targets = [c for i, c in self._active.items() if identity is None or i == identity]
        for conn in targets:
            try:
                conn.interrupt()
            except duckdb.Error as e:
                logger.debug("Interrupt failed: %s", e)
