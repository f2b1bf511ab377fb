"""DuckDB connection management and the internal run log."""

from __future__ import annotations

from pathlib import Path

import duckdb


def connect(db_path: str | Path) -> duckdb.DuckDBPyConnection:
    """Open a read-write DuckDB connection; the file is created if missing."""
    return duckdb.connect(str(db_path))


def ensure_meta_table(conn: duckdb.DuckDBPyConnection) -> None:
    """Create the internal metadata schema and run log."""
    conn.execute("CREATE SCHEMA IF NOT EXISTS _strata_internal")
    conn.execute("""
        CREATE TABLE IF NOT EXISTS _strata_internal.run_log (
            run_id       VARCHAR DEFAULT gen_random_uuid()::VARCHAR,
            run_type     VARCHAR NOT NULL,
            target       VARCHAR NOT NULL,
            status       VARCHAR NOT NULL,
            started_at   TIMESTAMP DEFAULT current_timestamp,
            duration_ms  BIGINT,
            rows_affected BIGINT DEFAULT 0,
            error        VARCHAR
        )
    """)


def log_run(
    conn: duckdb.DuckDBPyConnection,
    run_type: str,
    target: str,
    status: str,
    duration_ms: int = 0,
    rows_affected: int = 0,
    error: str | None = None,
) -> None:
    """Insert a run log entry."""
    conn.execute(
        """
        INSERT INTO _strata_internal.run_log
            (run_type, target, status, duration_ms, rows_affected, error)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        [run_type, target, status, duration_ms, rows_affected, error],
    )
