"""Tests for the DuckDB execution engine."""

from __future__ import annotations

import duckdb
import pytest

from strata.engine import (
    ColumnSpec,
    Contract,
    DataType,
    DuckDBEngine,
    ExecutionEngine,
    Node,
    NodeStatus,
    build_graph,
    normalize_schema,
    run_build,
)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.duckdb"


def _model(identity, sql, materialized="view", *deps, contract=None):
    return Node(
        identity=identity,
        depends_on=tuple(deps),
        definition=sql,
        config={"materialized": materialized},
        contract=contract,
    )


def _run_log(db_path):
    conn = duckdb.connect(str(db_path))
    try:
        return conn.execute(
            "SELECT target, status, error FROM _strata_internal.run_log ORDER BY started_at"
        ).fetchall()
    finally:
        conn.close()


class TestDuckDBEngine:
    def test_satisfies_engine_protocol(self, db_path):
        assert isinstance(DuckDBEngine(db_path), ExecutionEngine)

    def test_view_realized_schema(self, db_path):
        engine = DuckDBEngine(db_path)
        outcome = engine.execute(_model("staging.orders", "SELECT 1 AS id, 'x' AS label, 2.5::DOUBLE AS score"))

        assert normalize_schema(outcome.columns) == [
            ColumnSpec("id", DataType.INTEGER, False),
            ColumnSpec("label", DataType.TEXT, False),
            ColumnSpec("score", DataType.FLOAT, False),
        ]
        assert outcome.row_count == 0

    def test_table_row_count(self, db_path):
        engine = DuckDBEngine(db_path)
        outcome = engine.execute(_model("marts.numbers", "SELECT range AS n FROM range(5)", "table"))
        assert outcome.row_count == 5

        conn = duckdb.connect(str(db_path))
        try:
            assert conn.execute("SELECT count(*) FROM marts.numbers").fetchone()[0] == 5
        finally:
            conn.close()

    def test_nullability_comes_from_data(self, db_path):
        engine = DuckDBEngine(db_path)
        outcome = engine.execute(_model(
            "staging.people",
            "SELECT * FROM (VALUES (1, 'a'), (2, NULL)) AS t(id, nickname)",
            "table",
        ))
        nullable = {c["name"]: c["nullable"] for c in outcome.columns}
        assert nullable == {"id": False, "nickname": True}

    def test_rebuild_replaces(self, db_path):
        engine = DuckDBEngine(db_path)
        engine.execute(_model("staging.x", "SELECT 1 AS a", "table"))
        outcome = engine.execute(_model("staging.x", "SELECT 1 AS a, 2 AS b", "table"))
        assert [c["name"] for c in outcome.columns] == ["a", "b"]

    def test_success_is_logged(self, db_path):
        engine = DuckDBEngine(db_path)
        engine.execute(_model("staging.ok", "SELECT 1 AS a"))
        assert _run_log(db_path) == [("staging.ok", "success", None)]

    def test_error_is_logged_and_raised(self, db_path):
        engine = DuckDBEngine(db_path)
        with pytest.raises(duckdb.Error):
            engine.execute(_model("staging.bad", "SELECT * FROM nowhere.missing"))

        rows = _run_log(db_path)
        assert len(rows) == 1
        target, status, error = rows[0]
        assert (target, status) == ("staging.bad", "error")
        assert "missing" in error

    def test_unknown_materialization(self, db_path):
        engine = DuckDBEngine(db_path)
        with pytest.raises(ValueError, match="Unknown materialization"):
            engine.execute(_model("staging.x", "SELECT 1", "incremental"))

    def test_cancel_without_running_queries(self, db_path):
        DuckDBEngine(db_path).cancel()


class TestBuildOnDuckDB:
    def test_contract_gate_on_real_schema(self, db_path, tmp_path):
        contract = Contract((
            ColumnSpec("id", DataType.INTEGER, nullable=False),
            ColumnSpec("region", DataType.TEXT, nullable=False),
        ))
        graph = build_graph([
            _model("staging.customers", "SELECT * FROM (VALUES (1, 'EU'), (2, NULL)) AS t(id, region)", "table"),
            _model("marts.customers", "SELECT * FROM staging.customers", "table", "staging.customers",
                   contract=contract),
            _model("marts.report", "SELECT count(*) AS n FROM marts.customers", "view", "marts.customers"),
        ])

        run = run_build(graph, DuckDBEngine(db_path), graph.identities, tmp_path / "state.json", workers=1)

        assert run.results["staging.customers"].status == NodeStatus.SUCCEEDED
        gated = run.results["marts.customers"]
        assert gated.status == NodeStatus.CONTRACT_VIOLATED
        assert [(v.column, v.kind) for v in gated.verdict.violations] == [("region", "nullability")]
        assert run.results["marts.report"].status == NodeStatus.SKIPPED

    def test_parallel_build(self, db_path, tmp_path):
        graph = build_graph([
            _model("bronze.a", "SELECT 1 AS id", "table"),
            _model("bronze.b", "SELECT 2 AS id", "table"),
            _model("bronze.c", "SELECT 3 AS id", "table"),
            _model("silver.abc", "SELECT * FROM bronze.a UNION ALL SELECT * FROM bronze.b "
                   "UNION ALL SELECT * FROM bronze.c", "table", "bronze.a", "bronze.b", "bronze.c"),
        ])

        run = run_build(graph, DuckDBEngine(db_path), graph.identities, tmp_path / "state.json", workers=3)

        assert run.success
        assert run.results["silver.abc"].row_count == 3
