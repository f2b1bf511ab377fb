"""Tests for model discovery and SQL header parsing."""

from __future__ import annotations

import logging

import pytest

from strata.engine import (
    ContractDeclarationError,
    DataType,
    Enforcement,
    NodeKind,
    UnresolvedReferenceError,
    build_graph,
    discover_nodes,
)
from strata.engine.sql_analysis import extract_table_refs, parse_header


@pytest.fixture
def project(tmp_path):
    models = tmp_path / "models"
    for sub in ("staging", "marts"):
        (models / sub).mkdir(parents=True)
    return tmp_path


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


class TestHeaderParsing:
    SQL = (
        "-- config: materialized=table, schema=gold\n"
        "-- depends_on: silver.a, silver.b\n"
        "-- tags: finance, daily\n"
        "-- description: Revenue rollup\n"
        "\n"
        "SELECT * FROM silver.a JOIN silver.b USING (id)\n"
    )

    def test_parse_header(self):
        header = parse_header(self.SQL)
        assert header.config == {"materialized": "table", "schema": "gold"}
        assert header.depends_on == ["silver.a", "silver.b"]
        assert header.tags == ["finance", "daily"]
        assert header.description == "Revenue rollup"
        assert header.query == "SELECT * FROM silver.a JOIN silver.b USING (id)\n"

    def test_no_header(self):
        header = parse_header("SELECT 1 -- trailing note\n")
        assert header.config == {}
        assert header.depends_on == []
        assert header.query == "SELECT 1 -- trailing note\n"

    def test_first_occurrence_wins(self):
        header = parse_header("-- tags: a\n-- tags: b\nSELECT 1")
        assert header.tags == ["a"]
        assert header.query == "SELECT 1"

    def test_unparseable_query_falls_back_to_scan(self):
        sql = "SELECT * FROM staging.orders o JOIN staging.items i ON o.id = i.id WHERE ))"
        assert extract_table_refs(sql) == ["staging.items", "staging.orders"]

    def test_extract_refs_ignores_ctes_and_internal_schemas(self):
        sql = """
            WITH recent AS (SELECT * FROM staging.orders)
            SELECT * FROM recent
            JOIN staging.customers c ON true
            JOIN information_schema.tables t ON true
        """
        assert extract_table_refs(sql) == ["staging.customers", "staging.orders"]

    def test_extract_refs_excludes_self(self):
        assert extract_table_refs("SELECT * FROM marts.x", exclude="marts.x") == []


class TestDiscoverNodes:
    def test_folder_is_schema(self, project):
        _write(project / "models/staging/orders.sql", "SELECT 1 AS id")
        nodes = discover_nodes(project)
        assert [n.identity for n in nodes] == ["staging.orders"]
        node = nodes[0]
        assert node.kind == NodeKind.TRANSFORMATION
        assert node.path == "models/staging/orders.sql"
        assert node.config == {"materialized": "view"}

    def test_schema_override_and_tags(self, project):
        _write(
            project / "models/staging/orders.sql",
            "-- config: materialized=table, schema=raw, tags=pii|daily\n-- tags: core\nSELECT 1 AS id",
        )
        node = discover_nodes(project)[0]
        assert node.identity == "raw.orders"
        assert node.tags == frozenset({"pii", "daily", "core"})
        assert node.config == {"materialized": "table"}

    def test_inferred_dependencies_skip_external_tables(self, project):
        _write(project / "models/staging/orders.sql", "SELECT * FROM landing.orders")
        _write(project / "models/marts/revenue.sql", "SELECT * FROM staging.orders")
        nodes = {n.identity: n for n in discover_nodes(project)}
        assert nodes["staging.orders"].depends_on == ()
        assert nodes["marts.revenue"].depends_on == ("staging.orders",)

    def test_inferred_dependencies_ignore_case(self, project):
        _write(project / "models/Silver/Orders.sql", "SELECT 1 AS id FROM silver.orders_raw")
        _write(project / "models/Gold/Revenue.sql", "SELECT * FROM silver.orders JOIN SILVER.ORDERS o2 USING (id)")
        nodes = {n.identity: n for n in discover_nodes(project)}
        assert set(nodes) == {"Silver.Orders", "Gold.Revenue"}
        assert nodes["Gold.Revenue"].depends_on == ("Silver.Orders",)
        assert nodes["Silver.Orders"].depends_on == ()
        build_graph(list(nodes.values()))

    def test_extract_refs_excludes_self_in_any_case(self):
        assert extract_table_refs("SELECT * FROM marts.x", exclude="Marts.X") == []

    def test_explicit_dependencies_are_strict(self, project):
        _write(project / "models/marts/revenue.sql", "-- depends_on: staging.gone\nSELECT 1 AS id")
        nodes = discover_nodes(project)
        assert nodes[0].depends_on == ("staging.gone",)
        with pytest.raises(UnresolvedReferenceError):
            build_graph(nodes)

    def test_header_change_changes_fingerprint(self, project):
        path = project / "models/staging/orders.sql"
        _write(path, "-- config: materialized=view\nSELECT 1 AS id")
        before = discover_nodes(project)[0].fingerprint
        _write(path, "-- config: materialized=table\nSELECT 1 AS id")
        assert discover_nodes(project)[0].fingerprint != before

    def test_invalid_model_name(self, project):
        _write(project / "models/staging/bad-name.sql", "SELECT 1")
        with pytest.raises(ValueError, match="model name for bad-name.sql"):
            discover_nodes(project)

    def test_missing_models_dir(self, tmp_path):
        assert discover_nodes(tmp_path) == []


class TestProperties:
    def test_contract_description_and_tags(self, project):
        _write(project / "models/marts/revenue.sql", "SELECT 'EU' AS region")
        _write(project / "models/schema.yml", """
models:
  - name: marts.revenue
    description: Revenue per region
    tags: [finance]
    contract:
      enforcement: advisory
      columns:
        - {name: region, data_type: varchar, nullable: false}
""")
        node = discover_nodes(project)[0]
        assert node.description == "Revenue per region"
        assert "finance" in node.tags
        assert node.contract.enforcement == Enforcement.ADVISORY
        assert node.contract.columns[0].data_type == DataType.TEXT

    def test_bare_name_matches_unique_model(self, project):
        _write(project / "models/marts/revenue.sql", "SELECT 1 AS id")
        _write(project / "models/marts/props.yaml", "models:\n  - name: revenue\n    tags: [x]\n")
        assert discover_nodes(project)[0].tags == frozenset({"x"})

    def test_default_enforcement(self, project):
        _write(project / "models/marts/revenue.sql", "SELECT 1 AS id")
        _write(project / "models/schema.yml", """
models:
  - name: marts.revenue
    contract:
      columns: [{name: id, data_type: int}]
""")
        node = discover_nodes(project, default_enforcement="advisory")[0]
        assert node.contract.enforcement == Enforcement.ADVISORY

    def test_bad_contract_names_the_model(self, project):
        _write(project / "models/marts/revenue.sql", "SELECT 1 AS id")
        _write(project / "models/schema.yml", """
models:
  - name: marts.revenue
    contract:
      columns: [{name: id, data_type: hyperloglog}]
""")
        with pytest.raises(ContractDeclarationError, match="marts.revenue"):
            discover_nodes(project)

    def test_unknown_and_ambiguous_names_warn(self, project, caplog):
        _write(project / "models/staging/orders.sql", "SELECT 1 AS id")
        _write(project / "models/marts/orders.sql", "SELECT 1 AS id")
        _write(project / "models/schema.yml", "models:\n  - name: orders\n  - name: nope\n")
        with caplog.at_level(logging.WARNING, logger="strata.discovery"):
            nodes = discover_nodes(project)
        assert len(nodes) == 2
        assert "ambiguous" in caplog.text
        assert "unknown model 'nope'" in caplog.text


class TestExposures:
    def test_exposures_are_leaf_nodes(self, project):
        _write(project / "models/marts/revenue.sql", "SELECT 1 AS id")
        _write(project / "exposures.yml", """
exposures:
  - name: board_deck
    type: dashboard
    owner: finance
    depends_on: [marts.revenue]
""")
        graph = build_graph(discover_nodes(project))
        exposure = graph.node("exposure.board_deck")
        assert exposure.kind == NodeKind.EXPOSURE
        assert not exposure.executable
        assert graph.children("marts.revenue") == ["exposure.board_deck"]
        assert exposure.config["owner"] == "finance"
