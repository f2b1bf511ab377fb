"""Tests for state diffing and snapshot persistence."""

from __future__ import annotations

import json

import pytest

from strata.engine import (
    Classification,
    ColumnSpec,
    Contract,
    DataType,
    Node,
    NodeState,
    Snapshot,
    SnapshotVersionError,
    build_graph,
    carry_forward,
    diff_state,
    load_snapshot,
    snapshot_from_graph,
    summarize,
    write_snapshot,
)
from strata.engine.snapshot import SNAPSHOT_FORMAT_VERSION


def _node(identity, *deps, sql="SELECT 1", contract=None):
    return Node(identity=identity, depends_on=tuple(deps), definition=sql, contract=contract)


def _graph(**sql_overrides):
    sql = {"s.base": "SELECT 1 AS id", "s.dim": "SELECT * FROM s.base", "s.mart": "SELECT * FROM s.dim"}
    sql.update(sql_overrides)
    return build_graph([
        _node("s.base", sql=sql["s.base"]),
        _node("s.dim", "s.base", sql=sql["s.dim"]),
        _node("s.mart", "s.dim", sql=sql["s.mart"]),
    ])


class TestDiff:
    def test_round_trip_is_unchanged(self):
        graph = _graph()
        result = diff_state(graph, snapshot_from_graph(graph))
        assert set(result.values()) == {Classification.UNCHANGED}
        assert list(result) == graph.identities

    def test_idempotent(self):
        graph = _graph(**{"s.dim": "SELECT id FROM s.base"})
        snapshot = snapshot_from_graph(_graph())
        assert diff_state(graph, snapshot) == diff_state(graph, snapshot)

    def test_modified_does_not_propagate_downstream(self):
        before = snapshot_from_graph(_graph())
        after = _graph(**{"s.dim": "SELECT id, 1 AS flag FROM s.base"})
        result = diff_state(after, before)
        assert result == {
            "s.base": Classification.UNCHANGED,
            "s.dim": Classification.MODIFIED,
            "s.mart": Classification.UNCHANGED,
        }

    def test_new_and_deleted(self):
        before = snapshot_from_graph(build_graph([_node("s.old"), _node("s.kept")]))
        after = build_graph([_node("s.kept"), _node("s.fresh")])
        result = diff_state(after, before)
        assert result == {
            "s.fresh": Classification.NEW,
            "s.kept": Classification.UNCHANGED,
            "s.old": Classification.DELETED,
        }

    def test_contract_change_alone_is_modified(self):
        cols = (ColumnSpec("id", DataType.INTEGER),)
        before = snapshot_from_graph(build_graph([_node("s.x", sql="SELECT 1 AS id")]))
        after = build_graph([_node("s.x", sql="SELECT 1 AS id", contract=Contract(cols))])
        assert diff_state(after, before) == {"s.x": Classification.MODIFIED}

    def test_summarize(self):
        before = snapshot_from_graph(build_graph([_node("s.old"), _node("s.kept")]))
        after = build_graph([_node("s.kept"), _node("s.fresh")])
        assert summarize(diff_state(after, before)) == {
            "unchanged": 1, "modified": 0, "new": 1, "deleted": 1,
        }


class TestSnapshotStore:
    def test_missing_file_is_no_baseline(self, tmp_path):
        assert load_snapshot(tmp_path / "state.json") is None

    def test_write_and_load(self, tmp_path):
        graph = _graph()
        path = tmp_path / "target" / "state.json"
        write_snapshot(snapshot_from_graph(graph, project="shop"), path)

        loaded = load_snapshot(path)
        assert loaded is not None
        assert loaded.project == "shop"
        assert loaded.nodes["s.dim"].fingerprint == graph.node("s.dim").fingerprint
        assert diff_state(graph, loaded) == {i: Classification.UNCHANGED for i in graph.identities}
        # no temp files left behind
        assert [p.name for p in path.parent.iterdir()] == ["state.json"]

    def test_serialized_form_is_keyed_by_identity(self, tmp_path):
        path = write_snapshot(snapshot_from_graph(_graph()), tmp_path / "state.json")
        raw = json.loads(path.read_text())
        assert raw["format_version"] == SNAPSHOT_FORMAT_VERSION
        assert sorted(raw["nodes"]) == ["s.base", "s.dim", "s.mart"]
        assert set(raw["nodes"]["s.base"]) == {"fingerprint", "contract_fingerprint"}

    def test_other_version_fails_loudly(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"format_version": 99, "nodes": {}}))
        with pytest.raises(SnapshotVersionError, match="format version 99"):
            load_snapshot(path)

    def test_missing_version_fails_loudly(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"nodes": {"s.x": "abc"}}))
        with pytest.raises(SnapshotVersionError):
            load_snapshot(path)

    def test_malformed_content(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        with pytest.raises(SnapshotVersionError):
            load_snapshot(path)

        path.write_text(json.dumps({"format_version": SNAPSHOT_FORMAT_VERSION, "nodes": {"s.x": {"hash": 1}}}))
        with pytest.raises(SnapshotVersionError):
            load_snapshot(path)


class TestCarryForward:
    def test_completed_nodes_update_others_keep_prior(self):
        old = _graph()
        previous = snapshot_from_graph(old)
        current = _graph(**{"s.base": "SELECT 2 AS id", "s.mart": "SELECT id FROM s.dim"})

        nxt = carry_forward(current, previous, completed=["s.mart"])
        assert nxt.nodes["s.mart"].fingerprint == current.node("s.mart").fingerprint
        assert nxt.nodes["s.base"] == previous.nodes["s.base"]
        assert nxt.nodes["s.dim"] == previous.nodes["s.dim"]

    def test_new_node_not_completed_stays_absent(self):
        nxt = carry_forward(build_graph([_node("s.a"), _node("s.b")]), None, completed=["s.a"])
        assert list(nxt.nodes) == ["s.a"]

    def test_deleted_nodes_are_dropped(self):
        previous = Snapshot(nodes={"s.gone": NodeState(fingerprint="abc")})
        nxt = carry_forward(build_graph([_node("s.a")]), previous, completed=[])
        assert nxt.nodes == {}
