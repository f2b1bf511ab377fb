"""Snapshot storage: per-node fingerprints from the last successful build.

A snapshot is the baseline that ``state:*`` selectors diff against. It is
written once at the end of a build that was not cancelled and is replaced
wholesale by the next one.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import SnapshotVersionError
from .graph import Graph

logger = logging.getLogger("strata.snapshot")

SNAPSHOT_FORMAT_VERSION = 1


class NodeState(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    fingerprint: str
    contract_fingerprint: str = ""


class Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    format_version: int = SNAPSHOT_FORMAT_VERSION
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    project: str = ""
    nodes: dict[str, NodeState] = Field(default_factory=dict)


def snapshot_from_graph(graph: Graph, project: str = "") -> Snapshot:
    """Record the current fingerprint of every node in the graph."""
    return Snapshot(
        project=project,
        nodes={
            n.identity: NodeState(fingerprint=n.fingerprint, contract_fingerprint=n.contract_fingerprint)
            for n in graph
        },
    )


def carry_forward(
    graph: Graph,
    previous: Snapshot | None,
    completed: Iterable[str],
    project: str = "",
) -> Snapshot:
    """Build the next baseline after a run.

    Nodes that completed get their current fingerprints. Every other node
    still in the graph keeps its previous entry (if it had one), so a node
    that did not run, or failed, is compared against its last good build
    next time. Nodes no longer in the graph are dropped.
    """
    done = set(completed)
    prior = previous.nodes if previous else {}
    nodes: dict[str, NodeState] = {}
    for n in graph:
        if n.identity in done:
            nodes[n.identity] = NodeState(
                fingerprint=n.fingerprint, contract_fingerprint=n.contract_fingerprint,
            )
        elif n.identity in prior:
            nodes[n.identity] = prior[n.identity]
    return Snapshot(project=project, nodes=nodes)


def load_snapshot(path: Path) -> Snapshot | None:
    """Load a snapshot file. Returns None when no baseline exists yet.

    Raises SnapshotVersionError for unreadable files or other format versions,
    so a stale format never silently misclassifies nodes.
    """
    path = Path(path)
    if not path.exists():
        logger.debug("No snapshot at %s", path)
        return None

    try:
        raw = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise SnapshotVersionError(f"Cannot read snapshot {path}: {e}") from e

    if not isinstance(raw, dict) or "format_version" not in raw:
        raise SnapshotVersionError(f"Snapshot {path} has no format_version")
    version = raw["format_version"]
    if version != SNAPSHOT_FORMAT_VERSION:
        raise SnapshotVersionError(
            f"Snapshot {path} has format version {version!r}, expected {SNAPSHOT_FORMAT_VERSION}"
        )

    try:
        snapshot = Snapshot.model_validate(raw)
    except ValidationError as e:
        raise SnapshotVersionError(f"Snapshot {path} does not match format version {version}: {e}") from e

    logger.debug("Loaded snapshot %s with %d nodes", path, len(snapshot.nodes))
    return snapshot


def write_snapshot(snapshot: Snapshot, path: Path) -> Path:
    """Write a snapshot atomically (temp file + rename)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(snapshot.model_dump(mode="json"), indent=2, sort_keys=True)

    fd, tmp_name = tempfile.mkstemp(prefix=".state-", suffix=".json", dir=path.parent)
    try:
        with os.fdopen(fd, "w") as f:
            f.write(payload)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.info("Wrote snapshot %s (%d nodes)", path, len(snapshot.nodes))
    return path
