"""State differ: classify nodes against the previous build's snapshot."""

from __future__ import annotations

import logging
from collections import Counter
from enum import Enum

from .graph import Graph
from .snapshot import Snapshot

logger = logging.getLogger("strata.state")


class Classification(str, Enum):
    UNCHANGED = "unchanged"
    MODIFIED = "modified"
    NEW = "new"
    DELETED = "deleted"


def diff_state(graph: Graph, snapshot: Snapshot) -> dict[str, Classification]:
    """Compare current fingerprints with the snapshot's.

    Fingerprints are node-local, so an upstream change never marks a
    downstream node modified; use the ``+`` selector to reach those.
    """
    result: dict[str, Classification] = {}
    for node in graph:
        prior = snapshot.nodes.get(node.identity)
        if prior is None:
            result[node.identity] = Classification.NEW
        elif prior.fingerprint != node.fingerprint or prior.contract_fingerprint != node.contract_fingerprint:
            result[node.identity] = Classification.MODIFIED
        else:
            result[node.identity] = Classification.UNCHANGED

    for identity in snapshot.nodes:
        if identity not in graph:
            result[identity] = Classification.DELETED

    classifications = dict(sorted(result.items()))
    logger.debug("State diff: %s", summarize(classifications))
    return classifications


def summarize(classifications: dict[str, Classification]) -> dict[str, int]:
    """Count nodes per classification, in a fixed order."""
    counts = Counter(classifications.values())
    return {c.value: counts.get(c, 0) for c in Classification}
