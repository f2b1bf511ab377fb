"""Graph store: node definitions, fingerprints, and the immutable DAG.

Dependency references are resolved into integer indices once, when the
graph is built. Everything downstream (selection, scheduling) works on
those indices instead of re-resolving names.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from collections import Counter, deque
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from graphlib import CycleError as _SorterCycleError
from graphlib import TopologicalSorter
from typing import Any, Iterable, Iterator

from .contracts import Contract
from .errors import CycleError, DuplicateIdentityError, UnresolvedReferenceError

logger = logging.getLogger("strata.graph")


def _hash_content(content: str) -> str:
    """Hash content for change detection. Normalizes whitespace."""
    normalized = re.sub(r"\s+", " ", content.strip())
    return hashlib.sha256(normalized.encode()).hexdigest()[:16]


class NodeKind(str, Enum):
    TRANSFORMATION = "transformation"
    EXPOSURE = "exposure"


@dataclass(frozen=True)
class Node:
    """A single named unit in the dependency graph."""

    identity: str  # e.g. "silver.orders" or "exposure.revenue_dashboard"
    kind: NodeKind = NodeKind.TRANSFORMATION
    depends_on: tuple[str, ...] = ()
    tags: frozenset[str] = frozenset()
    path: str = ""  # project-relative POSIX path
    definition: str = ""  # SQL query without config comments
    config: dict[str, Any] = field(default_factory=dict)
    contract: Contract | None = None
    description: str = ""

    @property
    def name(self) -> str:
        return self.identity.rsplit(".", 1)[-1]

    @property
    def schema(self) -> str:
        return self.identity.rsplit(".", 1)[0] if "." in self.identity else ""

    @property
    def executable(self) -> bool:
        return self.kind == NodeKind.TRANSFORMATION

    @cached_property
    def contract_fingerprint(self) -> str:
        return self.contract.fingerprint if self.contract else ""

    @cached_property
    def fingerprint(self) -> str:
        """Node-local content fingerprint: definition, configuration and contract.

        Nothing from upstream nodes is mixed in.
        """
        settings = json.dumps(
            {
                "kind": self.kind.value,
                "config": self.config,
                "tags": sorted(self.tags),
                "contract": self.contract.to_dict() if self.contract else None,
            },
            sort_keys=True,
            default=str,
        )
        return _hash_content(f"{self.definition}\n--\n{settings}")


class Graph:
    """Immutable DAG of nodes. Edge A -> B means B consumes A's output.

    Build instances with ``build_graph``; nodes are stored sorted by identity.
    """

    def __init__(
        self,
        nodes: tuple[Node, ...],
        parents: tuple[tuple[int, ...], ...],
        children: tuple[tuple[int, ...], ...],
    ) -> None:
        self._nodes = nodes
        self._index = {n.identity: i for i, n in enumerate(nodes)}
        self._parents = parents
        self._children = children

    def __contains__(self, identity: object) -> bool:
        return identity in self._index

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes)

    @property
    def identities(self) -> list[str]:
        return [n.identity for n in self._nodes]

    def node(self, identity: str) -> Node:
        return self._nodes[self._index[identity]]

    def parents(self, identity: str) -> list[str]:
        return [self._nodes[i].identity for i in self._parents[self._index[identity]]]

    def children(self, identity: str) -> list[str]:
        return [self._nodes[i].identity for i in self._children[self._index[identity]]]

    def edges(self) -> set[tuple[str, str]]:
        """All (upstream, downstream) pairs."""
        return {
            (self._nodes[p].identity, self._nodes[c].identity)
            for c, parents in enumerate(self._parents)
            for p in parents
        }

    def downstream_closure(self, identities: Iterable[str]) -> set[str]:
        """The given identities plus everything transitively downstream of them."""
        result = set(identities)
        queue = deque(self._index[i] for i in result if i in self._index)
        seen = set(queue)
        while queue:
            idx = queue.popleft()
            for child in self._children[idx]:
                if child not in seen:
                    seen.add(child)
                    result.add(self._nodes[child].identity)
                    queue.append(child)
        return result

    def topological_order(self, identities: Iterable[str] | None = None) -> list[str]:
        """Dependency order, ties broken lexically. Optionally restricted to a subset."""
        subset = set(self.identities if identities is None else identities)
        sorter: TopologicalSorter[str] = TopologicalSorter()
        for identity in sorted(subset):
            sorter.add(identity, *[p for p in self.parents(identity) if p in subset])
        sorter.prepare()
        ordered: list[str] = []
        while sorter.is_active():
            ready = sorted(sorter.get_ready())
            ordered.extend(ready)
            sorter.done(*ready)
        return ordered


def build_graph(definitions: Iterable[Node]) -> Graph:
    """Validate node definitions and build the graph.

    Raises:
        DuplicateIdentityError: two definitions share an identity.
        UnresolvedReferenceError: a dependency names an unknown node, or an exposure.
        CycleError: the dependency relation is cyclic.
    """
    nodes = list(definitions)

    counts = Counter(n.identity for n in nodes)
    duplicates = sorted(identity for identity, count in counts.items() if count > 1)
    if duplicates:
        raise DuplicateIdentityError(duplicates)

    by_identity = {n.identity: n for n in nodes}
    missing: list[tuple[str, str]] = []
    for n in nodes:
        for dep in n.depends_on:
            target = by_identity.get(dep)
            if target is None or target.kind == NodeKind.EXPOSURE:
                missing.append((n.identity, dep))
    if missing:
        raise UnresolvedReferenceError(sorted(missing))

    sorter: TopologicalSorter[str] = TopologicalSorter()
    for n in sorted(nodes, key=lambda n: n.identity):
        sorter.add(n.identity, *n.depends_on)
    try:
        sorter.prepare()
    except _SorterCycleError as e:
        raise CycleError(list(e.args[1])) from None

    ordered = tuple(sorted(nodes, key=lambda n: n.identity))
    index = {n.identity: i for i, n in enumerate(ordered)}
    parents = tuple(tuple(sorted({index[d] for d in n.depends_on})) for n in ordered)
    children_lists: list[list[int]] = [[] for _ in ordered]
    for child, ps in enumerate(parents):
        for p in ps:
            children_lists[p].append(child)
    children = tuple(tuple(c) for c in children_lists)

    logger.debug("Built graph with %d nodes and %d edges", len(ordered), sum(len(p) for p in parents))
    return Graph(ordered, parents, children)
