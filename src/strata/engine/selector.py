"""Selector resolution: turn a selection expression into node identities.

Grammar::

    expression := token (WS token)* ["+"]
    token      := atom ("," atom)*
    atom       := method ":" value | name
    method     := tag | name | path-prefix | state

Tokens are unioned, atoms inside a token are intersected, and a trailing
``+`` adds every transitive downstream consumer of the combined set. The
closure is applied last, over the whole expression.

    state:modified+                 modified nodes and everything downstream
    tag:finance,state:new           new nodes tagged finance
    name:orders path-prefix:models/gold
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .errors import NoBaselineStateError, SelectorSyntaxError
from .graph import Graph
from .state import Classification

logger = logging.getLogger("strata.selector")

METHODS = ("tag", "name", "path-prefix", "state")
STATE_VALUES = {
    "modified": Classification.MODIFIED,
    "new": Classification.NEW,
    "deleted": Classification.DELETED,
}


@dataclass(frozen=True)
class Atom:
    method: str
    value: str

    def __str__(self) -> str:
        return f"{self.method}:{self.value}"


@dataclass(frozen=True)
class Selector:
    """Parsed expression: a union of intersections, plus the closure flag."""

    terms: tuple[tuple[Atom, ...], ...]
    downstream: bool = False

    @property
    def uses_state(self) -> bool:
        return any(a.method == "state" for term in self.terms for a in term)


def _parse_atom(expression: str, text: str) -> Atom:
    if not text:
        raise SelectorSyntaxError(expression, "empty selector term")
    if "+" in text:
        raise SelectorSyntaxError(expression, "'+' is only allowed at the end of the expression")
    if ":" not in text:
        return Atom("name", text)

    method, _, value = text.partition(":")
    if method not in METHODS:
        raise SelectorSyntaxError(
            expression, f"unknown method '{method}' (expected one of: {', '.join(METHODS)})"
        )
    if not value:
        raise SelectorSyntaxError(expression, f"'{method}:' needs a value")
    if method == "state" and value not in STATE_VALUES:
        raise SelectorSyntaxError(
            expression, f"unknown state '{value}' (expected one of: {', '.join(STATE_VALUES)})"
        )
    return Atom(method, value)


def parse_selector(expression: str) -> Selector:
    """Parse a selection expression. Raises SelectorSyntaxError."""
    text = (expression or "").strip()
    if not text:
        raise SelectorSyntaxError(expression, "empty expression")

    downstream = text.endswith("+")
    if downstream:
        text = text[:-1]
        if not text or text[-1].isspace() or text[-1] == ",":
            raise SelectorSyntaxError(expression, "'+' must directly follow a selector term")

    terms = tuple(
        tuple(_parse_atom(expression, part) for part in token.split(","))
        for token in text.split()
    )
    return Selector(terms=terms, downstream=downstream)


def _evaluate_atom(
    atom: Atom,
    graph: Graph,
    classifications: dict[str, Classification] | None,
) -> set[str]:
    if atom.method == "state":
        if classifications is None:
            raise NoBaselineStateError(str(atom))
        wanted = STATE_VALUES[atom.value]
        return {identity for identity, c in classifications.items() if c == wanted}
    if atom.method == "tag":
        return {n.identity for n in graph if atom.value in n.tags}
    if atom.method == "name":
        return {n.identity for n in graph if atom.value in (n.identity, n.name)}
    prefix = atom.value.removeprefix("./")
    return {n.identity for n in graph if n.path.startswith(prefix)}


def resolve_selector(
    expression: str,
    graph: Graph,
    classifications: dict[str, Classification] | None = None,
) -> list[str]:
    """Resolve an expression into a sorted list of node identities.

    Raises:
        SelectorSyntaxError: the expression is malformed.
        NoBaselineStateError: a ``state:`` predicate is used without a snapshot.
    """
    selector = parse_selector(expression)

    selected: set[str] = set()
    for term in selector.terms:
        matched: set[str] | None = None
        for atom in term:
            found = _evaluate_atom(atom, graph, classifications)
            matched = found if matched is None else matched & found
        selected |= matched or set()

    if selector.downstream:
        selected = graph.downstream_closure(selected)

    result = sorted(selected)
    logger.debug("Selector %r resolved to %d node(s)", expression, len(result))
    return result
