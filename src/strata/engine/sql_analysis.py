"""Model file headers and upstream reference inference.

A model file is a single SELECT preceded by metadata line comments::

    -- config: materialized=table, schema=silver
    -- depends_on: bronze.orders, bronze.customers
    -- tags: finance, daily
    -- description: Cleaned orders

When ``depends_on`` is absent, upstream references are read from the
query's AST instead.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable

import sqlglot
from sqlglot import exp

logger = logging.getLogger("strata.sql_analysis")

# Schemas that are never real upstream dependencies
SKIP_SCHEMAS = frozenset({"information_schema", "_strata_internal", "pg_catalog", "sys"})

_HEADER_RE = re.compile(r"^\s*--\s*(config|depends_on|tags|description)\s*:\s*(.*?)\s*$")
_FROM_JOIN_RE = re.compile(r"\b(?:FROM|JOIN)\s+([A-Za-z_]\w*)\.([A-Za-z_]\w*)\b", re.IGNORECASE)


@dataclass
class ModelHeader:
    """Metadata parsed from a model file, plus the query without it."""

    config: dict[str, str] = field(default_factory=dict)
    depends_on: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    description: str = ""
    query: str = ""


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_header(sql: str) -> ModelHeader:
    """Split a model file into header metadata and the query body.

    The first occurrence of each key wins; every header line is removed
    from the query.
    """
    header = ModelHeader()
    seen: set[str] = set()
    body: list[str] = []
    for line in sql.split("\n"):
        match = _HEADER_RE.match(line)
        if match is None:
            body.append(line)
            continue
        key, value = match.groups()
        if key in seen:
            continue
        seen.add(key)
        if key == "config":
            for pair in _split_list(value):
                name, sep, setting = pair.partition("=")
                if sep:
                    header.config[name.strip()] = setting.strip()
        elif key == "depends_on":
            header.depends_on = _split_list(value)
        elif key == "tags":
            header.tags = _split_list(value)
        else:
            header.description = value

    while body and not body[0].strip():
        body.pop(0)
    header.query = "\n".join(body)
    return header


def _qualified_refs(pairs: Iterable[tuple[str, str]], exclude: str | None) -> list[str]:
    refs: set[str] = set()
    exclude = exclude.lower() if exclude else None
    for schema, name in pairs:
        schema, name = (schema or "").lower(), (name or "").lower()
        if not schema or not name or schema in SKIP_SCHEMAS:
            continue
        ref = f"{schema}.{name}"
        if ref != exclude:
            refs.add(ref)
    return sorted(refs)


def extract_table_refs(sql: str, *, exclude: str | None = None) -> list[str]:
    """Schema-qualified tables a query reads from, sorted.

    CTE names and system schemas are ignored. Queries sqlglot cannot parse
    fall back to a FROM/JOIN scan.
    """
    try:
        tree = sqlglot.parse_one(sql, read="duckdb")
    except sqlglot.errors.SqlglotError as e:
        logger.debug("sqlglot could not parse query, scanning FROM/JOIN instead: %s", e)
        without_comments = re.sub(r"--[^\n]*", "", sql)
        return _qualified_refs((m.groups() for m in _FROM_JOIN_RE.finditer(without_comments)), exclude)

    ctes = {cte.alias.lower() for cte in tree.find_all(exp.CTE) if cte.alias}
    tables = (
        (table.db, table.name)
        for table in tree.find_all(exp.Table)
        if table.name.lower() not in ctes and (table.db or "").lower() not in ctes
    )
    return _qualified_refs(tables, exclude)
