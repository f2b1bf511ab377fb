"""Output-schema contracts.

A model may declare the columns it promises to produce::

    models:
      - name: silver.orders
        contract:
          enforcement: strict      # or advisory
          columns:
            - {name: order_id, data_type: integer, nullable: false}
            - {name: status, data_type: text}

After a model is built, its realized schema is normalized into the same
closed type set and compared column by column. Strict contracts fail the
node on any mismatch; advisory contracts only warn.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from .errors import ContractDeclarationError


class DataType(str, Enum):
    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    TEXT = "text"
    BOOLEAN = "boolean"
    DATE = "date"
    TIMESTAMP = "timestamp"
    TIME = "time"
    INTERVAL = "interval"
    BLOB = "blob"
    UUID = "uuid"
    JSON = "json"
    LIST = "list"
    STRUCT = "struct"
    MAP = "map"
    OTHER = "other"


class Enforcement(str, Enum):
    STRICT = "strict"
    ADVISORY = "advisory"


class VerdictStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


_TYPE_ALIASES: dict[str, DataType] = {}
for _dtype, _names in {
    DataType.INTEGER: (
        "int", "integer", "int1", "int2", "int4", "int8", "int16", "int32", "int64", "int128",
        "tinyint", "smallint", "bigint", "hugeint", "utinyint", "usmallint", "uinteger",
        "ubigint", "uhugeint", "long", "short", "signed",
    ),
    DataType.FLOAT: ("float", "float4", "float8", "real", "double", "double precision"),
    DataType.DECIMAL: ("decimal", "numeric"),
    DataType.TEXT: ("text", "varchar", "string", "char", "bpchar", "nvarchar", "character varying"),
    DataType.BOOLEAN: ("bool", "boolean", "logical"),
    DataType.DATE: ("date",),
    DataType.TIMESTAMP: (
        "timestamp", "datetime", "timestamptz", "timestamp with time zone",
        "timestamp without time zone", "timestamp_s", "timestamp_ms", "timestamp_ns",
    ),
    DataType.TIME: ("time", "timetz", "time with time zone"),
    DataType.INTERVAL: ("interval",),
    DataType.BLOB: ("blob", "bytea", "binary", "varbinary"),
    DataType.UUID: ("uuid",),
    DataType.JSON: ("json",),
    DataType.LIST: ("list", "array"),
    DataType.STRUCT: ("struct",),
    DataType.MAP: ("map",),
}.items():
    for _name in _names:
        _TYPE_ALIASES[_name] = _dtype

_PARAMS_RE = re.compile(r"\s*\(.*\)\s*$")


def normalize_type(raw: Any) -> DataType:
    """Map a loosely typed SQL type spelling onto the canonical type set.

    Parameters are dropped (``DECIMAL(18,2)`` -> decimal), ``X[]`` is a list.
    Anything unrecognized becomes ``DataType.OTHER``.
    """
    if isinstance(raw, DataType):
        return raw
    text = str(raw or "").strip().lower()
    if not text:
        return DataType.OTHER
    if text.endswith("]"):
        return DataType.LIST
    for composite in ("struct", "map", "union"):
        if text.startswith(composite + "("):
            return _TYPE_ALIASES.get(composite, DataType.OTHER)
    text = _PARAMS_RE.sub("", text)
    text = re.sub(r"\s+", " ", text)
    return _TYPE_ALIASES.get(text, DataType.OTHER)


@dataclass(frozen=True)
class ColumnSpec:
    """A column with a canonical type. ``nullable=None`` means unspecified."""

    name: str
    data_type: DataType
    nullable: bool | None = None

    @property
    def key(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class Contract:
    """A declared output schema plus its enforcement mode."""

    columns: tuple[ColumnSpec, ...]
    enforcement: Enforcement = Enforcement.STRICT

    def to_dict(self) -> dict:
        return {
            "enforcement": self.enforcement.value,
            "columns": [
                {"name": c.name, "data_type": c.data_type.value, "nullable": c.nullable}
                for c in self.columns
            ],
        }

    @property
    def fingerprint(self) -> str:
        payload = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode()).hexdigest()[:16]


@dataclass(frozen=True)
class Violation:
    column: str
    kind: str  # "missing", "unexpected", "type_mismatch", "nullability"
    expected: str | None = None
    actual: str | None = None

    @property
    def message(self) -> str:
        if self.kind == "missing":
            return f"missing column '{self.column}' ({self.expected})"
        if self.kind == "unexpected":
            return f"unexpected column '{self.column}' ({self.actual})"
        if self.kind == "type_mismatch":
            return f"column '{self.column}' is {self.actual}, expected {self.expected}"
        return f"column '{self.column}' is nullable, expected not null"


@dataclass
class Verdict:
    """Outcome of comparing a realized schema against a contract."""

    status: VerdictStatus = VerdictStatus.PASS
    violations: list[Violation] = field(default_factory=list)
    enforcement: Enforcement | None = None
    declared: bool = False

    @property
    def passed(self) -> bool:
        return self.status != VerdictStatus.FAIL


def parse_contract(raw: dict, default_enforcement: Enforcement | str = Enforcement.STRICT) -> Contract:
    """Build a Contract from a ``contract:`` mapping in a properties file."""
    if not isinstance(raw, dict):
        raise ContractDeclarationError(f"Contract must be a mapping, got {type(raw).__name__}")
    mode = raw.get("enforcement", raw.get("enforced", default_enforcement))
    if mode is True:
        mode = Enforcement.STRICT
    elif mode is False:
        mode = Enforcement.ADVISORY
    try:
        enforcement = Enforcement(mode)
    except ValueError:
        raise ContractDeclarationError(f"Unknown contract enforcement {mode!r} (use strict or advisory)") from None

    columns: list[ColumnSpec] = []
    seen: set[str] = set()
    for col in raw.get("columns") or []:
        name = str(col.get("name", "")).strip()
        if not name:
            raise ContractDeclarationError("Contract column without a name")
        declared_type = col.get("data_type", col.get("type"))
        data_type = normalize_type(declared_type)
        if data_type == DataType.OTHER:
            raise ContractDeclarationError(
                f"Unsupported data type {declared_type!r} for contract column '{name}'"
            )
        if name.lower() in seen:
            raise ContractDeclarationError(f"Contract declares column '{name}' twice")
        seen.add(name.lower())
        nullable = col.get("nullable")
        columns.append(ColumnSpec(name, data_type, None if nullable is None else bool(nullable)))
    return Contract(columns=tuple(columns), enforcement=enforcement)


def _is_nullable(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().upper() in ("YES", "TRUE", "Y", "1")
    return bool(value)


def normalize_schema(raw_columns: Iterable[Any]) -> list[ColumnSpec]:
    """Normalize realized schema metadata from an execution engine.

    Accepts ColumnSpec objects, mappings with ``name`` and ``data_type`` (or
    ``type``) plus optional ``nullable``/``is_nullable``, or
    ``(name, type[, nullable])`` tuples.
    """
    columns: list[ColumnSpec] = []
    for raw in raw_columns:
        if isinstance(raw, ColumnSpec):
            columns.append(raw)
        elif isinstance(raw, dict):
            nullable = raw.get("nullable", raw.get("is_nullable"))
            columns.append(ColumnSpec(
                name=str(raw["name"]),
                data_type=normalize_type(raw.get("data_type", raw.get("type"))),
                nullable=_is_nullable(nullable),
            ))
        else:
            name, dtype, *rest = raw
            columns.append(ColumnSpec(str(name), normalize_type(dtype), _is_nullable(rest[0]) if rest else None))
    return columns


def validate_contract(contract: Contract | None, realized: Iterable[ColumnSpec]) -> Verdict:
    """Compare a realized schema with a declared contract.

    Every mismatch is collected so the full gap is reported in one pass.
    """
    if contract is None:
        return Verdict()

    realized_by_key = {c.key: c for c in realized}
    declared_keys = {c.key for c in contract.columns}
    violations: list[Violation] = []

    for col in contract.columns:
        actual = realized_by_key.get(col.key)
        if actual is None:
            violations.append(Violation(col.name, "missing", expected=col.data_type.value))
            continue
        if actual.data_type != col.data_type:
            violations.append(Violation(
                col.name, "type_mismatch", expected=col.data_type.value, actual=actual.data_type.value,
            ))
        if col.nullable is False and actual.nullable:
            violations.append(Violation(col.name, "nullability", expected="not null", actual="nullable"))

    for key, actual in realized_by_key.items():
        if key not in declared_keys:
            violations.append(Violation(actual.name, "unexpected", actual=actual.data_type.value))

    if not violations:
        status = VerdictStatus.PASS
    elif contract.enforcement == Enforcement.STRICT:
        status = VerdictStatus.FAIL
    else:
        status = VerdictStatus.WARN

    return Verdict(status=status, violations=violations, enforcement=contract.enforcement, declared=True)
