"""Identifier helpers for names that end up in generated DDL."""

from __future__ import annotations

import re

_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def validate_identifier(value: str, label: str = "identifier") -> str:
    """Return ``value`` if it is a bare SQL identifier, else raise ValueError."""
    if not _IDENTIFIER_RE.fullmatch(value):
        raise ValueError(
            f"Invalid {label}: {value!r} (letters, digits and underscores only, not starting with a digit)"
        )
    return value


def model_identity(schema: str, name: str, source: str) -> str:
    """``schema.name`` for a model defined in ``source``, both parts validated."""
    validate_identifier(schema, f"schema for {source}")
    validate_identifier(name, f"model name for {source}")
    return f"{schema}.{name}"
