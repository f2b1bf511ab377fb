"""Node discovery: SQL model files, model property files, and exposures."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .contracts import Contract, Enforcement, parse_contract
from .errors import ContractDeclarationError
from .graph import Node, NodeKind
from .sql_analysis import extract_table_refs, parse_header
from .utils import model_identity, validate_identifier

logger = logging.getLogger("strata.discovery")


@dataclass
class _ModelDraft:
    identity: str
    path: str
    query: str
    config: dict[str, Any]
    tags: set[str]
    description: str
    depends_on: list[str]
    inferred: bool
    contract: Contract | None = None
    extra_tags: set[str] = field(default_factory=set)


def _discover_sql_models(project_dir: Path, models_dir: Path) -> list[_ModelDraft]:
    """Convention: folder names map to schemas.

    models/bronze/customers.sql -> schema=bronze, name=customers
    """
    drafts: list[_ModelDraft] = []
    for sql_file in sorted(models_dir.rglob("*.sql")):
        header = parse_header(sql_file.read_text())
        config: dict[str, Any] = dict(header.config)

        rel = sql_file.relative_to(models_dir)
        folder_schema = rel.parent.name if rel.parent.name else "public"
        schema = config.pop("schema", folder_schema)
        identity = model_identity(schema, sql_file.stem, sql_file.name)

        tags = set(header.tags)
        tags.update(t.strip() for t in config.pop("tags", "").split("|") if t.strip())
        config.setdefault("materialized", "view")

        depends = header.depends_on
        inferred = not depends
        if inferred:
            depends = extract_table_refs(header.query, exclude=identity)

        drafts.append(_ModelDraft(
            identity=identity,
            path=sql_file.relative_to(project_dir).as_posix(),
            query=header.query,
            config=config,
            tags=tags,
            description=header.description,
            depends_on=depends,
            inferred=inferred,
        ))
    return drafts


def _apply_properties(
    models_dir: Path,
    drafts: list[_ModelDraft],
    default_enforcement: Enforcement | str,
) -> None:
    """Merge ``models:`` entries from YAML property files into the drafts."""
    by_identity = {d.identity: d for d in drafts}
    by_name: dict[str, list[_ModelDraft]] = {}
    for d in drafts:
        by_name.setdefault(d.identity.rsplit(".", 1)[-1], []).append(d)

    yml_files = sorted([*models_dir.rglob("*.yml"), *models_dir.rglob("*.yaml")])
    for yml_file in yml_files:
        raw = yaml.safe_load(yml_file.read_text()) or {}
        for entry in raw.get("models", []) or []:
            ref = str(entry.get("name", ""))
            draft = by_identity.get(ref)
            if draft is None:
                candidates = by_name.get(ref, [])
                if len(candidates) > 1:
                    logger.warning(
                        "%s: model name '%s' is ambiguous (%s), use schema.name",
                        yml_file.name, ref, ", ".join(c.identity for c in candidates),
                    )
                    continue
                draft = candidates[0] if candidates else None
            if draft is None:
                logger.warning("%s: properties for unknown model '%s' ignored", yml_file.name, ref)
                continue

            if entry.get("description"):
                draft.description = str(entry["description"])
            draft.extra_tags.update(str(t) for t in entry.get("tags", []) or [])
            if entry.get("contract") is not None:
                try:
                    draft.contract = parse_contract(entry["contract"], default_enforcement)
                except ContractDeclarationError as e:
                    raise ContractDeclarationError(f"{draft.identity} ({yml_file.name}): {e}") from e


def _discover_exposures(project_dir: Path) -> list[Node]:
    """Parse exposures.yml if it exists."""
    exposures_path = project_dir / "exposures.yml"
    if not exposures_path.exists():
        return []
    raw = yaml.safe_load(exposures_path.read_text()) or {}
    nodes = []
    for exp_raw in raw.get("exposures", []) or []:
        name = str(exp_raw.get("name", ""))
        validate_identifier(name, "exposure name")
        config = {
            "type": exp_raw.get("type", ""),
            "owner": exp_raw.get("owner", ""),
            "url": exp_raw.get("url", ""),
        }
        description = exp_raw.get("description", "")
        nodes.append(Node(
            identity=f"exposure.{name}",
            kind=NodeKind.EXPOSURE,
            depends_on=tuple(exp_raw.get("depends_on", []) or []),
            tags=frozenset(str(t) for t in exp_raw.get("tags", []) or []),
            path="exposures.yml",
            definition=description,
            config=config,
            description=description,
        ))
    return nodes


def discover_nodes(
    project_dir: Path,
    models_dir: str | Path = "models",
    default_enforcement: Enforcement | str = Enforcement.STRICT,
) -> list[Node]:
    """Discover every node of a project: SQL models plus exposures.

    Explicit ``depends_on`` references are kept as-is and validated when the
    graph is built. Inferred references that don't name a discovered model
    are external tables and are dropped.
    """
    project_dir = Path(project_dir)
    models_path = project_dir / models_dir
    drafts = _discover_sql_models(project_dir, models_path) if models_path.exists() else []
    if drafts:
        _apply_properties(models_path, drafts, default_enforcement)

    # Inferred references come back lowercased; DuckDB folds unquoted names anyway
    known = {d.identity.lower(): d.identity for d in drafts}
    nodes: list[Node] = []
    for d in drafts:
        depends = d.depends_on
        if d.inferred:
            external = [ref for ref in depends if ref not in known]
            if external:
                logger.debug("%s: treating %s as external tables", d.identity, ", ".join(external))
            depends = [known[ref] for ref in depends if ref in known]
        nodes.append(Node(
            identity=d.identity,
            kind=NodeKind.TRANSFORMATION,
            depends_on=tuple(dict.fromkeys(depends)),
            tags=frozenset(d.tags | d.extra_tags),
            path=d.path,
            definition=d.query,
            config=d.config,
            contract=d.contract,
            description=d.description,
        ))

    nodes.extend(_discover_exposures(project_dir))
    logger.info("Discovered %d node(s) in %s", len(nodes), project_dir)
    return nodes
