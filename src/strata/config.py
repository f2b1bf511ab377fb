"""Project configuration: project.yml parsing and defaults."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from strata.engine.contracts import Enforcement

logger = logging.getLogger("strata.config")


class DatabaseConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")
    path: str = "warehouse.duckdb"


class StateConfig(BaseModel):
    """Where the baseline snapshot of the last build lives."""
    model_config = ConfigDict(extra="ignore")
    path: str = "target/state.json"


class BuildConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    workers: int = Field(default=4, ge=1)
    node_timeout: float | None = Field(default=None, gt=0)  # seconds per node
    continue_on_error: bool = False


class ContractsConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")
    default_enforcement: Enforcement = Enforcement.STRICT


class EnvironmentConfig(BaseModel):
    """Overrides applied when an environment (dev, prod, ...) is active."""
    model_config = ConfigDict(extra="ignore")

    database: dict[str, Any] = Field(default_factory=dict)
    state: dict[str, Any] = Field(default_factory=dict)
    build: dict[str, Any] = Field(default_factory=dict)


class ProjectConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = "default"
    description: str = ""
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    models_dir: str = "models"
    state: StateConfig = Field(default_factory=StateConfig)
    build: BuildConfig = Field(default_factory=BuildConfig)
    contracts: ContractsConfig = Field(default_factory=ContractsConfig)
    environments: dict[str, EnvironmentConfig] = Field(default_factory=dict)
    active_environment: str | None = None
    project_dir: Path = Field(default_factory=Path.cwd)

    @property
    def db_path(self) -> Path:
        return self.project_dir / self.database.path

    @property
    def state_path(self) -> Path:
        return self.project_dir / self.state.path


_ENV_REF = re.compile(r"\$\{(\w+)\}")


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def load_env(project_dir: Path) -> dict[str, str]:
    """Export KEY=VALUE lines from the project's .env file. Returns what was set."""
    dotenv = project_dir / ".env"
    if not dotenv.exists():
        return {}

    exported: dict[str, str] = {}
    for raw_line in dotenv.read_text().splitlines():
        line = raw_line.strip()
        if line.startswith("#") or "=" not in line:
            continue
        name, _, value = line.partition("=")
        exported[name.strip()] = _unquote(value.strip())
    os.environ.update(exported)
    return exported


def _expand(node: Any) -> Any:
    """Substitute ${NAME} from the environment. Unknown names are left in place."""
    if isinstance(node, dict):
        return {key: _expand(item) for key, item in node.items()}
    if isinstance(node, list):
        return [_expand(item) for item in node]
    if isinstance(node, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), m.group(0)), node)
    return node


def _select_environment(environments: dict[str, EnvironmentConfig], requested: str | None) -> str | None:
    if requested is None:
        return "dev" if "dev" in environments else None
    if requested not in environments:
        logger.warning("Environment '%s' is not defined in project.yml; using base settings", requested)
        return None
    return requested


def load_project(project_dir: Path | str | None = None, env: str | None = None) -> ProjectConfig:
    """Read project.yml (defaults when it is absent) and apply an environment.

    With ``env=None`` the ``dev`` environment is used when defined. An
    environment replaces the database and state paths and merges its build
    settings over the base ones.

    Raises:
        pydantic.ValidationError: a setting has an invalid value.
        yaml.YAMLError: project.yml is not valid YAML.
    """
    root = Path(project_dir) if project_dir else Path.cwd()
    # .env first so its values are visible to ${VAR} expansion
    load_env(root)

    project_file = root / "project.yml"
    if not project_file.exists():
        return ProjectConfig(project_dir=root)

    settings = _expand(yaml.safe_load(project_file.read_text()) or {})
    environments = {
        name: EnvironmentConfig.model_validate(overrides or {})
        for name, overrides in (settings.get("environments") or {}).items()
    }
    active = _select_environment(environments, env)

    sections = {key: dict(settings.get(key) or {}) for key in ("database", "state", "build")}
    if active is not None:
        chosen = environments[active]
        for key in ("database", "state"):
            override = getattr(chosen, key)
            if "path" in override:
                sections[key]["path"] = override["path"]
        sections["build"].update(chosen.build)

    return ProjectConfig(
        name=settings.get("name", root.name),
        description=settings.get("description", ""),
        database=DatabaseConfig.model_validate(sections["database"]),
        models_dir=settings.get("models_dir", "models"),
        state=StateConfig.model_validate(sections["state"]),
        build=BuildConfig.model_validate(sections["build"]),
        contracts=ContractsConfig.model_validate(settings.get("contracts") or {}),
        environments=environments,
        active_environment=active,
        project_dir=root,
    )
