"""Tests for project configuration."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from strata.config import load_env, load_project
from strata.engine import Enforcement


def test_load_missing_config(tmp_path):
    """Loading from a dir without project.yml returns defaults."""
    config = load_project(tmp_path)
    assert config.database.path == "warehouse.duckdb"
    assert config.state_path == tmp_path / "target" / "state.json"
    assert config.build.workers == 4
    assert config.build.node_timeout is None
    assert config.contracts.default_enforcement == Enforcement.STRICT


def test_load_config(tmp_path):
    (tmp_path / "project.yml").write_text(
        """
name: test-project
description: "A test project"

database:
  path: my.duckdb

models_dir: sql

state:
  path: .state/last.json

build:
  workers: 8
  node_timeout: 30
  continue_on_error: true

contracts:
  default_enforcement: advisory
"""
    )

    config = load_project(tmp_path)
    assert config.name == "test-project"
    assert config.db_path == tmp_path / "my.duckdb"
    assert config.models_dir == "sql"
    assert config.state_path == tmp_path / ".state" / "last.json"
    assert config.build.workers == 8
    assert config.build.node_timeout == 30.0
    assert config.build.continue_on_error is True
    assert config.contracts.default_enforcement == Enforcement.ADVISORY


def test_name_defaults_to_directory(tmp_path):
    (tmp_path / "project.yml").write_text("database:\n  path: x.duckdb\n")
    assert load_project(tmp_path).name == tmp_path.name


@pytest.mark.parametrize("build", ["workers: 0", "node_timeout: -1"])
def test_invalid_build_settings(tmp_path, build):
    (tmp_path / "project.yml").write_text(f"build:\n  {build}\n")
    with pytest.raises(ValidationError):
        load_project(tmp_path)


class TestEnvironments:
    YML = """
name: envs
database:
  path: base.duckdb
build:
  workers: 2
environments:
  dev:
    database:
      path: dev.duckdb
  prod:
    database:
      path: ${PROD_DB}
    state:
      path: target/prod.json
    build:
      continue_on_error: true
"""

    def test_defaults_to_dev(self, tmp_path):
        (tmp_path / "project.yml").write_text(self.YML)
        config = load_project(tmp_path)
        assert config.active_environment == "dev"
        assert config.database.path == "dev.duckdb"

    def test_prod_overrides_and_env_expansion(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PROD_DB", "/data/prod.duckdb")
        (tmp_path / "project.yml").write_text(self.YML)
        config = load_project(tmp_path, env="prod")
        assert config.active_environment == "prod"
        assert config.database.path == "/data/prod.duckdb"
        assert config.state.path == "target/prod.json"
        assert config.build.workers == 2
        assert config.build.continue_on_error is True

    def test_undefined_environment_uses_base(self, tmp_path):
        (tmp_path / "project.yml").write_text(self.YML)
        config = load_project(tmp_path, env="staging")
        assert config.active_environment is None
        assert config.database.path == "base.duckdb"

    def test_unset_variable_is_left_as_is(self, tmp_path, monkeypatch):
        monkeypatch.delenv("PROD_DB", raising=False)
        (tmp_path / "project.yml").write_text(self.YML)
        assert load_project(tmp_path, env="prod").database.path == "${PROD_DB}"


def test_dotenv_feeds_expansion(tmp_path, monkeypatch):
    monkeypatch.delenv("STRATA_TEST_DB", raising=False)
    (tmp_path / ".env").write_text('# secrets\nSTRATA_TEST_DB="from_env.duckdb"\n')
    (tmp_path / "project.yml").write_text("database:\n  path: ${STRATA_TEST_DB}\n")

    assert load_env(Path(tmp_path)) == {"STRATA_TEST_DB": "from_env.duckdb"}
    assert load_project(tmp_path).database.path == "from_env.duckdb"
