"""Tests for configuration loading."""

import pytest

import workpilot.persistence as persistence
from workpilot.config import load_config
from workpilot.errors import ConfigurationError
from workpilot.persistence import SQLiteWorkflowStateRepository, get_repository


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
log_level: DEBUG
stale_after_hours: 24
ai:
  auto_approval_threshold: 0.9
  daily_budget: 25
"""
    )
    monkeypatch.setenv("WORKPILOT_CONFIG", str(config_path))
    monkeypatch.delenv("WORKPILOT_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.log_level == "DEBUG"
    assert config.stale_after_hours == 24
    assert config.ai.auto_approval_threshold == 0.9
    assert config.ai.daily_budget == 25
    assert config.database_url is None


def test_defaults_without_file(tmp_path, monkeypatch):
    monkeypatch.delenv("WORKPILOT_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config(str(tmp_path / "missing.yaml"))
    assert config.ai.auto_approval_threshold == 0.8
    assert config.stale_after_hours == 72


def test_invalid_config_raises_configuration_error(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("ai:\n  auto_approval_threshold: 3\n")

    with pytest.raises(ConfigurationError):
        load_config(str(config_path))


def test_get_repository_uses_database_url_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("log_level: INFO\n")
    monkeypatch.setenv("WORKPILOT_CONFIG", str(config_path))
    monkeypatch.setenv("WORKPILOT_DATABASE_URL", f"sqlite://{tmp_path / 'wf.db'}")

    repo = get_repository()
    assert isinstance(repo, SQLiteWorkflowStateRepository)
    assert get_repository() is repo

    persistence.reset_repository()
    with pytest.raises(ValueError):
        get_repository("mysql://nope")
