"""Tests for configuration helpers."""

import pytest

from huddle_dashboard.config import (
    DEFAULT_API_URL,
    DashboardConfig,
    job_retry_policy,
    load_config,
    save_config,
)


def test_config_round_trip(tmp_path, monkeypatch):
    """Ensure configuration persists to disk and loads back."""

    config_path = tmp_path / "config.json"
    monkeypatch.setenv("HUDDLE_DASHBOARD_CONFIG", str(config_path))

    original = DashboardConfig(api_url="http://analysis.test/", team_id="team-42")
    original.poll_interval = 0.5
    original.max_consecutive_failures = 4
    original.set_file_view("grid")

    save_config(original)
    loaded = load_config()

    assert loaded.api_url == "http://analysis.test"
    assert loaded.team_id == "team-42"
    assert loaded.poll_interval == 0.5
    assert loaded.max_consecutive_failures == 4
    assert loaded.file_view == "grid"


def test_config_handles_missing_file(monkeypatch, tmp_path):
    """Loading without a file should return defaults."""

    config_path = tmp_path / "missing" / "config.json"
    monkeypatch.setenv("HUDDLE_DASHBOARD_CONFIG", str(config_path))
    monkeypatch.delenv("HUDDLE_API_URL", raising=False)

    config = load_config()
    assert config.api_url == DEFAULT_API_URL
    assert config.poll_interval == 2.0
    assert config.retry_interval == 5.0
    assert config.max_consecutive_failures is None
    assert config.file_view == "list"


def test_malformed_config_falls_back_to_defaults(monkeypatch, tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text("{not json")
    monkeypatch.setenv("HUDDLE_DASHBOARD_CONFIG", str(config_path))

    config = load_config()
    assert config.poll_interval == 2.0
    assert config_path.read_text() == "{not json"


def test_invalid_values_are_ignored(monkeypatch, tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text(
        '{"poll_interval": -1, "retry_interval": "soon", "max_poll_retries": -2, "file_view": "table"}'
    )
    monkeypatch.setenv("HUDDLE_DASHBOARD_CONFIG", str(config_path))

    config = load_config()
    assert config.poll_interval == 2.0
    assert config.retry_interval == 5.0
    assert config.max_poll_retries == 1
    assert config.file_view == "list"


def test_set_file_view_rejects_unknown_views():
    config = DashboardConfig()
    with pytest.raises(ValueError):
        config.set_file_view("table")
    assert config.file_view == "list"


def test_job_retry_policy_reflects_config():
    config = DashboardConfig(retry_interval=3.0, max_poll_retries=2, max_consecutive_failures=6)
    policy = job_retry_policy(config)

    assert policy.max_attempts == 2
    assert policy.backoff == 3.0
    assert policy.max_consecutive_failures == 6
