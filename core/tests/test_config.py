"""Tests for reading runner settings from the configuration file."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from flowrunner.config import (
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_STEP_DELAY_MS,
    RunnerConfig,
    get_flowrunner_config,
    get_log_settings,
    get_request_timeout,
    get_step_delay_ms,
)


@pytest.fixture
def config_file(tmp_path: Path, monkeypatch):
    """Point FLOWRUNNER_CONFIG at a temp file and return a writer for it."""
    path = tmp_path / "configuration.json"
    monkeypatch.setenv("FLOWRUNNER_CONFIG", str(path))

    def _write(data) -> Path:
        path.write_text(data if isinstance(data, str) else json.dumps(data), encoding="utf-8")
        return path

    return _write


class TestGetFlowrunnerConfig:
    def test_missing_file_gives_empty_config(self, config_file):
        assert get_flowrunner_config() == {}

    def test_explicit_path(self, tmp_path: Path):
        path = tmp_path / "other.json"
        path.write_text(json.dumps({"runner": {"step_delay_ms": 5}}), encoding="utf-8")
        assert get_flowrunner_config(path) == {"runner": {"step_delay_ms": 5}}

    def test_invalid_json_gives_empty_config(self, config_file):
        config_file("{not json")
        assert get_flowrunner_config() == {}

    def test_non_object_gives_empty_config(self, config_file):
        config_file([1, 2])
        assert get_flowrunner_config() == {}


class TestDerivedSettings:
    def test_defaults(self, config_file):
        assert get_step_delay_ms() == DEFAULT_STEP_DELAY_MS
        assert get_request_timeout() == DEFAULT_REQUEST_TIMEOUT
        assert get_log_settings() == ("INFO", "auto")

    def test_values_from_file(self, config_file):
        config_file(
            {
                "runner": {"step_delay_ms": 250, "request_timeout_seconds": 2.5},
                "logging": {"level": "DEBUG", "format": "json"},
            }
        )
        assert get_step_delay_ms() == 250
        assert get_request_timeout() == 2.5
        assert get_log_settings() == ("DEBUG", "json")

    def test_negative_delay_is_clamped(self, config_file):
        config_file({"runner": {"step_delay_ms": -10}})
        assert get_step_delay_ms() == 0

    def test_bad_values_fall_back_to_defaults(self, config_file):
        config_file({"runner": {"step_delay_ms": "soon", "request_timeout_seconds": 0}})
        assert get_step_delay_ms() == DEFAULT_STEP_DELAY_MS
        assert get_request_timeout() == DEFAULT_REQUEST_TIMEOUT

    def test_runner_config_reads_file_at_construction(self, config_file):
        config_file({"runner": {"step_delay_ms": 40, "request_timeout_seconds": 3}})
        config = RunnerConfig()
        assert config.step_delay_ms == 40
        assert config.request_timeout_seconds == 3.0

    def test_explicit_values_win(self, config_file):
        config_file({"runner": {"step_delay_ms": 40}})
        assert RunnerConfig(step_delay_ms=0).step_delay_ms == 0
