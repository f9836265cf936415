"""Tests for codeguard.config."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

from codeguard.config import (
    DEFAULT_DB_PATH,
    DEFAULT_SCAN_TIMEOUT_MINUTES,
    DEFAULT_SCORE_DROP_THRESHOLD,
    Config,
)

ENV_KEYS = [
    "CODEGUARD_GITHUB_TOKEN",
    "CODEGUARD_COMPANY_ID",
    "ANTHROPIC_API_KEY",
    "CODEGUARD_DB_PATH",
    "CODEGUARD_SCAN_TIMEOUT_MINUTES",
    "CODEGUARD_SCORE_DROP_THRESHOLD",
    "CODEGUARD_AI_LOC_ALERT_PERCENTAGE",
    "CODEGUARD_MAX_FILES",
    "CODEGUARD_MAX_PRS",
    "CODEGUARD_REQUEUE_TIMED_OUT_SCANS",
]


def _clean_env(**overrides: str) -> dict[str, str]:
    env = {k: v for k, v in os.environ.items() if k not in ENV_KEYS}
    env.update(overrides)
    return env


class TestConfigDefaults:
    def test_default_values(self):
        config = Config()
        assert config.github_token == ""
        assert config.company_id == ""
        assert config.db_path == DEFAULT_DB_PATH
        assert config.scan_timeout_minutes == DEFAULT_SCAN_TIMEOUT_MINUTES
        assert config.score_drop_threshold == DEFAULT_SCORE_DROP_THRESHOLD
        assert config.ml_enabled is False

    def test_ml_enabled_with_key(self):
        assert Config(anthropic_api_key="sk-ant-xxx").ml_enabled is True


class TestConfigLoad:
    def test_load_from_env(self):
        env = _clean_env(
            CODEGUARD_GITHUB_TOKEN="ghp_test123",
            CODEGUARD_COMPANY_ID="acme",
            ANTHROPIC_API_KEY="sk-ant-test",
            CODEGUARD_DB_PATH="/tmp/test.db",
            CODEGUARD_SCAN_TIMEOUT_MINUTES="30",
            CODEGUARD_MAX_PRS="10",
        )
        with patch.dict(os.environ, env, clear=True):
            config = Config.load()
        assert config.github_token == "ghp_test123"
        assert config.company_id == "acme"
        assert config.anthropic_api_key == "sk-ant-test"
        assert config.db_path == Path("/tmp/test.db")
        assert config.scan_timeout_minutes == 30
        assert config.max_prs_per_scan == 10

    def test_load_defaults_when_env_empty(self):
        with patch.dict(os.environ, _clean_env(), clear=True):
            config = Config.load()
        assert config.github_token == ""
        assert config.db_path == DEFAULT_DB_PATH
        assert config.scan_timeout_minutes == DEFAULT_SCAN_TIMEOUT_MINUTES
        assert config.load_problems == []
        assert config.requeue_timed_out_scans is True

    def test_requeue_can_be_turned_off(self):
        for value in ("false", "0", "No"):
            with patch.dict(os.environ, _clean_env(CODEGUARD_REQUEUE_TIMED_OUT_SCANS=value), clear=True):
                assert Config.load().requeue_timed_out_scans is False
        with patch.dict(os.environ, _clean_env(CODEGUARD_REQUEUE_TIMED_OUT_SCANS="true"), clear=True):
            assert Config.load().requeue_timed_out_scans is True

    def test_malformed_integer_falls_back_and_is_reported(self):
        env = _clean_env(CODEGUARD_SCAN_TIMEOUT_MINUTES="soon")
        with patch.dict(os.environ, env, clear=True):
            config = Config.load()
        assert config.scan_timeout_minutes == DEFAULT_SCAN_TIMEOUT_MINUTES
        assert any("CODEGUARD_SCAN_TIMEOUT_MINUTES" in issue for issue in config.validate())


class TestConfigValidate:
    def test_validate_all_missing(self):
        issues = Config().validate()
        assert len(issues) == 2
        assert any("GitHub token" in i for i in issues)
        assert any("Company" in i for i in issues)

    def test_validate_all_present(self):
        assert Config(github_token="ghp_xxx", company_id="acme").validate() == []

    def test_anthropic_key_is_optional(self):
        config = Config(github_token="ghp_xxx", company_id="acme", anthropic_api_key="")
        assert config.validate() == []

    def test_negative_timeout(self):
        config = Config(github_token="ghp_xxx", company_id="acme", scan_timeout_minutes=-1)
        assert len(config.validate()) == 1

    def test_zero_drop_threshold(self):
        config = Config(github_token="ghp_xxx", company_id="acme", score_drop_threshold=0)
        assert any("drop threshold" in i for i in config.validate())
