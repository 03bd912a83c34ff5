"""
Unit tests for environment-driven settings.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from config import Settings, load_settings

ENV_VARS = (
    "RCM_MODEL",
    "RCM_MAX_TOKENS",
    "RCM_HISTORY_LIMIT",
    "RCM_SHEET_BATCH_SIZE",
    "RCM_INTEL_BATCH_SIZE",
    "RCM_AUTOSAVE_INTERVAL",
    "RCM_STORE_DIR",
    "RCM_UPDATE_BY_COMPONENT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_VARS:
        monkeypatch.delenv(key, raising=False)


class TestLoadSettings:
    def test_defaults(self):
        settings = load_settings()
        assert settings == Settings()
        assert settings.history_limit == 30
        assert settings.sheet_batch_size == 3
        assert settings.intel_batch_size == 4

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("RCM_MODEL", "claude-sonnet-4-5")
        monkeypatch.setenv("RCM_HISTORY_LIMIT", "5")
        monkeypatch.setenv("RCM_STORE_DIR", "/tmp/rcm")
        settings = load_settings()
        assert settings.model == "claude-sonnet-4-5"
        assert settings.history_limit == 5
        assert settings.store_dir == Path("/tmp/rcm")

    @pytest.mark.parametrize("raw,expected", [("0", False), ("false", False), ("OFF", False), ("1", True), ("yes", True)])
    def test_update_by_component_flag(self, monkeypatch, raw, expected):
        monkeypatch.setenv("RCM_UPDATE_BY_COMPONENT", raw)
        assert load_settings().update_by_component is expected

    def test_empty_value_ignored(self, monkeypatch):
        monkeypatch.setenv("RCM_MAX_TOKENS", "")
        assert load_settings().max_tokens == 8096

    def test_env_file(self, tmp_path):
        env_file = tmp_path / "rcm.env"
        env_file.write_text("RCM_INTEL_BATCH_SIZE=7\n", encoding="utf-8")
        settings = load_settings(env_file)
        assert settings.intel_batch_size == 7

    def test_invalid_value_rejected(self, monkeypatch):
        monkeypatch.setenv("RCM_HISTORY_LIMIT", "0")
        with pytest.raises(Exception):
            load_settings()
