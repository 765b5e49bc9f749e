"""
Tests for project_pulse/config.py.

What we test
------------
load_config():
  - The committed config/default.toml loads and matches the model defaults.
  - local.toml next to the given file is deep-merged over it.
  - PROJECT_PULSE_* environment variables override both files.
  - A missing config file raises FileNotFoundError.

Sub-configs:
  - Partial threshold tables merge over the defaults.
  - Invalid values (log level, windows, weights, case blend) are rejected.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from project_pulse.config import (
    AppConfig,
    ForecastConfig,
    LoggingConfig,
    PipelineConfig,
    ScoringConfig,
    SignalsConfig,
    load_config,
)

_ENV_VARS = (
    "PROJECT_PULSE_DB_PATH",
    "PROJECT_PULSE_LOG_LEVEL",
    "PROJECT_PULSE_DEBUG",
    "PROJECT_PULSE_LLM_API_KEY",
    "PROJECT_PULSE_LLM_ENABLED",
)


# ── Helpers ───────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write_config(tmp_path, body: str, local: str | None = None):
    path = tmp_path / "default.toml"
    path.write_text(body, encoding="utf-8")
    if local is not None:
        (tmp_path / "local.toml").write_text(local, encoding="utf-8")
    return path


# ── load_config ───────────────────────────────────────────────────────────────

class TestLoadConfig:
    def test_committed_defaults(self):
        cfg = load_config()
        assert cfg.signals.thresholds == AppConfig().signals.thresholds
        assert cfg.recommendations.llm_budget == 3
        assert cfg.pipeline.similarity_windows == [7, 14, 30]

    def test_local_overrides_merge(self, tmp_path):
        path = _write_config(
            tmp_path,
            '[database]\ndb_path = "a.db"\nbusy_timeout_ms = 100\n',
            local='[database]\ndb_path = "b.db"\n',
        )
        cfg = load_config(path)
        assert cfg.database.db_path == "b.db"
        assert cfg.database.busy_timeout_ms == 100

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = _write_config(tmp_path, '[database]\ndb_path = "a.db"\n[llm]\nenabled = false\n')
        monkeypatch.setenv("PROJECT_PULSE_DB_PATH", "/tmp/env.db")
        monkeypatch.setenv("PROJECT_PULSE_LOG_LEVEL", "debug")
        monkeypatch.setenv("PROJECT_PULSE_DEBUG", "yes")
        monkeypatch.setenv("PROJECT_PULSE_LLM_API_KEY", "sk-env")
        monkeypatch.setenv("PROJECT_PULSE_LLM_ENABLED", "true")
        cfg = load_config(path)
        assert cfg.database.db_path == "/tmp/env.db"
        assert cfg.logging.level == "DEBUG"
        assert cfg.debug is True
        assert cfg.llm.api_key == "sk-env"
        assert cfg.llm.enabled is True

    def test_project_debug_flag(self, tmp_path):
        cfg = load_config(_write_config(tmp_path, "[project]\ndebug = true\n"))
        assert cfg.debug is True

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.toml")

    def test_invalid_value_rejected(self, tmp_path):
        with pytest.raises(ValidationError):
            load_config(_write_config(tmp_path, '[logging]\nlevel = "LOUD"\n'))


# ── Sub-configs ───────────────────────────────────────────────────────────────

class TestSubConfigs:
    def test_partial_thresholds_merge(self):
        cfg = SignalsConfig(thresholds={"blockers_age": {"warn": 1, "critical": 2}})
        assert cfg.thresholds["blockers_age"].warn == 1
        assert cfg.thresholds["sentiment_trend"].comparator == "negative"

    def test_sentiment_alpha_clamped(self):
        assert SignalsConfig(sentiment_alpha=5).sentiment_alpha == 0.9

    def test_bad_window(self):
        with pytest.raises(ValidationError):
            PipelineConfig(similarity_windows=[7, 21])

    def test_negative_weight(self):
        with pytest.raises(ValidationError):
            ScoringConfig(risk_weights={"blockers": -0.1})

    def test_case_blend_bounds(self):
        with pytest.raises(ValidationError):
            ForecastConfig(case_blend=1.5)

    def test_log_level_normalised(self):
        assert LoggingConfig(level="warning").level == "WARNING"
