"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local secrets and env overrides (gitignored)
  4. Environment variables        — ``PROJECT_PULSE_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

Every product-tuned constant (signal thresholds, score weights, similarity
blend, forecast floors, evidence gate) lives here. The pure engines accept
the relevant sub-config and fall back to its defaults when none is given.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

VALID_WINDOWS: frozenset[int] = frozenset({7, 14, 30})


# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/project_pulse.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/project_pulse.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class PipelineConfig(BaseModel):
    """Refresh pipeline execution parameters."""

    model_config = ConfigDict(frozen=True)

    event_batch_limit: int = 5000
    similarity_windows: list[int] = [7, 14, 30]
    default_window_days: int = 14

    @field_validator("similarity_windows")
    @classmethod
    def validate_windows(cls, v: list[int]) -> list[int]:
        bad = [w for w in v if w not in VALID_WINDOWS]
        if bad:
            raise ValueError(f"similarity_windows must be drawn from {sorted(VALID_WINDOWS)}, got {bad}.")
        return v

    @field_validator("default_window_days")
    @classmethod
    def validate_default_window(cls, v: int) -> int:
        if v not in VALID_WINDOWS:
            raise ValueError(f"default_window_days must be one of {sorted(VALID_WINDOWS)}, got {v}.")
        return v


class SignalThreshold(BaseModel):
    """Warn/critical thresholds for one signal.

    ``comparator="high"`` means larger values are riskier; ``"negative"``
    means more negative values are riskier (sentiment trend).
    """

    model_config = ConfigDict(frozen=True)

    warn: float
    critical: float
    comparator: Literal["high", "negative"] = "high"


DEFAULT_SIGNAL_THRESHOLDS: dict[str, SignalThreshold] = {
    "waiting_on_client_days":  SignalThreshold(warn=2, critical=4),
    "response_time_avg":       SignalThreshold(warn=240, critical=720),
    "blockers_age":            SignalThreshold(warn=3, critical=5),
    "stage_overdue":           SignalThreshold(warn=1, critical=3),
    "agreement_overdue_count": SignalThreshold(warn=1, critical=2),
    "sentiment_trend":         SignalThreshold(warn=-0.15, critical=-0.3, comparator="negative"),
    "scope_creep_rate":        SignalThreshold(warn=0.2, critical=0.35),
    "budget_burn_rate":        SignalThreshold(warn=1.1, critical=1.2),
    "margin_risk":             SignalThreshold(warn=0.25, critical=0.4),
    "activity_drop":           SignalThreshold(warn=0.3, critical=0.5),
}


class SignalsConfig(BaseModel):
    """Signal derivation settings.

    Partial ``thresholds`` tables are merged over the defaults, so a local
    override only needs to name the signals it changes.
    """

    model_config = ConfigDict(frozen=True)

    thresholds: dict[str, SignalThreshold] = DEFAULT_SIGNAL_THRESHOLDS
    evidence_cap: int = 20
    sentiment_alpha: float = 0.35

    @field_validator("thresholds", mode="before")
    @classmethod
    def merge_thresholds(cls, v: Any) -> Any:
        if not isinstance(v, dict):
            return v
        merged: dict[str, Any] = dict(DEFAULT_SIGNAL_THRESHOLDS)
        merged.update(v)
        return merged

    @field_validator("sentiment_alpha")
    @classmethod
    def validate_alpha(cls, v: float) -> float:
        return min(0.9, max(0.05, v))


DEFAULT_HEALTH_WEIGHTS: dict[str, float] = {
    "waiting": 0.10, "response": 0.08, "blockers": 0.15, "stage": 0.15,
    "agreement": 0.10, "sentiment": 0.08, "scope": 0.10, "budget": 0.10,
    "margin": 0.08, "activity": 0.06,
}
DEFAULT_RISK_WEIGHTS: dict[str, float] = {
    "blockers": 0.18, "stage": 0.18, "budget": 0.16, "margin": 0.16,
    "scope": 0.10, "agreement": 0.08, "waiting": 0.06, "response": 0.04,
    "sentiment": 0.02, "activity": 0.02,
}
DEFAULT_CLIENT_VALUE_WEIGHTS: dict[str, float] = {
    "revenue": 0.30, "margin": 0.25, "engagement": 0.20,
    "sentiment": 0.10, "stability": 0.15,
}
DEFAULT_UPSELL_WEIGHTS: dict[str, float] = {
    "client_value": 0.40, "need_signal": 0.35, "commercial_stability": 0.25,
}


class ScoringConfig(BaseModel):
    """Weight tables for the composite scores."""

    model_config = ConfigDict(frozen=True)

    health_weights: dict[str, float] = DEFAULT_HEALTH_WEIGHTS
    risk_weights: dict[str, float] = DEFAULT_RISK_WEIGHTS
    client_value_weights: dict[str, float] = DEFAULT_CLIENT_VALUE_WEIGHTS
    upsell_weights: dict[str, float] = DEFAULT_UPSELL_WEIGHTS
    revenue_reference: float = 100_000.0
    evidence_cap: int = 60

    @field_validator(
        "health_weights", "risk_weights", "client_value_weights", "upsell_weights"
    )
    @classmethod
    def validate_weights(cls, v: dict[str, float]) -> dict[str, float]:
        negative = {k: w for k, w in v.items() if w < 0}
        if negative:
            raise ValueError(f"Score weights must be non-negative, got {negative}.")
        return v


class SimilarityConfig(BaseModel):
    """Case similarity blend and ranking limits."""

    model_config = ConfigDict(frozen=True)

    vector_weight: float = 0.6
    event_weight: float = 0.3
    context_weight: float = 0.1
    context_weights: dict[str, float] = {
        "budget_bucket": 0.4, "project_type": 0.3, "stage_bucket": 0.3,
    }
    default_top_k: int = 5
    max_top_k: int = 50
    outcomes_per_candidate: int = 8
    shared_patterns_limit: int = 5


class ForecastFloorsConfig(BaseModel):
    """Hard probability floors applied on top of the weighted baselines."""

    model_config = ConfigDict(frozen=True)

    waiting_days_trigger: float = 4.0
    waiting_floor: float = 0.62
    sentiment_trigger: float = -0.25
    sentiment_floor: float = 0.55
    blockers_age_trigger: float = 5.0
    blockers_open_trigger: int = 3
    blockers_floor: float = 0.62
    blocker_burst_trigger: int = 4
    blocker_burst_floor: float = 0.62
    stage_overdue_trigger: float = 3.0
    stage_floor: float = 0.58
    burn_trigger: float = 1.2
    margin_trigger: float = 0.4
    finance_floor: float = 0.62
    scope_trigger: float = 0.35
    scope_floor: float = 0.6


DEFAULT_BASELINE_WEIGHTS: dict[str, dict[str, float]] = {
    "delivery_risk": {
        "blockers": 0.32, "stage": 0.28, "response": 0.12, "activity": 0.10, "risk": 0.18,
    },
    "finance_risk": {"burn": 0.40, "margin": 0.35, "risk": 0.25},
    "client_risk": {
        "waiting": 0.32, "sentiment": 0.24, "response": 0.12, "activity": 0.12, "risk": 0.20,
    },
    "scope_risk": {"scope": 0.48, "stage": 0.18, "waiting": 0.14, "risk": 0.20},
}


class ForecastConfig(BaseModel):
    """Risk forecasting blend, horizon growth and floors."""

    model_config = ConfigDict(frozen=True)

    baseline_weights: dict[str, dict[str, float]] = DEFAULT_BASELINE_WEIGHTS
    case_blend: float = 0.25
    growth_14_base: float = 0.12
    growth_14_slope: float = 0.18
    growth_30_base: float = 0.18
    growth_30_slope: float = 0.22
    floors: ForecastFloorsConfig = ForecastFloorsConfig()
    drivers_limit: int = 4
    similar_cases_limit: int = 3
    evidence_cap: int = 40

    @field_validator("case_blend")
    @classmethod
    def validate_case_blend(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"case_blend must be in [0.0, 1.0], got {v}.")
        return v


DEFAULT_PRIMARY_SOURCES: dict[str, list[str]] = {
    "waiting_on_client":          ["message_id"],
    "scope_creep_change_request": ["message_id", "linear_issue_id"],
    "delivery_risk":              ["linear_issue_id"],
    "finance_risk":               ["attio_record_id", "doc_url"],
    "upsell_opportunity":         ["message_id", "attio_record_id"],
    "winback":                    ["attio_record_id", "message_id"],
}


class RecommendationsConfig(BaseModel):
    """Evidence gate parameters and drafting budget."""

    model_config = ConfigDict(frozen=True)

    llm_budget: int = 3
    min_evidence_count: int = 1
    min_quality: float = 0.35
    count_target: int = 3
    diversity_target: int = 2
    primary_sources: dict[str, list[str]] = DEFAULT_PRIMARY_SOURCES
    require_primary: list[str] = ["upsell_opportunity", "winback"]

    @model_validator(mode="after")
    def validate_targets(self) -> "RecommendationsConfig":
        if self.count_target < 1 or self.diversity_target < 1:
            raise ValueError("count_target and diversity_target must be >= 1.")
        if self.llm_budget < 0:
            raise ValueError("llm_budget must be >= 0.")
        return self


class LLMConfig(BaseModel):
    """OpenAI-compatible chat endpoint used for recommendation drafting."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    timeout_seconds: float = 20.0
    max_tokens: int = 400


class ReportingConfig(BaseModel):
    """Output locations for CSV/JSON/Parquet reports."""

    model_config = ConfigDict(frozen=True)

    output_dir: str = "data/outputs"


class AppConfig(BaseModel):
    """Complete application configuration — the single source of truth.

    All pipeline stages and CLI commands receive an ``AppConfig`` instance.
    It is constructed by ``load_config()`` which merges TOML + .env.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    logging: LoggingConfig = LoggingConfig()
    pipeline: PipelineConfig = PipelineConfig()
    signals: SignalsConfig = SignalsConfig()
    scoring: ScoringConfig = ScoringConfig()
    similarity: SimilarityConfig = SimilarityConfig()
    forecast: ForecastConfig = ForecastConfig()
    recommendations: RecommendationsConfig = RecommendationsConfig()
    llm: LLMConfig = LLMConfig()
    reporting: ReportingConfig = ReportingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    # 1. Load .env file (silently skip if missing)
    load_dotenv(dotenv_path=root / ".env", override=False)

    # 2. Load TOML config
    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    # 3. Apply PROJECT_PULSE_* environment variable overrides
    raw = _apply_env_overrides(raw)

    # 4. Build and validate AppConfig
    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply PROJECT_PULSE_* env vars to the raw config dict.

    Supported overrides:
      PROJECT_PULSE_DB_PATH      → raw["database"]["db_path"]
      PROJECT_PULSE_LOG_LEVEL    → raw["logging"]["level"]
      PROJECT_PULSE_DEBUG        → raw["debug"]
      PROJECT_PULSE_LLM_API_KEY  → raw["llm"]["api_key"]
      PROJECT_PULSE_LLM_ENABLED  → raw["llm"]["enabled"]
    """
    if db_path := os.environ.get("PROJECT_PULSE_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if log_level := os.environ.get("PROJECT_PULSE_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if debug := os.environ.get("PROJECT_PULSE_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    if api_key := os.environ.get("PROJECT_PULSE_LLM_API_KEY"):
        raw.setdefault("llm", {})["api_key"] = api_key

    if llm_enabled := os.environ.get("PROJECT_PULSE_LLM_ENABLED"):
        raw.setdefault("llm", {})["enabled"] = llm_enabled.lower() in ("1", "true", "yes")

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        pipeline=PipelineConfig(**raw.get("pipeline", {})),
        signals=SignalsConfig(**raw.get("signals", {})),
        scoring=ScoringConfig(**raw.get("scoring", {})),
        similarity=SimilarityConfig(**raw.get("similarity", {})),
        forecast=ForecastConfig(**raw.get("forecast", {})),
        recommendations=RecommendationsConfig(**raw.get("recommendations", {})),
        llm=LLMConfig(**raw.get("llm", {})),
        reporting=ReportingConfig(**raw.get("reporting", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
