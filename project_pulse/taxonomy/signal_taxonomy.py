"""
Signal and score taxonomy.

  - ``SignalKey``     — the ten derived project signals.
  - ``SignalStatus``  — threshold classification of a signal value.
  - ``ScoreType``     — the four composite scores.
  - ``ScoreLevel``    — bucketed level of a composite score.

This module has NO imports from any other ``project_pulse`` package.
"""

from enum import StrEnum


class SignalKey(StrEnum):
    """Derived signals, in the order ``derive_signals`` emits them."""

    WAITING_ON_CLIENT_DAYS = "waiting_on_client_days"
    """Days the project has been waiting for a client reply or approval."""

    RESPONSE_TIME_AVG = "response_time_avg"
    """Mean team response time to client messages, in minutes."""

    BLOCKERS_AGE = "blockers_age"
    """Mean age in days of currently open blockers."""

    STAGE_OVERDUE = "stage_overdue"
    """Days the active stage is past its due date."""

    AGREEMENT_OVERDUE_COUNT = "agreement_overdue_count"
    """Open agreements whose due date has passed."""

    SENTIMENT_TREND = "sentiment_trend"
    """Change in the client sentiment EWMA; negative is worse."""

    SCOPE_CREEP_RATE = "scope_creep_rate"
    """Scope change requests per client request over the last 7 days."""

    BUDGET_BURN_RATE = "budget_burn_rate"
    """Actual cost divided by planned budget."""

    MARGIN_RISK = "margin_risk"
    """0–1 shortfall of margin against the 35% target."""

    ACTIVITY_DROP = "activity_drop"
    """Relative drop of event volume, last 7 days vs the 7 before."""


class SignalStatus(StrEnum):
    """Threshold classification of a signal."""

    OK = "ok"
    WARN = "warn"
    CRITICAL = "critical"


class ScoreType(StrEnum):
    """Composite 0–100 scores."""

    PROJECT_HEALTH = "project_health"
    """Higher is healthier; 100 minus the weighted risk average."""

    RISK = "risk"
    """Higher is riskier; monotone in every risk-increasing signal."""

    CLIENT_VALUE = "client_value"
    """Revenue, margin, engagement and stability of the account."""

    UPSELL_LIKELIHOOD = "upsell_likelihood"
    """Chance the client buys more, given value, needs and stability."""


class ScoreLevel(StrEnum):
    """Bucketed level of a composite score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
