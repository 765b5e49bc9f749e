"""
Case signature construction.

A signature summarises one project over a trailing 7/14/30-day window of
snapshots. It is built from three independent parts:

  1. vector   — 14 bounded numbers (window averages and deltas)
  2. bigrams  — ``a>b`` event-type transitions from the window's event log
  3. context  — budget bucket, project type and deal stage bucket

Vector layout
-------------
  idx  feature                           transform
  ---  --------------------------------  ----------------------------
   0   waiting_on_client_days (avg)      / 7
   1   blockers_age (avg)                / 7
   2   stage_overdue (avg)               / 5
   3   scope_creep_rate (avg)            / 0.5
   4   budget_burn_rate (avg)            (x - 1) / 0.5
   5   margin_risk (avg)                 as is
   6   activity_drop (avg)               as is
   7   sentiment_trend (avg)             |min(x, 0)| / 0.4
   8   risk score (avg)                  / 100
   9   project_health (avg)              1 - x / 100
  10   events_7d aggregate (avg)         / 50
  11   risk score delta                  / 40, in [-1, 1]
  12   waiting delta                     / 7,  in [-1, 1]
  13   scope delta                       / 0.4, in [-1, 1]

Indices 0–10 are clamped to [0, 1]; deltas (last minus first) to [-1, 1].
All values are rounded to 5 decimals so identical inputs hash identically.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence

from project_pulse.models.snapshot import Snapshot
from project_pulse.taxonomy.signal_taxonomy import ScoreType, SignalKey
from project_pulse.utils.hashing import sha1_of

SIGNATURE_DIMENSIONS = 14
MAX_BIGRAMS = 1000


def _clamp(v: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, v))


def _avg(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _delta(values: Sequence[float]) -> float:
    return values[-1] - values[0] if len(values) >= 2 else 0.0


def vector_from_snapshots(snapshots: Sequence[Snapshot]) -> tuple[list[float], dict[str, float]]:
    """Compute the 14-dim vector and its readable features.

    Args:
        snapshots: Window snapshots, oldest first.

    Returns:
        ``(vector, features)``.
    """
    def series(key: str) -> list[float]:
        return [s.signal_value(key) for s in snapshots]

    waiting = series(SignalKey.WAITING_ON_CLIENT_DAYS)
    blockers = series(SignalKey.BLOCKERS_AGE)
    stage = series(SignalKey.STAGE_OVERDUE)
    scope = series(SignalKey.SCOPE_CREEP_RATE)
    burn = series(SignalKey.BUDGET_BURN_RATE)
    margin = series(SignalKey.MARGIN_RISK)
    activity = series(SignalKey.ACTIVITY_DROP)
    sentiment = series(SignalKey.SENTIMENT_TREND)
    risk = [s.score_value(ScoreType.RISK, 0.0) for s in snapshots]
    health = [s.score_value(ScoreType.PROJECT_HEALTH, 100.0) for s in snapshots]
    events_7d = [float(s.aggregates.get("events_7d", 0) or 0) for s in snapshots]

    vector = [
        _clamp(_avg(waiting) / 7),
        _clamp(_avg(blockers) / 7),
        _clamp(_avg(stage) / 5),
        _clamp(_avg(scope) / 0.5),
        _clamp((_avg(burn) - 1.0) / 0.5),
        _clamp(_avg(margin)),
        _clamp(_avg(activity)),
        _clamp(abs(min(_avg(sentiment), 0.0)) / 0.4),
        _clamp(_avg(risk) / 100),
        _clamp(1.0 - _avg(health) / 100),
        _clamp(_avg(events_7d) / 50),
        _clamp(_delta(risk) / 40, -1.0, 1.0),
        _clamp(_delta(waiting) / 7, -1.0, 1.0),
        _clamp(_delta(scope) / 0.4, -1.0, 1.0),
    ]

    features = {
        "waiting_avg": round(_avg(waiting), 4),
        "blockers_avg": round(_avg(blockers), 4),
        "stage_overdue_avg": round(_avg(stage), 4),
        "scope_creep_avg": round(_avg(scope), 4),
        "burn_rate_avg": round(_avg(burn), 4),
        "margin_risk_avg": round(_avg(margin), 4),
        "activity_drop_avg": round(_avg(activity), 4),
        "sentiment_trend_avg": round(_avg(sentiment), 4),
        "risk_score_avg": round(_avg(risk), 4),
        "health_score_avg": round(_avg(health), 4),
        "events_7d_avg": round(_avg(events_7d), 4),
        "waiting_delta": round(_delta(waiting), 4),
        "risk_delta": round(_delta(risk), 4),
    }
    return [round(v, 5) for v in vector], features


def build_event_bigrams(event_types: Iterable[str]) -> list[str]:
    """Consecutive ``a>b`` transitions, in log order (blank types skipped)."""
    cleaned = [t.strip() for t in event_types if t and t.strip()]
    bigrams = [f"{a}>{b}" for a, b in zip(cleaned, cleaned[1:])]
    return bigrams[-MAX_BIGRAMS:]


def budget_bucket(amount: Optional[float]) -> str:
    value = float(amount or 0.0)
    if value >= 200_000:
        return "xl"
    if value >= 100_000:
        return "lg"
    if value >= 50_000:
        return "md"
    if value >= 10_000:
        return "sm"
    return "xs"


def project_type_from_name(name: Optional[str]) -> str:
    """Keyword classifier; anything unmatched is a ``delivery`` project."""
    text = (name or "").lower()
    for keyword in ("support", "growth", "migration", "integration"):
        if keyword in text:
            return keyword
    return "delivery"


def stage_bucket(stage: Optional[str]) -> str:
    text = (stage or "").lower()
    for keyword in ("proposal", "negotiation", "won", "lost"):
        if keyword in text:
            return keyword
    return "discovery"


def build_context(project_name: Optional[str], snapshots: Sequence[Snapshot]) -> dict[str, str]:
    """Categorical context from the latest snapshot's aggregates."""
    latest: dict[str, Any] = snapshots[-1].aggregates if snapshots else {}
    return {
        "budget_bucket": budget_bucket(latest.get("pipeline_amount")),
        "project_type": project_type_from_name(project_name),
        "stage_bucket": stage_bucket(latest.get("deal_stage")),
    }


def signature_hash(vector: Sequence[float], bigrams: Iterable[str]) -> str:
    """Content hash of the vector and the (sorted, unique) bigram set."""
    return sha1_of(list(vector), sorted(set(bigrams)))
