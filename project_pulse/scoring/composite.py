"""
Composite score computation for a project.

Four 0–100 scores are produced from the derived signals:

  project_health     = 100 - weighted_avg(risk components, health_weights)
  risk               = weighted_avg(risk components, risk_weights)
  client_value       = weighted_avg(revenue, margin, engagement, sentiment, stability)
  upsell_likelihood  = weighted_avg(client_value, need_signal, commercial_stability)

Risk components (each clamped to [0, 100])
------------------------------------------
  waiting    = waiting_on_client_days / 6 * 100
  response   = response_time_avg / 720 * 100
  blockers   = blockers_age / 7 * 100
  stage      = stage_overdue / 5 * 100
  agreement  = agreement_overdue_count * 40
  sentiment  = |sentiment_trend| * 300   (only when the trend is negative)
  scope      = scope_creep_rate * 250
  budget     = (budget_burn_rate - 1) * 500   (only above 1.0)
  margin     = margin_risk * 100
  activity   = activity_drop * 100

Every component is a clamped non-decreasing transform of its risk-increasing
signal and all weights are non-negative, so raising any such signal can
never lower ``risk`` (nor raise ``project_health``).
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Optional

from project_pulse.config import ScoringConfig
from project_pulse.models.evidence import EvidenceRef, dedupe_evidence
from project_pulse.models.signal import Score, ScoreFactor, Signal, SignalState
from project_pulse.taxonomy.signal_taxonomy import ScoreType, SignalKey
from project_pulse.utils.time_utils import ensure_utc


def _clamp(v: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, v))


def _value(signals: dict[str, Signal], key: str) -> float:
    sig = signals.get(key)
    return sig.value if sig is not None else 0.0


def _detail(signals: dict[str, Signal], key: str, field: str) -> float:
    sig = signals.get(key)
    if sig is None:
        return 0.0
    raw = sig.details.get(field)
    return float(raw) if isinstance(raw, (int, float)) else 0.0


def normalize_components(signals: dict[str, Signal]) -> dict[str, float]:
    """Map raw signal values to 0–100 risk components."""
    sentiment = _value(signals, SignalKey.SENTIMENT_TREND)
    burn = _value(signals, SignalKey.BUDGET_BURN_RATE)
    return {
        "waiting": _clamp(_value(signals, SignalKey.WAITING_ON_CLIENT_DAYS) / 6 * 100),
        "response": _clamp(_value(signals, SignalKey.RESPONSE_TIME_AVG) / 720 * 100),
        "blockers": _clamp(_value(signals, SignalKey.BLOCKERS_AGE) / 7 * 100),
        "stage": _clamp(_value(signals, SignalKey.STAGE_OVERDUE) / 5 * 100),
        "agreement": _clamp(_value(signals, SignalKey.AGREEMENT_OVERDUE_COUNT) * 40),
        "sentiment": _clamp(abs(sentiment) * 300) if sentiment < 0 else 0.0,
        "scope": _clamp(_value(signals, SignalKey.SCOPE_CREEP_RATE) * 250),
        "budget": _clamp((burn - 1.0) * 500) if burn > 1.0 else 0.0,
        "margin": _clamp(_value(signals, SignalKey.MARGIN_RISK) * 100),
        "activity": _clamp(_value(signals, SignalKey.ACTIVITY_DROP) * 100),
    }


def weighted_average(
    components: dict[str, float],
    weights: dict[str, float],
) -> tuple[float, list[ScoreFactor]]:
    """Weighted mean of ``components`` over the keys present in ``weights``.

    Returns:
        ``(value, factors)``; ``value`` is 0 when all weights are zero.
    """
    total_weight = sum(w for k, w in weights.items() if k in components)
    factors: list[ScoreFactor] = []
    if total_weight <= 0:
        return 0.0, factors
    acc = 0.0
    for key, weight in weights.items():
        if key not in components:
            continue
        contribution = components[key] * weight / total_weight
        acc += contribution
        factors.append(
            ScoreFactor(
                key=key,
                value=round(components[key], 4),
                weight=weight,
                contribution=round(contribution, 4),
            )
        )
    return acc, factors


def level_for(score_type: str, value: float) -> str:
    """Bucket a score into ``low``/``medium``/``high``/``critical``."""
    if score_type == ScoreType.PROJECT_HEALTH:
        if value < 40:
            return "critical"
        if value < 60:
            return "high"
        if value < 75:
            return "medium"
        return "low"
    if score_type == ScoreType.RISK:
        if value >= 80:
            return "critical"
        if value >= 65:
            return "high"
        if value >= 45:
            return "medium"
        return "low"
    if score_type == ScoreType.CLIENT_VALUE:
        if value >= 80:
            return "high"
        if value >= 60:
            return "medium"
        if value < 25:
            return "critical"
        return "low"
    if value >= 80:
        return "critical"
    if value >= 65:
        return "high"
    if value >= 40:
        return "medium"
    return "low"


def _merge_evidence(
    signals: dict[str, Signal],
    keys: Iterable[str],
    cap: int,
    extra: Iterable[EvidenceRef] = (),
) -> list[EvidenceRef]:
    refs: list[EvidenceRef] = []
    for key in keys:
        sig = signals.get(key)
        if sig is not None:
            refs.extend(sig.evidence_refs)
    refs.extend(extra)
    return dedupe_evidence(refs, cap=cap)


def _count_recent(stamps: list[datetime], now: datetime, days: int = 7) -> int:
    cutoff = now - timedelta(days=days)
    return sum(1 for ts in stamps if cutoff <= ts <= now)


def score(
    signals: list[Signal],
    state: Optional[SignalState],
    now: datetime,
    config: Optional[ScoringConfig] = None,
) -> list[Score]:
    """Compute the four composite scores.

    Args:
        signals: Output of ``derive_signals``.
        state:   The folded state (needs, revenue, sentiment EWMA, deal evidence).
        now:     Reference time stamped on every score.
        config:  Weight tables.

    Returns:
        Scores in ``ScoreType`` order.
    """
    cfg = config or ScoringConfig()
    state = state or SignalState()
    now = ensure_utc(now)
    by_key = {s.signal_key: s for s in signals}
    components = normalize_components(by_key)
    all_keys = [k.value for k in SignalKey]

    risk_avg, health_factors = weighted_average(components, cfg.health_weights)
    health = _clamp(100.0 - risk_avg)
    risk, risk_factors = weighted_average(components, cfg.risk_weights)
    risk = _clamp(risk)

    ewma = state.sentiment.ewma
    client_components = {
        "revenue": _clamp(state.finance.revenue / cfg.revenue_reference * 100)
        if cfg.revenue_reference > 0 else 0.0,
        "margin": 100.0 - components["margin"],
        "engagement": _clamp(_detail(by_key, SignalKey.ACTIVITY_DROP, "events_7d") * 5),
        "sentiment": _clamp((ewma + 1.0) * 50) if ewma is not None else 50.0,
        "stability": 100.0 - risk,
    }
    client_value, client_factors = weighted_average(client_components, cfg.client_value_weights)
    client_value = _clamp(client_value)

    needs_7d = _count_recent(state.needs.events, now)
    scope_7d = _detail(by_key, SignalKey.SCOPE_CREEP_RATE, "scope_requests_7d")
    upsell_components = {
        "client_value": client_value,
        "need_signal": _clamp(needs_7d * 35 + scope_7d * 12),
        "commercial_stability": _clamp((100.0 - risk) * 0.6 + health * 0.4),
    }
    upsell, upsell_factors = weighted_average(upsell_components, cfg.upsell_weights)
    upsell = _clamp(upsell)

    all_evidence = _merge_evidence(by_key, all_keys, cfg.evidence_cap)
    client_evidence = _merge_evidence(
        by_key,
        [SignalKey.BUDGET_BURN_RATE, SignalKey.MARGIN_RISK, SignalKey.SENTIMENT_TREND,
         SignalKey.ACTIVITY_DROP],
        cfg.evidence_cap,
        extra=state.deal.evidence,
    )
    upsell_evidence = _merge_evidence(
        by_key,
        [SignalKey.SCOPE_CREEP_RATE],
        cfg.evidence_cap,
        extra=[*state.needs.evidence, *state.deal.evidence],
    )

    rows = [
        (ScoreType.PROJECT_HEALTH, health, cfg.health_weights, health_factors, all_evidence),
        (ScoreType.RISK, risk, cfg.risk_weights, risk_factors, all_evidence),
        (ScoreType.CLIENT_VALUE, client_value, cfg.client_value_weights, client_factors, client_evidence),
        (ScoreType.UPSELL_LIKELIHOOD, upsell, cfg.upsell_weights, upsell_factors, upsell_evidence),
    ]
    return [
        Score(
            score_type=score_type.value,
            value=round(value, 2),
            level=level_for(score_type, value),
            weights=dict(weights),
            factors=factors,
            evidence_refs=evidence,
            computed_at=now,
        )
        for score_type, value, weights, factors, evidence in rows
    ]


def score_map(scores: list[Score]) -> dict[str, float]:
    """Index score values by type."""
    return {s.score_type: s.value for s in scores}
