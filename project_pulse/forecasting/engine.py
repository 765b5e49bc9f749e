"""
Risk forecasting engine.

Produces one ``Forecast`` per risk type from the current signals, scores and
the project's similar past cases. Pure: no I/O, no clock reads
(``generated_at`` is the ``now`` argument).

Pipeline per risk type
----------------------
1. Normalize signals to [0, 1]:

     waiting    = waiting_on_client_days / 6
     response   = response_time_avg / 720
     blockers   = blockers_age / 7
     stage      = stage_overdue / 5
     scope      = scope_creep_rate / 0.5
     burn       = (budget_burn_rate - 1) / 0.5
     margin     = margin_risk
     sentiment  = |sentiment_trend| / 0.4   (negative trend only)
     activity   = activity_drop
     risk       = risk score / 100

2. baseline = clamp(Σ weight × normalized) with per-type weight tables,
   then raised to any triggered hard floor (``ForecastFloorsConfig``).

3. s   = similarity-weighted mean of severity/5 over matching outcomes
   p7  = (1 - case_blend) × baseline + case_blend × s
   p14 = p7  + (0.12 + 0.18·s)(1 - p7)
   p30 = p14 + (0.18 + 0.22·s)(1 - p14)

   so p7 <= p14 <= p30 always holds.

4. expected_time_to_risk_days = 60 if p30 < 0.05 else clamp((1 - p30)·40 + 2, 2, 60)
   confidence = clamp(0.35 + min(0.45, 0.08·n_cases) + min(0.2, 0.01·n_evidence))

Evidence comes only from the signals that drive that risk type, so a
forecast is publishable exactly when one of its own drivers is evidenced.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Sequence

from project_pulse.config import ForecastConfig
from project_pulse.models.evidence import EvidenceRef, dedupe_evidence
from project_pulse.models.forecast import Forecast, ForecastDriver, SimilarCaseSummary
from project_pulse.models.signal import Score, Signal
from project_pulse.models.snapshot import SimilarCase
from project_pulse.taxonomy.outcome_taxonomy import RiskType
from project_pulse.taxonomy.signal_taxonomy import ScoreType, SignalKey
from project_pulse.utils.time_utils import ensure_utc

# Normalized component -> source signal (``risk`` comes from the risk score).
COMPONENT_SIGNALS: dict[str, str] = {
    "waiting": SignalKey.WAITING_ON_CLIENT_DAYS,
    "response": SignalKey.RESPONSE_TIME_AVG,
    "blockers": SignalKey.BLOCKERS_AGE,
    "stage": SignalKey.STAGE_OVERDUE,
    "scope": SignalKey.SCOPE_CREEP_RATE,
    "burn": SignalKey.BUDGET_BURN_RATE,
    "margin": SignalKey.MARGIN_RISK,
    "sentiment": SignalKey.SENTIMENT_TREND,
    "activity": SignalKey.ACTIVITY_DROP,
}

EVIDENCE_SIGNALS: dict[str, tuple[str, ...]] = {
    RiskType.DELIVERY: (
        SignalKey.BLOCKERS_AGE, SignalKey.STAGE_OVERDUE,
        SignalKey.RESPONSE_TIME_AVG, SignalKey.ACTIVITY_DROP,
    ),
    RiskType.FINANCE: (SignalKey.BUDGET_BURN_RATE, SignalKey.MARGIN_RISK),
    RiskType.CLIENT: (
        SignalKey.WAITING_ON_CLIENT_DAYS, SignalKey.SENTIMENT_TREND,
        SignalKey.RESPONSE_TIME_AVG, SignalKey.ACTIVITY_DROP,
    ),
    RiskType.SCOPE: (
        SignalKey.SCOPE_CREEP_RATE, SignalKey.STAGE_OVERDUE, SignalKey.WAITING_ON_CLIENT_DAYS,
    ),
}


def _clamp(v: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, v))


def _value(signals: dict[str, Signal], key: str) -> float:
    sig = signals.get(key)
    return sig.value if sig is not None else 0.0


def normalize_inputs(signals: dict[str, Signal], scores: dict[str, float]) -> dict[str, float]:
    """Map signals and the risk score to [0, 1] forecast components."""
    sentiment = _value(signals, SignalKey.SENTIMENT_TREND)
    return {
        "waiting": _clamp(_value(signals, SignalKey.WAITING_ON_CLIENT_DAYS) / 6),
        "response": _clamp(_value(signals, SignalKey.RESPONSE_TIME_AVG) / 720),
        "blockers": _clamp(_value(signals, SignalKey.BLOCKERS_AGE) / 7),
        "stage": _clamp(_value(signals, SignalKey.STAGE_OVERDUE) / 5),
        "scope": _clamp(_value(signals, SignalKey.SCOPE_CREEP_RATE) / 0.5),
        "burn": _clamp((_value(signals, SignalKey.BUDGET_BURN_RATE) - 1.0) / 0.5)
        if SignalKey.BUDGET_BURN_RATE in signals else 0.0,
        "margin": _clamp(_value(signals, SignalKey.MARGIN_RISK)),
        "sentiment": _clamp(abs(sentiment) / 0.4) if sentiment < 0 else 0.0,
        "activity": _clamp(_value(signals, SignalKey.ACTIVITY_DROP)),
        "risk": _clamp(scores.get(ScoreType.RISK, 0.0) / 100),
    }


def apply_floors(
    baselines: dict[str, float],
    signals: dict[str, Signal],
    config: ForecastConfig,
) -> dict[str, float]:
    """Raise baselines to every triggered hard floor."""
    f = config.floors
    out = dict(baselines)

    def raise_to(risk_type: str, floor: float) -> None:
        out[risk_type] = max(out.get(risk_type, 0.0), floor)

    blockers = signals.get(SignalKey.BLOCKERS_AGE)
    open_blockers = int((blockers.details.get("open_blockers") or 0) if blockers else 0)

    if _value(signals, SignalKey.WAITING_ON_CLIENT_DAYS) >= f.waiting_days_trigger:
        raise_to(RiskType.CLIENT, f.waiting_floor)
    if _value(signals, SignalKey.SENTIMENT_TREND) <= f.sentiment_trigger:
        raise_to(RiskType.CLIENT, f.sentiment_floor)
    if (
        _value(signals, SignalKey.BLOCKERS_AGE) >= f.blockers_age_trigger
        and open_blockers >= f.blockers_open_trigger
    ):
        raise_to(RiskType.DELIVERY, f.blockers_floor)
    if open_blockers >= f.blocker_burst_trigger:
        raise_to(RiskType.DELIVERY, f.blocker_burst_floor)
    if _value(signals, SignalKey.STAGE_OVERDUE) >= f.stage_overdue_trigger:
        raise_to(RiskType.DELIVERY, f.stage_floor)
    if (
        _value(signals, SignalKey.BUDGET_BURN_RATE) >= f.burn_trigger
        or _value(signals, SignalKey.MARGIN_RISK) >= f.margin_trigger
    ):
        raise_to(RiskType.FINANCE, f.finance_floor)
    if _value(signals, SignalKey.SCOPE_CREEP_RATE) >= f.scope_trigger:
        raise_to(RiskType.SCOPE, f.scope_floor)
    return out


def similar_case_score(similar_cases: Iterable[SimilarCase], risk_type: str) -> float:
    """Similarity-weighted mean of ``severity / 5`` over matching outcomes."""
    weighted = total = 0.0
    for case in similar_cases:
        if case.similarity_score <= 0:
            continue
        matched = [o for o in case.outcomes_seen if o.outcome_type == risk_type]
        if not matched:
            continue
        severity = sum(o.severity for o in matched) / len(matched)
        weighted += case.similarity_score * _clamp(severity / 5)
        total += case.similarity_score
    return _clamp(weighted / total) if total > 0 else 0.0


def horizon_probabilities(
    baseline: float,
    case_score: float,
    config: ForecastConfig,
) -> tuple[float, float, float]:
    """Blend baseline with case evidence and grow it over 14/30 days."""
    p7 = _clamp((1.0 - config.case_blend) * baseline + config.case_blend * case_score)
    growth_14 = config.growth_14_base + config.growth_14_slope * case_score
    growth_30 = config.growth_30_base + config.growth_30_slope * case_score
    p14 = _clamp(p7 + growth_14 * (1.0 - p7))
    p30 = _clamp(p14 + growth_30 * (1.0 - p14))
    return p7, p14, p30


def expected_time_to_risk(p30: float) -> float:
    if p30 < 0.05:
        return 60.0
    return _clamp((1.0 - p30) * 40 + 2, 2.0, 60.0)


def _collect_evidence(
    signals: dict[str, Signal], keys: Sequence[str], cap: int
) -> list[EvidenceRef]:
    refs: list[EvidenceRef] = []
    for key in keys:
        sig = signals.get(key)
        if sig is not None:
            refs.extend(sig.evidence_refs)
    return dedupe_evidence(refs, cap=cap)


def forecast(
    project_id: str,
    signals: Iterable[Signal],
    scores: Iterable[Score],
    similar_cases: Sequence[SimilarCase],
    now: datetime,
    config: Optional[ForecastConfig] = None,
) -> list[Forecast]:
    """Compute 7/14/30-day forecasts for every risk type.

    Args:
        project_id:    Project being forecast.
        signals:       Current derived signals.
        scores:        Current composite scores.
        similar_cases: Ranked similar cases (with their outcomes).
        now:           Stamped as ``generated_at``.
        config:        Weights, blend, growth and floors.

    Returns:
        Forecasts in ``RiskType`` order.
    """
    cfg = config or ForecastConfig()
    now = ensure_utc(now)
    by_key = {s.signal_key: s for s in signals}
    score_values = {sc.score_type: sc.value for sc in scores}
    components = normalize_inputs(by_key, score_values)

    baselines: dict[str, float] = {}
    drivers_by_type: dict[str, list[ForecastDriver]] = {}
    for risk_type in RiskType:
        weights = cfg.baseline_weights.get(risk_type.value, {})
        drivers = [
            ForecastDriver(
                key=COMPONENT_SIGNALS.get(name, "risk_score"),
                value=round(components.get(name, 0.0), 4),
                weight=weight,
                contribution=round(weight * components.get(name, 0.0), 4),
            )
            for name, weight in weights.items()
        ]
        baselines[risk_type.value] = _clamp(
            sum(w * components.get(name, 0.0) for name, w in weights.items())
        )
        drivers.sort(key=lambda d: d.contribution, reverse=True)
        drivers_by_type[risk_type.value] = drivers[: cfg.drivers_limit]

    baselines = apply_floors(baselines, by_key, cfg)

    forecasts: list[Forecast] = []
    for risk_type in RiskType:
        rt = risk_type.value
        case_score = similar_case_score(similar_cases, rt)
        p7, p14, p30 = horizon_probabilities(baselines[rt], case_score, cfg)
        evidence = _collect_evidence(by_key, EVIDENCE_SIGNALS[risk_type], cfg.evidence_cap)
        confidence = _clamp(
            0.35 + min(0.45, 0.08 * len(similar_cases)) + min(0.2, 0.01 * len(evidence))
        )
        forecasts.append(
            Forecast(
                project_id=project_id,
                risk_type=rt,
                probability_7d=round(p7, 4),
                probability_14d=round(p14, 4),
                probability_30d=round(p30, 4),
                expected_time_to_risk_days=round(expected_time_to_risk(p30), 2),
                confidence=round(confidence, 4),
                drivers=drivers_by_type[rt],
                similar_cases=[
                    SimilarCaseSummary(
                        case_project_id=c.case_project_id,
                        case_project_name=c.case_project_name,
                        similarity_score=c.similarity_score,
                        matched_outcomes=sum(1 for o in c.outcomes_seen if o.outcome_type == rt),
                    )
                    for c in similar_cases[: cfg.similar_cases_limit]
                ],
                evidence_refs=evidence,
                publishable=bool(evidence),
                generated_at=now,
            )
        )
    return forecasts


def forecast_map(forecasts: Iterable[Forecast]) -> dict[str, Forecast]:
    """Index forecasts by risk type."""
    return {f.risk_type: f for f in forecasts}
