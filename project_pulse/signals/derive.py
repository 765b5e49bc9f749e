"""
Derive the ten project signals from a folded ``SignalState``.

Each signal is a single number plus a threshold status. Threshold tables
come from ``SignalsConfig.thresholds``; ``sentiment_trend`` uses the
``negative`` comparator (more negative is worse), every other signal uses
``high`` (bigger is worse).

Formulas (``now`` is the reference time)
----------------------------------------
waiting_on_client_days   days since the later of the last team message and
                         the last approval request, if no client message
                         arrived after it; else 0
response_time_avg        mean minutes from a client message to the next team
                         message
blockers_age             mean age in days of open blockers
stage_overdue            days past ``due_at`` while the stage is active
agreement_overdue_count  open agreements past their due date
sentiment_trend          ewma - prev_ewma of client sentiment
scope_creep_rate         scope requests (7d) / max(1, client requests (7d))
budget_burn_rate         cost / plan; 1.5 when cost > 0 without a plan
margin_risk              clamp((0.35 - margin) / 0.35); 1 when cost > 0 and no revenue
activity_drop            clamp((prev7 - cur7) / prev7) of daily event counts
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional

from project_pulse.config import SignalsConfig, SignalThreshold
from project_pulse.models.evidence import dedupe_evidence
from project_pulse.models.signal import Signal, SignalState
from project_pulse.taxonomy.signal_taxonomy import SignalKey, SignalStatus
from project_pulse.utils.time_utils import days_between, ensure_utc

TARGET_MARGIN = 0.35
SCOPE_WINDOW_DAYS = 7


def _clamp(v: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, v))


def classify(value: float, threshold: Optional[SignalThreshold]) -> SignalStatus:
    """Classify ``value`` against warn/critical thresholds."""
    if threshold is None:
        return SignalStatus.OK
    if threshold.comparator == "negative":
        if value <= threshold.critical:
            return SignalStatus.CRITICAL
        if value <= threshold.warn:
            return SignalStatus.WARN
        return SignalStatus.OK
    if value >= threshold.critical:
        return SignalStatus.CRITICAL
    if value >= threshold.warn:
        return SignalStatus.WARN
    return SignalStatus.OK


def waiting_on_client_days(state: SignalState, now: datetime) -> float:
    waiting = state.waiting
    anchors = [t for t in (waiting.last_team_message_at, waiting.approval_requested_at) if t]
    if not anchors:
        return 0.0
    anchor = max(anchors)
    client = waiting.last_client_message_at
    if client is not None and client >= anchor:
        return 0.0
    return max(0.0, days_between(anchor, now))


def _in_last_days(stamps: list[datetime], now: datetime, days: int) -> int:
    cutoff = now - timedelta(days=days)
    return sum(1 for ts in stamps if cutoff <= ts <= now)


def _activity_windows(state: SignalState, now: datetime) -> tuple[int, int]:
    """Return ``(cur7, prev7)`` event counts by UTC calendar day."""
    today = now.date()
    cur7 = prev7 = 0
    for day, count in state.activity.daily_counts.items():
        age = (today - datetime.fromisoformat(day).date()).days
        if 0 <= age < 7:
            cur7 += count
        elif 7 <= age < 14:
            prev7 += count
    return cur7, prev7


def _compute_values(state: SignalState, now: datetime) -> dict[str, tuple[float, dict[str, Any]]]:
    values: dict[str, tuple[float, dict[str, Any]]] = {}

    values[SignalKey.WAITING_ON_CLIENT_DAYS] = (
        waiting_on_client_days(state, now),
        {"approval_pending": state.stage.approval_pending},
    )

    resp = state.response
    values[SignalKey.RESPONSE_TIME_AVG] = (
        resp.total_minutes / resp.samples if resp.samples else 0.0,
        {"samples": resp.samples, "pending_client_messages": len(resp.pending_client_messages)},
    )

    ages = [max(0.0, days_between(ts, now)) for ts in state.blockers.open.values()]
    values[SignalKey.BLOCKERS_AGE] = (
        sum(ages) / len(ages) if ages else 0.0,
        {"open_blockers": len(ages)},
    )

    stage = state.stage
    overdue = 0.0
    if stage.status == "active" and stage.due_at is not None:
        overdue = max(0.0, days_between(stage.due_at, now))
    values[SignalKey.STAGE_OVERDUE] = (
        overdue,
        {"stage_name": stage.stage_name, "status": stage.status},
    )

    overdue_agreements = sum(
        1 for a in state.agreements.open.values() if a.due_at is not None and a.due_at < now
    )
    values[SignalKey.AGREEMENT_OVERDUE_COUNT] = (
        float(overdue_agreements),
        {"open_agreements": len(state.agreements.open)},
    )

    s = state.sentiment
    trend = s.ewma - s.prev_ewma if s.ewma is not None and s.prev_ewma is not None else 0.0
    values[SignalKey.SENTIMENT_TREND] = (trend, {"ewma": s.ewma, "samples": s.samples})

    scope_7d = _in_last_days(state.scope.requests, now, SCOPE_WINDOW_DAYS)
    client_7d = _in_last_days(state.scope.client_requests, now, SCOPE_WINDOW_DAYS)
    values[SignalKey.SCOPE_CREEP_RATE] = (
        scope_7d / max(1, client_7d),
        {"scope_requests_7d": scope_7d, "client_requests_7d": client_7d},
    )

    fin = state.finance
    if fin.planned_budget > 0:
        burn = fin.actual_cost / fin.planned_budget
    else:
        burn = 1.5 if fin.actual_cost > 0 else 0.0
    values[SignalKey.BUDGET_BURN_RATE] = (
        burn,
        {"planned_budget": fin.planned_budget, "actual_cost": fin.actual_cost},
    )

    if fin.revenue > 0:
        margin = (fin.revenue - fin.actual_cost) / fin.revenue
        margin_risk = _clamp((TARGET_MARGIN - margin) / TARGET_MARGIN)
    else:
        margin = None
        margin_risk = 1.0 if fin.actual_cost > 0 else 0.0
    values[SignalKey.MARGIN_RISK] = (
        margin_risk,
        {"revenue": fin.revenue, "margin": round(margin, 4) if margin is not None else None},
    )

    cur7, prev7 = _activity_windows(state, now)
    drop = _clamp((prev7 - cur7) / prev7) if prev7 > 0 else 0.0
    values[SignalKey.ACTIVITY_DROP] = (drop, {"events_7d": cur7, "events_prev_7d": prev7})

    return values


def derive_signals(
    state: SignalState,
    now: datetime,
    config: Optional[SignalsConfig] = None,
) -> list[Signal]:
    """Compute all signals, in ``SignalKey`` order.

    Args:
        state:  Folded signal state.
        now:    Reference time.
        config: Thresholds and evidence cap.

    Returns:
        One ``Signal`` per ``SignalKey``.
    """
    cfg = config or SignalsConfig()
    now = ensure_utc(now)
    values = _compute_values(state, now)

    signals: list[Signal] = []
    for key in SignalKey:
        value, details = values[key]
        value = round(value, 4)
        threshold = cfg.thresholds.get(key.value)
        signals.append(
            Signal(
                signal_key=key.value,
                value=value,
                status=classify(value, threshold).value,
                threshold_warn=threshold.warn if threshold else None,
                threshold_critical=threshold.critical if threshold else None,
                comparator=threshold.comparator if threshold else "high",
                details=details,
                evidence_refs=dedupe_evidence(
                    state.evidence_by_signal.get(key.value, []), cap=cfg.evidence_cap
                ),
                computed_at=now,
            )
        )
    return signals


def signal_map(signals: list[Signal]) -> dict[str, Signal]:
    """Index signals by key."""
    return {s.signal_key: s for s in signals}
