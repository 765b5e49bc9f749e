"""
Incremental signal state aggregator — a pure fold over the event log.

    apply(prior_state, events, now) -> (state, last_event_id)

Contract
--------
- The prior state is deep-copied; the caller's instance is never mutated.
- Events are applied in ``id`` order. Events at or below the prior cursor
  are skipped, so replaying an overlapping batch is a no-op.
- Unknown event types (and payloads that fail their schema) only advance the
  cursor.
- Every collection is bounded after the fold: timestamp lists keep 35 days
  (max 400 entries), daily activity keeps 30 days, open blockers and
  agreements expire after 90 days, evidence is capped per signal.
- The result depends only on ``(prior_state, events, now)``; the clock is
  never read here. Replaying the whole log from ``SignalState()`` with the
  same ``now`` reproduces the incrementally built state.

Persistence
-----------
``load_state()`` parses a persisted state and raises ``CorruptedStateError``
on malformed JSON, schema violations or an unknown ``version``. It never
silently resets: a reset would re-derive signals from a partial log.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional

from pydantic import ValidationError

from project_pulse.config import SignalsConfig
from project_pulse.errors import CorruptedStateError
from project_pulse.models.event import (
    AgreementCreatedPayload,
    ApprovalApprovedPayload,
    BlockerResolvedPayload,
    DealUpdatedPayload,
    Event,
    FinanceEntryCreatedPayload,
    MessageSentPayload,
    NeedDetectedPayload,
    RiskDetectedPayload,
    ScopeChangeRequestedPayload,
    StageCompletedPayload,
    StageStartedPayload,
    TaskBlockedPayload,
    UnknownPayload,
)
from project_pulse.models.evidence import EvidenceRef, dedupe_evidence
from project_pulse.models.signal import STATE_VERSION, AgreementEntry, SignalState
from project_pulse.taxonomy.signal_taxonomy import SignalKey
from project_pulse.utils.time_utils import day_key, ensure_utc

logger = logging.getLogger(__name__)

MAX_LIST_ITEMS = 400
LIST_RETENTION_DAYS = 35
ACTIVITY_RETENTION_DAYS = 30
OPEN_ITEM_RETENTION_DAYS = 90

TEAM_SENDERS: frozenset[str] = frozenset({"team", "agent", "pm"})

_BUDGET_ENTRIES: frozenset[str] = frozenset({"planned_budget", "budget_plan", "budget"})
_COST_ENTRIES: frozenset[str] = frozenset({"cost", "expense"})
_REVENUE_ENTRIES: frozenset[str] = frozenset({"revenue", "invoice", "payment"})

_RISK_SIGNAL: dict[str, str] = {
    "delivery": SignalKey.BLOCKERS_AGE,
    "finance": SignalKey.BUDGET_BURN_RATE,
    "client": SignalKey.WAITING_ON_CLIENT_DAYS,
    "scope": SignalKey.SCOPE_CREEP_RATE,
}


# ── Persistence ───────────────────────────────────────────────────────────────


def load_state(raw: Any, project_id: Optional[str] = None) -> SignalState:
    """Parse a persisted signal state.

    Args:
        raw:        JSON string/bytes, an already-decoded dict, or ``None``
                    (no state yet — returns an empty ``SignalState``).
        project_id: Used only for the error message.

    Raises:
        CorruptedStateError: Malformed JSON, schema violation or version mismatch.
    """
    if raw is None or raw == "" or raw == b"":
        return SignalState()

    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CorruptedStateError(project_id, f"invalid JSON ({exc.msg})") from exc
    else:
        data = raw

    if not isinstance(data, dict):
        raise CorruptedStateError(project_id, "state is not a JSON object")

    version = data.get("version")
    if version != STATE_VERSION:
        raise CorruptedStateError(
            project_id, f"unsupported state version {version!r} (expected {STATE_VERSION})"
        )

    try:
        return SignalState.model_validate(data)
    except ValidationError as exc:
        raise CorruptedStateError(
            project_id, f"schema violation ({exc.error_count()} errors)"
        ) from exc


def dump_state(state: SignalState) -> str:
    """Serialise a state for persistence."""
    return state.model_dump_json()


# ── Fold ──────────────────────────────────────────────────────────────────────


def apply(
    prior_state: Optional[SignalState],
    events: Iterable[Event],
    now: datetime,
    config: Optional[SignalsConfig] = None,
) -> tuple[SignalState, int]:
    """Fold ``events`` into a copy of ``prior_state``.

    Args:
        prior_state: State to start from (``None`` = empty state).
        events:      Events for one project, in any order.
        now:         Reference time for pruning.
        config:      Signal settings (evidence cap, sentiment alpha).

    Returns:
        ``(new_state, last_event_id)``.
    """
    cfg = config or SignalsConfig()
    state = (prior_state or SignalState()).model_copy(deep=True)
    now = ensure_utc(now)

    applied = 0
    for event in sorted(events, key=lambda e: e.id):
        if event.id <= state.cursor.last_event_id:
            continue
        _apply_event(state, event, cfg)
        state.cursor.last_event_id = event.id
        state.cursor.last_event_ts = event.event_ts
        applied += 1

    _prune(state, now, cfg)
    logger.debug(
        "Folded %d events | last_event_id=%d", applied, state.cursor.last_event_id
    )
    return state, state.cursor.last_event_id


def _apply_event(state: SignalState, event: Event, cfg: SignalsConfig) -> None:
    payload = event.typed_payload()
    if isinstance(payload, UnknownPayload):
        return
    handler = _HANDLERS.get(type(payload))
    if handler is not None:
        handler(state, payload, event, cfg)
    day = day_key(event.event_ts)
    state.activity.daily_counts[day] = state.activity.daily_counts.get(day, 0) + 1
    _attach(state, SignalKey.ACTIVITY_DROP, event.evidence_refs, cfg)


def _attach(
    state: SignalState,
    signal_key: str,
    refs: list[EvidenceRef],
    cfg: SignalsConfig,
) -> None:
    """Prepend ``refs`` to a signal's evidence (newest first, deduped, capped)."""
    if not refs:
        return
    existing = state.evidence_by_signal.get(signal_key, [])
    state.evidence_by_signal[signal_key] = dedupe_evidence(
        [*refs, *existing], cap=cfg.evidence_cap
    )


def _later(current: Optional[datetime], ts: datetime) -> datetime:
    return ts if current is None or ts > current else current


# ── Per-type handlers ─────────────────────────────────────────────────────────


def _on_message(state: SignalState, p: MessageSentPayload, event: Event, cfg: SignalsConfig) -> None:
    ts = event.event_ts
    refs = event.evidence_refs
    if p.sender == "client":
        state.waiting.last_client_message_at = _later(state.waiting.last_client_message_at, ts)
        state.response.pending_client_messages.append(ts)
        state.scope.client_requests.append(ts)
        _attach(state, SignalKey.WAITING_ON_CLIENT_DAYS, refs, cfg)
        _attach(state, SignalKey.RESPONSE_TIME_AVG, refs, cfg)
    elif p.sender in TEAM_SENDERS:
        state.waiting.last_team_message_at = _later(state.waiting.last_team_message_at, ts)
        pending = sorted(state.response.pending_client_messages)
        if pending and pending[0] <= ts:
            asked_at = pending.pop(0)
            state.response.total_minutes += max(0.0, (ts - asked_at).total_seconds() / 60.0)
            state.response.samples += 1
            _attach(state, SignalKey.RESPONSE_TIME_AVG, refs, cfg)
        state.response.pending_client_messages = pending
        _attach(state, SignalKey.WAITING_ON_CLIENT_DAYS, refs, cfg)

    if p.sentiment_score is not None:
        s = state.sentiment
        s.prev_ewma = s.ewma
        if s.ewma is None:
            s.ewma = p.sentiment_score
        else:
            alpha = cfg.sentiment_alpha
            s.ewma = alpha * p.sentiment_score + (1.0 - alpha) * s.ewma
        s.samples += 1
        _attach(state, SignalKey.SENTIMENT_TREND, refs, cfg)


def _on_stage_started(state: SignalState, p: StageStartedPayload, event: Event, cfg: SignalsConfig) -> None:
    stage = state.stage
    stage.stage_id = p.stage_id
    stage.stage_name = p.stage_name
    stage.status = "active"
    stage.started_at = event.event_ts
    stage.due_at = p.due_at
    stage.approval_pending = p.approval_pending
    _attach(state, SignalKey.STAGE_OVERDUE, event.evidence_refs, cfg)
    if p.approval_pending:
        state.waiting.approval_requested_at = _later(
            state.waiting.approval_requested_at, event.event_ts
        )
        _attach(state, SignalKey.WAITING_ON_CLIENT_DAYS, event.evidence_refs, cfg)


def _on_stage_completed(state: SignalState, p: StageCompletedPayload, event: Event, cfg: SignalsConfig) -> None:
    if p.stage_id is not None and p.stage_id != state.stage.stage_id:
        return
    state.stage.status = "completed"
    state.stage.approval_pending = False
    _attach(state, SignalKey.STAGE_OVERDUE, event.evidence_refs, cfg)


def _on_agreement_created(state: SignalState, p: AgreementCreatedPayload, event: Event, cfg: SignalsConfig) -> None:
    key = p.agreement_id or f"event:{event.id}"
    state.agreements.open[key] = AgreementEntry(created_at=event.event_ts, due_at=p.due_at)
    _attach(state, SignalKey.AGREEMENT_OVERDUE_COUNT, event.evidence_refs, cfg)


def _on_approval(state: SignalState, p: ApprovalApprovedPayload, event: Event, cfg: SignalsConfig) -> None:
    if p.agreement_id:
        state.agreements.open.pop(p.agreement_id, None)
    state.stage.approval_pending = False
    state.waiting.approval_requested_at = None
    _attach(state, SignalKey.AGREEMENT_OVERDUE_COUNT, event.evidence_refs, cfg)


def _on_task_blocked(state: SignalState, p: TaskBlockedPayload, event: Event, cfg: SignalsConfig) -> None:
    key = p.blocker_key or f"event:{event.id}"
    state.blockers.open.setdefault(key, event.event_ts)
    _attach(state, SignalKey.BLOCKERS_AGE, event.evidence_refs, cfg)


def _on_blocker_resolved(state: SignalState, p: BlockerResolvedPayload, event: Event, cfg: SignalsConfig) -> None:
    if p.blocker_key:
        state.blockers.open.pop(p.blocker_key, None)
    _attach(state, SignalKey.BLOCKERS_AGE, event.evidence_refs, cfg)


def _on_deal_updated(state: SignalState, p: DealUpdatedPayload, event: Event, cfg: SignalsConfig) -> None:
    deal = state.deal
    if p.deal_id is not None:
        deal.deal_id = p.deal_id
    if p.stage is not None:
        deal.stage = p.stage
    if p.amount is not None:
        deal.amount = p.amount
    deal.updated_at = _later(deal.updated_at, event.event_ts)
    deal.evidence = dedupe_evidence([*event.evidence_refs, *deal.evidence], cap=cfg.evidence_cap)


def _on_finance_entry(state: SignalState, p: FinanceEntryCreatedPayload, event: Event, cfg: SignalsConfig) -> None:
    amount = abs(p.amount)
    entry = p.entry_type or ""
    if entry in _BUDGET_ENTRIES:
        state.finance.planned_budget += amount
    elif entry in _COST_ENTRIES:
        state.finance.actual_cost += amount
    elif entry in _REVENUE_ENTRIES:
        state.finance.revenue += amount
    else:
        return
    _attach(state, SignalKey.BUDGET_BURN_RATE, event.evidence_refs, cfg)
    _attach(state, SignalKey.MARGIN_RISK, event.evidence_refs, cfg)


def _on_risk_detected(state: SignalState, p: RiskDetectedPayload, event: Event, cfg: SignalsConfig) -> None:
    family = (p.risk_type or "").removesuffix("_risk")
    signal_key = _RISK_SIGNAL.get(family)
    if signal_key is not None:
        _attach(state, signal_key, event.evidence_refs, cfg)


def _on_scope_change(state: SignalState, p: ScopeChangeRequestedPayload, event: Event, cfg: SignalsConfig) -> None:
    state.scope.requests.append(event.event_ts)
    _attach(state, SignalKey.SCOPE_CREEP_RATE, event.evidence_refs, cfg)


def _on_need_detected(state: SignalState, p: NeedDetectedPayload, event: Event, cfg: SignalsConfig) -> None:
    state.needs.events.append(event.event_ts)
    state.needs.evidence = dedupe_evidence(
        [*event.evidence_refs, *state.needs.evidence], cap=cfg.evidence_cap
    )


_HANDLERS: dict[type, Callable[[SignalState, Any, Event, SignalsConfig], None]] = {
    MessageSentPayload: _on_message,
    StageStartedPayload: _on_stage_started,
    StageCompletedPayload: _on_stage_completed,
    AgreementCreatedPayload: _on_agreement_created,
    ApprovalApprovedPayload: _on_approval,
    TaskBlockedPayload: _on_task_blocked,
    BlockerResolvedPayload: _on_blocker_resolved,
    DealUpdatedPayload: _on_deal_updated,
    FinanceEntryCreatedPayload: _on_finance_entry,
    RiskDetectedPayload: _on_risk_detected,
    ScopeChangeRequestedPayload: _on_scope_change,
    NeedDetectedPayload: _on_need_detected,
}


# ── Pruning ───────────────────────────────────────────────────────────────────


def _prune_timestamps(values: list[datetime], cutoff: datetime) -> list[datetime]:
    kept = sorted(ts for ts in values if ts >= cutoff)
    return kept[-MAX_LIST_ITEMS:]


def _prune(state: SignalState, now: datetime, cfg: SignalsConfig) -> None:
    list_cutoff = now - timedelta(days=LIST_RETENTION_DAYS)
    state.response.pending_client_messages = _prune_timestamps(
        state.response.pending_client_messages, list_cutoff
    )
    state.scope.requests = _prune_timestamps(state.scope.requests, list_cutoff)
    state.scope.client_requests = _prune_timestamps(state.scope.client_requests, list_cutoff)
    state.needs.events = _prune_timestamps(state.needs.events, list_cutoff)

    activity_cutoff = (now - timedelta(days=ACTIVITY_RETENTION_DAYS)).date().isoformat()
    state.activity.daily_counts = {
        day: n for day, n in sorted(state.activity.daily_counts.items())
        if day >= activity_cutoff
    }

    open_cutoff = now - timedelta(days=OPEN_ITEM_RETENTION_DAYS)
    state.blockers.open = {
        k: ts for k, ts in state.blockers.open.items() if ts >= open_cutoff
    }
    state.agreements.open = {
        k: a for k, a in state.agreements.open.items() if a.created_at >= open_cutoff
    }

    for key, refs in list(state.evidence_by_signal.items()):
        state.evidence_by_signal[key] = refs[: cfg.evidence_cap]
    state.needs.evidence = state.needs.evidence[: cfg.evidence_cap]
    state.deal.evidence = state.deal.evidence[: cfg.evidence_cap]
