"""
Daily snapshot builder and case outcome derivation.

``SnapshotBuilder.build(project_id, snapshot_date)`` freezes the current
signals and scores of a project into one snapshot row, then derives the
day's adverse outcomes and inserts them (insert-or-ignore).

Outcome rules (fixed thresholds, not the tunable signal thresholds)
-------------------------------------------------------------------
  delivery_risk  blockers_age > 5  or stage_overdue > 3  or risk >= 75
                 severity 5 when risk >= 85, else 4
  finance_risk   budget_burn_rate >= 1.2  or margin_risk >= 0.4
                 severity 5 when burn >= 1.3, else 4
  client_risk    waiting_on_client_days >= 4  or sentiment_trend <= -0.3
                 or project_health <= 45
                 severity 5 when waiting >= 6, else 4
  scope_risk     scope_creep_rate >= 0.35
                 severity 5 when scope >= 0.5, else 4

A same-day ``deal_updated`` event whose stage reads lost/churn/frozen/stalled
also yields a severity-4 ``client_risk`` outcome backed by the CRM record.

Rebuilding a day overwrites that day's snapshot only; outcome dedupe keys
are content hashes, so rebuilding never duplicates outcomes.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

from project_pulse.db.repositories.event_repo import EventRepository
from project_pulse.db.repositories.signal_repo import SignalRepository, SignalStateRepository
from project_pulse.db.repositories.snapshot_repo import SnapshotRepository
from project_pulse.models.event import Event
from project_pulse.models.evidence import EvidenceRef, dedupe_evidence
from project_pulse.models.signal import Score, Signal, SignalState
from project_pulse.models.snapshot import CaseOutcome, Snapshot, SnapshotSignal
from project_pulse.taxonomy.event_taxonomy import EventType
from project_pulse.taxonomy.outcome_taxonomy import RiskType
from project_pulse.taxonomy.signal_taxonomy import ScoreType, SignalKey
from project_pulse.utils.hashing import sha1_text
from project_pulse.utils.time_utils import day_bounds, end_of_day, iso_z

logger = logging.getLogger(__name__)

DEGRADED_DEAL_STAGES: tuple[str, ...] = ("lost", "churn", "frozen", "stalled")
OUTCOME_EVIDENCE_CAP = 20


def _clamp(v: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, v))


def normalize_signal_risk(signal: Signal) -> float:
    """Map a signal to a 0–1 risk, respecting its comparator direction.

    ``high`` signals map to ``value / critical``; ``negative`` signals map to
    ``(warn - value) / (warn - critical)``. Without usable thresholds the
    status decides: critical 0.9, warn 0.6, ok 0.1.
    """
    warn, critical = signal.threshold_warn, signal.threshold_critical
    if warn is not None and critical is not None and warn != critical:
        if signal.comparator == "negative":
            return round(_clamp((warn - signal.value) / (warn - critical)), 4)
        if critical != 0:
            return round(_clamp(signal.value / critical), 4)
    if signal.status == "critical":
        return 0.9
    if signal.status == "warn":
        return 0.6
    return 0.1


def compose_snapshot(
    project_id: str,
    snapshot_date: date,
    signals: Iterable[Signal],
    scores: Iterable[Score],
    aggregates: Optional[dict[str, Any]] = None,
) -> Snapshot:
    """Freeze signals (with normalized risk), score values and aggregates."""
    return Snapshot(
        project_id=project_id,
        snapshot_date=snapshot_date,
        signals={
            s.signal_key: SnapshotSignal(
                value=s.value,
                status=s.status,
                normalized_risk=normalize_signal_risk(s),
            )
            for s in signals
        },
        scores={sc.score_type: sc.value for sc in scores},
        aggregates=dict(aggregates or {}),
    )


def outcome_dedupe_key(project_id: str, outcome_type: str, occurred_at: datetime, tail: str) -> str:
    """SHA-1 of ``project:type:occurred_at:tail`` (tail is notes or a ref id)."""
    return sha1_text(f"{project_id}:{outcome_type}:{iso_z(occurred_at)}:{tail}")


def _outcome(
    project_id: str,
    outcome_type: RiskType,
    occurred_at: datetime,
    severity: int,
    notes: str,
    refs: Iterable[EvidenceRef],
) -> CaseOutcome:
    return CaseOutcome(
        project_id=project_id,
        outcome_type=outcome_type.value,
        occurred_at=occurred_at,
        severity=severity,
        notes=notes,
        evidence_refs=dedupe_evidence(refs, cap=OUTCOME_EVIDENCE_CAP),
        dedupe_key=outcome_dedupe_key(project_id, outcome_type.value, occurred_at, notes),
    )


def derive_outcomes_from_signals(
    project_id: str,
    snapshot_date: date,
    signals: Iterable[Signal],
    scores: Iterable[Score],
) -> list[CaseOutcome]:
    """Apply the fixed outcome rules to one day's signals and scores."""
    by_key = {s.signal_key: s for s in signals}
    score_by_type = {sc.score_type: sc.value for sc in scores}
    occurred_at = end_of_day(snapshot_date)

    def value(key: str) -> float:
        sig = by_key.get(key)
        return sig.value if sig is not None else 0.0

    def refs(*keys: str) -> list[EvidenceRef]:
        out: list[EvidenceRef] = []
        for key in keys:
            sig = by_key.get(key)
            if sig is not None:
                out.extend(sig.evidence_refs)
        return out

    risk = score_by_type.get(ScoreType.RISK, 0.0)
    health = score_by_type.get(ScoreType.PROJECT_HEALTH, 100.0)
    outcomes: list[CaseOutcome] = []

    if value(SignalKey.BLOCKERS_AGE) > 5 or value(SignalKey.STAGE_OVERDUE) > 3 or risk >= 75:
        outcomes.append(
            _outcome(
                project_id, RiskType.DELIVERY, occurred_at,
                5 if risk >= 85 else 4,
                "Delivery pressure threshold exceeded in snapshot",
                refs(SignalKey.BLOCKERS_AGE, SignalKey.STAGE_OVERDUE),
            )
        )

    burn = value(SignalKey.BUDGET_BURN_RATE)
    if burn >= 1.2 or value(SignalKey.MARGIN_RISK) >= 0.4:
        outcomes.append(
            _outcome(
                project_id, RiskType.FINANCE, occurred_at,
                5 if burn >= 1.3 else 4,
                "Burn or margin risk crossed critical range",
                refs(SignalKey.BUDGET_BURN_RATE, SignalKey.MARGIN_RISK),
            )
        )

    waiting = value(SignalKey.WAITING_ON_CLIENT_DAYS)
    if waiting >= 4 or value(SignalKey.SENTIMENT_TREND) <= -0.3 or health <= 45:
        outcomes.append(
            _outcome(
                project_id, RiskType.CLIENT, occurred_at,
                5 if waiting >= 6 else 4,
                "Client engagement/health indicators degraded",
                refs(SignalKey.WAITING_ON_CLIENT_DAYS, SignalKey.SENTIMENT_TREND),
            )
        )

    scope = value(SignalKey.SCOPE_CREEP_RATE)
    if scope >= 0.35:
        outcomes.append(
            _outcome(
                project_id, RiskType.SCOPE, occurred_at,
                5 if scope >= 0.5 else 4,
                "Scope creep ratio exceeded threshold",
                refs(SignalKey.SCOPE_CREEP_RATE),
            )
        )

    return outcomes


def derive_deal_outcomes(
    project_id: str,
    snapshot_date: date,
    events: Iterable[Event],
) -> list[CaseOutcome]:
    """Client-risk outcomes from same-day deals moving to a degraded stage."""
    day_start, day_end = day_bounds(snapshot_date)
    outcomes: list[CaseOutcome] = []
    for event in events:
        if event.event_type != EventType.DEAL_UPDATED:
            continue
        if not day_start <= event.event_ts < day_end:
            continue
        stage = str(event.payload.get("stage") or "").strip().lower()
        if not any(marker in stage for marker in DEGRADED_DEAL_STAGES):
            continue

        crm_refs = [r for r in event.evidence_refs if r.attio_record_id]
        deal_id = event.payload.get("deal_id")
        if not crm_refs and deal_id:
            crm_refs = [
                EvidenceRef(attio_record_id=str(deal_id), source_table="deals", source_pk=str(deal_id))
            ]
        ref_id = crm_refs[0].identifier if crm_refs else str(event.id)

        outcomes.append(
            CaseOutcome(
                project_id=project_id,
                outcome_type=RiskType.CLIENT.value,
                occurred_at=event.event_ts,
                severity=4,
                notes=f'Deal stage degraded to "{stage}"',
                evidence_refs=crm_refs or list(event.evidence_refs),
                dedupe_key=outcome_dedupe_key(
                    project_id, RiskType.CLIENT.value, event.event_ts, ref_id
                ),
            )
        )
    return outcomes


def build_aggregates(
    events_30d: list[Event],
    state: SignalState,
    as_of: datetime,
) -> dict[str, Any]:
    """Key aggregates frozen next to the signals.

    Event windows are trailing windows ending at ``as_of``.
    """
    def count_since(days: int) -> int:
        cutoff = as_of - timedelta(days=days)
        return sum(1 for e in events_30d if e.event_ts > cutoff)

    cutoff_14 = as_of - timedelta(days=14)
    by_type: dict[str, int] = {}
    for e in events_30d:
        if e.event_ts > cutoff_14:
            by_type[e.event_type] = by_type.get(e.event_type, 0) + 1

    return {
        "events_7d": count_since(7),
        "events_14d": count_since(14),
        "events_30d": count_since(30),
        "events_by_type_14d": dict(sorted(by_type.items())),
        "open_blockers": len(state.blockers.open),
        "pipeline_amount": float(state.deal.amount or 0.0),
        "deal_stage": state.deal.stage,
        "planned_budget": state.finance.planned_budget,
        "revenue": state.finance.revenue,
    }


# ── Builder ───────────────────────────────────────────────────────────────────


@dataclass
class SnapshotBuildResult:
    """Outcome of one ``SnapshotBuilder.build`` call."""

    snapshot: Snapshot
    outcomes: list[CaseOutcome] = field(default_factory=list)
    outcomes_inserted: int = 0


class SnapshotBuilder:
    """Freezes a project-day and records derived outcomes.

    Args:
        conn: Open SQLite connection; the caller owns the transaction.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def build(self, project_id: str, snapshot_date: date) -> SnapshotBuildResult:
        """Upsert the snapshot for ``snapshot_date`` and insert its outcomes."""
        signal_repo = SignalRepository(self.conn)
        signals = signal_repo.list_signals(project_id)
        scores = signal_repo.list_scores(project_id)
        state, _ = SignalStateRepository(self.conn).load(project_id)

        as_of = end_of_day(snapshot_date)
        events = EventRepository(self.conn).events_between(
            project_id, *day_bounds(snapshot_date - timedelta(days=30), snapshot_date)
        )
        aggregates = build_aggregates(events, state, as_of)

        snapshot = compose_snapshot(project_id, snapshot_date, signals, scores, aggregates)
        snapshot_repo = SnapshotRepository(self.conn)
        snapshot_repo.upsert_snapshot(snapshot)

        outcomes = [
            *derive_outcomes_from_signals(project_id, snapshot_date, signals, scores),
            *derive_deal_outcomes(project_id, snapshot_date, events),
        ]
        inserted = snapshot_repo.insert_outcomes(outcomes)

        logger.info(
            "Snapshot %s/%s | signals=%d | scores=%d | outcomes=%d (new=%d)",
            project_id, snapshot_date, len(signals), len(scores), len(outcomes), inserted,
        )
        return SnapshotBuildResult(snapshot=snapshot, outcomes=outcomes, outcomes_inserted=inserted)
