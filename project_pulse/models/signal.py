"""
Signal state, derived signals and composite scores.

``SignalState`` is the aggregator's compact, versioned running state for one
project. It is persisted as JSON together with the event cursor and must be
fully reconstructible by replaying the event log from ``SignalState()``.
It is the only mutable model here: the aggregator deep-copies the prior
state and mutates the copy, never the caller's instance.

``Signal`` and ``Score`` are frozen outputs recomputed on every refresh.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from project_pulse.models.evidence import EvidenceRef

STATE_VERSION = 1


# ── State sections ────────────────────────────────────────────────────────────


class WaitingSection(BaseModel):
    last_client_message_at: Optional[datetime] = None
    last_team_message_at: Optional[datetime] = None
    approval_requested_at: Optional[datetime] = None


class ResponseSection(BaseModel):
    pending_client_messages: list[datetime] = []
    total_minutes: float = 0.0
    samples: int = 0


class BlockersSection(BaseModel):
    open: dict[str, datetime] = {}


class StageSection(BaseModel):
    stage_id: Optional[str] = None
    stage_name: Optional[str] = None
    status: Optional[Literal["active", "completed"]] = None
    started_at: Optional[datetime] = None
    due_at: Optional[datetime] = None
    approval_pending: bool = False


class AgreementEntry(BaseModel):
    created_at: datetime
    due_at: Optional[datetime] = None


class AgreementsSection(BaseModel):
    open: dict[str, AgreementEntry] = {}


class SentimentSection(BaseModel):
    ewma: Optional[float] = None
    prev_ewma: Optional[float] = None
    samples: int = 0


class ScopeSection(BaseModel):
    requests: list[datetime] = []
    client_requests: list[datetime] = []


class FinanceSection(BaseModel):
    planned_budget: float = 0.0
    actual_cost: float = 0.0
    revenue: float = 0.0


class ActivitySection(BaseModel):
    daily_counts: dict[str, int] = {}


class NeedsSection(BaseModel):
    events: list[datetime] = []
    evidence: list[EvidenceRef] = []


class DealSection(BaseModel):
    deal_id: Optional[str] = None
    stage: Optional[str] = None
    amount: Optional[float] = None
    updated_at: Optional[datetime] = None
    evidence: list[EvidenceRef] = []


class CursorSection(BaseModel):
    last_event_id: int = 0
    last_event_ts: Optional[datetime] = None


class SignalState(BaseModel):
    """Versioned running state folded from a project's event log.

    Every collection is bounded: timestamp lists are capped and pruned,
    open blockers and agreements expire, and evidence per signal is capped.
    """

    model_config = ConfigDict(extra="forbid")

    version: int = STATE_VERSION
    waiting: WaitingSection = Field(default_factory=WaitingSection)
    response: ResponseSection = Field(default_factory=ResponseSection)
    blockers: BlockersSection = Field(default_factory=BlockersSection)
    stage: StageSection = Field(default_factory=StageSection)
    agreements: AgreementsSection = Field(default_factory=AgreementsSection)
    sentiment: SentimentSection = Field(default_factory=SentimentSection)
    scope: ScopeSection = Field(default_factory=ScopeSection)
    finance: FinanceSection = Field(default_factory=FinanceSection)
    activity: ActivitySection = Field(default_factory=ActivitySection)
    needs: NeedsSection = Field(default_factory=NeedsSection)
    deal: DealSection = Field(default_factory=DealSection)
    evidence_by_signal: dict[str, list[EvidenceRef]] = {}
    cursor: CursorSection = Field(default_factory=CursorSection)


# ── Derived outputs ───────────────────────────────────────────────────────────


class Signal(BaseModel):
    """One derived project signal with its threshold classification.

    Attributes:
        signal_key:         One of ``SignalKey``.
        value:              Signal value, rounded to 4 decimals.
        status:             ``ok``, ``warn`` or ``critical``.
        threshold_warn:     Warn threshold used for ``status``.
        threshold_critical: Critical threshold used for ``status``.
        comparator:         ``high`` (bigger is worse) or ``negative``.
        details:            Supporting numbers (e.g. ``open_blockers``).
        evidence_refs:      Deduplicated, capped evidence.
        computed_at:        The ``now`` the signal was derived at.
    """

    model_config = ConfigDict(frozen=True)

    signal_key: str
    value: float
    status: Literal["ok", "warn", "critical"]
    threshold_warn: Optional[float] = None
    threshold_critical: Optional[float] = None
    comparator: Literal["high", "negative"] = "high"
    details: dict[str, Any] = {}
    evidence_refs: list[EvidenceRef] = []
    computed_at: datetime


class ScoreFactor(BaseModel):
    """One weighted component of a composite score."""

    model_config = ConfigDict(frozen=True)

    key: str
    value: float
    weight: float
    contribution: float


class Score(BaseModel):
    """A composite 0–100 score."""

    model_config = ConfigDict(frozen=True)

    score_type: str
    value: float
    level: Literal["low", "medium", "high", "critical"]
    weights: dict[str, float] = {}
    factors: list[ScoreFactor] = []
    evidence_refs: list[EvidenceRef] = []
    computed_at: datetime

    @field_validator("value")
    @classmethod
    def validate_range(cls, v: float) -> float:
        if not 0.0 <= v <= 100.0:
            raise ValueError(f"Score value must be in [0, 100], got {v}.")
        return v
