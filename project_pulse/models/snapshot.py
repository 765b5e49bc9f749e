"""
Daily project snapshots and case memory.

``Snapshot`` freezes one project-day: every signal with its normalized 0–1
risk, every composite score, and key aggregates. Snapshots are upserted per
``(project_id, snapshot_date)`` so rebuilding a day overwrites only that day.

``CaseOutcome`` records a dated, severity-graded adverse outcome derived
from a snapshot or a deal lifecycle event. Outcomes are insert-only and
deduplicated by a content hash.

``CaseSignature`` is the comparable fingerprint of a project over a 7/14/30
day window: a bounded numeric vector, the set of event-type bigrams and a
small categorical context.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from project_pulse.config import VALID_WINDOWS
from project_pulse.models.evidence import EvidenceRef


class SnapshotSignal(BaseModel):
    """Signal as frozen into a snapshot."""

    model_config = ConfigDict(frozen=True)

    value: float
    status: str
    normalized_risk: float


class Snapshot(BaseModel):
    """One frozen project-day."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    snapshot_date: date
    signals: dict[str, SnapshotSignal] = {}
    scores: dict[str, float] = {}
    aggregates: dict[str, Any] = {}
    created_at: Optional[datetime] = None

    def signal_value(self, key: str, default: float = 0.0) -> float:
        sig = self.signals.get(key)
        return sig.value if sig is not None else default

    def score_value(self, key: str, default: float = 0.0) -> float:
        return self.scores.get(key, default)


class CaseOutcome(BaseModel):
    """Dated adverse outcome observed on a project.

    Attributes:
        project_id:    Project the outcome belongs to.
        outcome_type:  A ``RiskType`` value.
        occurred_at:   Timestamp (end of snapshot day for derived outcomes).
        severity:      1 (minor) – 5 (severe).
        notes:         Short human-readable trigger description.
        evidence_refs: Supporting evidence.
        dedupe_key:    SHA-1 over project, type, time and notes/ref.
    """

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    project_id: str
    outcome_type: str
    occurred_at: datetime
    severity: int
    notes: str = ""
    evidence_refs: list[EvidenceRef] = []
    dedupe_key: str

    @field_validator("severity")
    @classmethod
    def validate_severity(cls, v: int) -> int:
        if not 1 <= v <= 5:
            raise ValueError(f"severity must be in [1, 5], got {v}.")
        return v


class CaseSignature(BaseModel):
    """Comparable fingerprint of a project over a trailing window."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    window_days: int
    as_of: date
    signature_vector: list[float]
    event_bigrams: list[str] = []
    context: dict[str, str] = {}
    features: dict[str, Any] = {}
    updated_at: Optional[datetime] = None

    @field_validator("window_days")
    @classmethod
    def validate_window(cls, v: int) -> int:
        if v not in VALID_WINDOWS:
            raise ValueError(f"window_days must be one of {sorted(VALID_WINDOWS)}, got {v}.")
        return v


class SimilarCase(BaseModel):
    """A ranked past case with its similarity breakdown and outcomes."""

    model_config = ConfigDict(frozen=True)

    case_project_id: str
    case_project_name: Optional[str] = None
    similarity_score: float
    why_similar: str
    key_shared_patterns: list[str] = []
    outcomes_seen: list[CaseOutcome] = []
