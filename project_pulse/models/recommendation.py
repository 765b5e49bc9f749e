"""
Recommendation model.

Recommendations are keyed by ``(project_id, dedupe_key)``. The dedupe key
hashes the category and the triggering numeric values, so re-running a
refresh on unchanged inputs upserts the same row instead of adding one.

``status`` is owned by the user: a refresh never changes it, and only the
explicit status transition does. ``evidence_gate_status`` is owned by the
generator and is recomputed on every refresh.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from project_pulse.models.evidence import EvidenceRef

VALID_STATUSES: frozenset[str] = frozenset({"new", "acknowledged", "done", "dismissed"})
VALID_FEEDBACK: frozenset[str] = frozenset({"helpful", "not_helpful", "unknown"})


class Recommendation(BaseModel):
    """A prioritised, evidence-backed next action for a project.

    Attributes:
        id:                     DB PK; ``None`` before insertion.
        project_id:             Target project.
        category:               A ``RecommendationCategory`` value.
        priority:               1–5, 5 most urgent.
        title:                  One-line headline.
        rationale:              Why the generator fired (numbers included).
        why_now:                Urgency statement.
        expected_impact:        What acting on it should change.
        owner_role:             Suggested owner (``pm``, ``finance_lead`` …).
        due_date:               Suggested due date.
        links:                  Openable links derived from evidence.
        evidence_refs:          Supporting evidence (non-empty).
        evidence_count:         ``len(evidence_refs)``.
        evidence_quality_score: 0–1 gate quality.
        evidence_gate_status:   ``visible`` or ``hidden``.
        evidence_gate_reason:   Reason code when hidden.
        signal_snapshot:        Triggering signal/score values.
        forecast_snapshot:      Triggering forecast probabilities.
        dedupe_key:             SHA-1 of category + triggering values.
        suggested_template_key: Template used for ``suggested_text``.
        suggested_text:         Drafted message text.
        drafted_by:             ``llm`` or ``template``.
        status:                 User-owned lifecycle status.
        feedback:               Optional user feedback.
    """

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    project_id: str
    category: str
    priority: int
    title: str
    rationale: str
    why_now: str = ""
    expected_impact: str = ""
    owner_role: str = "pm"
    due_date: Optional[date] = None
    links: list[str] = []
    evidence_refs: list[EvidenceRef]
    evidence_count: int = 0
    evidence_quality_score: float = 0.0
    evidence_gate_status: Literal["visible", "hidden"] = "visible"
    evidence_gate_reason: Optional[str] = None
    signal_snapshot: dict[str, Any] = {}
    forecast_snapshot: dict[str, Any] = {}
    dedupe_key: str
    suggested_template_key: str = ""
    suggested_text: str = ""
    drafted_by: Literal["llm", "template"] = "template"
    status: str = "new"
    feedback: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, v: int) -> int:
        if not 1 <= v <= 5:
            raise ValueError(f"priority must be in [1, 5], got {v}.")
        return v

    @field_validator("evidence_refs")
    @classmethod
    def validate_evidence(cls, v: list[EvidenceRef]) -> list[EvidenceRef]:
        if not v:
            raise ValueError("A recommendation must carry at least one evidence ref.")
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_STATUSES:
            raise ValueError(f"status must be one of {sorted(VALID_STATUSES)}, got '{v}'.")
        return v

    @property
    def visible(self) -> bool:
        return self.evidence_gate_status == "visible"
