"""
Risk forecast output model.

One ``Forecast`` per ``(project_id, risk_type)``, latest wins. The three
horizon probabilities are non-decreasing by construction; the validator
enforces it so a bad blend can never be persisted.

A forecast with no evidence is stored but not ``publishable``: consumers
and the recommendation generator skip it unless explicitly asked.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, model_validator

from project_pulse.models.evidence import EvidenceRef


class ForecastDriver(BaseModel):
    """Weighted contribution of one normalized signal to the baseline."""

    model_config = ConfigDict(frozen=True)

    key: str
    value: float
    weight: float
    contribution: float


class SimilarCaseSummary(BaseModel):
    """Compact reference to a similar case used by a forecast."""

    model_config = ConfigDict(frozen=True)

    case_project_id: str
    case_project_name: Optional[str] = None
    similarity_score: float
    matched_outcomes: int = 0


class Forecast(BaseModel):
    """7/14/30-day probability of one risk type materialising.

    Attributes:
        project_id:                  Project the forecast is for.
        risk_type:                   A ``RiskType`` value.
        probability_7d:              P(risk within 7 days).
        probability_14d:             P(risk within 14 days), ``>= probability_7d``.
        probability_30d:             P(risk within 30 days), ``>= probability_14d``.
        expected_time_to_risk_days:  2–60, non-increasing in ``probability_30d``.
        confidence:                  0–1, grows with similar cases and evidence.
        drivers:                     Top weighted baseline contributions.
        similar_cases:               Top similar cases considered.
        evidence_refs:               Evidence from the risk type's driver signals.
        publishable:                 ``True`` iff ``evidence_refs`` is non-empty.
        generated_at:                The ``now`` passed to the engine.
    """

    model_config = ConfigDict(frozen=True)

    project_id: str
    risk_type: str
    probability_7d: float
    probability_14d: float
    probability_30d: float
    expected_time_to_risk_days: float
    confidence: float
    drivers: list[ForecastDriver] = []
    similar_cases: list[SimilarCaseSummary] = []
    evidence_refs: list[EvidenceRef] = []
    publishable: bool = False
    generated_at: datetime

    @model_validator(mode="after")
    def validate_probabilities(self) -> "Forecast":
        p7, p14, p30 = self.probability_7d, self.probability_14d, self.probability_30d
        for name, p in (("7d", p7), ("14d", p14), ("30d", p30), ("confidence", self.confidence)):
            if not 0.0 <= p <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {p}.")
        if not p7 <= p14 <= p30:
            raise ValueError(
                f"Horizon probabilities must be non-decreasing, got {p7}, {p14}, {p30}."
            )
        if self.publishable and not self.evidence_refs:
            raise ValueError("A forecast without evidence cannot be publishable.")
        return self
