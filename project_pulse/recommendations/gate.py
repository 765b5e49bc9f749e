"""
Evidence gate for recommendation candidates.

Quality formula
---------------
    quality = 0.50 × min(1, n_refs / count_target)
            + 0.35 × min(1, n_kinds / diversity_target)
            + 0.15 × (1 if any ref is a primary source for the category else 0)

A candidate is hidden, with the first matching reason:

  insufficient_evidence    n_refs < min_evidence_count
  primary_source_missing   category requires a primary source and has none
  low_evidence_quality     quality < min_quality

Hidden candidates are still persisted so the decision can be audited.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from project_pulse.config import RecommendationsConfig
from project_pulse.models.evidence import EvidenceRef, evidence_kinds
from project_pulse.taxonomy.outcome_taxonomy import GateReason, GateStatus


@dataclass(frozen=True)
class GateResult:
    """Outcome of the evidence gate for one candidate."""

    status: str
    reason: Optional[str]
    quality: float
    evidence_count: int
    kinds: int
    has_primary: bool

    @property
    def visible(self) -> bool:
        return self.status == GateStatus.VISIBLE


def evidence_quality(
    refs: Sequence[EvidenceRef],
    primary_kinds: Sequence[str],
    config: RecommendationsConfig,
) -> tuple[float, int, bool]:
    """Return ``(quality, n_kinds, has_primary)``."""
    kinds = evidence_kinds(refs)
    has_primary = any(k in kinds for k in primary_kinds)
    quality = (
        0.5 * min(1.0, len(refs) / config.count_target)
        + 0.35 * min(1.0, len(kinds) / config.diversity_target)
        + 0.15 * (1.0 if has_primary else 0.0)
    )
    return round(quality, 4), len(kinds), has_primary


def evaluate_gate(
    category: str,
    refs: Sequence[EvidenceRef],
    config: Optional[RecommendationsConfig] = None,
) -> GateResult:
    """Decide whether a candidate is visible."""
    cfg = config or RecommendationsConfig()
    primary_kinds = cfg.primary_sources.get(category, [])
    quality, n_kinds, has_primary = evidence_quality(refs, primary_kinds, cfg)

    reason: Optional[GateReason] = None
    if len(refs) < cfg.min_evidence_count:
        reason = GateReason.INSUFFICIENT_EVIDENCE
    elif category in cfg.require_primary and not has_primary:
        reason = GateReason.PRIMARY_SOURCE_MISSING
    elif quality < cfg.min_quality:
        reason = GateReason.LOW_EVIDENCE_QUALITY

    return GateResult(
        status=(GateStatus.HIDDEN if reason else GateStatus.VISIBLE).value,
        reason=reason.value if reason else None,
        quality=quality,
        evidence_count=len(refs),
        kinds=n_kinds,
        has_primary=has_primary,
    )
