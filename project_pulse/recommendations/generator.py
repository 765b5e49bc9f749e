"""
Recommendation generator.

Turns rule candidates into gated, prioritised, drafted ``Recommendation``
objects:

  1. Keep publishable forecasts only.
  2. Run every category rule (``rules.build_candidates``).
  3. Gate each candidate on its evidence (``gate.evaluate_gate``).
  4. Sort by priority descending, catalogue order breaking ties.
  5. Draft ``suggested_text``: the injected template generator is called for
     at most ``llm_budget`` visible items, in sorted order. Everything else,
     and every failed or empty call, uses the deterministic template.

Pure apart from the injected generator: no DB, no clock reads.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Sequence

from project_pulse.config import RecommendationsConfig
from project_pulse.models.forecast import Forecast
from project_pulse.models.recommendation import Recommendation
from project_pulse.models.signal import Score, Signal
from project_pulse.models.snapshot import SimilarCase
from project_pulse.recommendations.gate import GateResult, evaluate_gate
from project_pulse.recommendations.llm_client import TemplateGenerator
from project_pulse.recommendations.rules import (
    CATALOGUE_ORDER,
    Candidate,
    RuleInputs,
    build_candidates,
)
from project_pulse.recommendations.templates import render_template

logger = logging.getLogger(__name__)


def _draft(
    candidate: Candidate,
    template_generator: Optional[TemplateGenerator],
) -> tuple[str, str]:
    """Return ``(text, drafted_by)`` for one candidate."""
    fallback = render_template(candidate.template_key, candidate.template_variables)
    if template_generator is None:
        return fallback, "template"
    try:
        text = template_generator(candidate.template_key, dict(candidate.template_variables))
    except Exception as exc:
        logger.warning(
            "Template generator failed for '%s' (%s); using deterministic template: %s",
            candidate.category, candidate.template_key, exc,
        )
        return fallback, "template"
    text = (text or "").strip()
    if not text:
        logger.warning(
            "Template generator returned empty text for '%s'; using deterministic template",
            candidate.category,
        )
        return fallback, "template"
    return text, "llm"


def _to_recommendation(
    project_id: str,
    candidate: Candidate,
    gate: GateResult,
    text: str,
    drafted_by: str,
) -> Recommendation:
    return Recommendation(
        project_id=project_id,
        category=candidate.category,
        priority=candidate.priority,
        title=candidate.title,
        rationale=candidate.rationale,
        why_now=candidate.why_now,
        expected_impact=candidate.expected_impact,
        owner_role=candidate.owner_role,
        due_date=candidate.due_date,
        links=candidate.links,
        evidence_refs=candidate.evidence_refs,
        evidence_count=gate.evidence_count,
        evidence_quality_score=gate.quality,
        evidence_gate_status=gate.status,
        evidence_gate_reason=gate.reason,
        signal_snapshot=candidate.signal_snapshot,
        forecast_snapshot=candidate.forecast_snapshot,
        dedupe_key=candidate.dedupe_key,
        suggested_template_key=candidate.template_key,
        suggested_text=text,
        drafted_by=drafted_by,
    )


def generate_recommendations(
    project_id: str,
    signals: Sequence[Signal],
    scores: Sequence[Score],
    forecasts: Sequence[Forecast],
    similar_cases: Sequence[SimilarCase],
    now: datetime,
    config: Optional[RecommendationsConfig] = None,
    template_generator: Optional[TemplateGenerator] = None,
    context: Optional[dict[str, str]] = None,
) -> list[Recommendation]:
    """Generate recommendations for one project.

    Args:
        project_id:         Target project.
        signals:            Current derived signals.
        scores:             Current composite scores.
        forecasts:          Current forecasts; unpublishable ones are ignored.
        similar_cases:      Ranked similar cases with their outcomes.
        now:                Reference time for due dates.
        config:             Evidence gate parameters and drafting budget.
        template_generator: Optional drafting callable (e.g. an LLM client).
        context:            Display names (``client_name``, ``project_name``,
                            ``stage_name``) used in drafts.

    Returns:
        Visible and hidden recommendations, sorted by priority descending.
    """
    cfg = config or RecommendationsConfig()
    inputs = RuleInputs(
        project_id=project_id,
        signals={s.signal_key: s for s in signals},
        scores={sc.score_type: sc for sc in scores},
        forecasts={f.risk_type: f for f in forecasts if f.publishable},
        similar_cases=similar_cases,
        now=now,
        context=dict(context or {}),
    )

    gated = [(c, evaluate_gate(c.category, c.evidence_refs, cfg)) for c in build_candidates(inputs)]
    gated.sort(key=lambda cg: (-cg[0].priority, CATALOGUE_ORDER[cg[0].category]))

    budget = cfg.llm_budget
    recs: list[Recommendation] = []
    for candidate, gate in gated:
        if gate.visible and budget > 0:
            budget -= 1
            text, drafted_by = _draft(candidate, template_generator)
        else:
            text, drafted_by = _draft(candidate, None)
        recs.append(_to_recommendation(project_id, candidate, gate, text, drafted_by))

    hidden = sum(1 for r in recs if not r.visible)
    logger.debug(
        "Generated %d recommendation(s) for %s (%d hidden)", len(recs), project_id, hidden
    )
    return recs
