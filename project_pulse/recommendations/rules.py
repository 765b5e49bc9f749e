"""
Recommendation candidate rules.

One builder per ``RecommendationCategory``. Each builder inspects the current
signals, scores, publishable forecasts and similar cases, and returns a
``Candidate`` when its trigger fires and it has at least one evidence ref,
``None`` otherwise.

Triggers
--------
  waiting_on_client           waiting >= 2 days  or  P(client, 7d) >= 0.45
  scope_creep_change_request  scope rate >= 0.2  or  P(scope, 14d) >= 0.5
  delivery_risk               P(delivery, 7d) >= 0.45  or  blockers age > 5
  finance_risk                P(finance, 7d) >= 0.45  or  burn >= 1.2
  upsell_opportunity          upsell >= 65  and  P(client, 30d) < 0.75
  winback                     P(client, 14d) >= 0.65  and  similar cases with
                              evidenced client outcomes

Priority 1–5 (5 most urgent) and due date offsets are fixed per category.
The dedupe key hashes the category with the rounded trigger values, so an
unchanged situation maps to the same row across refreshes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional, Sequence

from project_pulse.models.evidence import EvidenceRef, dedupe_evidence
from project_pulse.models.forecast import Forecast
from project_pulse.models.signal import Score, Signal
from project_pulse.models.snapshot import SimilarCase
from project_pulse.recommendations import templates
from project_pulse.taxonomy.outcome_taxonomy import RecommendationCategory, RiskType
from project_pulse.taxonomy.signal_taxonomy import ScoreType, SignalKey
from project_pulse.utils.hashing import canonical_json, sha1_text
from project_pulse.utils.time_utils import ensure_utc

EVIDENCE_CAP = 20
LINKS_CAP = 20

DUE_DAYS: dict[str, int] = {
    RecommendationCategory.WAITING_ON_CLIENT: 1,
    RecommendationCategory.SCOPE_CREEP_CHANGE_REQUEST: 2,
    RecommendationCategory.DELIVERY_RISK: 1,
    RecommendationCategory.FINANCE_RISK: 2,
    RecommendationCategory.UPSELL_OPPORTUNITY: 3,
    RecommendationCategory.WINBACK: 1,
}

OWNER_ROLES: dict[str, str] = {
    RecommendationCategory.WAITING_ON_CLIENT: "pm",
    RecommendationCategory.SCOPE_CREEP_CHANGE_REQUEST: "pm",
    RecommendationCategory.DELIVERY_RISK: "pm",
    RecommendationCategory.FINANCE_RISK: "finance_lead",
    RecommendationCategory.UPSELL_OPPORTUNITY: "account_manager",
    RecommendationCategory.WINBACK: "account_manager",
}


@dataclass
class RuleInputs:
    """Everything the rules look at, indexed for lookup."""

    project_id: str
    signals: dict[str, Signal]
    scores: dict[str, Score]
    forecasts: dict[str, Forecast]
    similar_cases: Sequence[SimilarCase]
    now: datetime
    context: dict[str, str] = field(default_factory=dict)

    def signal_value(self, key: str) -> float:
        sig = self.signals.get(key)
        return sig.value if sig is not None else 0.0

    def signal_evidence(self, key: str) -> list[EvidenceRef]:
        sig = self.signals.get(key)
        return list(sig.evidence_refs) if sig is not None else []

    def score_value(self, key: str) -> float:
        sc = self.scores.get(key)
        return sc.value if sc is not None else 0.0

    def probability(self, risk_type: str, horizon: int) -> float:
        fc = self.forecasts.get(risk_type)
        if fc is None:
            return 0.0
        return {7: fc.probability_7d, 14: fc.probability_14d, 30: fc.probability_30d}[horizon]

    def forecast_evidence(self, risk_type: str) -> list[EvidenceRef]:
        fc = self.forecasts.get(risk_type)
        return list(fc.evidence_refs) if fc is not None else []

    def name(self, key: str, default: str) -> str:
        return self.context.get(key) or default


@dataclass
class Candidate:
    """A triggered recommendation before gating and drafting."""

    category: str
    priority: int
    title: str
    rationale: str
    why_now: str
    expected_impact: str
    owner_role: str
    due_date: date
    evidence_refs: list[EvidenceRef]
    signal_snapshot: dict[str, Any]
    forecast_snapshot: dict[str, Any]
    dedupe_key: str
    template_key: str
    template_variables: dict[str, Any]

    @property
    def links(self) -> list[str]:
        out: list[str] = []
        for ref in self.evidence_refs:
            link = ref.link()
            if link not in out:
                out.append(link)
            if len(out) >= LINKS_CAP:
                break
        return out


def recommendation_dedupe_key(category: str, trigger_values: dict[str, Any]) -> str:
    """SHA-1 of the category and the canonical JSON of its trigger values."""
    return sha1_text(f"{category}:{canonical_json(trigger_values)}")


def _due(inputs: RuleInputs, category: str) -> date:
    return (ensure_utc(inputs.now) + timedelta(days=DUE_DAYS[category])).date()


def _candidate(
    inputs: RuleInputs,
    category: RecommendationCategory,
    priority: int,
    texts: tuple[str, str, str, str],
    evidence: list[EvidenceRef],
    trigger_values: dict[str, Any],
    signal_snapshot: dict[str, Any],
    forecast_snapshot: dict[str, Any],
    template_key: str,
    template_variables: dict[str, Any],
) -> Optional[Candidate]:
    refs = dedupe_evidence(evidence, cap=EVIDENCE_CAP)
    if not refs:
        return None
    title, rationale, why_now, expected_impact = texts
    return Candidate(
        category=category.value,
        priority=priority,
        title=title,
        rationale=rationale,
        why_now=why_now,
        expected_impact=expected_impact,
        owner_role=OWNER_ROLES[category],
        due_date=_due(inputs, category),
        evidence_refs=refs,
        signal_snapshot=signal_snapshot,
        forecast_snapshot=forecast_snapshot,
        dedupe_key=recommendation_dedupe_key(category.value, trigger_values),
        template_key=template_key,
        template_variables=template_variables,
    )


# ── Rules ─────────────────────────────────────────────────────────────────────


def waiting_on_client_rule(inputs: RuleInputs) -> Optional[Candidate]:
    waiting = inputs.signal_value(SignalKey.WAITING_ON_CLIENT_DAYS)
    p7 = inputs.probability(RiskType.CLIENT, 7)
    if not (waiting >= 2 or p7 >= 0.45):
        return None

    priority = 5 if p7 > 0.65 else 4 if (waiting >= 4 or p7 >= 0.55) else 3
    client = inputs.name("client_name", "there")
    stage = inputs.name("stage_name", "the current stage")
    return _candidate(
        inputs,
        RecommendationCategory.WAITING_ON_CLIENT,
        priority,
        (
            "Follow up with the client on the pending approval",
            f"Waiting on the client for {waiting:.1f} days; P(client risk, 7d) = {p7:.2f}.",
            "The longer the approval waits, the more the next stage slips.",
            "Unblocks the stage and lowers client risk over the next week.",
        ),
        inputs.signal_evidence(SignalKey.WAITING_ON_CLIENT_DAYS)
        + inputs.forecast_evidence(RiskType.CLIENT),
        {"waiting_days": round(waiting, 1), "p7": round(p7, 2)},
        {SignalKey.WAITING_ON_CLIENT_DAYS.value: waiting},
        {"client_risk_7d": p7},
        templates.WAITING_FOLLOW_UP,
        {"client_name": client, "stage_name": stage, "waiting_days": f"{waiting:.1f}"},
    )


def scope_creep_rule(inputs: RuleInputs) -> Optional[Candidate]:
    rate = inputs.signal_value(SignalKey.SCOPE_CREEP_RATE)
    p7 = inputs.probability(RiskType.SCOPE, 7)
    p14 = inputs.probability(RiskType.SCOPE, 14)
    if not (rate >= 0.2 or p14 >= 0.5):
        return None

    sig = inputs.signals.get(SignalKey.SCOPE_CREEP_RATE)
    out_of_scope = int((sig.details.get("scope_requests_7d") or 0) if sig else 0)
    priority = 5 if p7 > 0.6 else 4 if (rate >= 0.35 or p14 >= 0.6) else 3
    return _candidate(
        inputs,
        RecommendationCategory.SCOPE_CREEP_CHANGE_REQUEST,
        priority,
        (
            "Formalise out-of-scope requests as a change request",
            f"Scope creep rate is {rate:.2f}; P(scope risk, 14d) = {p14:.2f}.",
            "Untracked asks are accumulating faster than the plan absorbs them.",
            "Protects timeline and margin by pricing the extra work.",
        ),
        inputs.signal_evidence(SignalKey.SCOPE_CREEP_RATE) + inputs.forecast_evidence(RiskType.SCOPE),
        {"scope_rate": round(rate, 2), "p14": round(p14, 2)},
        {SignalKey.SCOPE_CREEP_RATE.value: rate},
        {"scope_risk_7d": p7, "scope_risk_14d": p14},
        templates.SCOPE_CHANGE_REQUEST,
        {"client_name": inputs.name("client_name", "there"), "out_of_scope_count": out_of_scope},
    )


def delivery_risk_rule(inputs: RuleInputs) -> Optional[Candidate]:
    p7 = inputs.probability(RiskType.DELIVERY, 7)
    blockers_age = inputs.signal_value(SignalKey.BLOCKERS_AGE)
    if not (p7 >= 0.45 or blockers_age > 5):
        return None

    stage_overdue = inputs.signal_value(SignalKey.STAGE_OVERDUE)
    sig = inputs.signals.get(SignalKey.BLOCKERS_AGE)
    open_blockers = int((sig.details.get("open_blockers") or 0) if sig else 0)
    priority = 5 if p7 >= 0.7 else 4 if (p7 >= 0.55 or blockers_age > 5) else 3
    return _candidate(
        inputs,
        RecommendationCategory.DELIVERY_RISK,
        priority,
        (
            "Escalate delivery blockers before the stage slips",
            f"P(delivery risk, 7d) = {p7:.2f}; {open_blockers} open blocker(s) "
            f"aged {blockers_age:.1f} days on average.",
            "Blockers older than a few days usually push the stage past its due date.",
            "Restores the critical path and reduces delivery risk this week.",
        ),
        inputs.signal_evidence(SignalKey.BLOCKERS_AGE)
        + inputs.signal_evidence(SignalKey.STAGE_OVERDUE)
        + inputs.forecast_evidence(RiskType.DELIVERY),
        {"p7": round(p7, 2), "blockers_age": round(blockers_age, 1)},
        {
            SignalKey.BLOCKERS_AGE.value: blockers_age,
            SignalKey.STAGE_OVERDUE.value: stage_overdue,
        },
        {"delivery_risk_7d": p7},
        templates.DELIVERY_ESCALATION,
        {
            "project_name": inputs.name("project_name", inputs.project_id),
            "blockers_count": open_blockers,
            "blockers_age_days": f"{blockers_age:.1f}",
            "stage_overdue_days": f"{stage_overdue:.1f}",
        },
    )


def finance_risk_rule(inputs: RuleInputs) -> Optional[Candidate]:
    p7 = inputs.probability(RiskType.FINANCE, 7)
    p14 = inputs.probability(RiskType.FINANCE, 14)
    burn = inputs.signal_value(SignalKey.BUDGET_BURN_RATE)
    if not (p7 >= 0.45 or burn >= 1.2):
        return None

    margin = inputs.signal_value(SignalKey.MARGIN_RISK)
    priority = 5 if p7 >= 0.7 else 4 if (p7 >= 0.55 or burn >= 1.2) else 3
    return _candidate(
        inputs,
        RecommendationCategory.FINANCE_RISK,
        priority,
        (
            "Review burn and margin with finance",
            f"Budget burn is {burn:.2f}x plan; margin risk {margin:.2f}; "
            f"P(finance risk, 7d) = {p7:.2f}.",
            "Cost is running ahead of plan and the gap compounds every week.",
            "Brings the project back to a known financial baseline.",
        ),
        inputs.signal_evidence(SignalKey.BUDGET_BURN_RATE)
        + inputs.signal_evidence(SignalKey.MARGIN_RISK)
        + inputs.forecast_evidence(RiskType.FINANCE),
        {"burn": round(burn, 2), "p14": round(p14, 2)},
        {SignalKey.BUDGET_BURN_RATE.value: burn, SignalKey.MARGIN_RISK.value: margin},
        {"finance_risk_7d": p7, "finance_risk_14d": p14},
        templates.FINANCE_REVIEW,
        {
            "client_name": inputs.name("client_name", "there"),
            "burn_rate": f"{burn:.2f}",
            "margin_risk_pct": f"{margin * 100:.0f}",
        },
    )


def upsell_rule(inputs: RuleInputs) -> Optional[Candidate]:
    upsell = inputs.score_value(ScoreType.UPSELL_LIKELIHOOD)
    p30 = inputs.probability(RiskType.CLIENT, 30)
    if not (upsell >= 65 and p30 < 0.75):
        return None

    score = inputs.scores.get(ScoreType.UPSELL_LIKELIHOOD)
    priority = 4 if upsell >= 80 else 3
    return _candidate(
        inputs,
        RecommendationCategory.UPSELL_OPPORTUNITY,
        priority,
        (
            "Offer an extension while the account is healthy",
            f"Upsell likelihood is {upsell:.1f}; P(client risk, 30d) = {p30:.2f}.",
            "The client is engaged and has voiced needs beyond the current scope.",
            "Grows account revenue with low churn exposure.",
        ),
        (list(score.evidence_refs) if score is not None else [])
        + inputs.signal_evidence(SignalKey.SCOPE_CREEP_RATE)
        + inputs.signal_evidence(SignalKey.WAITING_ON_CLIENT_DAYS)
        + inputs.forecast_evidence(RiskType.CLIENT),
        {"upsell": round(upsell, 1), "p30": round(p30, 2)},
        {ScoreType.UPSELL_LIKELIHOOD.value: upsell},
        {"client_risk_30d": p30},
        templates.UPSELL_PITCH,
        {
            "client_name": inputs.name("client_name", "there"),
            "need_signal": "requests beyond the current scope",
            "expected_value": "a larger engagement with a measurable ROI",
        },
    )


def winback_rule(inputs: RuleInputs) -> Optional[Candidate]:
    p14 = inputs.probability(RiskType.CLIENT, 14)
    if p14 < 0.65:
        return None

    case_refs: list[EvidenceRef] = []
    matched_cases = 0
    for case in inputs.similar_cases:
        refs = [
            ref
            for outcome in case.outcomes_seen
            if outcome.outcome_type == RiskType.CLIENT
            for ref in outcome.evidence_refs
        ]
        if refs:
            matched_cases += 1
            case_refs.extend(refs)
    if not case_refs:
        return None

    return _candidate(
        inputs,
        RecommendationCategory.WINBACK,
        5,
        (
            "Run a retention play with the client now",
            f"P(client risk, 14d) = {p14:.2f}; {matched_cases} similar case(s) "
            "ended with a client-side outcome.",
            "Projects that looked like this one lost the client within weeks.",
            "Keeps the account before the relationship degrades further.",
        ),
        case_refs,
        {"p14": round(p14, 2)},
        {"similar_cases_with_client_outcomes": matched_cases},
        {"client_risk_14d": p14},
        templates.WINBACK_OUTREACH,
        {
            "client_name": inputs.name("client_name", "there"),
            "project_name": inputs.name("project_name", inputs.project_id),
        },
    )


# Catalogue order; also the tie-break order when priorities are equal.
RULES: tuple[tuple[RecommendationCategory, Callable[[RuleInputs], Optional[Candidate]]], ...] = (
    (RecommendationCategory.WAITING_ON_CLIENT, waiting_on_client_rule),
    (RecommendationCategory.SCOPE_CREEP_CHANGE_REQUEST, scope_creep_rule),
    (RecommendationCategory.DELIVERY_RISK, delivery_risk_rule),
    (RecommendationCategory.FINANCE_RISK, finance_risk_rule),
    (RecommendationCategory.UPSELL_OPPORTUNITY, upsell_rule),
    (RecommendationCategory.WINBACK, winback_rule),
)

CATALOGUE_ORDER: dict[str, int] = {cat.value: i for i, (cat, _) in enumerate(RULES)}


def build_candidates(inputs: RuleInputs) -> list[Candidate]:
    """Run every rule and return the candidates that fired, in catalogue order."""
    out: list[Candidate] = []
    for _category, rule in RULES:
        candidate = rule(inputs)
        if candidate is not None:
            out.append(candidate)
    return out
