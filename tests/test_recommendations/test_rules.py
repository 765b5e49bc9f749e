"""
Tests for project_pulse/recommendations/rules.py and templates.py.

What we test
------------
rules:
  - Each category fires on its trigger and stays silent below it.
  - Priority tiers per category.
  - No candidate without evidence.
  - Dedupe keys: stable for the same rounded trigger values, different otherwise.
  - Due date offset and owner role per category.
  - Winback requires similar cases whose client outcomes carry evidence.
  - build_candidates() returns candidates in catalogue order.

templates:
  - render_template substitutes known variables, keeps unknown placeholders
    and returns "" for unknown keys.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from project_pulse.models.evidence import EvidenceRef
from project_pulse.models.forecast import Forecast
from project_pulse.models.signal import Score, Signal
from project_pulse.models.snapshot import CaseOutcome, SimilarCase
from project_pulse.recommendations import templates
from project_pulse.recommendations.rules import (
    RuleInputs,
    build_candidates,
    delivery_risk_rule,
    finance_risk_rule,
    recommendation_dedupe_key,
    scope_creep_rule,
    upsell_rule,
    waiting_on_client_rule,
    winback_rule,
)

NOW = datetime(2026, 2, 17, 12, 0, 0, tzinfo=timezone.utc)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _signal(key: str, value: float, refs: list[EvidenceRef] | None = None, **details) -> Signal:
    return Signal(
        signal_key=key,
        value=value,
        status="ok",
        details=details,
        evidence_refs=[EvidenceRef(message_id=f"m-{key}")] if refs is None else refs,
        computed_at=NOW,
    )


def _forecast(risk_type: str, p7: float, p14: float | None = None, p30: float | None = None) -> Forecast:
    p14 = p7 if p14 is None else p14
    p30 = p14 if p30 is None else p30
    return Forecast(
        project_id="p-1",
        risk_type=risk_type,
        probability_7d=p7,
        probability_14d=p14,
        probability_30d=p30,
        expected_time_to_risk_days=10,
        confidence=0.5,
        evidence_refs=[EvidenceRef(message_id=f"fc-{risk_type}")],
        publishable=True,
        generated_at=NOW,
    )


def _inputs(
    signals: list[Signal] = (),
    scores: list[Score] = (),
    forecasts: list[Forecast] = (),
    similar_cases: list[SimilarCase] = (),
    context: dict | None = None,
) -> RuleInputs:
    return RuleInputs(
        project_id="p-1",
        signals={s.signal_key: s for s in signals},
        scores={s.score_type: s for s in scores},
        forecasts={f.risk_type: f for f in forecasts},
        similar_cases=list(similar_cases),
        now=NOW,
        context=context or {},
    )


def _client_case(refs: list[EvidenceRef]) -> SimilarCase:
    return SimilarCase(
        case_project_id="p-9",
        similarity_score=0.7,
        why_similar="",
        outcomes_seen=[
            CaseOutcome(
                project_id="p-9",
                outcome_type="client_risk",
                occurred_at=NOW,
                severity=4,
                evidence_refs=refs,
                dedupe_key="d" * 40,
            )
        ],
    )


# ── waiting_on_client ─────────────────────────────────────────────────────────

class TestWaitingRule:
    def test_fires_on_waiting_days(self):
        cand = waiting_on_client_rule(_inputs([_signal("waiting_on_client_days", 2.0)]))
        assert cand is not None
        assert cand.category == "waiting_on_client"
        assert cand.priority == 3
        assert cand.owner_role == "pm"
        assert cand.due_date == date(2026, 2, 18)

    def test_fires_on_forecast(self):
        cand = waiting_on_client_rule(_inputs(forecasts=[_forecast("client_risk", 0.7)]))
        assert cand is not None
        assert cand.priority == 5
        assert cand.evidence_refs[0].message_id == "fc-client_risk"

    def test_priority_four_on_long_wait(self):
        cand = waiting_on_client_rule(_inputs([_signal("waiting_on_client_days", 4.2)]))
        assert cand.priority == 4

    def test_silent_below_trigger(self):
        assert waiting_on_client_rule(_inputs(
            [_signal("waiting_on_client_days", 1.0)], forecasts=[_forecast("client_risk", 0.3)],
        )) is None

    def test_no_candidate_without_evidence(self):
        assert waiting_on_client_rule(_inputs([_signal("waiting_on_client_days", 5.0, refs=[])])) is None

    def test_template_variables(self):
        cand = waiting_on_client_rule(_inputs(
            [_signal("waiting_on_client_days", 3.04)],
            context={"stage_name": "Design", "client_name": "Dana"},
        ))
        assert cand.template_key == templates.WAITING_FOLLOW_UP
        assert cand.template_variables == {
            "client_name": "Dana", "stage_name": "Design", "waiting_days": "3.0",
        }


# ── Other categories ──────────────────────────────────────────────────────────

class TestScopeRule:
    def test_fires_on_rate(self):
        cand = scope_creep_rule(_inputs([_signal("scope_creep_rate", 0.4, scope_requests_7d=2)]))
        assert cand.priority == 4
        assert cand.template_variables["out_of_scope_count"] == 2

    def test_fires_on_forecast(self):
        cand = scope_creep_rule(_inputs(forecasts=[_forecast("scope_risk", 0.45, 0.52)]))
        assert cand.priority == 3

    def test_silent(self):
        assert scope_creep_rule(_inputs([_signal("scope_creep_rate", 0.1)])) is None


class TestDeliveryRule:
    def test_fires_on_old_blockers(self):
        cand = delivery_risk_rule(_inputs([
            _signal("blockers_age", 5.5, [EvidenceRef(linear_issue_id="L-1")], open_blockers=3),
        ]))
        assert cand.priority == 4
        assert cand.template_variables["blockers_count"] == 3
        assert cand.template_variables["project_name"] == "p-1"

    def test_priority_five_on_high_forecast(self):
        cand = delivery_risk_rule(_inputs(forecasts=[_forecast("delivery_risk", 0.72)]))
        assert cand.priority == 5

    def test_silent(self):
        assert delivery_risk_rule(_inputs([_signal("blockers_age", 5.0)])) is None


class TestFinanceRule:
    def test_fires_on_burn(self):
        cand = finance_risk_rule(_inputs([_signal("budget_burn_rate", 1.25), _signal("margin_risk", 1.0)]))
        assert cand.priority == 4
        assert cand.owner_role == "finance_lead"
        assert cand.due_date == date(2026, 2, 19)
        assert cand.template_variables["margin_risk_pct"] == "100"

    def test_silent(self):
        assert finance_risk_rule(_inputs([_signal("budget_burn_rate", 1.1)])) is None


class TestUpsellRule:
    def _score(self, value: float) -> Score:
        return Score(
            score_type="upsell_likelihood",
            value=value,
            level="high",
            evidence_refs=[EvidenceRef(attio_record_id="rec-1")],
            computed_at=NOW,
        )

    def test_fires_on_high_score(self):
        cand = upsell_rule(_inputs(scores=[self._score(82)]))
        assert cand.priority == 4
        assert cand.owner_role == "account_manager"
        assert cand.evidence_refs[0].attio_record_id == "rec-1"

    def test_suppressed_by_client_risk(self):
        assert upsell_rule(_inputs(
            scores=[self._score(90)], forecasts=[_forecast("client_risk", 0.6, 0.7, 0.8)],
        )) is None

    def test_silent_below_threshold(self):
        assert upsell_rule(_inputs(scores=[self._score(60)])) is None


class TestWinbackRule:
    def test_requires_case_evidence(self):
        forecasts = [_forecast("client_risk", 0.6, 0.7)]
        assert winback_rule(_inputs(forecasts=forecasts)) is None
        assert winback_rule(_inputs(forecasts=forecasts, similar_cases=[_client_case([])])) is None

    def test_fires_with_case_evidence(self):
        cand = winback_rule(_inputs(
            forecasts=[_forecast("client_risk", 0.6, 0.7)],
            similar_cases=[_client_case([EvidenceRef(attio_record_id="rec-9")])],
        ))
        assert cand.priority == 5
        assert cand.links == ["attio://record/rec-9"]
        assert cand.signal_snapshot == {"similar_cases_with_client_outcomes": 1}

    def test_silent_below_trigger(self):
        assert winback_rule(_inputs(
            forecasts=[_forecast("client_risk", 0.5, 0.6)],
            similar_cases=[_client_case([EvidenceRef(attio_record_id="rec-9")])],
        )) is None


# ── Dedupe and catalogue ──────────────────────────────────────────────────────

class TestDedupeAndOrder:
    def test_dedupe_key_stable_across_small_changes(self):
        a = waiting_on_client_rule(_inputs([_signal("waiting_on_client_days", 3.01)]))
        b = waiting_on_client_rule(_inputs([_signal("waiting_on_client_days", 3.04)]))
        c = waiting_on_client_rule(_inputs([_signal("waiting_on_client_days", 3.5)]))
        assert a.dedupe_key == b.dedupe_key
        assert a.dedupe_key != c.dedupe_key

    def test_dedupe_key_includes_category(self):
        values = {"p7": 0.5}
        assert recommendation_dedupe_key("finance_risk", values) != recommendation_dedupe_key(
            "delivery_risk", values
        )
        assert len(recommendation_dedupe_key("finance_risk", values)) == 40

    def test_catalogue_order(self):
        cands = build_candidates(_inputs([
            _signal("budget_burn_rate", 1.3),
            _signal("waiting_on_client_days", 3.0),
            _signal("blockers_age", 6.0),
        ]))
        assert [c.category for c in cands] == ["waiting_on_client", "delivery_risk", "finance_risk"]

    def test_links_deduped(self):
        ref = EvidenceRef(message_id="m-1")
        cand = waiting_on_client_rule(_inputs(
            [_signal("waiting_on_client_days", 3.0, [ref, EvidenceRef(message_id="m-1", source_pk="x")])],
        ))
        assert cand.links == ["chatwoot://message/m-1"]


# ── Templates ─────────────────────────────────────────────────────────────────

class TestTemplates:
    def test_render_substitutes(self):
        text = templates.render_template(
            templates.FINANCE_REVIEW,
            {"client_name": "Dana", "burn_rate": "1.25", "margin_risk_pct": "40"},
        )
        assert "Hi Dana," in text
        assert "1.25x of plan" in text
        assert "{{" not in text

    def test_unknown_placeholder_kept(self):
        text = templates.render_template(templates.WINBACK_OUTREACH, {"client_name": "Dana"})
        assert "{{project_name}}" in text

    def test_unknown_key(self):
        assert templates.render_template("nope", {}) == ""

    @pytest.mark.parametrize("key", list(templates.TEMPLATE_LIBRARY))
    def test_every_template_has_subject(self, key):
        assert templates.TEMPLATE_LIBRARY[key].startswith("Subject: ")
