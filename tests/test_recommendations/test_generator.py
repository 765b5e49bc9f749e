"""
Tests for project_pulse/recommendations/generator.py.

What we test
------------
generate_recommendations():
  - Sorted by priority descending, catalogue order breaking ties.
  - Unpublishable forecasts are ignored.
  - The template generator is called for at most ``llm_budget`` visible items.
  - Hidden items are always drafted from the deterministic template.
  - Generator exceptions and empty text fall back to the template with a warning.
  - Without a generator every draft is the rendered template.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from project_pulse.config import RecommendationsConfig
from project_pulse.models.evidence import EvidenceRef
from project_pulse.models.forecast import Forecast
from project_pulse.models.signal import Signal
from project_pulse.recommendations.generator import generate_recommendations
from project_pulse.recommendations.templates import render_template

NOW = datetime(2026, 2, 17, 12, 0, 0, tzinfo=timezone.utc)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _signal(key: str, value: float, ref: EvidenceRef, **details) -> Signal:
    return Signal(
        signal_key=key,
        value=value,
        status="warn",
        details=details,
        evidence_refs=[ref],
        computed_at=NOW,
    )


def _signals(delivery_ref: EvidenceRef | None = None) -> list[Signal]:
    return [
        _signal("waiting_on_client_days", 5.0, EvidenceRef(message_id="m-1")),
        _signal("scope_creep_rate", 0.5, EvidenceRef(message_id="m-2"), scope_requests_7d=3),
        _signal(
            "blockers_age", 6.0, delivery_ref or EvidenceRef(linear_issue_id="L-1"), open_blockers=2,
        ),
        _signal("budget_burn_rate", 1.3, EvidenceRef(doc_url="https://docs.example.com/budget")),
    ]


def _delivery_forecast(p7: float, publishable: bool) -> Forecast:
    return Forecast(
        project_id="p-1",
        risk_type="delivery_risk",
        probability_7d=p7,
        probability_14d=p7,
        probability_30d=p7,
        expected_time_to_risk_days=5,
        confidence=0.5,
        evidence_refs=[EvidenceRef(linear_issue_id="L-9")] if publishable else [],
        publishable=publishable,
        generated_at=NOW,
    )


class _FakeGenerator:
    def __init__(self, text: str = "drafted", exc: Exception | None = None):
        self.text = text
        self.exc = exc
        self.calls: list[str] = []

    def __call__(self, template_key, variables):
        self.calls.append(template_key)
        if self.exc is not None:
            raise self.exc
        return f"{self.text} {template_key}" if self.text else "   "


def _generate(**kwargs):
    params = dict(
        project_id="p-1",
        signals=_signals(),
        scores=[],
        forecasts=[],
        similar_cases=[],
        now=NOW,
    )
    params.update(kwargs)
    return generate_recommendations(**params)


# ── Ordering ──────────────────────────────────────────────────────────────────

class TestOrdering:
    def test_catalogue_order_on_equal_priority(self):
        recs = _generate()
        assert [r.category for r in recs] == [
            "waiting_on_client", "scope_creep_change_request", "delivery_risk", "finance_risk",
        ]
        assert {r.priority for r in recs} == {4}

    def test_higher_priority_first(self):
        recs = _generate(forecasts=[_delivery_forecast(0.75, publishable=True)])
        assert recs[0].category == "delivery_risk"
        assert recs[0].priority == 5
        assert recs[0].forecast_snapshot == {"delivery_risk_7d": 0.75}

    def test_unpublishable_forecast_ignored(self):
        recs = _generate(forecasts=[_delivery_forecast(0.75, publishable=False)])
        delivery = next(r for r in recs if r.category == "delivery_risk")
        assert delivery.priority == 4
        assert delivery.forecast_snapshot == {"delivery_risk_7d": 0.0}

    def test_no_signals_no_recommendations(self):
        assert _generate(signals=[]) == []


# ── Drafting ──────────────────────────────────────────────────────────────────

class TestDrafting:
    def test_template_only_without_generator(self):
        recs = _generate()
        assert all(r.drafted_by == "template" for r in recs)
        waiting = recs[0]
        assert waiting.suggested_text == render_template(
            waiting.suggested_template_key,
            {"client_name": "there", "stage_name": "the current stage", "waiting_days": "5.0"},
        )

    def test_budget_limits_generator_calls(self):
        gen = _FakeGenerator()
        recs = _generate(template_generator=gen)
        assert len(gen.calls) == 3
        assert [r.drafted_by for r in recs] == ["llm", "llm", "llm", "template"]
        assert recs[0].suggested_text == "drafted waiting_on_client_follow_up"

    def test_custom_budget(self):
        gen = _FakeGenerator()
        recs = _generate(template_generator=gen, config=RecommendationsConfig(llm_budget=0))
        assert gen.calls == []
        assert all(r.drafted_by == "template" for r in recs)

    def test_hidden_items_not_drafted(self):
        gen = _FakeGenerator()
        # a single non-primary doc ref falls below the quality threshold for delivery
        recs = _generate(
            signals=_signals(delivery_ref=EvidenceRef(doc_url="https://docs.example.com/x")),
            template_generator=gen,
        )
        delivery = next(r for r in recs if r.category == "delivery_risk")
        assert not delivery.visible
        assert delivery.evidence_gate_reason == "low_evidence_quality"
        assert delivery.drafted_by == "template"
        assert "delivery_risk_escalation" not in gen.calls
        finance = next(r for r in recs if r.category == "finance_risk")
        assert finance.drafted_by == "llm"

    def test_exception_falls_back(self, caplog):
        gen = _FakeGenerator(exc=RuntimeError("boom"))
        with caplog.at_level(logging.WARNING, logger="project_pulse.recommendations.generator"):
            recs = _generate(template_generator=gen)
        assert all(r.drafted_by == "template" for r in recs)
        assert all(r.suggested_text for r in recs)
        assert "Template generator failed" in caplog.text

    def test_empty_text_falls_back(self, caplog):
        gen = _FakeGenerator(text="")
        with caplog.at_level(logging.WARNING, logger="project_pulse.recommendations.generator"):
            recs = _generate(template_generator=gen)
        assert recs[0].drafted_by == "template"
        assert recs[0].suggested_text.startswith("Subject: ")
        assert "returned empty text" in caplog.text


# ── Recommendation fields ─────────────────────────────────────────────────────

class TestFields:
    def test_gate_fields_populated(self):
        rec = _generate()[0]
        assert rec.evidence_gate_status == "visible"
        assert rec.evidence_count == 1
        assert 0.35 <= rec.evidence_quality_score <= 1.0
        assert rec.links == ["chatwoot://message/m-1"]
        assert rec.status == "new"

    def test_context_names_used(self):
        recs = _generate(context={"client_name": "Dana", "stage_name": "Design"})
        assert "Hi Dana," in recs[0].suggested_text
        assert "Design" in recs[0].suggested_text
