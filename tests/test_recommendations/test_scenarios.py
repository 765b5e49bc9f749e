"""
End-to-end scenarios: events -> signal state -> signals -> scores ->
forecasts -> recommendations, all in memory.

What we test
------------
  - A stage awaiting client approval for 4 days yields a visible
    waiting_on_client recommendation and P(client, 7d) >= 0.45.
  - Two scope requests against one client message yield a visible
    change-request recommendation and P(scope, 14d) >= 0.5.
  - Four fresh blockers trip the burst floor and a delivery recommendation.
  - Cost at 1.25x plan yields a finance recommendation backed by the
    finance documents.
  - A quiet project yields no recommendations.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from project_pulse.forecasting.engine import forecast, forecast_map
from project_pulse.models.event import Event
from project_pulse.models.evidence import EvidenceRef
from project_pulse.recommendations.generator import generate_recommendations
from project_pulse.scoring.composite import score
from project_pulse.signals.aggregator import apply
from project_pulse.signals.derive import derive_signals, signal_map

NOW = datetime(2026, 2, 17, 12, 0, 0, tzinfo=timezone.utc)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _event(event_id: int, event_type: str, days_ago: float, payload: dict, ref: EvidenceRef) -> Event:
    return Event(
        id=event_id,
        project_id="p-1",
        event_type=event_type,
        event_ts=NOW - timedelta(days=days_ago),
        payload=payload,
        evidence_refs=[ref],
    )


def _run(events: list[Event]):
    state, _ = apply(None, events, NOW)
    signals = derive_signals(state, NOW)
    scores = score(signals, state, NOW)
    forecasts = forecast("p-1", signals, scores, [], NOW)
    recs = generate_recommendations("p-1", signals, scores, forecasts, [], NOW)
    return signal_map(signals), forecast_map(forecasts), {r.category: r for r in recs}


# ── Scenarios ─────────────────────────────────────────────────────────────────

class TestScenarios:
    def test_waiting_on_client(self):
        signals, forecasts, recs = _run([
            _event(1, "stage_started", 4, {
                "stage_id": "s-2", "stage_name": "Design", "approval_pending": True,
            }, EvidenceRef(message_id="m-1")),
        ])
        assert signals["waiting_on_client_days"].value == 4.0
        assert forecasts["client_risk"].probability_7d >= 0.45
        assert forecasts["client_risk"].publishable
        rec = recs["waiting_on_client"]
        assert rec.visible
        assert rec.priority == 4
        assert "m-1" in {ref.message_id for ref in rec.evidence_refs}

    def test_scope_creep(self):
        signals, forecasts, recs = _run([
            _event(1, "message_sent", 3, {"sender": "client"}, EvidenceRef(message_id="m-1")),
            _event(2, "scope_change_requested", 2, {"summary": "Extra page"}, EvidenceRef(message_id="m-2")),
            _event(3, "scope_change_requested", 1, {"summary": "New export"}, EvidenceRef(message_id="m-3")),
        ])
        assert signals["scope_creep_rate"].value == 2.0
        assert forecasts["scope_risk"].probability_14d >= 0.5
        rec = recs["scope_creep_change_request"]
        assert rec.visible
        assert "2 request(s) outside the agreed scope" in rec.suggested_text

    def test_blocker_burst(self):
        signals, forecasts, recs = _run([
            _event(i, "task_blocked", 1, {"task_id": f"T-{i}"}, EvidenceRef(linear_issue_id=f"T-{i}"))
            for i in range(1, 5)
        ])
        assert signals["blockers_age"].details["open_blockers"] == 4
        assert forecasts["delivery_risk"].probability_7d >= 0.45
        rec = recs["delivery_risk"]
        assert rec.visible
        assert rec.links[0].startswith("linear://issue/")

    def test_budget_overrun(self):
        signals, forecasts, recs = _run([
            _event(1, "finance_entry_created", 5, {"entry_type": "planned_budget", "amount": 1000},
                   EvidenceRef(doc_url="https://docs.example.com/budget")),
            _event(2, "finance_entry_created", 1, {"entry_type": "cost", "amount": 1250},
                   EvidenceRef(doc_url="https://docs.example.com/invoice-7")),
        ])
        assert signals["budget_burn_rate"].value == 1.25
        assert forecasts["finance_risk"].probability_7d >= 0.45
        rec = recs["finance_risk"]
        assert rec.visible
        assert rec.owner_role == "finance_lead"
        assert {ref.doc_url for ref in rec.evidence_refs} >= {
            "https://docs.example.com/budget", "https://docs.example.com/invoice-7",
        }

    def test_quiet_project(self):
        _, forecasts, recs = _run([])
        assert recs == {}
        assert not any(f.publishable for f in forecasts.values())
