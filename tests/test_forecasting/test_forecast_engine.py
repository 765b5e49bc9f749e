"""
Tests for project_pulse/forecasting/engine.py.

What we test
------------
forecast():
  - One forecast per risk type, in RiskType order, stamped with ``now``.
  - p7 <= p14 <= p30 for arbitrary inputs.
  - Publishable exactly when a driver signal of that type carries evidence.
  - Hard floors lift the baseline when their trigger fires.
  - Similar cases with matching outcomes raise probabilities and confidence.
  - Identical inputs give byte-identical serialised forecasts.

similar_case_score():
  - Similarity-weighted severity mean over matching outcomes only.

expected_time_to_risk():
  - 60 days below p30 = 0.05; otherwise clamped to [2, 60].
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from project_pulse.config import ForecastConfig
from project_pulse.forecasting.engine import (
    apply_floors,
    expected_time_to_risk,
    forecast,
    forecast_map,
    horizon_probabilities,
    similar_case_score,
)
from project_pulse.models.evidence import EvidenceRef
from project_pulse.models.signal import Score, Signal
from project_pulse.models.snapshot import CaseOutcome, SimilarCase
from project_pulse.taxonomy.outcome_taxonomy import RiskType

NOW = datetime(2026, 2, 17, 12, 0, 0, tzinfo=timezone.utc)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _signal(key: str, value: float, refs: list[EvidenceRef] | None = None, **details) -> Signal:
    return Signal(
        signal_key=key,
        value=value,
        status="ok",
        details=details,
        evidence_refs=refs or [],
        computed_at=NOW,
    )


def _case(score: float, outcome_type: str, severity: int) -> SimilarCase:
    return SimilarCase(
        case_project_id=f"c-{score}",
        similarity_score=score,
        why_similar="",
        outcomes_seen=[
            CaseOutcome(
                project_id=f"c-{score}",
                outcome_type=outcome_type,
                occurred_at=NOW,
                severity=severity,
                dedupe_key=f"{score}-{outcome_type}",
            )
        ],
    )


# ── forecast() ────────────────────────────────────────────────────────────────

class TestForecastShape:
    def test_one_per_risk_type(self):
        forecasts = forecast("p-1", [], [], [], NOW)
        assert [f.risk_type for f in forecasts] == [r.value for r in RiskType]
        assert all(f.generated_at == NOW for f in forecasts)

    def test_quiet_project_low_and_unpublishable(self):
        for f in forecast("p-1", [], [], [], NOW):
            assert f.probability_7d == 0.0
            assert not f.publishable
            assert f.expected_time_to_risk_days == pytest.approx(
                expected_time_to_risk(f.probability_30d), abs=0.01
            )

    @pytest.mark.parametrize("waiting,blockers,burn,scope,risk", [
        (0, 0, 0, 0, 0),
        (10, 10, 3, 2, 100),
        (2.5, 1.0, 1.1, 0.25, 55),
    ])
    def test_horizons_monotonic(self, waiting, blockers, burn, scope, risk):
        signals = [
            _signal("waiting_on_client_days", waiting),
            _signal("blockers_age", blockers, open_blockers=2),
            _signal("budget_burn_rate", burn),
            _signal("scope_creep_rate", scope),
        ]
        scores = [Score(score_type="risk", value=risk, level="low", computed_at=NOW)]
        for f in forecast("p-1", signals, scores, [_case(0.7, "delivery_risk", 5)], NOW):
            assert f.probability_7d <= f.probability_14d <= f.probability_30d <= 1.0


class TestPublishable:
    def test_only_evidenced_types_publishable(self):
        signals = [_signal("budget_burn_rate", 1.3, [EvidenceRef(doc_url="https://x/invoice")])]
        by_type = forecast_map(forecast("p-1", signals, [], [], NOW))
        assert by_type["finance_risk"].publishable
        assert by_type["finance_risk"].evidence_refs[0].doc_url == "https://x/invoice"
        assert not by_type["client_risk"].publishable

    def test_shared_driver_publishes_both_types(self):
        signals = [_signal("stage_overdue", 1.0, [EvidenceRef(linear_issue_id="L-1")])]
        by_type = forecast_map(forecast("p-1", signals, [], [], NOW))
        assert by_type["delivery_risk"].publishable
        assert by_type["scope_risk"].publishable
        assert not by_type["finance_risk"].publishable


class TestFloors:
    def test_waiting_floor(self):
        out = apply_floors({"client_risk": 0.1}, {
            "waiting_on_client_days": _signal("waiting_on_client_days", 4.0),
        }, ForecastConfig())
        assert out["client_risk"] == 0.62

    def test_blocker_burst_floor(self):
        out = apply_floors({"delivery_risk": 0.0}, {
            "blockers_age": _signal("blockers_age", 0.1, open_blockers=4),
        }, ForecastConfig())
        assert out["delivery_risk"] == 0.62

    def test_floor_never_lowers(self):
        out = apply_floors({"finance_risk": 0.9}, {
            "budget_burn_rate": _signal("budget_burn_rate", 1.25),
        }, ForecastConfig())
        assert out["finance_risk"] == 0.9

    def test_scope_floor(self):
        out = apply_floors({}, {"scope_creep_rate": _signal("scope_creep_rate", 0.35)}, ForecastConfig())
        assert out["scope_risk"] == 0.6


class TestSimilarCases:
    def test_case_score_weighted_by_similarity(self):
        cases = [_case(0.8, "client_risk", 5), _case(0.2, "client_risk", 1)]
        # (0.8 * 1.0 + 0.2 * 0.2) / 1.0
        assert similar_case_score(cases, "client_risk") == pytest.approx(0.84)

    def test_other_outcome_types_ignored(self):
        assert similar_case_score([_case(0.9, "finance_risk", 5)], "client_risk") == 0.0

    def test_cases_raise_probability_and_confidence(self):
        plain = forecast_map(forecast("p-1", [], [], [], NOW))["client_risk"]
        with_cases = forecast_map(
            forecast("p-1", [], [], [_case(0.9, "client_risk", 5)], NOW)
        )["client_risk"]
        assert with_cases.probability_7d > plain.probability_7d
        assert with_cases.confidence > plain.confidence
        assert with_cases.similar_cases[0].matched_outcomes == 1


class TestDeterminism:
    def test_same_inputs_same_bytes(self):
        signals = [
            _signal("waiting_on_client_days", 3.5, [EvidenceRef(message_id="m-1")]),
            _signal("blockers_age", 2.0, [EvidenceRef(linear_issue_id="L-1")], open_blockers=3),
            _signal("budget_burn_rate", 1.15, [EvidenceRef(doc_url="https://x/invoice")]),
            _signal("scope_creep_rate", 0.2, [EvidenceRef(message_id="m-2")]),
        ]
        scores = [Score(score_type="risk", value=62, level="medium", computed_at=NOW)]
        cases = [_case(0.8, "client_risk", 4), _case(0.6, "delivery_risk", 5)]

        a = forecast("p-1", signals, scores, cases, NOW)
        b = forecast("p-1", signals, scores, cases, NOW)
        assert [f.model_dump_json() for f in a] == [f.model_dump_json() for f in b]
        assert any(f.publishable for f in a)


class TestHorizonMath:
    def test_growth(self):
        p7, p14, p30 = horizon_probabilities(0.4, 0.0, ForecastConfig())
        assert p7 == pytest.approx(0.3)
        assert p14 == pytest.approx(0.3 + 0.12 * 0.7)
        assert p30 == pytest.approx(p14 + 0.18 * (1 - p14))

    @pytest.mark.parametrize("p30,expected", [(0.0, 60.0), (0.049, 60.0), (0.5, 22.0), (1.0, 2.0)])
    def test_expected_time_to_risk(self, p30, expected):
        assert expected_time_to_risk(p30) == pytest.approx(expected)
