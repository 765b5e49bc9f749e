"""Tests for repository round-trip operations using in-memory SQLite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from project_pulse.db.repositories.event_repo import EventRepository
from project_pulse.db.repositories.forecast_repo import (
    ForecastRepository,
    RecommendationRepository,
)
from project_pulse.db.repositories.project_repo import ProjectRepository
from project_pulse.db.repositories.signal_repo import SignalRepository, SignalStateRepository
from project_pulse.errors import (
    CorruptedStateError,
    InvalidFeedbackError,
    InvalidStatusError,
    ProjectNotFoundError,
    RecommendationNotFoundError,
)
from project_pulse.models.evidence import EvidenceRef
from project_pulse.models.meta import Project
from project_pulse.models.recommendation import Recommendation
from project_pulse.models.signal import SignalState
from project_pulse.signals.aggregator import apply

NOW = datetime(2026, 2, 17, 12, 0, 0, tzinfo=timezone.utc)


# ── Helpers ────────────────────────────────────────────────────────────────────

def _rec(dedupe_key: str = "k1", priority: int = 3, gate: str = "visible", **overrides) -> Recommendation:
    params = dict(
        project_id="p-1",
        category="waiting_on_client",
        priority=priority,
        title="Follow up with the client",
        rationale="Waiting 3.0 days",
        evidence_refs=[EvidenceRef(message_id="m-1")],
        evidence_count=1,
        evidence_quality_score=0.49,
        evidence_gate_status=gate,
        evidence_gate_reason=None if gate == "visible" else "low_evidence_quality",
        dedupe_key=dedupe_key,
        suggested_template_key="waiting_on_client_follow_up",
        suggested_text="Subject: ...",
    )
    params.update(overrides)
    return Recommendation(**params)


# ── Projects ──────────────────────────────────────────────────────────────────

class TestProjectRepository:
    def test_upsert_and_get(self, registered_db, sample_project):
        repo = ProjectRepository(registered_db)
        got = repo.get_project("p-1")
        assert got.account_id == sample_project.account_id
        assert got.created_at is not None

    def test_upsert_updates_name(self, registered_db):
        repo = ProjectRepository(registered_db)
        repo.upsert_project(Project(project_id="p-1", account_id="acme", name="Renamed"))
        assert repo.get_project("p-1").name == "Renamed"

    def test_require_missing(self, in_memory_db):
        with pytest.raises(ProjectNotFoundError) as exc_info:
            ProjectRepository(in_memory_db).require_project("ghost")
        assert exc_info.value.code == "project_not_found"

    def test_list_by_account(self, registered_db):
        repo = ProjectRepository(registered_db)
        repo.upsert_project(Project(project_id="x-1", account_id="globex"))
        assert [p.project_id for p in repo.list_projects("acme")] == ["p-1"]
        assert len(repo.list_projects()) == 2


# ── Events ────────────────────────────────────────────────────────────────────

class TestEventRepository:
    def test_ids_strictly_increasing(self, in_memory_db):
        repo = EventRepository(in_memory_db)
        a = repo.append_event("p-1", "message_sent", NOW, {"sender": "client"})
        b = repo.append_event("p-1", "message_sent", NOW - timedelta(days=1), {"sender": "team"})
        assert b > a
        assert [e.id for e in repo.events_after("p-1", 0)] == [a, b]

    def test_external_id_dedupe(self, in_memory_db):
        repo = EventRepository(in_memory_db)
        assert repo.append_event("p-1", "message_sent", NOW, external_id="cw-1") is not None
        assert repo.append_event("p-1", "message_sent", NOW, external_id="cw-1") is None
        assert repo.max_event_id("p-1") == 1

    def test_round_trip_payload_and_refs(self, in_memory_db):
        repo = EventRepository(in_memory_db)
        repo.append_event(
            "p-1", "task_blocked", NOW, {"task_id": "T-1"}, [EvidenceRef(linear_issue_id="T-1")]
        )
        event = repo.events_after("p-1", 0)[0]
        assert event.payload == {"task_id": "T-1"}
        assert event.evidence_refs[0].linear_issue_id == "T-1"
        assert event.event_ts == NOW

    def test_events_after_batches(self, in_memory_db):
        repo = EventRepository(in_memory_db)
        for i in range(5):
            repo.append_event("p-1", "message_sent", NOW + timedelta(minutes=i))
        assert [e.id for e in repo.events_after("p-1", 2, limit=2)] == [3, 4]

    def test_events_between_ordered_by_time(self, in_memory_db):
        repo = EventRepository(in_memory_db)
        late = repo.append_event("p-1", "message_sent", NOW)
        early = repo.append_event("p-1", "task_blocked", NOW - timedelta(hours=2))
        repo.append_event("p-1", "task_blocked", NOW - timedelta(days=10))
        end = NOW + timedelta(seconds=1)
        got = repo.events_between("p-1", NOW - timedelta(days=1), end)
        assert [e.id for e in got] == [early, late]
        assert repo.count_by_type("p-1", NOW - timedelta(days=1), end) == {
            "message_sent": 1, "task_blocked": 1,
        }

    def test_window_end_is_exclusive(self, in_memory_db):
        repo = EventRepository(in_memory_db)
        inside = repo.append_event("p-1", "message_sent", NOW - timedelta(seconds=1))
        repo.append_event("p-1", "message_sent", NOW)
        start = NOW - timedelta(hours=1)
        assert [e.id for e in repo.events_between("p-1", start, NOW)] == [inside]
        assert repo.count_by_type("p-1", start, NOW) == {"message_sent": 1}

    def test_append_records_validates(self, in_memory_db):
        repo = EventRepository(in_memory_db)
        with pytest.raises(ValueError, match="missing"):
            repo.append_records([{"project_id": "p-1", "event_type": "message_sent"}])
        with pytest.raises(ValueError, match="invalid event_ts"):
            repo.append_records([{"project_id": "p-1", "event_type": "x", "event_ts": "yesterday"}])

    def test_max_event_id_empty(self, in_memory_db):
        assert EventRepository(in_memory_db).max_event_id("p-1") == 0


# ── Signal state ──────────────────────────────────────────────────────────────

class TestSignalStateRepository:
    def test_empty_when_missing(self, in_memory_db):
        state, cursor = SignalStateRepository(in_memory_db).load("p-1")
        assert cursor == 0
        assert state == SignalState()

    def test_save_and_load(self, in_memory_db):
        events = EventRepository(in_memory_db)
        events.append_event("p-1", "task_blocked", NOW, {"task_id": "T-1"})
        state, last_id = apply(None, events.events_after("p-1", 0), NOW)
        repo = SignalStateRepository(in_memory_db)
        repo.save("p-1", state, last_id)
        loaded, cursor = repo.load("p-1")
        assert cursor == last_id
        assert loaded == state

    def test_cursor_mismatch_raises(self, in_memory_db):
        repo = SignalStateRepository(in_memory_db)
        repo.save("p-1", SignalState(), 0)
        in_memory_db.execute("UPDATE signal_states SET last_event_id = 9 WHERE project_id = 'p-1';")
        with pytest.raises(CorruptedStateError):
            repo.load("p-1")

    def test_garbage_json_raises(self, in_memory_db):
        repo = SignalStateRepository(in_memory_db)
        repo.save("p-1", SignalState(), 0)
        in_memory_db.execute("UPDATE signal_states SET state_json = '{oops' WHERE project_id = 'p-1';")
        with pytest.raises(CorruptedStateError) as exc_info:
            repo.load("p-1")
        assert exc_info.value.project_id == "p-1"

    def test_delete(self, in_memory_db):
        repo = SignalStateRepository(in_memory_db)
        repo.save("p-1", SignalState(), 0)
        repo.delete("p-1")
        assert repo.load("p-1")[1] == 0


# ── Signals and scores ────────────────────────────────────────────────────────

class TestSignalRepository:
    def test_latest_wins_and_history_appends(self, in_memory_db, sample_signal):
        repo = SignalRepository(in_memory_db)
        repo.upsert_signals("p-1", [sample_signal])
        repo.upsert_signals("p-1", [sample_signal.model_copy(update={"value": 5.0})])
        current = repo.list_signals("p-1")
        assert len(current) == 1
        assert current[0].value == 5.0
        assert current[0].evidence_refs == sample_signal.evidence_refs
        history = repo.signal_history("p-1", "waiting_on_client_days")
        assert [v for _, v in history] == [5.0, 3.0]

    def test_scores_round_trip(self, in_memory_db, sample_score):
        repo = SignalRepository(in_memory_db)
        repo.upsert_scores("p-1", [sample_score])
        got = repo.list_scores("p-1")[0]
        assert got.value == 42.5
        assert got.weights == {"waiting": 0.06}


# ── Forecasts ─────────────────────────────────────────────────────────────────

class TestForecastRepository:
    def test_latest_wins(self, registered_db, sample_forecast):
        repo = ForecastRepository(registered_db)
        repo.upsert_forecasts([sample_forecast])
        repo.upsert_forecasts([sample_forecast.model_copy(update={"probability_7d": 0.1})])
        got = repo.list_forecasts("p-1")
        assert len(got) == 1
        assert got[0].probability_7d == 0.1

    def test_unpublishable_hidden_by_default(self, registered_db, sample_forecast, now):
        repo = ForecastRepository(registered_db)
        silent = sample_forecast.model_copy(
            update={"risk_type": "finance_risk", "evidence_refs": [], "publishable": False}
        )
        repo.upsert_forecasts([sample_forecast, silent])
        assert [f.risk_type for f in repo.list_forecasts("p-1")] == ["client_risk"]
        assert len(repo.list_forecasts("p-1", include_unpublished=True)) == 2


# ── Recommendations ───────────────────────────────────────────────────────────

class TestRecommendationRepository:
    def test_upsert_dedupes(self, registered_db):
        repo = RecommendationRepository(registered_db)
        repo.upsert_recommendations([_rec()])
        repo.upsert_recommendations([_rec(priority=5, title="Updated")])
        got = repo.list_recommendations("p-1")
        assert len(got) == 1
        assert got[0].priority == 5
        assert got[0].title == "Updated"

    def test_status_sticky_across_refresh(self, registered_db):
        repo = RecommendationRepository(registered_db)
        repo.upsert_recommendations([_rec()])
        rec_id = repo.list_recommendations("p-1")[0].id
        repo.set_status("p-1", rec_id, "dismissed")
        repo.upsert_recommendations([_rec(priority=4)])
        got = repo.get_recommendation("p-1", rec_id)
        assert got.status == "dismissed"
        assert got.priority == 4

    def test_hidden_filtered_by_default(self, registered_db):
        repo = RecommendationRepository(registered_db)
        repo.upsert_recommendations([_rec("k1"), _rec("k2", gate="hidden")])
        assert [r.dedupe_key for r in repo.list_recommendations("p-1")] == ["k1"]
        assert len(repo.list_recommendations("p-1", include_hidden=True)) == 2

    def test_ordered_by_priority(self, registered_db):
        repo = RecommendationRepository(registered_db)
        repo.upsert_recommendations([_rec("k1", priority=2), _rec("k2", priority=5)])
        assert [r.priority for r in repo.list_recommendations("p-1")] == [5, 2]

    def test_status_filter(self, registered_db):
        repo = RecommendationRepository(registered_db)
        repo.upsert_recommendations([_rec("k1"), _rec("k2")])
        first = repo.list_recommendations("p-1")[0]
        repo.set_status("p-1", first.id, "done")
        assert [r.id for r in repo.list_recommendations("p-1", status="done")] == [first.id]
        with pytest.raises(InvalidStatusError):
            repo.list_recommendations("p-1", status="archived")

    def test_invalid_status(self, registered_db):
        repo = RecommendationRepository(registered_db)
        repo.upsert_recommendations([_rec()])
        rec_id = repo.list_recommendations("p-1")[0].id
        with pytest.raises(InvalidStatusError) as exc_info:
            repo.set_status("p-1", rec_id, "closed")
        assert exc_info.value.code == "invalid_recommendation_status"

    def test_missing_recommendation(self, registered_db):
        with pytest.raises(RecommendationNotFoundError):
            RecommendationRepository(registered_db).set_status("p-1", 999, "done")

    def test_feedback(self, registered_db):
        repo = RecommendationRepository(registered_db)
        repo.upsert_recommendations([_rec()])
        rec_id = repo.list_recommendations("p-1")[0].id
        assert repo.set_feedback("p-1", rec_id, "helpful").feedback == "helpful"
        with pytest.raises(InvalidFeedbackError):
            repo.set_feedback("p-1", rec_id, "meh")

    def test_other_project_cannot_update(self, registered_db):
        repo = RecommendationRepository(registered_db)
        repo.upsert_recommendations([_rec()])
        rec_id = repo.list_recommendations("p-1")[0].id
        with pytest.raises(RecommendationNotFoundError):
            repo.set_status("p-2", rec_id, "done")
