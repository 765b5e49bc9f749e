"""
Tests for project_pulse/pipeline/ (stages and RefreshOrchestrator).

What we test
------------
RefreshOrchestrator.run():
  - A registered project with a waiting-on-client history ends with signals,
    a snapshot, signatures, forecasts and a visible recommendation.
  - Every stage writes start + finish under one shared run_id.
  - Unregistered projects fail at signal_refresh; the others still refresh
    (status ``partial``); all failing gives ``failed``.
  - The fail entry survives the stage's rollback and carries the error code.
  - A corrupted signal state is reported, never silently reset.
  - A second refresh applies no events again and keeps user statuses.

Uses a temporary on-disk SQLite file so stages and the process log can use
separate connections.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from project_pulse.config import AppConfig, DatabaseConfig
from project_pulse.db.connection import get_connection
from project_pulse.db.migrations import init_db
from project_pulse.db.repositories.event_repo import EventRepository
from project_pulse.db.repositories.forecast_repo import (
    ForecastRepository,
    RecommendationRepository,
)
from project_pulse.db.repositories.process_repo import ProcessRunRepository
from project_pulse.db.repositories.project_repo import ProjectRepository
from project_pulse.db.repositories.signal_repo import SignalRepository
from project_pulse.db.repositories.snapshot_repo import CaseSignatureRepository, SnapshotRepository
from project_pulse.errors import ProjectNotFoundError
from project_pulse.models.evidence import EvidenceRef
from project_pulse.models.meta import Project
from project_pulse.pipeline.aggregate import SignalRefreshStage
from project_pulse.pipeline.orchestrator import RefreshOrchestrator

NOW = datetime(2026, 2, 17, 12, 0, 0, tzinfo=timezone.utc)

STAGES = [
    "signal_refresh",
    "snapshot_build",
    "similarity_rebuild",
    "forecast_refresh",
    "recommendation_refresh",
]


# ── Helpers ───────────────────────────────────────────────────────────────────

@pytest.fixture
def config(tmp_path) -> AppConfig:
    return AppConfig(database=DatabaseConfig(db_path=str(tmp_path / "pulse.db")))


@pytest.fixture
def seeded(config) -> AppConfig:
    with get_connection(config.database.db_path) as conn:
        init_db(conn)
        projects = ProjectRepository(conn)
        projects.upsert_project(Project(project_id="p-1", account_id="acme", name="Website"))
        projects.upsert_project(Project(project_id="p-2", account_id="acme", name="Website v2"))
        EventRepository(conn).append_event(
            "p-1",
            "stage_started",
            NOW - timedelta(days=4),
            {"stage_id": "s-2", "stage_name": "Design", "approval_pending": True},
            [EvidenceRef(message_id="m-1")],
        )
    return config


def _orchestrator(config: AppConfig) -> RefreshOrchestrator:
    return RefreshOrchestrator(config, clock=lambda: NOW)


# ── Happy path ────────────────────────────────────────────────────────────────

class TestRefresh:
    def test_all_outputs_written(self, seeded):
        result = _orchestrator(seeded).run(["p-1"], now=NOW)
        assert result.status == "success"
        assert result.project_results[0].stages_completed == STAGES

        with get_connection(seeded.database.db_path) as conn:
            assert len(SignalRepository(conn).list_signals("p-1")) == 10
            assert len(SignalRepository(conn).list_scores("p-1")) == 4
            assert SnapshotRepository(conn).get_snapshot("p-1", NOW.date()) is not None
            assert {s.window_days for s in CaseSignatureRepository(conn).list_signatures("p-1")} == {
                7, 14, 30,
            }
            assert len(ForecastRepository(conn).list_forecasts("p-1", include_unpublished=True)) == 4
            recs = RecommendationRepository(conn).list_recommendations("p-1")
        waiting = next(r for r in recs if r.category == "waiting_on_client")
        assert "Design" in waiting.suggested_text

    def test_shared_run_id_and_bracketing(self, seeded):
        result = _orchestrator(seeded).run(["p-1"], now=NOW)
        run_id = result.project_results[0].run_id
        with get_connection(seeded.database.db_path) as conn:
            entries = ProcessRunRepository(conn).list_entries("p-1", run_id=run_id)
        for stage in STAGES:
            phases = [e.phase for e in entries if e.process == stage]
            assert phases[0] == "start"
            assert phases[-1] == "finish"
        assert {e.run_id for e in entries} == {run_id}

    def test_unpublishable_forecasts_warned(self, seeded):
        result = _orchestrator(seeded).run(["p-1"], now=NOW)
        assert any("unpublished" in w for w in result.project_results[0].warnings)

    def test_defaults_to_registered_projects(self, seeded):
        result = _orchestrator(seeded).run(now=NOW)
        assert [r.project_id for r in result.project_results] == ["p-1", "p-2"]
        assert result.status == "success"

    def test_second_refresh_is_incremental_and_keeps_status(self, seeded):
        _orchestrator(seeded).run(["p-1"], now=NOW)
        with get_connection(seeded.database.db_path) as conn:
            repo = RecommendationRepository(conn)
            rec = next(
                r for r in repo.list_recommendations("p-1") if r.category == "waiting_on_client"
            )
            repo.set_status("p-1", rec.id, "acknowledged")

        result = _orchestrator(seeded).run(["p-1"], now=NOW)
        counters = result.project_results[0].counters["signal_refresh"]
        assert counters["events_applied"] == 0
        assert counters["last_event_id"] == 1
        with get_connection(seeded.database.db_path) as conn:
            again = RecommendationRepository(conn).get_recommendation("p-1", rec.id)
        assert again.status == "acknowledged"


# ── Failure isolation ─────────────────────────────────────────────────────────

class TestFailures:
    def test_partial(self, seeded):
        result = _orchestrator(seeded).run(["ghost", "p-1"], now=NOW)
        assert result.status == "partial"
        ghost, ok = result.project_results
        assert not ghost.success
        assert ghost.failed_stage == "signal_refresh"
        assert ghost.stages_completed == []
        assert ok.success
        assert result.errors[0].startswith("ghost: signal_refresh:")

    def test_all_failed(self, seeded):
        assert _orchestrator(seeded).run(["ghost"], now=NOW).status == "failed"

    def test_fail_entry_survives(self, seeded):
        with pytest.raises(ProjectNotFoundError):
            SignalRefreshStage(seeded, clock=lambda: NOW).run("ghost", run_id="r-1", now=NOW)
        with get_connection(seeded.database.db_path) as conn:
            entries = ProcessRunRepository(conn).list_entries("ghost")
        assert [e.phase for e in entries] == ["start", "fail"]
        assert entries[1].payload["error_code"] == "project_not_found"

    def test_corrupted_state_not_reset(self, seeded):
        _orchestrator(seeded).run(["p-1"], now=NOW)
        with get_connection(seeded.database.db_path) as conn:
            conn.execute("UPDATE signal_states SET state_json = 'not json' WHERE project_id = 'p-1';")

        result = _orchestrator(seeded).run(["p-1"], now=NOW)
        assert result.status == "failed"
        assert result.project_results[0].failed_stage == "signal_refresh"
        with get_connection(seeded.database.db_path) as conn:
            row = conn.execute(
                "SELECT state_json FROM signal_states WHERE project_id = 'p-1';"
            ).fetchone()
            entries = ProcessRunRepository(conn).list_entries("p-1", process="signal_refresh")
        assert row["state_json"] == "not json"
        assert entries[-1].phase == "fail"
        assert entries[-1].payload["error_code"] == "signal_state_corrupted"
