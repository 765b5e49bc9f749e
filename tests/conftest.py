"""
Shared pytest fixtures for the Project Pulse test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema and migrations applied. Created anew for each test that requests it.
  - ``now``: The fixed reference time used across engine tests.
  - Sample domain object factories for use in multiple test modules.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Generator

import pytest

from project_pulse.db.migrations import init_db
from project_pulse.db.repositories.project_repo import ProjectRepository
from project_pulse.models.evidence import EvidenceRef
from project_pulse.models.forecast import Forecast
from project_pulse.models.meta import Project
from project_pulse.models.signal import Score, Signal
from project_pulse.models.snapshot import CaseOutcome, SimilarCase


# ── Database fixture ──────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied.

    Foreign key enforcement is ON. Schema and migrations are applied
    idempotently. Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    init_db(conn)
    yield conn
    conn.close()


@pytest.fixture
def registered_db(in_memory_db, sample_project) -> sqlite3.Connection:
    """``in_memory_db`` with ``sample_project`` registered."""
    ProjectRepository(in_memory_db).upsert_project(sample_project)
    return in_memory_db


@pytest.fixture
def now() -> datetime:
    """Fixed reference time (a Tuesday, midday UTC)."""
    return datetime(2026, 2, 17, 12, 0, 0, tzinfo=timezone.utc)


# ── Sample domain object factories ────────────────────────────────────────────

@pytest.fixture
def sample_project() -> Project:
    """A registered-looking project for tenant ``acme``."""
    return Project(project_id="p-1", account_id="acme", name="Website redesign")


@pytest.fixture
def message_ref() -> EvidenceRef:
    return EvidenceRef(message_id="m-100")


@pytest.fixture
def issue_ref() -> EvidenceRef:
    return EvidenceRef(linear_issue_id="LIN-42")


@pytest.fixture
def crm_ref() -> EvidenceRef:
    return EvidenceRef(attio_record_id="rec-7")


@pytest.fixture
def sample_signal(now, message_ref) -> Signal:
    """A warn-level waiting signal backed by one message."""
    return Signal(
        signal_key="waiting_on_client_days",
        value=3.0,
        status="warn",
        threshold_warn=2,
        threshold_critical=4,
        details={"approval_pending": True},
        evidence_refs=[message_ref],
        computed_at=now,
    )


@pytest.fixture
def sample_score(now, message_ref) -> Score:
    return Score(
        score_type="risk",
        value=42.5,
        level="low",
        weights={"waiting": 0.06},
        evidence_refs=[message_ref],
        computed_at=now,
    )


@pytest.fixture
def sample_forecast(now, message_ref) -> Forecast:
    """A publishable client-risk forecast."""
    return Forecast(
        project_id="p-1",
        risk_type="client_risk",
        probability_7d=0.5,
        probability_14d=0.56,
        probability_30d=0.64,
        expected_time_to_risk_days=16.4,
        confidence=0.36,
        evidence_refs=[message_ref],
        publishable=True,
        generated_at=now,
    )


@pytest.fixture
def sample_outcome(now, crm_ref) -> CaseOutcome:
    return CaseOutcome(
        project_id="p-2",
        outcome_type="client_risk",
        occurred_at=now,
        severity=4,
        notes='Deal stage degraded to "lost"',
        evidence_refs=[crm_ref],
        dedupe_key="a" * 40,
    )


@pytest.fixture
def sample_similar_case(sample_outcome) -> SimilarCase:
    return SimilarCase(
        case_project_id="p-2",
        case_project_name="Support retainer",
        similarity_score=0.8,
        why_similar="time_series=0.900, event_sequence=0.500, context=0.700",
        key_shared_patterns=["message_sent>task_blocked"],
        outcomes_seen=[sample_outcome],
    )
