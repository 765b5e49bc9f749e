"""
SQLite schema DDL — all CREATE TABLE and CREATE INDEX statements.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is **idempotent**:
safe to call on an already-initialized database (e.g. after restart or in tests).

Key and write policy per table:
  1. projects          PK project_id                    upsert
  2. events            PK id (monotonic)                append-only
  3. signal_states     PK project_id                    state + cursor replaced together
  4. signals           PK (project_id, signal_key)      latest wins
  5. signal_history    PK id                            append-only
  6. scores            PK (project_id, score_type)      latest wins
  7. snapshots         PK (project_id, snapshot_date)   upsert (that day only)
  8. case_outcomes     UNIQUE (project_id, dedupe_key)  insert-or-ignore
  9. case_signatures   PK (project_id, window_days)     upsert
  10. forecasts        PK (project_id, risk_type)       latest wins
  11. recommendations  UNIQUE (project_id, dedupe_key)  upsert, status sticky
  12. process_runs     UNIQUE dedupe_key                insert-or-ignore
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

_NOW = "(strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))"

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_PROJECTS = f"""
CREATE TABLE IF NOT EXISTS projects (
    project_id      TEXT    PRIMARY KEY,
    account_id      TEXT    NOT NULL,
    name            TEXT    NOT NULL DEFAULT '',
    created_at      TEXT    NOT NULL DEFAULT {_NOW}
);
CREATE INDEX IF NOT EXISTS idx_projects_account ON projects(account_id);
"""

_DDL_EVENTS = f"""
CREATE TABLE IF NOT EXISTS events (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id          TEXT    NOT NULL,
    event_type          TEXT    NOT NULL,
    event_ts            TEXT    NOT NULL,
    payload_json        TEXT    NOT NULL DEFAULT '{{}}',
    evidence_refs_json  TEXT    NOT NULL DEFAULT '[]',
    external_id         TEXT,
    created_at          TEXT    NOT NULL DEFAULT {_NOW}
);
CREATE INDEX IF NOT EXISTS idx_events_project_id ON events(project_id, id);
CREATE UNIQUE INDEX IF NOT EXISTS uq_events_external
    ON events(project_id, external_id) WHERE external_id IS NOT NULL;
"""

_DDL_SIGNAL_STATES = f"""
CREATE TABLE IF NOT EXISTS signal_states (
    project_id      TEXT    PRIMARY KEY,
    version         INTEGER NOT NULL,
    last_event_id   INTEGER NOT NULL DEFAULT 0,
    state_json      TEXT    NOT NULL,
    updated_at      TEXT    NOT NULL DEFAULT {_NOW}
);
"""

_DDL_SIGNALS = """
CREATE TABLE IF NOT EXISTS signals (
    project_id          TEXT    NOT NULL,
    signal_key          TEXT    NOT NULL,
    value               REAL    NOT NULL,
    status              TEXT    NOT NULL CHECK (status IN ('ok', 'warn', 'critical')),
    threshold_warn      REAL,
    threshold_critical  REAL,
    comparator          TEXT    NOT NULL DEFAULT 'high',
    details_json        TEXT    NOT NULL DEFAULT '{}',
    evidence_refs_json  TEXT    NOT NULL DEFAULT '[]',
    computed_at         TEXT    NOT NULL,
    PRIMARY KEY (project_id, signal_key)
);
"""

_DDL_SIGNAL_HISTORY = """
CREATE TABLE IF NOT EXISTS signal_history (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id      TEXT    NOT NULL,
    signal_key      TEXT    NOT NULL,
    value           REAL    NOT NULL,
    status          TEXT    NOT NULL,
    computed_at     TEXT    NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_signal_history_project
    ON signal_history(project_id, signal_key, computed_at);
"""

_DDL_SCORES = """
CREATE TABLE IF NOT EXISTS scores (
    project_id          TEXT    NOT NULL,
    score_type          TEXT    NOT NULL,
    value               REAL    NOT NULL CHECK (value >= 0 AND value <= 100),
    level               TEXT    NOT NULL,
    weights_json        TEXT    NOT NULL DEFAULT '{}',
    factors_json        TEXT    NOT NULL DEFAULT '[]',
    evidence_refs_json  TEXT    NOT NULL DEFAULT '[]',
    computed_at         TEXT    NOT NULL,
    PRIMARY KEY (project_id, score_type)
);
"""

_DDL_SNAPSHOTS = f"""
CREATE TABLE IF NOT EXISTS snapshots (
    project_id      TEXT    NOT NULL REFERENCES projects(project_id),
    snapshot_date   TEXT    NOT NULL,
    signals_json    TEXT    NOT NULL DEFAULT '{{}}',
    scores_json     TEXT    NOT NULL DEFAULT '{{}}',
    aggregates_json TEXT    NOT NULL DEFAULT '{{}}',
    created_at      TEXT    NOT NULL DEFAULT {_NOW},
    updated_at      TEXT    NOT NULL DEFAULT {_NOW},
    PRIMARY KEY (project_id, snapshot_date)
);
"""

_DDL_CASE_OUTCOMES = f"""
CREATE TABLE IF NOT EXISTS case_outcomes (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id          TEXT    NOT NULL REFERENCES projects(project_id),
    outcome_type        TEXT    NOT NULL,
    occurred_at         TEXT    NOT NULL,
    severity            INTEGER NOT NULL CHECK (severity BETWEEN 1 AND 5),
    notes               TEXT    NOT NULL DEFAULT '',
    evidence_refs_json  TEXT    NOT NULL DEFAULT '[]',
    dedupe_key          TEXT    NOT NULL,
    created_at          TEXT    NOT NULL DEFAULT {_NOW},
    UNIQUE (project_id, dedupe_key)
);
CREATE INDEX IF NOT EXISTS idx_case_outcomes_project
    ON case_outcomes(project_id, occurred_at);
"""

_DDL_CASE_SIGNATURES = f"""
CREATE TABLE IF NOT EXISTS case_signatures (
    project_id              TEXT    NOT NULL REFERENCES projects(project_id),
    window_days             INTEGER NOT NULL CHECK (window_days IN (7, 14, 30)),
    as_of                   TEXT    NOT NULL,
    signature_vector_json   TEXT    NOT NULL,
    event_bigrams_json      TEXT    NOT NULL DEFAULT '[]',
    context_json            TEXT    NOT NULL DEFAULT '{{}}',
    features_json           TEXT    NOT NULL DEFAULT '{{}}',
    updated_at              TEXT    NOT NULL DEFAULT {_NOW},
    PRIMARY KEY (project_id, window_days)
);
"""

_DDL_FORECASTS = """
CREATE TABLE IF NOT EXISTS forecasts (
    project_id                  TEXT    NOT NULL REFERENCES projects(project_id),
    risk_type                   TEXT    NOT NULL,
    probability_7d              REAL    NOT NULL,
    probability_14d             REAL    NOT NULL,
    probability_30d             REAL    NOT NULL,
    expected_time_to_risk_days  REAL    NOT NULL,
    confidence                  REAL    NOT NULL,
    drivers_json                TEXT    NOT NULL DEFAULT '[]',
    similar_cases_json          TEXT    NOT NULL DEFAULT '[]',
    evidence_refs_json          TEXT    NOT NULL DEFAULT '[]',
    publishable                 INTEGER NOT NULL DEFAULT 0,
    generated_at                TEXT    NOT NULL,
    PRIMARY KEY (project_id, risk_type)
);
"""

_DDL_RECOMMENDATIONS = f"""
CREATE TABLE IF NOT EXISTS recommendations (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id              TEXT    NOT NULL REFERENCES projects(project_id),
    category                TEXT    NOT NULL,
    priority                INTEGER NOT NULL CHECK (priority BETWEEN 1 AND 5),
    title                   TEXT    NOT NULL,
    rationale               TEXT    NOT NULL,
    why_now                 TEXT    NOT NULL DEFAULT '',
    expected_impact         TEXT    NOT NULL DEFAULT '',
    owner_role              TEXT    NOT NULL DEFAULT 'pm',
    due_date                TEXT,
    links_json              TEXT    NOT NULL DEFAULT '[]',
    evidence_refs_json      TEXT    NOT NULL DEFAULT '[]',
    evidence_count          INTEGER NOT NULL DEFAULT 0,
    evidence_quality_score  REAL    NOT NULL DEFAULT 0,
    evidence_gate_status    TEXT    NOT NULL DEFAULT 'visible'
                            CHECK (evidence_gate_status IN ('visible', 'hidden')),
    evidence_gate_reason    TEXT,
    signal_snapshot_json    TEXT    NOT NULL DEFAULT '{{}}',
    forecast_snapshot_json  TEXT    NOT NULL DEFAULT '{{}}',
    dedupe_key              TEXT    NOT NULL,
    suggested_template_key  TEXT    NOT NULL DEFAULT '',
    suggested_text          TEXT    NOT NULL DEFAULT '',
    drafted_by              TEXT    NOT NULL DEFAULT 'template',
    status                  TEXT    NOT NULL DEFAULT 'new'
                            CHECK (status IN ('new', 'acknowledged', 'done', 'dismissed')),
    created_at              TEXT    NOT NULL DEFAULT {_NOW},
    updated_at              TEXT    NOT NULL DEFAULT {_NOW},
    UNIQUE (project_id, dedupe_key)
);
CREATE INDEX IF NOT EXISTS idx_recommendations_project
    ON recommendations(project_id, evidence_gate_status, status);
"""

_DDL_PROCESS_RUNS = f"""
CREATE TABLE IF NOT EXISTS process_runs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id      TEXT    NOT NULL,
    process         TEXT    NOT NULL,
    run_id          TEXT    NOT NULL,
    phase           TEXT    NOT NULL CHECK (phase IN ('start', 'finish', 'fail', 'warn')),
    occurred_at     TEXT    NOT NULL,
    message         TEXT,
    counters_json   TEXT    NOT NULL DEFAULT '{{}}',
    payload_json    TEXT    NOT NULL DEFAULT '{{}}',
    duration_ms     INTEGER,
    dedupe_key      TEXT    NOT NULL UNIQUE,
    created_at      TEXT    NOT NULL DEFAULT {_NOW}
);
CREATE INDEX IF NOT EXISTS idx_process_runs_project
    ON process_runs(project_id, process, occurred_at);
"""

_ALL_DDL = [
    _DDL_PROJECTS,
    _DDL_EVENTS,
    _DDL_SIGNAL_STATES,
    _DDL_SIGNALS,
    _DDL_SIGNAL_HISTORY,
    _DDL_SCORES,
    _DDL_SNAPSHOTS,
    _DDL_CASE_OUTCOMES,
    _DDL_CASE_SIGNATURES,
    _DDL_FORECASTS,
    _DDL_RECOMMENDATIONS,
    _DDL_PROCESS_RUNS,
]

ALL_TABLE_NAMES = [
    "projects",
    "events",
    "signal_states",
    "signals",
    "signal_history",
    "scores",
    "snapshots",
    "case_outcomes",
    "case_signatures",
    "forecasts",
    "recommendations",
    "process_runs",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``.

    Idempotent — safe to call on an already-initialized database.

    Args:
        conn: An open ``sqlite3.Connection`` (FK enforcement should be ON).
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return the sorted table names present in the database."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]


def get_existing_indexes(conn: sqlite3.Connection) -> list[str]:
    """Return the sorted index names present in the database."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='index' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]
