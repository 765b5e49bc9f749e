"""
Simple sequential schema migration bootstrap.

This is NOT a full migration framework (no Alembic, no down migrations):

  1. A ``schema_versions`` table tracks applied migration IDs.
  2. Each migration is a Python function taking a ``sqlite3.Connection``.
  3. ``run_migrations()`` applies any migrations not yet recorded.

Adding a new migration:
  1. Define a function ``migration_NNNN_description(conn)`` below.
  2. Add it to ``MIGRATIONS`` with a string key like ``"0004_something"``.

The initial schema is applied via ``apply_schema()`` in ``schema.py`` before
any migrations run; migrations are for incremental changes only. Use
``init_db()`` to do both in one call.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable

from project_pulse.db.schema import apply_schema

logger = logging.getLogger(__name__)

MigrationFn = Callable[[sqlite3.Connection], None]


def _ensure_version_table(conn: sqlite3.Connection) -> None:
    """Create the ``schema_versions`` tracking table if it does not exist."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_versions (
            version_id  TEXT    NOT NULL PRIMARY KEY,
            applied_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
            description TEXT
        );
    """)
    conn.commit()


def _get_applied_versions(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute("SELECT version_id FROM schema_versions;").fetchall()
    return {row[0] for row in rows}


def _mark_applied(conn: sqlite3.Connection, version_id: str, description: str) -> None:
    conn.execute(
        "INSERT INTO schema_versions(version_id, description) VALUES (?, ?);",
        (version_id, description),
    )
    conn.commit()


def _column_names(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table});").fetchall()}


# ── Migration functions ────────────────────────────────────────────────────────


def migration_0001_baseline(conn: sqlite3.Connection) -> None:
    """Baseline: anchors the version history; the schema itself comes from apply_schema()."""


def migration_0002_recommendation_feedback(conn: sqlite3.Connection) -> None:
    """Add user feedback columns to ``recommendations``."""
    existing = _column_names(conn, "recommendations")
    if "feedback" not in existing:
        conn.execute("ALTER TABLE recommendations ADD COLUMN feedback TEXT;")
    if "feedback_at" not in existing:
        conn.execute("ALTER TABLE recommendations ADD COLUMN feedback_at TEXT;")


def migration_0003_event_type_index(conn: sqlite3.Connection) -> None:
    """Index events by type and time for the snapshot aggregates and bigram queries."""
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_events_project_ts "
        "ON events(project_id, event_ts, id);"
    )


MIGRATIONS: dict[str, tuple[MigrationFn, str]] = {
    "0001_baseline": (
        migration_0001_baseline,
        "Baseline: schema_versions table created",
    ),
    "0002_recommendation_feedback": (
        migration_0002_recommendation_feedback,
        "Add feedback, feedback_at to recommendations",
    ),
    "0003_event_type_index": (
        migration_0003_event_type_index,
        "Add idx_events_project_ts",
    ),
}


def run_migrations(conn: sqlite3.Connection) -> int:
    """Apply all pending migrations.

    Args:
        conn: An open ``sqlite3.Connection`` with the base schema applied.

    Returns:
        Number of migrations applied in this call.
    """
    _ensure_version_table(conn)
    applied = _get_applied_versions(conn)

    count = 0
    for version_id, (fn, description) in MIGRATIONS.items():
        if version_id in applied:
            logger.debug("Migration %s already applied; skipping.", version_id)
            continue

        logger.info("Applying migration %s: %s", version_id, description)
        try:
            fn(conn)
            _mark_applied(conn, version_id, description)
            count += 1
        except Exception as exc:
            conn.rollback()
            logger.error("Migration %s FAILED: %s", version_id, exc)
            raise

    if count:
        logger.info("Applied %d migration(s).", count)
    else:
        logger.debug("No pending migrations.")

    return count


def init_db(conn: sqlite3.Connection) -> int:
    """Apply the base schema and all pending migrations.

    Returns:
        Number of migrations applied.
    """
    apply_schema(conn)
    return run_migrations(conn)
