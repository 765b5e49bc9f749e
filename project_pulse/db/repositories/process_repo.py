"""
Repository for the append-only process run log.
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from project_pulse.db.repositories.base import BaseRepository, dump_json, load_json
from project_pulse.models.meta import ProcessLogEntry
from project_pulse.utils.time_utils import iso_z


class ProcessRunRepository(BaseRepository):
    """Insert-or-ignore writes and filtered reads on ``process_runs``."""

    def insert_entry(self, entry: ProcessLogEntry) -> bool:
        """Insert a log entry unless its dedupe key is already present.

        Returns:
            ``True`` if a row was written.
        """
        cur = self.execute(
            """
            INSERT OR IGNORE INTO process_runs (
                project_id, process, run_id, phase, occurred_at, message,
                counters_json, payload_json, duration_ms, dedupe_key
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                entry.project_id,
                entry.process,
                entry.run_id,
                entry.phase,
                iso_z(entry.occurred_at),
                entry.message,
                dump_json(entry.counters),
                dump_json(entry.payload),
                entry.duration_ms,
                entry.dedupe_key,
            ),
        )
        return cur.rowcount > 0

    def list_entries(
        self,
        project_id: str,
        process: Optional[str] = None,
        run_id: Optional[str] = None,
        limit: int = 200,
    ) -> list[ProcessLogEntry]:
        """Entries for a project in write order, optionally filtered."""
        rows = self.fetchall(
            """
            SELECT * FROM process_runs
            WHERE project_id = ?
              AND (? IS NULL OR process = ?)
              AND (? IS NULL OR run_id = ?)
            ORDER BY id LIMIT ?;
            """,
            (project_id, process, process, run_id, run_id, limit),
        )
        return [_row_to_entry(r) for r in rows]


def _row_to_entry(row: sqlite3.Row) -> ProcessLogEntry:
    return ProcessLogEntry(
        id=row["id"],
        project_id=row["project_id"],
        process=row["process"],
        run_id=row["run_id"],
        phase=row["phase"],
        occurred_at=row["occurred_at"],
        message=row["message"],
        counters=load_json(row["counters_json"], {}),
        payload=load_json(row["payload_json"], {}),
        duration_ms=row["duration_ms"],
        dedupe_key=row["dedupe_key"],
    )
