"""
Snapshot stage: freeze today's signals and scores, record derived outcomes.
"""

from __future__ import annotations

import sqlite3
from datetime import date, datetime
from typing import Optional

from project_pulse.db.repositories.project_repo import ProjectRepository
from project_pulse.models.meta import ProcessRun
from project_pulse.pipeline.base import PipelineStage
from project_pulse.snapshots.builder import SnapshotBuilder


class SnapshotStage(PipelineStage):
    """Upsert the project's snapshot for one day and insert its outcomes."""

    stage_name = "snapshot_build"

    def _execute(
        self,
        conn: sqlite3.Connection,
        run: ProcessRun,
        snapshot_date: Optional[date] = None,
        now: Optional[datetime] = None,
        **kwargs,
    ) -> int:
        ProjectRepository(conn).require_project(run.project_id)
        snapshot_date = snapshot_date or (now or self.clock()).date()
        result = SnapshotBuilder(conn).build(run.project_id, snapshot_date)
        run.counters.update({
            "snapshot_date": snapshot_date.isoformat(),
            "outcomes_derived": len(result.outcomes),
            "outcomes_inserted": result.outcomes_inserted,
        })
        return 1
