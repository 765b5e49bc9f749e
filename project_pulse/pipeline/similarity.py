"""
Similarity stage: rebuild the project's case signatures for every
configured window. Windows with no snapshots are skipped and reported as a
single warn entry.
"""

from __future__ import annotations

import sqlite3
from datetime import date, datetime
from typing import Optional

from project_pulse.models.meta import ProcessRun
from project_pulse.pipeline.base import PipelineStage
from project_pulse.similarity.engine import SimilarityEngine


class SimilarityStage(PipelineStage):
    """Rebuild 7/14/30-day case signatures for one project."""

    stage_name = "similarity_rebuild"

    def _execute(
        self,
        conn: sqlite3.Connection,
        run: ProcessRun,
        as_of: Optional[date] = None,
        now: Optional[datetime] = None,
        **kwargs,
    ) -> int:
        as_of = as_of or (now or self.clock()).date()
        result = SimilarityEngine(conn, self.config).rebuild_signatures(
            run.project_id, self.config.pipeline.similarity_windows, as_of
        )
        run.counters.update({"built": result.built, "skipped": result.skipped})
        if result.skipped:
            run.warnings.append(
                f"No snapshots for window(s) {result.skipped}; signatures not rebuilt"
            )
        return len(result.built)
