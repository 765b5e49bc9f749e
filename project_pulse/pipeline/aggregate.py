"""
Signal refresh stage: fold new events into the signal state, then derive
signals and composite scores.

State and cursor are saved together with the signals and scores in the
stage's single transaction, so a failed refresh leaves the previous state,
cursor and outputs untouched.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from project_pulse.db.repositories.event_repo import EventRepository
from project_pulse.db.repositories.project_repo import ProjectRepository
from project_pulse.db.repositories.signal_repo import SignalRepository, SignalStateRepository
from project_pulse.models.meta import ProcessRun
from project_pulse.pipeline.base import PipelineStage
from project_pulse.scoring.composite import score
from project_pulse.signals.aggregator import apply
from project_pulse.signals.derive import derive_signals

logger = logging.getLogger(__name__)


class SignalRefreshStage(PipelineStage):
    """Aggregate events → signals → scores for one project."""

    stage_name = "signal_refresh"

    def _execute(
        self,
        conn: sqlite3.Connection,
        run: ProcessRun,
        now: Optional[datetime] = None,
        **kwargs,
    ) -> int:
        now = now or self.clock()
        project_id = run.project_id
        ProjectRepository(conn).require_project(project_id)

        state_repo = SignalStateRepository(conn)
        state, last_event_id = state_repo.load(project_id)

        events = EventRepository(conn)
        batch_limit = self.config.pipeline.event_batch_limit
        applied = 0
        while True:
            batch = events.events_after(project_id, last_event_id, limit=batch_limit)
            if not batch:
                break
            state, last_event_id = apply(state, batch, now, self.config.signals)
            applied += len(batch)
            if len(batch) < batch_limit:
                break

        signals = derive_signals(state, now, self.config.signals)
        scores = score(signals, state, now, self.config.scoring)

        state_repo.save(project_id, state, last_event_id)
        signal_repo = SignalRepository(conn)
        signal_repo.upsert_signals(project_id, signals)
        signal_repo.upsert_scores(project_id, scores)

        run.counters.update({
            "events_applied": applied,
            "last_event_id": last_event_id,
            "signals": len(signals),
            "scores": len(scores),
        })
        logger.info(
            "Signals refreshed for %s | events=%d | last_event_id=%d",
            project_id, applied, last_event_id,
        )
        return applied
