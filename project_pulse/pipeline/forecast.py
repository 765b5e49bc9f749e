"""
Forecast stage: 7/14/30-day risk forecasts from current signals, scores and
similar past cases.

All forecasts are persisted; those without evidence are stored as
unpublishable and reported as a single warn entry.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from project_pulse.db.repositories.forecast_repo import ForecastRepository
from project_pulse.db.repositories.signal_repo import SignalRepository
from project_pulse.forecasting.engine import forecast
from project_pulse.models.meta import ProcessRun
from project_pulse.pipeline.base import PipelineStage
from project_pulse.similarity.engine import SimilarityEngine

logger = logging.getLogger(__name__)


class ForecastStage(PipelineStage):
    """Compute and persist forecasts for one project."""

    stage_name = "forecast_refresh"

    def _execute(
        self,
        conn: sqlite3.Connection,
        run: ProcessRun,
        now: Optional[datetime] = None,
        **kwargs,
    ) -> int:
        now = now or self.clock()
        project_id = run.project_id
        signal_repo = SignalRepository(conn)
        signals = signal_repo.list_signals(project_id)
        scores = signal_repo.list_scores(project_id)
        similar = SimilarityEngine(conn, self.config).find_similar_cases(
            project_id, as_of=now.date()
        )

        forecasts = forecast(project_id, signals, scores, similar, now, self.config.forecast)
        ForecastRepository(conn).upsert_forecasts(forecasts)

        unpublishable = [f.risk_type for f in forecasts if not f.publishable]
        run.counters.update({
            "forecasts": len(forecasts),
            "unpublishable": len(unpublishable),
            "similar_cases": len(similar),
        })
        if unpublishable:
            run.warnings.append(f"Forecasts without evidence (unpublished): {unpublishable}")
        logger.debug(
            "Forecasts for %s | similar_cases=%d | unpublishable=%s",
            project_id, len(similar), unpublishable,
        )
        return len(forecasts)
