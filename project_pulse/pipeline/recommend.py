"""
Recommendation stage: generate, gate and draft recommendations, then upsert
them by dedupe key.

The upsert never touches ``status``: an acknowledged, done or dismissed
recommendation keeps its status when a refresh regenerates it. Hidden
candidates are persisted too and reported as a single warn entry.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Callable, Optional

from project_pulse.config import AppConfig
from project_pulse.db.repositories.forecast_repo import ForecastRepository, RecommendationRepository
from project_pulse.db.repositories.project_repo import ProjectRepository
from project_pulse.db.repositories.signal_repo import SignalRepository, SignalStateRepository
from project_pulse.models.meta import ProcessRun
from project_pulse.pipeline.base import PipelineStage
from project_pulse.recommendations.generator import generate_recommendations
from project_pulse.recommendations.llm_client import TemplateGenerator, build_template_generator
from project_pulse.similarity.engine import SimilarityEngine
from project_pulse.utils.time_utils import utcnow


class RecommendationStage(PipelineStage):
    """Refresh recommendations for one project.

    Args:
        config:             Application config.
        db_path:            Override DB path.
        clock:              Time source.
        template_generator: Drafting callable; defaults to the configured LLM
                            client when ``[llm] enabled = true``, else none.
    """

    stage_name = "recommendation_refresh"

    def __init__(
        self,
        config: AppConfig,
        db_path: str | None = None,
        clock: Callable[[], datetime] = utcnow,
        template_generator: Optional[TemplateGenerator] = None,
    ) -> None:
        super().__init__(config, db_path=db_path, clock=clock)
        self.template_generator = template_generator or build_template_generator(config.llm)

    def _execute(
        self,
        conn: sqlite3.Connection,
        run: ProcessRun,
        now: Optional[datetime] = None,
        **kwargs,
    ) -> int:
        now = now or self.clock()
        project_id = run.project_id
        project = ProjectRepository(conn).require_project(project_id)

        signal_repo = SignalRepository(conn)
        state, _ = SignalStateRepository(conn).load(project_id)
        similar = SimilarityEngine(conn, self.config).find_similar_cases(
            project_id, as_of=now.date()
        )
        context = {"project_name": project.name or project_id}
        if state.stage.stage_name:
            context["stage_name"] = state.stage.stage_name

        recs = generate_recommendations(
            project_id,
            signal_repo.list_signals(project_id),
            signal_repo.list_scores(project_id),
            ForecastRepository(conn).list_forecasts(project_id, include_unpublished=True),
            similar,
            now,
            self.config.recommendations,
            template_generator=self.template_generator,
            context=context,
        )
        RecommendationRepository(conn).upsert_recommendations(recs)

        hidden = [r.category for r in recs if not r.visible]
        run.counters.update({
            "generated": len(recs),
            "visible": len(recs) - len(hidden),
            "hidden": len(hidden),
            "drafted_by_llm": sum(1 for r in recs if r.drafted_by == "llm"),
        })
        if hidden:
            run.warnings.append(f"Candidates hidden by the evidence gate: {hidden}")
        return len(recs)
