"""
Refresh orchestration for Project Pulse.

The ``RefreshOrchestrator`` runs the full refresh for each project, one
project after another:

  Step 1 — Schema:       Apply the schema and pending migrations.
  Step 2 — Signals:      SignalRefreshStage (events → state → signals → scores).
  Step 3 — Snapshot:     SnapshotStage (snapshot + derived outcomes).
  Step 4 — Similarity:   SimilarityStage (7/14/30-day signatures).
  Step 5 — Forecast:     ForecastStage.
  Step 6 — Recommend:    RecommendationStage.

All stages of one project share a ``run_id`` so their process log entries
can be read back together.

Failure isolation
-----------------
- A failing stage stops that project's remaining stages (later stages would
  read stale inputs) and is recorded in ``errors``.
- Other projects still refresh.
- ``status`` is ``success`` when every project finished, ``partial`` when
  some failed, ``failed`` when all failed.

This orchestrator has no scheduling logic or retries; every ``run()`` call
is self-contained and the outer scheduler owns retries and timeouts::

    # Linux cron (every 30 minutes):
    #   */30 * * * * cd /srv/project-pulse && .venv/bin/project-pulse run-refresh
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional
from uuid import uuid4

from project_pulse.config import AppConfig
from project_pulse.db.connection import connect_from_config
from project_pulse.db.migrations import init_db
from project_pulse.db.repositories.project_repo import ProjectRepository
from project_pulse.pipeline.aggregate import SignalRefreshStage
from project_pulse.pipeline.base import PipelineStage
from project_pulse.pipeline.forecast import ForecastStage
from project_pulse.pipeline.recommend import RecommendationStage
from project_pulse.pipeline.similarity import SimilarityStage
from project_pulse.pipeline.snapshot import SnapshotStage
from project_pulse.recommendations.llm_client import TemplateGenerator
from project_pulse.utils.time_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


# ── Result types ──────────────────────────────────────────────────────────────

@dataclass
class ProjectRefreshResult:
    """Outcome of the refresh for a single project.

    Attributes:
        project_id:       Project that was refreshed.
        run_id:           Shared run id of its stages.
        success:          True if every stage completed.
        stages_completed: Stage names that finished, in order.
        failed_stage:     Stage that raised, if any.
        counters:         Counters per completed stage.
        warnings:         Partial-result warnings from completed stages.
        error:            Exception message if success=False.
    """

    project_id:       str
    run_id:           str
    success:          bool = False
    stages_completed: list[str] = field(default_factory=list)
    failed_stage:     Optional[str] = None
    counters:         dict = field(default_factory=dict)
    warnings:         list[str] = field(default_factory=list)
    error:            Optional[str] = None


@dataclass
class RefreshResult:
    """Complete result of one orchestrated refresh.

    Attributes:
        started_at:      UTC datetime when the run started.
        finished_at:     UTC datetime when the run finished.
        project_results: Per-project outcomes.
        errors:          Accumulated ``"<project>: <stage>: <message>"`` strings.
        status:          "success", "partial", or "failed".
    """

    started_at:      Optional[datetime] = None
    finished_at:     Optional[datetime] = None
    project_results: list[ProjectRefreshResult] = field(default_factory=list)
    errors:          list[str] = field(default_factory=list)
    status:          str = "started"


# ── Orchestrator ──────────────────────────────────────────────────────────────

class RefreshOrchestrator:
    """Coordinates the refresh pipeline across projects.

    Args:
        config:             AppConfig for this run.
        db_path:            Override DB path (defaults to config.database.db_path).
        clock:              Time source (also the default ``now``).
        template_generator: Drafting callable passed to the recommendation stage.
    """

    def __init__(
        self,
        config: AppConfig,
        db_path: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
        template_generator: Optional[TemplateGenerator] = None,
    ) -> None:
        self.config = config
        self.db_path = db_path or config.database.db_path
        self.clock = clock
        self.stages: list[PipelineStage] = [
            SignalRefreshStage(config, db_path=self.db_path, clock=clock),
            SnapshotStage(config, db_path=self.db_path, clock=clock),
            SimilarityStage(config, db_path=self.db_path, clock=clock),
            ForecastStage(config, db_path=self.db_path, clock=clock),
            RecommendationStage(
                config, db_path=self.db_path, clock=clock, template_generator=template_generator
            ),
        ]

    def run(
        self,
        project_ids: Optional[list[str]] = None,
        now: Optional[datetime] = None,
    ) -> RefreshResult:
        """Refresh ``project_ids`` (default: every registered project).

        Args:
            project_ids: Projects to refresh, in order.
            now:         Reference time for every stage (default: the clock).

        Returns:
            ``RefreshResult`` with per-project outcomes and overall status.
        """
        now = ensure_utc(now or self.clock())
        result = RefreshResult(started_at=self.clock())

        logger.info("[1/2] Ensuring schema at %s", self.db_path)
        self._ensure_schema()

        if project_ids is None:
            with connect_from_config(self.config, self.db_path) as conn:
                project_ids = [p.project_id for p in ProjectRepository(conn).list_projects()]

        logger.info("[2/2] Refreshing %d project(s) as of %s", len(project_ids), now.isoformat())
        for project_id in project_ids:
            project_result = self._refresh_project(project_id, now)
            result.project_results.append(project_result)
            if not project_result.success:
                result.errors.append(
                    f"{project_id}: {project_result.failed_stage}: {project_result.error}"
                )

        failed = sum(1 for r in result.project_results if not r.success)
        if failed == 0:
            result.status = "success"
        elif failed < len(result.project_results):
            result.status = "partial"
        else:
            result.status = "failed"
        result.finished_at = self.clock()

        logger.info(
            "Refresh finished | status=%s | projects=%d | failed=%d",
            result.status, len(result.project_results), failed,
        )
        return result

    def _refresh_project(self, project_id: str, now: datetime) -> ProjectRefreshResult:
        """Run every stage for one project; stop at the first failure."""
        out = ProjectRefreshResult(project_id=project_id, run_id=str(uuid4()))
        for stage in self.stages:
            try:
                run = stage.run(project_id, run_id=out.run_id, now=now)
            except Exception as exc:
                out.failed_stage = stage.stage_name
                out.error = str(exc)
                logger.error(
                    "Refresh of %s stopped at [%s]: %s", project_id, stage.stage_name, exc
                )
                return out
            out.stages_completed.append(stage.stage_name)
            out.counters[stage.stage_name] = dict(run.counters)
            out.warnings.extend(run.warnings)
        out.success = True
        return out

    def _ensure_schema(self) -> None:
        with connect_from_config(self.config, self.db_path) as conn:
            init_db(conn)
