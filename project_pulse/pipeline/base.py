"""
Abstract base class for all refresh pipeline stages.

Every stage follows the same contract:
  1. Receive ``AppConfig`` at construction.
  2. ``run(project_id, **kwargs)`` is the sole public API.
  3. ``run()`` writes a ``start`` entry to the process run log, opens its own
     connection, calls ``_execute()`` and commits.
  4. On success it writes one ``warn`` entry if the stage appended to
     ``run.warnings``, then ``finish`` with the run's counters. On failure
     it writes ``fail`` and re-raises.

The log entries go through a separate connection that commits per entry, so
a ``fail`` entry survives the rollback of the stage's own transaction.

Usage::

    class MyStage(PipelineStage):
        stage_name = "signal_refresh"

        def _execute(self, conn, run, **kwargs) -> int:
            run.counters["events_applied"] = 12
            return 12

    run = MyStage(config=app_config).run("p-1")
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Optional

from project_pulse.config import AppConfig
from project_pulse.db.connection import connect_from_config
from project_pulse.models.meta import ProcessRun
from project_pulse.monitoring.process_log import ProcessRunLog
from project_pulse.utils.logging import run_logger
from project_pulse.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class PipelineStage(ABC):
    """Abstract base for all refresh stages.

    Subclasses must:
      1. Set ``stage_name`` class variable (the process name in the run log).
      2. Implement ``_execute(conn, run, **kwargs) -> int``.

    Attributes:
        stage_name: Process name written to the run log.
        config:     The application configuration for this run.
        db_path:    Path to the SQLite database (defaults to ``config.database.db_path``).
        clock:      Time source for the run log and for default ``now`` values.
    """

    stage_name: str  # Override in subclass

    def __init__(
        self,
        config: AppConfig,
        db_path: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.db_path = db_path or config.database.db_path
        self.clock = clock

    def run(self, project_id: str, run_id: Optional[str] = None, **kwargs) -> ProcessRun:
        """Execute this stage for one project.

        Args:
            project_id: Project to refresh.
            run_id:     Shared id when several stages form one refresh.
            **kwargs:   Stage-specific keyword arguments passed to ``_execute()``.

        Returns:
            The finished ``ProcessRun`` (``status='success'``).

        Raises:
            Exception: Re-raises any exception from ``_execute()`` after
                recording a ``fail`` entry.
        """
        with connect_from_config(self.config, self.db_path) as log_conn:
            process_log = ProcessRunLog(log_conn, clock=self.clock)
            run = process_log.start(project_id, self.stage_name, run_id=run_id)
            rlog = run_logger(logger, project_id, self.stage_name, run.run_id)
            rlog.info("Stage [%s] starting", self.stage_name)

            try:
                with connect_from_config(self.config, self.db_path) as conn:
                    rows = self._execute(conn, run, **kwargs)
            except Exception as exc:
                process_log.fail(run, exc)
                rlog.error("Stage [%s] FAILED: %s", self.stage_name, exc)
                raise

            run.counters.setdefault("rows", rows)
            if run.warnings:
                process_log.warn(run, "; ".join(run.warnings))
                rlog.warning("Stage [%s] partial: %s", self.stage_name, "; ".join(run.warnings))
            process_log.finish(run)
            rlog.info(
                "Stage [%s] completed | rows=%d | duration_ms=%s",
                self.stage_name, rows, run.duration_ms,
            )
        return run

    @abstractmethod
    def _execute(self, conn: sqlite3.Connection, run: ProcessRun, **kwargs) -> int:
        """Stage-specific implementation.

        Args:
            conn: Connection owned by this stage; committed on clean return.
            run:  The in-flight ``ProcessRun`` (add counters and warnings to it).
            **kwargs: Stage-specific parameters.

        Returns:
            Integer count of rows/records processed.
        """
        ...
