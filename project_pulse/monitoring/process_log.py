"""
Append-only process run log.

Every bracketed process (a pipeline stage, a CLI maintenance command) writes
``start`` followed by exactly one of ``finish`` or ``fail``, plus at most one
``warn`` when it produced a partial result. Entries are keyed by
``sha1(project_id, phase, process, run_id)`` and inserted with
INSERT OR IGNORE, so replaying a run's bookkeeping never duplicates rows.

Each entry is committed as soon as it is written. Use a connection that is
NOT shared with the process's own data transaction, otherwise a ``fail``
entry is rolled back together with the work it describes.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import uuid4

from project_pulse.db.repositories.process_repo import ProcessRunRepository
from project_pulse.models.meta import ProcessLogEntry, ProcessRun
from project_pulse.taxonomy.outcome_taxonomy import ProcessPhase
from project_pulse.utils.hashing import sha1_of
from project_pulse.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

ERROR_MESSAGE_LIMIT = 4000


def process_log_dedupe_key(project_id: str, phase: str, process: str, run_id: str) -> str:
    return sha1_of(project_id, phase, process, run_id)


class ProcessRunLog:
    """Write bracketed process log entries for ``ProcessRun`` handles.

    Args:
        conn:  Connection used only for log writes.
        clock: Time source, injectable for tests.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.conn = conn
        self.clock = clock
        self.repo = ProcessRunRepository(conn)

    def _write(
        self,
        run: ProcessRun,
        phase: ProcessPhase,
        occurred_at: datetime,
        message: Optional[str] = None,
        counters: Optional[dict[str, Any]] = None,
        payload: Optional[dict[str, Any]] = None,
        duration_ms: Optional[int] = None,
    ) -> bool:
        entry = ProcessLogEntry(
            project_id=run.project_id,
            process=run.process,
            run_id=run.run_id,
            phase=phase.value,
            occurred_at=occurred_at,
            message=message,
            counters=counters or {},
            payload=payload or {},
            duration_ms=duration_ms,
            dedupe_key=process_log_dedupe_key(run.project_id, phase.value, run.process, run.run_id),
        )
        written = self.repo.insert_entry(entry)
        self.conn.commit()
        if not written:
            logger.debug(
                "Process log entry already present: %s/%s/%s/%s",
                run.project_id, run.process, run.run_id, phase.value,
            )
        return written

    def start(
        self,
        project_id: str,
        process: str,
        run_id: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> ProcessRun:
        """Open a run and write its ``start`` entry."""
        run = ProcessRun(
            project_id=project_id,
            process=process,
            run_id=run_id or str(uuid4()),
            started_at=self.clock(),
        )
        self._write(run, ProcessPhase.START, run.started_at, payload=payload)
        return run

    def finish(
        self,
        run: ProcessRun,
        counters: Optional[dict[str, Any]] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Mark ``run`` successful and write its ``finish`` entry."""
        if counters:
            run.counters.update(counters)
        run.status = "success"
        run.finished_at = self.clock()
        return self._write(
            run,
            ProcessPhase.FINISH,
            run.finished_at,
            counters=run.counters,
            payload=payload,
            duration_ms=run.duration_ms,
        )

    def fail(
        self,
        run: ProcessRun,
        error: BaseException | str,
        counters: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Mark ``run`` failed and write its ``fail`` entry (message bounded)."""
        if counters:
            run.counters.update(counters)
        message = str(error)[:ERROR_MESSAGE_LIMIT]
        run.status = "failed"
        run.error_message = message
        run.finished_at = self.clock()
        payload: dict[str, Any] = {}
        if isinstance(error, BaseException):
            payload["error_type"] = type(error).__name__
            code = getattr(error, "code", None)
            if code:
                payload["error_code"] = code
        return self._write(
            run,
            ProcessPhase.FAIL,
            run.finished_at,
            message=message,
            counters=run.counters,
            payload=payload,
            duration_ms=run.duration_ms,
        )

    def warn(
        self,
        run: ProcessRun,
        message: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Write the run's ``warn`` entry (one per run)."""
        return self._write(
            run, ProcessPhase.WARN, self.clock(), message=message, payload=payload
        )

    def entries(self, project_id: str, process: Optional[str] = None, run_id: Optional[str] = None):
        """Read back entries for a project (``ProcessRunRepository.list_entries``)."""
        return self.repo.list_entries(project_id, process=process, run_id=run_id)
