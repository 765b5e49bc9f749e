"""
Project registry and process run metadata.

``Project`` ties a project to its tenant (``account_id``); similarity never
crosses tenants.

``ProcessRun`` is the in-flight handle of one bracketed process execution
(e.g. a forecast refresh). Like the pipeline audit record it replaces, it is
the one model that is NOT frozen: ``status``, ``counters``, ``warnings`` and
``finished_at`` are updated while the process executes.

``ProcessLogEntry`` is one persisted row of the append-only process run log.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

VALID_PHASES: frozenset[str] = frozenset({"start", "finish", "fail", "warn"})
VALID_RUN_STATUSES: frozenset[str] = frozenset({"started", "success", "failed"})


class Project(BaseModel):
    """A registered project.

    Attributes:
        project_id: Stable project identifier.
        account_id: Tenant the project belongs to.
        name:       Display name (also feeds the project-type classifier).
    """

    model_config = ConfigDict(frozen=True)

    project_id: str
    account_id: str
    name: str = ""
    created_at: Optional[datetime] = None


class ProcessRun(BaseModel):
    """Mutable handle for one bracketed process execution."""

    project_id: str
    process: str
    run_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    status: str = "started"
    counters: dict[str, Any] = {}
    warnings: list[str] = []
    error_message: Optional[str] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_RUN_STATUSES:
            raise ValueError(f"status must be one of {sorted(VALID_RUN_STATUSES)}, got '{v}'.")
        return v

    @property
    def duration_ms(self) -> Optional[int]:
        if self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at).total_seconds() * 1000)


class ProcessLogEntry(BaseModel):
    """One persisted process run log row."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    project_id: str
    process: str
    run_id: str
    phase: str
    occurred_at: datetime
    message: Optional[str] = None
    counters: dict[str, Any] = {}
    payload: dict[str, Any] = {}
    duration_ms: Optional[int] = None
    dedupe_key: str

    @field_validator("phase")
    @classmethod
    def validate_phase(cls, v: str) -> str:
        if v not in VALID_PHASES:
            raise ValueError(f"phase must be one of {sorted(VALID_PHASES)}, got '{v}'.")
        return v
