"""
Repository for the project registry.
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from project_pulse.db.repositories.base import BaseRepository
from project_pulse.errors import ProjectNotFoundError
from project_pulse.models.meta import Project
from project_pulse.utils.time_utils import parse_ts


class ProjectRepository(BaseRepository):
    """Read/write access to ``projects``."""

    def upsert_project(self, project: Project) -> None:
        """Insert a project or update its tenant and name."""
        self.execute(
            """
            INSERT INTO projects (project_id, account_id, name)
            VALUES (?, ?, ?)
            ON CONFLICT(project_id) DO UPDATE SET
                account_id = excluded.account_id,
                name       = excluded.name;
            """,
            (project.project_id, project.account_id, project.name),
        )

    def get_project(self, project_id: str) -> Optional[Project]:
        row = self.fetchone("SELECT * FROM projects WHERE project_id = ?;", (project_id,))
        return _row_to_project(row) if row else None

    def require_project(self, project_id: str) -> Project:
        """Fetch a project or raise ``ProjectNotFoundError``."""
        project = self.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def list_projects(self, account_id: Optional[str] = None) -> list[Project]:
        """List projects ordered by id, optionally for one tenant."""
        if account_id is not None:
            rows = self.fetchall(
                "SELECT * FROM projects WHERE account_id = ? ORDER BY project_id;",
                (account_id,),
            )
        else:
            rows = self.fetchall("SELECT * FROM projects ORDER BY project_id;")
        return [_row_to_project(r) for r in rows]


def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        project_id=row["project_id"],
        account_id=row["account_id"],
        name=row["name"],
        created_at=parse_ts(row["created_at"]),
    )
