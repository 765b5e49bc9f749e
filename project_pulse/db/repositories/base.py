"""
Base repository providing shared SQLite execution helpers.

All repositories inherit from ``BaseRepository`` and receive a
``sqlite3.Connection`` at construction time. The connection is opened and
managed by the caller (typically via ``get_connection()``), which also owns
the transaction boundary.

Design:
  - No ORM: all SQL is explicit and lives in repository methods.
  - Repositories speak Pydantic models, not raw dicts.
  - JSON columns go through ``dump_json()``/``load_json()``; evidence lists
    through ``dump_refs()``/``load_refs()`` so every table stores refs the
    same way.
  - Merge policy (latest-wins, insert-or-ignore, sticky status) is expressed
    in the SQL of each repository and nowhere else.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Iterable, Optional

from project_pulse.models.evidence import EvidenceRef

logger = logging.getLogger(__name__)


def dump_json(data: Any) -> str:
    """Serialise a JSON column value (sorted keys for stable diffs)."""
    return json.dumps(data, sort_keys=True, default=str)


def load_json(raw: Optional[str], default: Any = None) -> Any:
    """Parse a JSON column value, returning ``default`` for NULL/empty."""
    if raw is None or raw == "":
        return default
    return json.loads(raw)


def dump_refs(refs: Iterable[EvidenceRef]) -> str:
    return json.dumps([r.model_dump(exclude_none=True) for r in refs])


def load_refs(raw: Optional[str]) -> list[EvidenceRef]:
    return [EvidenceRef.model_validate(d) for d in load_json(raw, [])]


class BaseRepository:
    """Shared SQL execution helpers for all repository classes.

    Attributes:
        conn: The active ``sqlite3.Connection``.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def execute(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> sqlite3.Cursor:
        """Execute a single SQL statement."""
        logger.debug("SQL: %s | params: %s", sql.strip(), params)
        return self.conn.execute(sql, params)

    def executemany(
        self,
        sql: str,
        params_list: list[tuple[Any, ...] | dict[str, Any]],
    ) -> sqlite3.Cursor:
        """Execute a SQL statement for each element in ``params_list``."""
        logger.debug("SQL (many): %s | count: %d", sql.strip(), len(params_list))
        return self.conn.executemany(sql, params_list)

    def fetchone(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> Optional[sqlite3.Row]:
        """Execute a query and return the first row, or ``None``."""
        return self.execute(sql, params).fetchone()

    def fetchall(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> list[sqlite3.Row]:
        """Execute a query and return all rows."""
        return self.execute(sql, params).fetchall()

    def last_insert_rowid(self) -> int:
        """Return the rowid of the last successful INSERT."""
        row = self.conn.execute("SELECT last_insert_rowid();").fetchone()
        assert row is not None
        return int(row[0])
