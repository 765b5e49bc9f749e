"""
Repository for the append-only project event log.

Ids are assigned by SQLite (``AUTOINCREMENT``) and are strictly increasing,
which is the order the aggregator applies events in. Rows are never updated
or deleted. Re-importing an event with the same ``external_id`` is ignored.

Timestamps are stored as ``YYYY-MM-DDTHH:MM:SSZ`` so lexical order in SQL
matches chronological order.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any, Iterable, Optional

from project_pulse.db.repositories.base import (
    BaseRepository,
    dump_json,
    dump_refs,
    load_json,
    load_refs,
)
from project_pulse.models.event import Event
from project_pulse.models.evidence import EvidenceRef
from project_pulse.utils.time_utils import ensure_utc, iso_z, parse_ts

logger = logging.getLogger(__name__)


class EventRepository(BaseRepository):
    """Append and read access to ``events``."""

    def append_event(
        self,
        project_id: str,
        event_type: str,
        event_ts: datetime,
        payload: Optional[dict[str, Any]] = None,
        evidence_refs: Iterable[EvidenceRef] = (),
        external_id: Optional[str] = None,
    ) -> Optional[int]:
        """Append one event.

        Returns:
            The new event id, or ``None`` when ``external_id`` was already imported.
        """
        cur = self.execute(
            """
            INSERT OR IGNORE INTO events (
                project_id, event_type, event_ts, payload_json,
                evidence_refs_json, external_id
            ) VALUES (?, ?, ?, ?, ?, ?);
            """,
            (
                project_id,
                event_type,
                iso_z(ensure_utc(event_ts)),
                dump_json(payload or {}),
                dump_refs(evidence_refs),
                external_id,
            ),
        )
        if cur.rowcount == 0:
            logger.debug("Event external_id=%s already imported; skipped.", external_id)
            return None
        return self.last_insert_rowid()

    def append_records(self, records: Iterable[dict[str, Any]]) -> int:
        """Append raw event records (as found in an import file).

        Each record needs ``project_id``, ``event_type`` and ``event_ts``;
        ``payload``, ``evidence_refs`` and ``external_id`` are optional.

        Returns:
            Number of events actually inserted.

        Raises:
            ValueError: On a record missing a required field or with an
                unparseable ``event_ts``.
        """
        inserted = 0
        for i, rec in enumerate(records):
            missing = [k for k in ("project_id", "event_type", "event_ts") if not rec.get(k)]
            if missing:
                raise ValueError(f"Event record at index {i} is missing {missing}.")
            ts = parse_ts(rec["event_ts"])
            if ts is None:
                raise ValueError(f"Event record at index {i} has invalid event_ts {rec['event_ts']!r}.")
            refs = [EvidenceRef.model_validate(r) for r in rec.get("evidence_refs") or []]
            external_id = rec.get("external_id")
            new_id = self.append_event(
                project_id=str(rec["project_id"]),
                event_type=str(rec["event_type"]),
                event_ts=ts,
                payload=rec.get("payload") or {},
                evidence_refs=refs,
                external_id=str(external_id) if external_id is not None else None,
            )
            if new_id is not None:
                inserted += 1
        return inserted

    def events_after(
        self,
        project_id: str,
        after_id: int,
        limit: Optional[int] = None,
    ) -> list[Event]:
        """Events with ``id > after_id`` in id order (optionally a bounded batch)."""
        sql = "SELECT * FROM events WHERE project_id = ? AND id > ? ORDER BY id"
        params: tuple[Any, ...] = (project_id, after_id)
        if limit is not None:
            sql += " LIMIT ?"
            params += (limit,)
        return [_row_to_event(r) for r in self.fetchall(sql + ";", params)]

    def events_between(
        self,
        project_id: str,
        start: datetime,
        end: datetime,
    ) -> list[Event]:
        """Events with ``start <= event_ts < end`` ordered by ``(event_ts, id)``."""
        rows = self.fetchall(
            """
            SELECT * FROM events
            WHERE project_id = ? AND event_ts >= ? AND event_ts < ?
            ORDER BY event_ts, id;
            """,
            (project_id, iso_z(start), iso_z(end)),
        )
        return [_row_to_event(r) for r in rows]

    def count_by_type(
        self,
        project_id: str,
        start: datetime,
        end: datetime,
    ) -> dict[str, int]:
        """Event counts per type in ``[start, end)``."""
        rows = self.fetchall(
            """
            SELECT event_type, COUNT(*) AS n FROM events
            WHERE project_id = ? AND event_ts >= ? AND event_ts < ?
            GROUP BY event_type ORDER BY event_type;
            """,
            (project_id, iso_z(start), iso_z(end)),
        )
        return {r["event_type"]: int(r["n"]) for r in rows}

    def max_event_id(self, project_id: str) -> int:
        row = self.fetchone(
            "SELECT COALESCE(MAX(id), 0) FROM events WHERE project_id = ?;", (project_id,)
        )
        return int(row[0]) if row else 0


def _row_to_event(row: sqlite3.Row) -> Event:
    return Event(
        id=row["id"],
        project_id=row["project_id"],
        event_type=row["event_type"],
        event_ts=row["event_ts"],
        payload=load_json(row["payload_json"], {}),
        evidence_refs=load_refs(row["evidence_refs_json"]),
    )
