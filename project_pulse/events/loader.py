"""
Event import loader: JSON → SQLite event log.

Responsibilities
----------------
1. Load an events JSON file. Two shapes are accepted:

   - a bare list of event records, or
   - an object ``{"projects": [...], "events": [...]}``; projects are
     registered (upserted) before their events are appended.

2. Validate every record before writing anything.
3. Append events through ``EventRepository.append_records``. Records with
   an ``external_id`` that was already imported are skipped, so re-importing
   the same export is a no-op.

Record schema
-------------
  project_id     (str, required)
  event_type     (str, required) — see ``EventType``; unknown types are
                                   accepted but only advance the cursor
  event_ts       (ISO-8601, required)
  payload        (object, optional)
  evidence_refs  (list of objects, optional) — each with exactly one id field
  external_id    (str, optional) — upstream id used for import dedupe

Validation rules
----------------
- Missing required fields and unparseable ``event_ts`` are rejected.
- Evidence refs must carry exactly one identifier.
- Duplicate ``(project_id, external_id)`` pairs inside one file are rejected.
- Projects must have ``project_id`` and ``account_id``.

Usage
-----
    from project_pulse.events.loader import import_events_file

    result = import_events_file(conn, Path("data/raw/events.json"))
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from project_pulse.db.repositories.event_repo import EventRepository
from project_pulse.db.repositories.project_repo import ProjectRepository
from project_pulse.models.evidence import EvidenceRef
from project_pulse.models.meta import Project
from project_pulse.taxonomy.event_taxonomy import EventType
from project_pulse.utils.time_utils import parse_ts

log = logging.getLogger(__name__)

_KNOWN_TYPES: frozenset[str] = frozenset(t.value for t in EventType)


@dataclass
class ImportResult:
    """Outcome of one events file import."""

    path: str
    projects_upserted: int = 0
    events_read: int = 0
    events_inserted: int = 0
    unknown_types: dict[str, int] = field(default_factory=dict)

    @property
    def events_skipped(self) -> int:
        return self.events_read - self.events_inserted


# ── Validation ────────────────────────────────────────────────────────────────

def _validate_projects(records: list[dict[str, Any]]) -> None:
    """Raise ValueError for any schema violations in the projects list."""
    for i, rec in enumerate(records):
        if not isinstance(rec, dict):
            raise ValueError(f"Project at index {i} is not an object.")
        for key in ("project_id", "account_id"):
            if not rec.get(key):
                raise ValueError(f"Project at index {i} is missing '{key}'.")


def validate_event_records(records: list[dict[str, Any]]) -> dict[str, int]:
    """Raise ValueError for any schema violations in the events list.

    Returns:
        Counts of event types outside ``EventType`` (accepted, but ignored
        by the aggregator).
    """
    seen_external: set[tuple[str, str]] = set()
    unknown: dict[str, int] = {}
    for i, rec in enumerate(records):
        if not isinstance(rec, dict):
            raise ValueError(f"Event at index {i} is not an object.")
        for key in ("project_id", "event_type", "event_ts"):
            if not rec.get(key):
                raise ValueError(f"Event at index {i} is missing '{key}'.")
        if parse_ts(rec["event_ts"]) is None:
            raise ValueError(f"Event at index {i} has invalid event_ts {rec['event_ts']!r}.")
        payload = rec.get("payload")
        if payload is not None and not isinstance(payload, dict):
            raise ValueError(f"Event at index {i}: 'payload' must be an object.")
        for j, ref in enumerate(rec.get("evidence_refs") or []):
            try:
                EvidenceRef.model_validate(ref)
            except ValidationError as exc:
                raise ValueError(f"Event at index {i}: evidence ref {j} is invalid: {exc}") from exc

        external_id = rec.get("external_id")
        if external_id is not None:
            key = (str(rec["project_id"]), str(external_id))
            if key in seen_external:
                raise ValueError(f"Duplicate external_id {key} at index {i}.")
            seen_external.add(key)

        event_type = str(rec["event_type"]).lower()
        if event_type not in _KNOWN_TYPES:
            unknown[event_type] = unknown.get(event_type, 0) + 1
    return unknown


# ── Loader ────────────────────────────────────────────────────────────────────

def read_events_file(path: Path) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Read ``(projects, events)`` from an events JSON file."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, list):
        return [], data
    if isinstance(data, dict):
        projects = data.get("projects") or []
        events = data.get("events") or []
        if not isinstance(projects, list) or not isinstance(events, list):
            raise ValueError(f"{path}: 'projects' and 'events' must be lists.")
        return projects, events
    raise ValueError(f"{path}: expected a list of events or an object with 'events'.")


def import_events_file(conn: sqlite3.Connection, path: Path) -> ImportResult:
    """Validate and import one events JSON file.

    Nothing is written when validation fails. The caller owns the
    transaction (``get_connection`` commits on clean exit).

    Raises:
        FileNotFoundError: ``path`` does not exist.
        ValueError:        Malformed file or invalid record.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Events file not found: {path}")

    projects, events = read_events_file(path)
    _validate_projects(projects)
    unknown = validate_event_records(events)

    result = ImportResult(path=str(path), events_read=len(events), unknown_types=unknown)

    project_repo = ProjectRepository(conn)
    for rec in projects:
        project_repo.upsert_project(
            Project(
                project_id=str(rec["project_id"]),
                account_id=str(rec["account_id"]),
                name=str(rec.get("name") or ""),
            )
        )
        result.projects_upserted += 1

    result.events_inserted = EventRepository(conn).append_records(events)

    if unknown:
        log.warning(
            "Imported %d event(s) of unknown type (ignored by the aggregator): %s",
            sum(unknown.values()), unknown,
        )
    log.info(
        "Imported %s | projects=%d | events=%d inserted, %d skipped",
        path.name, result.projects_upserted, result.events_inserted, result.events_skipped,
    )
    return result
