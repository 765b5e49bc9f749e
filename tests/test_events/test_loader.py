"""
Tests for project_pulse/events/loader.py.

What we test
------------
validate_event_records():
  - Required fields, event_ts parsing, payload shape, evidence refs with
    exactly one id and in-file external_id duplicates.
  - Unknown event types are counted, not rejected.

import_events_file():
  - Both file shapes (bare list, object with projects + events).
  - Projects are registered before events.
  - Re-importing the same file inserts nothing.
  - Nothing is written when any record is invalid.
"""

from __future__ import annotations

import json

import pytest

from project_pulse.db.repositories.event_repo import EventRepository
from project_pulse.db.repositories.project_repo import ProjectRepository
from project_pulse.events.loader import import_events_file, validate_event_records


# ── Helpers ───────────────────────────────────────────────────────────────────

def _record(**overrides) -> dict:
    rec = {
        "project_id": "p-1",
        "event_type": "message_sent",
        "event_ts": "2026-02-16T10:00:00Z",
        "payload": {"sender": "client", "sentiment_score": 0.2},
        "evidence_refs": [{"message_id": "m-1"}],
        "external_id": "cw-1",
    }
    rec.update(overrides)
    return rec


def _write(tmp_path, data, name: str = "events.json"):
    path = tmp_path / name
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


# ── Validation ────────────────────────────────────────────────────────────────

class TestValidateEventRecords:
    def test_valid(self):
        assert validate_event_records([_record()]) == {}

    @pytest.mark.parametrize("missing", ["project_id", "event_type", "event_ts"])
    def test_missing_field(self, missing):
        rec = _record()
        del rec[missing]
        with pytest.raises(ValueError, match=missing):
            validate_event_records([rec])

    def test_bad_timestamp(self):
        with pytest.raises(ValueError, match="invalid event_ts"):
            validate_event_records([_record(event_ts="last tuesday")])

    def test_payload_must_be_object(self):
        with pytest.raises(ValueError, match="payload"):
            validate_event_records([_record(payload=[1, 2])])

    @pytest.mark.parametrize("ref", [{}, {"message_id": "m-1", "doc_url": "https://x"}])
    def test_evidence_ref_needs_exactly_one_id(self, ref):
        with pytest.raises(ValueError, match="evidence ref 0"):
            validate_event_records([_record(evidence_refs=[ref])])

    def test_duplicate_external_id_in_file(self):
        with pytest.raises(ValueError, match="Duplicate external_id"):
            validate_event_records([_record(), _record()])

    def test_same_external_id_other_project_ok(self):
        validate_event_records([_record(), _record(project_id="p-2")])

    def test_unknown_types_counted(self):
        unknown = validate_event_records([
            _record(event_type="Calendar_Synced", external_id=None),
            _record(event_type="calendar_synced", external_id=None),
        ])
        assert unknown == {"calendar_synced": 2}


# ── Import ────────────────────────────────────────────────────────────────────

class TestImportEventsFile:
    def test_bare_list(self, registered_db, tmp_path):
        path = _write(tmp_path, [_record(), _record(external_id="cw-2")])
        result = import_events_file(registered_db, path)
        assert result.events_read == 2
        assert result.events_inserted == 2
        assert result.projects_upserted == 0
        assert EventRepository(registered_db).max_event_id("p-1") == 2

    def test_object_with_projects(self, in_memory_db, tmp_path):
        path = _write(tmp_path, {
            "projects": [{"project_id": "p-9", "account_id": "acme", "name": "Intranet"}],
            "events": [_record(project_id="p-9")],
        })
        result = import_events_file(in_memory_db, path)
        assert result.projects_upserted == 1
        assert ProjectRepository(in_memory_db).get_project("p-9").name == "Intranet"
        assert [e.event_type for e in EventRepository(in_memory_db).events_after("p-9", 0)] == [
            "message_sent"
        ]

    def test_reimport_is_noop(self, registered_db, tmp_path):
        path = _write(tmp_path, [_record(), _record(external_id="cw-2")])
        import_events_file(registered_db, path)
        again = import_events_file(registered_db, path)
        assert again.events_inserted == 0
        assert again.events_skipped == 2

    def test_invalid_record_writes_nothing(self, registered_db, tmp_path):
        path = _write(tmp_path, [_record(), _record(external_id="cw-2", event_ts="")])
        with pytest.raises(ValueError):
            import_events_file(registered_db, path)
        assert EventRepository(registered_db).max_event_id("p-1") == 0

    def test_project_without_account(self, in_memory_db, tmp_path):
        path = _write(tmp_path, {"projects": [{"project_id": "p-9"}], "events": []})
        with pytest.raises(ValueError, match="account_id"):
            import_events_file(in_memory_db, path)

    def test_unexpected_shape(self, in_memory_db, tmp_path):
        with pytest.raises(ValueError):
            import_events_file(in_memory_db, _write(tmp_path, "just a string"))

    def test_missing_file(self, in_memory_db, tmp_path):
        with pytest.raises(FileNotFoundError):
            import_events_file(in_memory_db, tmp_path / "nope.json")
