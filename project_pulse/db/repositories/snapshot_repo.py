"""
Repositories for daily snapshots, case outcomes and case signatures.

Write policies:
  - snapshots:        upsert on (project_id, snapshot_date); only that day changes.
  - case_outcomes:    INSERT OR IGNORE on (project_id, dedupe_key).
  - case_signatures:  upsert on (project_id, window_days).
"""

from __future__ import annotations

import sqlite3
from datetime import date
from typing import Optional

from project_pulse.db.repositories.base import (
    BaseRepository,
    dump_json,
    dump_refs,
    load_json,
    load_refs,
)
from project_pulse.models.snapshot import CaseOutcome, CaseSignature, Snapshot, SnapshotSignal
from project_pulse.utils.time_utils import iso_z, parse_ts


class SnapshotRepository(BaseRepository):
    """Read/write access to ``snapshots`` and ``case_outcomes``."""

    def upsert_snapshot(self, snapshot: Snapshot) -> None:
        self.execute(
            """
            INSERT INTO snapshots (
                project_id, snapshot_date, signals_json, scores_json, aggregates_json
            ) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(project_id, snapshot_date) DO UPDATE SET
                signals_json    = excluded.signals_json,
                scores_json     = excluded.scores_json,
                aggregates_json = excluded.aggregates_json,
                updated_at      = strftime('%Y-%m-%dT%H:%M:%SZ', 'now');
            """,
            (
                snapshot.project_id,
                snapshot.snapshot_date.isoformat(),
                dump_json({k: v.model_dump() for k, v in snapshot.signals.items()}),
                dump_json(snapshot.scores),
                dump_json(snapshot.aggregates),
            ),
        )

    def get_snapshot(self, project_id: str, snapshot_date: date) -> Optional[Snapshot]:
        row = self.fetchone(
            "SELECT * FROM snapshots WHERE project_id = ? AND snapshot_date = ?;",
            (project_id, snapshot_date.isoformat()),
        )
        return _row_to_snapshot(row) if row else None

    def list_snapshots(
        self,
        project_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[Snapshot]:
        """Snapshots in ``[start, end]`` (either bound optional), oldest first."""
        rows = self.fetchall(
            """
            SELECT * FROM snapshots
            WHERE project_id = ?
              AND (? IS NULL OR snapshot_date >= ?)
              AND (? IS NULL OR snapshot_date <= ?)
            ORDER BY snapshot_date;
            """,
            (
                project_id,
                start.isoformat() if start else None,
                start.isoformat() if start else None,
                end.isoformat() if end else None,
                end.isoformat() if end else None,
            ),
        )
        return [_row_to_snapshot(r) for r in rows]

    def list_all_snapshots(self, project_ids: Optional[list[str]] = None) -> list[Snapshot]:
        """Snapshots for all (or the given) projects, ordered by project and date."""
        rows = self.fetchall("SELECT * FROM snapshots ORDER BY project_id, snapshot_date;")
        snaps = [_row_to_snapshot(r) for r in rows]
        if project_ids is not None:
            wanted = set(project_ids)
            snaps = [s for s in snaps if s.project_id in wanted]
        return snaps

    def insert_outcomes(self, outcomes: list[CaseOutcome]) -> int:
        """Insert outcomes, ignoring ones whose dedupe key already exists.

        Returns:
            Number of rows actually inserted.
        """
        inserted = 0
        for o in outcomes:
            cur = self.execute(
                """
                INSERT OR IGNORE INTO case_outcomes (
                    project_id, outcome_type, occurred_at, severity,
                    notes, evidence_refs_json, dedupe_key
                ) VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    o.project_id,
                    o.outcome_type,
                    iso_z(o.occurred_at),
                    o.severity,
                    o.notes,
                    dump_refs(o.evidence_refs),
                    o.dedupe_key,
                ),
            )
            inserted += cur.rowcount
        return inserted

    def list_outcomes(
        self,
        project_id: str,
        limit: Optional[int] = None,
        outcome_type: Optional[str] = None,
    ) -> list[CaseOutcome]:
        """Outcomes for a project, most recent first."""
        sql = "SELECT * FROM case_outcomes WHERE project_id = ?"
        params: tuple = (project_id,)
        if outcome_type is not None:
            sql += " AND outcome_type = ?"
            params += (outcome_type,)
        sql += " ORDER BY occurred_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params += (limit,)
        return [_row_to_outcome(r) for r in self.fetchall(sql + ";", params)]


class CaseSignatureRepository(BaseRepository):
    """Read/write access to ``case_signatures``."""

    def upsert_signature(self, signature: CaseSignature) -> None:
        self.execute(
            """
            INSERT INTO case_signatures (
                project_id, window_days, as_of, signature_vector_json,
                event_bigrams_json, context_json, features_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(project_id, window_days) DO UPDATE SET
                as_of                 = excluded.as_of,
                signature_vector_json = excluded.signature_vector_json,
                event_bigrams_json    = excluded.event_bigrams_json,
                context_json          = excluded.context_json,
                features_json         = excluded.features_json,
                updated_at            = strftime('%Y-%m-%dT%H:%M:%SZ', 'now');
            """,
            (
                signature.project_id,
                signature.window_days,
                signature.as_of.isoformat(),
                dump_json(signature.signature_vector),
                dump_json(signature.event_bigrams),
                dump_json(signature.context),
                dump_json(signature.features),
            ),
        )

    def get_signature(self, project_id: str, window_days: int) -> Optional[CaseSignature]:
        row = self.fetchone(
            "SELECT * FROM case_signatures WHERE project_id = ? AND window_days = ?;",
            (project_id, window_days),
        )
        return _row_to_signature(row) if row else None

    def list_signatures(self, project_id: str) -> list[CaseSignature]:
        rows = self.fetchall(
            "SELECT * FROM case_signatures WHERE project_id = ? ORDER BY window_days;",
            (project_id,),
        )
        return [_row_to_signature(r) for r in rows]

    def list_candidates(
        self,
        account_id: str,
        window_days: int,
        exclude_project_id: str,
    ) -> list[tuple[CaseSignature, str]]:
        """Same-tenant signatures for ``window_days`` with project names.

        Ordered by ``project_id`` so ranking ties resolve deterministically.
        """
        rows = self.fetchall(
            """
            SELECT cs.*, p.name AS project_name
            FROM case_signatures cs
            JOIN projects p ON p.project_id = cs.project_id
            WHERE p.account_id = ? AND cs.window_days = ? AND cs.project_id != ?
            ORDER BY cs.project_id;
            """,
            (account_id, window_days, exclude_project_id),
        )
        return [(_row_to_signature(r), r["project_name"]) for r in rows]


# ── Private helpers ────────────────────────────────────────────────────────────

def _row_to_snapshot(row: sqlite3.Row) -> Snapshot:
    return Snapshot(
        project_id=row["project_id"],
        snapshot_date=date.fromisoformat(row["snapshot_date"]),
        signals={
            k: SnapshotSignal.model_validate(v)
            for k, v in load_json(row["signals_json"], {}).items()
        },
        scores=load_json(row["scores_json"], {}),
        aggregates=load_json(row["aggregates_json"], {}),
        created_at=parse_ts(row["created_at"]),
    )


def _row_to_outcome(row: sqlite3.Row) -> CaseOutcome:
    return CaseOutcome(
        id=row["id"],
        project_id=row["project_id"],
        outcome_type=row["outcome_type"],
        occurred_at=row["occurred_at"],
        severity=row["severity"],
        notes=row["notes"],
        evidence_refs=load_refs(row["evidence_refs_json"]),
        dedupe_key=row["dedupe_key"],
    )


def _row_to_signature(row: sqlite3.Row) -> CaseSignature:
    return CaseSignature(
        project_id=row["project_id"],
        window_days=row["window_days"],
        as_of=date.fromisoformat(row["as_of"]),
        signature_vector=load_json(row["signature_vector_json"], []),
        event_bigrams=load_json(row["event_bigrams_json"], []),
        context=load_json(row["context_json"], {}),
        features=load_json(row["features_json"], {}),
        updated_at=parse_ts(row["updated_at"]),
    )
