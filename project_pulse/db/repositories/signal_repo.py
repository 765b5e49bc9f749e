"""
Repositories for signal state, derived signals, signal history and scores.

``SignalStateRepository.save()`` writes the state and its ``last_event_id``
in a single row write, so the two can never disagree. ``load()`` raises
``CorruptedStateError`` rather than returning an empty state when the stored
JSON does not parse.
"""

from __future__ import annotations

import sqlite3

from project_pulse.db.repositories.base import (
    BaseRepository,
    dump_json,
    dump_refs,
    load_json,
    load_refs,
)
from project_pulse.errors import CorruptedStateError
from project_pulse.models.signal import STATE_VERSION, Score, ScoreFactor, Signal, SignalState
from project_pulse.signals.aggregator import dump_state, load_state
from project_pulse.utils.time_utils import iso_z


class SignalStateRepository(BaseRepository):
    """Read/write access to ``signal_states``."""

    def load(self, project_id: str) -> tuple[SignalState, int]:
        """Return ``(state, last_event_id)``; an empty state if none is stored.

        Raises:
            CorruptedStateError: If the stored state does not parse, or its
                cursor disagrees with the row's ``last_event_id``.
        """
        row = self.fetchone(
            "SELECT state_json, last_event_id FROM signal_states WHERE project_id = ?;",
            (project_id,),
        )
        if row is None:
            return SignalState(), 0
        state = load_state(row["state_json"], project_id=project_id)
        if state.cursor.last_event_id != row["last_event_id"]:
            raise CorruptedStateError(
                project_id,
                f"cursor {state.cursor.last_event_id} != stored last_event_id {row['last_event_id']}",
            )
        return state, int(row["last_event_id"])

    def save(self, project_id: str, state: SignalState, last_event_id: int) -> None:
        """Replace the stored state and cursor together."""
        self.execute(
            """
            INSERT INTO signal_states (project_id, version, last_event_id, state_json, updated_at)
            VALUES (?, ?, ?, ?, strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
            ON CONFLICT(project_id) DO UPDATE SET
                version       = excluded.version,
                last_event_id = excluded.last_event_id,
                state_json    = excluded.state_json,
                updated_at    = excluded.updated_at;
            """,
            (project_id, STATE_VERSION, last_event_id, dump_state(state)),
        )

    def delete(self, project_id: str) -> None:
        """Drop a project's state so the next refresh replays from scratch."""
        self.execute("DELETE FROM signal_states WHERE project_id = ?;", (project_id,))


class SignalRepository(BaseRepository):
    """Read/write access to ``signals``, ``signal_history`` and ``scores``."""

    def upsert_signals(self, project_id: str, signals: list[Signal]) -> int:
        """Latest-wins write of the current signals; also appends history rows."""
        self.executemany(
            """
            INSERT INTO signals (
                project_id, signal_key, value, status, threshold_warn,
                threshold_critical, comparator, details_json,
                evidence_refs_json, computed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(project_id, signal_key) DO UPDATE SET
                value              = excluded.value,
                status             = excluded.status,
                threshold_warn     = excluded.threshold_warn,
                threshold_critical = excluded.threshold_critical,
                comparator         = excluded.comparator,
                details_json       = excluded.details_json,
                evidence_refs_json = excluded.evidence_refs_json,
                computed_at        = excluded.computed_at;
            """,
            [
                (
                    project_id,
                    s.signal_key,
                    s.value,
                    s.status,
                    s.threshold_warn,
                    s.threshold_critical,
                    s.comparator,
                    dump_json(s.details),
                    dump_refs(s.evidence_refs),
                    iso_z(s.computed_at),
                )
                for s in signals
            ],
        )
        self.executemany(
            """
            INSERT INTO signal_history (project_id, signal_key, value, status, computed_at)
            VALUES (?, ?, ?, ?, ?);
            """,
            [(project_id, s.signal_key, s.value, s.status, iso_z(s.computed_at)) for s in signals],
        )
        return len(signals)

    def list_signals(self, project_id: str) -> list[Signal]:
        rows = self.fetchall(
            "SELECT * FROM signals WHERE project_id = ? ORDER BY rowid;", (project_id,)
        )
        return [_row_to_signal(r) for r in rows]

    def signal_history(self, project_id: str, signal_key: str, limit: int = 100) -> list[tuple[str, float]]:
        """Most recent ``(computed_at, value)`` pairs for one signal, newest first."""
        rows = self.fetchall(
            """
            SELECT computed_at, value FROM signal_history
            WHERE project_id = ? AND signal_key = ?
            ORDER BY computed_at DESC, id DESC LIMIT ?;
            """,
            (project_id, signal_key, limit),
        )
        return [(r["computed_at"], float(r["value"])) for r in rows]

    def upsert_scores(self, project_id: str, scores: list[Score]) -> int:
        self.executemany(
            """
            INSERT INTO scores (
                project_id, score_type, value, level, weights_json,
                factors_json, evidence_refs_json, computed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(project_id, score_type) DO UPDATE SET
                value              = excluded.value,
                level              = excluded.level,
                weights_json       = excluded.weights_json,
                factors_json       = excluded.factors_json,
                evidence_refs_json = excluded.evidence_refs_json,
                computed_at        = excluded.computed_at;
            """,
            [
                (
                    project_id,
                    sc.score_type,
                    sc.value,
                    sc.level,
                    dump_json(sc.weights),
                    dump_json([f.model_dump() for f in sc.factors]),
                    dump_refs(sc.evidence_refs),
                    iso_z(sc.computed_at),
                )
                for sc in scores
            ],
        )
        return len(scores)

    def list_scores(self, project_id: str) -> list[Score]:
        rows = self.fetchall(
            "SELECT * FROM scores WHERE project_id = ? ORDER BY rowid;", (project_id,)
        )
        return [_row_to_score(r) for r in rows]


# ── Private helpers ────────────────────────────────────────────────────────────

def _row_to_signal(row: sqlite3.Row) -> Signal:
    return Signal(
        signal_key=row["signal_key"],
        value=row["value"],
        status=row["status"],
        threshold_warn=row["threshold_warn"],
        threshold_critical=row["threshold_critical"],
        comparator=row["comparator"],
        details=load_json(row["details_json"], {}),
        evidence_refs=load_refs(row["evidence_refs_json"]),
        computed_at=row["computed_at"],
    )


def _row_to_score(row: sqlite3.Row) -> Score:
    return Score(
        score_type=row["score_type"],
        value=row["value"],
        level=row["level"],
        weights=load_json(row["weights_json"], {}),
        factors=[ScoreFactor.model_validate(f) for f in load_json(row["factors_json"], [])],
        evidence_refs=load_refs(row["evidence_refs_json"]),
        computed_at=row["computed_at"],
    )
