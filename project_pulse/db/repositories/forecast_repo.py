"""
Repositories for forecasts and recommendations.

Forecasts are latest-wins per ``(project_id, risk_type)``.

Recommendations upsert on ``(project_id, dedupe_key)``. On conflict every
generator-owned column is refreshed, but ``status`` and ``feedback`` are
left untouched: those belong to the user and only change through
``set_status()`` / ``set_feedback()``. In particular a ``done`` or
``dismissed`` recommendation can never be revived by a refresh.
"""

from __future__ import annotations

import logging
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
from project_pulse.errors import (
    InvalidFeedbackError,
    InvalidStatusError,
    RecommendationNotFoundError,
)
from project_pulse.models.forecast import Forecast, ForecastDriver, SimilarCaseSummary
from project_pulse.models.recommendation import VALID_FEEDBACK, VALID_STATUSES, Recommendation
from project_pulse.utils.time_utils import iso_z, parse_ts

logger = logging.getLogger(__name__)


class ForecastRepository(BaseRepository):
    """Read/write access to ``forecasts``."""

    def upsert_forecasts(self, forecasts: list[Forecast]) -> int:
        self.executemany(
            """
            INSERT INTO forecasts (
                project_id, risk_type, probability_7d, probability_14d,
                probability_30d, expected_time_to_risk_days, confidence,
                drivers_json, similar_cases_json, evidence_refs_json,
                publishable, generated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(project_id, risk_type) DO UPDATE SET
                probability_7d             = excluded.probability_7d,
                probability_14d            = excluded.probability_14d,
                probability_30d            = excluded.probability_30d,
                expected_time_to_risk_days = excluded.expected_time_to_risk_days,
                confidence                 = excluded.confidence,
                drivers_json               = excluded.drivers_json,
                similar_cases_json         = excluded.similar_cases_json,
                evidence_refs_json         = excluded.evidence_refs_json,
                publishable                = excluded.publishable,
                generated_at               = excluded.generated_at;
            """,
            [
                (
                    f.project_id,
                    f.risk_type,
                    f.probability_7d,
                    f.probability_14d,
                    f.probability_30d,
                    f.expected_time_to_risk_days,
                    f.confidence,
                    dump_json([d.model_dump() for d in f.drivers]),
                    dump_json([c.model_dump() for c in f.similar_cases]),
                    dump_refs(f.evidence_refs),
                    int(f.publishable),
                    iso_z(f.generated_at),
                )
                for f in forecasts
            ],
        )
        return len(forecasts)

    def list_forecasts(
        self,
        project_id: str,
        include_unpublished: bool = False,
    ) -> list[Forecast]:
        """Forecasts for a project; unpublishable ones only on request."""
        rows = self.fetchall(
            """
            SELECT * FROM forecasts
            WHERE project_id = ? AND (? = 1 OR publishable = 1)
            ORDER BY rowid;
            """,
            (project_id, int(include_unpublished)),
        )
        return [_row_to_forecast(r) for r in rows]


class RecommendationRepository(BaseRepository):
    """Read/write access to ``recommendations``."""

    def upsert_recommendations(self, recs: list[Recommendation]) -> int:
        """Upsert generator output; user-owned ``status``/``feedback`` are never overwritten."""
        self.executemany(
            """
            INSERT INTO recommendations (
                project_id, category, priority, title, rationale, why_now,
                expected_impact, owner_role, due_date, links_json,
                evidence_refs_json, evidence_count, evidence_quality_score,
                evidence_gate_status, evidence_gate_reason, signal_snapshot_json,
                forecast_snapshot_json, dedupe_key, suggested_template_key,
                suggested_text, drafted_by, status
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'new')
            ON CONFLICT(project_id, dedupe_key) DO UPDATE SET
                priority               = excluded.priority,
                title                  = excluded.title,
                rationale              = excluded.rationale,
                why_now                = excluded.why_now,
                expected_impact        = excluded.expected_impact,
                owner_role             = excluded.owner_role,
                due_date               = excluded.due_date,
                links_json             = excluded.links_json,
                evidence_refs_json     = excluded.evidence_refs_json,
                evidence_count         = excluded.evidence_count,
                evidence_quality_score = excluded.evidence_quality_score,
                evidence_gate_status   = excluded.evidence_gate_status,
                evidence_gate_reason   = excluded.evidence_gate_reason,
                signal_snapshot_json   = excluded.signal_snapshot_json,
                forecast_snapshot_json = excluded.forecast_snapshot_json,
                suggested_template_key = excluded.suggested_template_key,
                suggested_text         = excluded.suggested_text,
                drafted_by             = excluded.drafted_by,
                updated_at             = strftime('%Y-%m-%dT%H:%M:%SZ', 'now');
            """,
            [
                (
                    r.project_id,
                    r.category,
                    r.priority,
                    r.title,
                    r.rationale,
                    r.why_now,
                    r.expected_impact,
                    r.owner_role,
                    r.due_date.isoformat() if r.due_date else None,
                    dump_json(r.links),
                    dump_refs(r.evidence_refs),
                    r.evidence_count,
                    r.evidence_quality_score,
                    r.evidence_gate_status,
                    r.evidence_gate_reason,
                    dump_json(r.signal_snapshot),
                    dump_json(r.forecast_snapshot),
                    r.dedupe_key,
                    r.suggested_template_key,
                    r.suggested_text,
                    r.drafted_by,
                )
                for r in recs
            ],
        )
        return len(recs)

    def list_recommendations(
        self,
        project_id: str,
        include_hidden: bool = False,
        status: Optional[str] = None,
    ) -> list[Recommendation]:
        """Recommendations, most urgent first. Hidden ones only on request.

        Raises:
            InvalidStatusError: If ``status`` is given and not a valid status.
        """
        if status is not None and status not in VALID_STATUSES:
            raise InvalidStatusError(status)
        rows = self.fetchall(
            """
            SELECT * FROM recommendations
            WHERE project_id = ?
              AND (? = 1 OR evidence_gate_status = 'visible')
              AND (? IS NULL OR status = ?)
            ORDER BY priority DESC, id;
            """,
            (project_id, int(include_hidden), status, status),
        )
        return [_row_to_recommendation(r) for r in rows]

    def get_recommendation(self, project_id: str, recommendation_id: int) -> Optional[Recommendation]:
        row = self.fetchone(
            "SELECT * FROM recommendations WHERE project_id = ? AND id = ?;",
            (project_id, recommendation_id),
        )
        return _row_to_recommendation(row) if row else None

    def set_status(self, project_id: str, recommendation_id: int, status: str) -> Recommendation:
        """Explicit user status transition.

        Raises:
            InvalidStatusError: ``status`` not in new/acknowledged/done/dismissed.
            RecommendationNotFoundError: No such recommendation for the project.
        """
        if status not in VALID_STATUSES:
            raise InvalidStatusError(status)
        cur = self.execute(
            """
            UPDATE recommendations
            SET status = ?, updated_at = strftime('%Y-%m-%dT%H:%M:%SZ', 'now')
            WHERE project_id = ? AND id = ?;
            """,
            (status, project_id, recommendation_id),
        )
        if cur.rowcount == 0:
            raise RecommendationNotFoundError(project_id, recommendation_id)
        rec = self.get_recommendation(project_id, recommendation_id)
        assert rec is not None
        logger.info(
            "Recommendation %d for project %s -> status=%s", recommendation_id, project_id, status
        )
        return rec

    def set_feedback(self, project_id: str, recommendation_id: int, feedback: str) -> Recommendation:
        """Record user feedback.

        Raises:
            InvalidFeedbackError: ``feedback`` not in helpful/not_helpful/unknown.
            RecommendationNotFoundError: No such recommendation for the project.
        """
        if feedback not in VALID_FEEDBACK:
            raise InvalidFeedbackError(feedback)
        cur = self.execute(
            """
            UPDATE recommendations
            SET feedback = ?, feedback_at = strftime('%Y-%m-%dT%H:%M:%SZ', 'now')
            WHERE project_id = ? AND id = ?;
            """,
            (feedback, project_id, recommendation_id),
        )
        if cur.rowcount == 0:
            raise RecommendationNotFoundError(project_id, recommendation_id)
        rec = self.get_recommendation(project_id, recommendation_id)
        assert rec is not None
        return rec


# ── Private helpers ────────────────────────────────────────────────────────────

def _row_to_forecast(row: sqlite3.Row) -> Forecast:
    return Forecast(
        project_id=row["project_id"],
        risk_type=row["risk_type"],
        probability_7d=row["probability_7d"],
        probability_14d=row["probability_14d"],
        probability_30d=row["probability_30d"],
        expected_time_to_risk_days=row["expected_time_to_risk_days"],
        confidence=row["confidence"],
        drivers=[ForecastDriver.model_validate(d) for d in load_json(row["drivers_json"], [])],
        similar_cases=[
            SimilarCaseSummary.model_validate(c) for c in load_json(row["similar_cases_json"], [])
        ],
        evidence_refs=load_refs(row["evidence_refs_json"]),
        publishable=bool(row["publishable"]),
        generated_at=row["generated_at"],
    )


def _row_to_recommendation(row: sqlite3.Row) -> Recommendation:
    keys = row.keys()
    return Recommendation(
        id=row["id"],
        project_id=row["project_id"],
        category=row["category"],
        priority=row["priority"],
        title=row["title"],
        rationale=row["rationale"],
        why_now=row["why_now"],
        expected_impact=row["expected_impact"],
        owner_role=row["owner_role"],
        due_date=date.fromisoformat(row["due_date"]) if row["due_date"] else None,
        links=load_json(row["links_json"], []),
        evidence_refs=load_refs(row["evidence_refs_json"]),
        evidence_count=row["evidence_count"],
        evidence_quality_score=row["evidence_quality_score"],
        evidence_gate_status=row["evidence_gate_status"],
        evidence_gate_reason=row["evidence_gate_reason"],
        signal_snapshot=load_json(row["signal_snapshot_json"], {}),
        forecast_snapshot=load_json(row["forecast_snapshot_json"], {}),
        dedupe_key=row["dedupe_key"],
        suggested_template_key=row["suggested_template_key"],
        suggested_text=row["suggested_text"],
        drafted_by=row["drafted_by"],
        status=row["status"],
        feedback=row["feedback"] if "feedback" in keys else None,
        created_at=parse_ts(row["created_at"]),
        updated_at=parse_ts(row["updated_at"]),
    )
