"""
Report writer: CSV and JSON output for forecasts and recommendations.

All functions are pure I/O — no DB access. They consume in-memory model
lists and write human-readable + machine-readable files.

Output files (written by ``project-pulse export-report``)
---------------------------------------------------------
  data/outputs/forecasts/
    forecasts_{project}_{date}.csv
  data/outputs/recommendations/
    recommendations_{project}_{date}.csv
    recommendations_{project}_{date}.json
"""

from __future__ import annotations

import csv
import json
import logging
from datetime import date
from pathlib import Path

from project_pulse.models.forecast import Forecast
from project_pulse.models.recommendation import Recommendation

logger = logging.getLogger(__name__)

REPORT_SCHEMA_VERSION = "v1"


def _slug(project_id: str) -> str:
    return "".join(c if c.isalnum() or c in "-_" else "_" for c in project_id)


def write_forecast_csv(
    forecasts: list[Forecast],
    output_dir: Path,
    project_id: str,
    run_date: date | None = None,
) -> Path:
    """Write forecasts to a CSV file, one row per risk type.

    Columns: risk_type, p7, p14, p30, expected_time_to_risk_days,
             confidence, publishable, top_driver, evidence_count, generated_at.

    Returns:
        Path to the written CSV file.
    """
    if run_date is None:
        run_date = date.today()

    output_dir.mkdir(parents=True, exist_ok=True)
    csv_path = output_dir / f"forecasts_{_slug(project_id)}_{run_date}.csv"

    fieldnames = [
        "risk_type", "p7", "p14", "p30", "expected_time_to_risk_days",
        "confidence", "publishable", "top_driver", "evidence_count", "generated_at",
    ]

    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for fc in sorted(forecasts, key=lambda x: (-x.probability_7d, x.risk_type)):
            writer.writerow(
                {
                    "risk_type":                  fc.risk_type,
                    "p7":                         fc.probability_7d,
                    "p14":                        fc.probability_14d,
                    "p30":                        fc.probability_30d,
                    "expected_time_to_risk_days": fc.expected_time_to_risk_days,
                    "confidence":                 fc.confidence,
                    "publishable":                fc.publishable,
                    "top_driver":                 fc.drivers[0].key if fc.drivers else "",
                    "evidence_count":             len(fc.evidence_refs),
                    "generated_at":               fc.generated_at.isoformat(),
                }
            )

    logger.info("Forecast CSV written: %s (%d rows)", csv_path, len(forecasts))
    return csv_path


def write_recommendation_csv(
    recs: list[Recommendation],
    output_dir: Path,
    project_id: str,
    run_date: date | None = None,
) -> Path:
    """Write recommendations to a CSV file in priority order.

    Columns: rank, id, category, priority, status, title, owner_role,
             due_date, evidence_count, evidence_quality, gate_status,
             gate_reason, drafted_by.
    """
    if run_date is None:
        run_date = date.today()

    output_dir.mkdir(parents=True, exist_ok=True)
    csv_path = output_dir / f"recommendations_{_slug(project_id)}_{run_date}.csv"

    fieldnames = [
        "rank", "id", "category", "priority", "status", "title", "owner_role",
        "due_date", "evidence_count", "evidence_quality", "gate_status",
        "gate_reason", "drafted_by",
    ]

    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for rank, rec in enumerate(recs, start=1):
            writer.writerow(
                {
                    "rank":             rank,
                    "id":               rec.id,
                    "category":         rec.category,
                    "priority":         rec.priority,
                    "status":           rec.status,
                    "title":            rec.title,
                    "owner_role":       rec.owner_role,
                    "due_date":         rec.due_date.isoformat() if rec.due_date else "",
                    "evidence_count":   rec.evidence_count,
                    "evidence_quality": rec.evidence_quality_score,
                    "gate_status":      rec.evidence_gate_status,
                    "gate_reason":      rec.evidence_gate_reason or "",
                    "drafted_by":       rec.drafted_by,
                }
            )

    logger.info("Recommendation CSV written: %s (%d rows)", csv_path, len(recs))
    return csv_path


def write_recommendation_json(
    recs: list[Recommendation],
    output_dir: Path,
    project_id: str,
    run_date: date | None = None,
) -> Path:
    """Write recommendations (with evidence, links and drafts) to JSON."""
    if run_date is None:
        run_date = date.today()

    output_dir.mkdir(parents=True, exist_ok=True)
    json_path = output_dir / f"recommendations_{_slug(project_id)}_{run_date}.json"

    payload: dict = {
        "schema_version":  REPORT_SCHEMA_VERSION,
        "project_id":      project_id,
        "generated_at":    run_date.isoformat(),
        "recommendations": [
            rec.model_dump(mode="json", exclude={"created_at", "updated_at"}) for rec in recs
        ],
    }

    json_path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    logger.info("Recommendation JSON written: %s", json_path)
    return json_path
