"""
Parquet export of snapshot history.

One row per ``(project_id, snapshot_date)`` with every signal value, every
signal's normalized risk, every composite score and the headline
aggregates as flat columns. The schema is fixed (built from the signal and
score taxonomies) so files from different runs concatenate cleanly.
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Any

import pyarrow as pa
import pyarrow.parquet as pq

from project_pulse.models.snapshot import Snapshot
from project_pulse.taxonomy.signal_taxonomy import ScoreType, SignalKey

logger = logging.getLogger(__name__)

_AGGREGATE_FIELDS: tuple[tuple[str, pa.DataType], ...] = (
    ("events_7d", pa.int32()),
    ("events_14d", pa.int32()),
    ("events_30d", pa.int32()),
    ("open_blockers", pa.int32()),
    ("pipeline_amount", pa.float64()),
    ("deal_stage", pa.string()),
)


def build_snapshot_schema() -> pa.Schema:
    """Arrow schema for the snapshot export, in column order."""
    fields = [
        pa.field("project_id", pa.string(), nullable=False),
        pa.field("snapshot_date", pa.date32(), nullable=False),
    ]
    for key in SignalKey:
        fields.append(pa.field(key.value, pa.float64()))
        fields.append(pa.field(f"{key.value}_risk", pa.float64()))
    for score_type in ScoreType:
        fields.append(pa.field(score_type.value, pa.float64()))
    for name, dtype in _AGGREGATE_FIELDS:
        fields.append(pa.field(name, dtype))
    return pa.schema(fields)


def snapshot_to_row(snapshot: Snapshot) -> dict[str, Any]:
    """Flatten one snapshot; missing signals/scores become nulls."""
    row: dict[str, Any] = {
        "project_id": snapshot.project_id,
        "snapshot_date": snapshot.snapshot_date,
    }
    for key in SignalKey:
        sig = snapshot.signals.get(key.value)
        row[key.value] = sig.value if sig is not None else None
        row[f"{key.value}_risk"] = sig.normalized_risk if sig is not None else None
    for score_type in ScoreType:
        row[score_type.value] = snapshot.scores.get(score_type.value)
    agg = snapshot.aggregates
    for name, dtype in _AGGREGATE_FIELDS:
        value = agg.get(name)
        if value is not None and dtype == pa.int32():
            value = int(value)
        elif value is not None and dtype == pa.float64():
            value = float(value)
        row[name] = value
    return row


def snapshots_to_table(snapshots: list[Snapshot]) -> pa.Table:
    """Convert snapshots to an Arrow table with the fixed export schema."""
    schema = build_snapshot_schema()
    rows = [snapshot_to_row(s) for s in snapshots]
    arrays: dict[str, pa.Array] = {}
    for field in schema:
        values = [r.get(field.name) for r in rows]
        if field.type == pa.date32():
            values = [v if isinstance(v, date) else date.fromisoformat(v) for v in values]
        arrays[field.name] = pa.array(values, type=field.type)
    return pa.table(arrays, schema=schema)


def write_snapshot_parquet(snapshots: list[Snapshot], path: Path) -> int:
    """Write snapshot history to Parquet.

    Returns the number of rows written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    table = snapshots_to_table(snapshots)
    pq.write_table(table, str(path), compression="snappy")
    logger.info("Snapshot Parquet written: %s (%d rows)", path.name, table.num_rows)
    return table.num_rows
