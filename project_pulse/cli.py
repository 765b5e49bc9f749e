"""
Project Pulse — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute action (DB init, event import, refresh, listing, export).
  5. Report result to stdout.

Install and run::

    pip install -e .
    project-pulse --help
    project-pulse init-db
    project-pulse validate-config
    project-pulse register-project p-1 --account acme --name "Acme website redesign"
    project-pulse import-events --file data/raw/events.json
    project-pulse run-refresh
    project-pulse list-forecasts p-1
    project-pulse list-recommendations p-1 --include-hidden
    project-pulse set-status p-1 42 acknowledged
    project-pulse similar-cases p-1 --window 14
    project-pulse export-report -p p-1 --parquet
"""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import NoReturn, Optional

import typer

app = typer.Typer(
    name="project-pulse",
    help="Project Pulse — project health signals, risk forecasts and recommendations.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from project_pulse.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from project_pulse.utils.logging import configure_logging
    configure_logging(config.logging)


def _fail(exc: Exception) -> NoReturn:
    """Print a ``PulseError`` (or any error) and exit 1."""
    code = getattr(exc, "code", None)
    prefix = f"[ERROR] {code}: " if code else "[ERROR] "
    typer.echo(f"{prefix}{exc}", err=True)
    raise typer.Exit(code=1)


_CONFIG_OPTION = typer.Option(None, "--config", help="Path to TOML config file.")
_DB_OPTION = typer.Option(None, "--db-path", help="Override DB path from config.")


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Initialize the SQLite database and apply the full schema.

    Safe to run multiple times — all DDL uses IF NOT EXISTS.
    Also runs pending schema migrations.
    """
    from project_pulse.db.connection import connect_from_config
    from project_pulse.db.migrations import init_db as apply_all
    from project_pulse.db.schema import ALL_TABLE_NAMES

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    with connect_from_config(config, target_path) as conn:
        migrations_applied = apply_all(conn)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo(f"  Migrations applied: {migrations_applied}")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(
        False,
        "--full",
        help="Print full config including all fields.",
    ),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:       {config.database.db_path}")
    typer.echo(f"  Similarity windows:  {', '.join(str(w) for w in config.pipeline.similarity_windows)}")
    typer.echo(f"  Default window:      {config.pipeline.default_window_days}d")
    typer.echo(f"  Evidence gate:       min_quality={config.recommendations.min_quality} "
               f"min_count={config.recommendations.min_evidence_count}")
    typer.echo(f"  LLM drafting:        {'enabled' if config.llm.enabled else 'disabled'} "
               f"(budget={config.recommendations.llm_budget})")
    typer.echo(f"  Log level:           {config.logging.level}")
    typer.echo(f"  Debug mode:          {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        dumped = config.model_dump()
        if dumped["llm"].get("api_key"):
            dumped["llm"]["api_key"] = "***"
        typer.echo(json.dumps(dumped, indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config valid.")


@app.command("register-project")
def register_project(
    project_id: str = typer.Argument(..., help="Stable project id."),
    account_id: str = typer.Option(..., "--account", help="Tenant (account) id."),
    name: str = typer.Option("", "--name", help="Display name."),
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Register (or update) a project and its tenant."""
    from project_pulse.db.connection import connect_from_config
    from project_pulse.db.repositories.project_repo import ProjectRepository
    from project_pulse.models.meta import Project

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with connect_from_config(config, db_path) as conn:
        ProjectRepository(conn).upsert_project(
            Project(project_id=project_id, account_id=account_id, name=name)
        )
    typer.echo(f"[OK] Project '{project_id}' registered under account '{account_id}'.")


@app.command("import-events")
def import_events(
    events_file: str = typer.Option(..., "--file", "-f", help="Path to an events JSON file."),
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Validate events but do not write to the database.",
    ),
) -> None:
    """Import events (and optional projects) from a JSON file into the event log.

    \b
    Accepted shapes:
      [ {project_id, event_type, event_ts, payload, evidence_refs, external_id}, ... ]
      {"projects": [{project_id, account_id, name}], "events": [...]}

    Events with an already imported ``external_id`` are skipped.
    """
    from project_pulse.db.connection import connect_from_config
    from project_pulse.events.loader import (
        import_events_file,
        read_events_file,
        validate_event_records,
    )

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    events_path = Path(events_file)
    typer.echo(f"Loading events from: {events_path}")

    if dry_run:
        try:
            projects, events = read_events_file(events_path)
            unknown = validate_event_records(events)
        except (OSError, ValueError) as exc:
            _fail(exc)
        typer.echo(f"  Validated {len(events)} event(s), {len(projects)} project(s).")
        if unknown:
            typer.echo(f"  Unknown event types (ignored by the aggregator): {unknown}")
        typer.echo("[DRY RUN] No events written to database.")
        return

    try:
        with connect_from_config(config, db_path) as conn:
            result = import_events_file(conn, events_path)
    except (OSError, ValueError) as exc:
        _fail(exc)

    typer.echo(f"  Projects upserted: {result.projects_upserted}")
    typer.echo(f"  Events inserted:   {result.events_inserted} (skipped {result.events_skipped})")
    typer.echo("[OK] Events imported.")


@app.command("run-refresh")
def run_refresh(
    project: Optional[list[str]] = typer.Option(
        None,
        "--project",
        "-p",
        help="Project id to refresh. Repeatable; all registered projects if omitted.",
    ),
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Run the full refresh pipeline per project.

    \b
    Steps (per project, failures isolated per project):
      1. signal_refresh          — fold new events, derive signals and scores
      2. snapshot_build          — freeze today's snapshot, record outcomes
      3. similarity_rebuild      — rebuild 7/14/30-day case signatures
      4. forecast_refresh        — 7/14/30-day risk forecasts
      5. recommendation_refresh  — gated, prioritised recommendations
    """
    from project_pulse.pipeline.orchestrator import RefreshOrchestrator

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        orchestrator = RefreshOrchestrator(config, db_path=db_path)
    except Exception as exc:
        _fail(exc)
    result = orchestrator.run(project_ids=list(project) if project else None)

    for pr in result.project_results:
        if pr.success:
            typer.echo(f"  {pr.project_id}: OK | run_id={pr.run_id}")
            for warning in pr.warnings:
                typer.echo(f"    warn: {warning}")
        else:
            typer.echo(f"  {pr.project_id}: FAILED at {pr.failed_stage}: {pr.error}", err=True)

    typer.echo("")
    typer.echo(f"[{result.status.upper()}] Refreshed {len(result.project_results)} project(s).")
    if result.status == "failed":
        raise typer.Exit(code=1)


@app.command("list-forecasts")
def list_forecasts(
    project_id: str = typer.Argument(..., help="Project id."),
    include_unpublished: bool = typer.Option(
        False, "--include-unpublished", help="Also show forecasts without evidence."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table."),
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Show the latest forecasts for a project."""
    from project_pulse.db.connection import connect_from_config
    from project_pulse.db.repositories.forecast_repo import ForecastRepository

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with connect_from_config(config, db_path) as conn:
        forecasts = ForecastRepository(conn).list_forecasts(
            project_id, include_unpublished=include_unpublished
        )

    if as_json:
        typer.echo(json.dumps([f.model_dump(mode="json") for f in forecasts], indent=2))
        return
    if not forecasts:
        typer.echo("No forecasts.")
        return
    typer.echo(f"{'risk_type':<14} {'p7':>6} {'p14':>6} {'p30':>6} {'ettr':>6} {'conf':>6}  pub")
    for f in forecasts:
        typer.echo(
            f"{f.risk_type:<14} {f.probability_7d:>6.2f} {f.probability_14d:>6.2f} "
            f"{f.probability_30d:>6.2f} {f.expected_time_to_risk_days:>6.1f} "
            f"{f.confidence:>6.2f}  {'yes' if f.publishable else 'no'}"
        )


@app.command("list-recommendations")
def list_recommendations(
    project_id: str = typer.Argument(..., help="Project id."),
    include_hidden: bool = typer.Option(
        False, "--include-hidden", help="Also show candidates hidden by the evidence gate."
    ),
    status: Optional[str] = typer.Option(
        None, "--status", help="Filter by status (new, acknowledged, done, dismissed)."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table."),
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Show recommendations for a project, most urgent first."""
    from project_pulse.db.connection import connect_from_config
    from project_pulse.db.repositories.forecast_repo import RecommendationRepository
    from project_pulse.errors import PulseError

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        with connect_from_config(config, db_path) as conn:
            recs = RecommendationRepository(conn).list_recommendations(
                project_id, include_hidden=include_hidden, status=status
            )
    except PulseError as exc:
        _fail(exc)

    if as_json:
        typer.echo(json.dumps([r.model_dump(mode="json") for r in recs], indent=2))
        return
    if not recs:
        typer.echo("No recommendations.")
        return
    for r in recs:
        gate = "" if r.visible else f" [hidden: {r.evidence_gate_reason}]"
        typer.echo(f"#{r.id} P{r.priority} {r.category} ({r.status}){gate}")
        typer.echo(f"    {r.title}")
        typer.echo(f"    {r.rationale}")
        typer.echo(
            f"    owner={r.owner_role} due={r.due_date} evidence={r.evidence_count} "
            f"quality={r.evidence_quality_score:.2f}"
        )


def _bracketed(config, db_path: Optional[str], project_id: str, process: str, action):
    """Run ``action(conn)`` bracketed by the process run log."""
    from project_pulse.db.connection import connect_from_config
    from project_pulse.monitoring.process_log import ProcessRunLog

    with connect_from_config(config, db_path) as log_conn:
        process_log = ProcessRunLog(log_conn)
        run = process_log.start(project_id, process)
        try:
            with connect_from_config(config, db_path) as conn:
                out = action(conn)
        except Exception as exc:
            process_log.fail(run, exc)
            raise
        process_log.finish(run)
    return out


@app.command("set-status")
def set_status(
    project_id: str = typer.Argument(..., help="Project id."),
    recommendation_id: int = typer.Argument(..., help="Recommendation id."),
    status: str = typer.Argument(..., help="new, acknowledged, done or dismissed."),
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Transition a recommendation's status (the only way status ever changes)."""
    from project_pulse.db.repositories.forecast_repo import RecommendationRepository
    from project_pulse.errors import PulseError

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        rec = _bracketed(
            config, db_path, project_id, "recommendation_status",
            lambda conn: RecommendationRepository(conn).set_status(
                project_id, recommendation_id, status
            ),
        )
    except PulseError as exc:
        _fail(exc)
    typer.echo(f"[OK] Recommendation #{rec.id} is now '{rec.status}'.")


@app.command("set-feedback")
def set_feedback(
    project_id: str = typer.Argument(..., help="Project id."),
    recommendation_id: int = typer.Argument(..., help="Recommendation id."),
    feedback: str = typer.Argument(..., help="helpful, not_helpful or unknown."),
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Record user feedback on a recommendation."""
    from project_pulse.db.repositories.forecast_repo import RecommendationRepository
    from project_pulse.errors import PulseError

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        rec = _bracketed(
            config, db_path, project_id, "recommendation_feedback",
            lambda conn: RecommendationRepository(conn).set_feedback(
                project_id, recommendation_id, feedback
            ),
        )
    except PulseError as exc:
        _fail(exc)
    typer.echo(f"[OK] Feedback '{rec.feedback}' recorded for recommendation #{rec.id}.")


@app.command("similar-cases")
def similar_cases(
    project_id: str = typer.Argument(..., help="Project id."),
    window: Optional[int] = typer.Option(
        None, "--window", help="Signature window in days (7, 14 or 30)."
    ),
    top_k: Optional[int] = typer.Option(None, "--top-k", help="Number of cases to return."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table."),
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Rank same-tenant past cases by similarity to a project."""
    from project_pulse.db.connection import connect_from_config
    from project_pulse.errors import PulseError
    from project_pulse.similarity.engine import SimilarityEngine

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        with connect_from_config(config, db_path) as conn:
            cases = SimilarityEngine(conn, config).find_similar_cases(
                project_id, window_days=window, top_k=top_k
            )
    except PulseError as exc:
        _fail(exc)

    if as_json:
        typer.echo(json.dumps([c.model_dump(mode="json") for c in cases], indent=2))
        return
    if not cases:
        typer.echo("No similar cases.")
        return
    for c in cases:
        label = c.case_project_name or c.case_project_id
        typer.echo(f"{c.similarity_score:.3f}  {label}  ({c.why_similar})")
        if c.key_shared_patterns:
            typer.echo(f"       shared: {', '.join(c.key_shared_patterns)}")
        if c.outcomes_seen:
            kinds = sorted({o.outcome_type for o in c.outcomes_seen})
            typer.echo(f"       outcomes: {', '.join(kinds)}")


@app.command("process-log")
def process_log(
    project_id: str = typer.Argument(..., help="Project id."),
    process: Optional[str] = typer.Option(None, "--process", help="Filter by process name."),
    run_id: Optional[str] = typer.Option(None, "--run-id", help="Filter by run id."),
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Show process run log entries for a project."""
    from project_pulse.db.connection import connect_from_config
    from project_pulse.db.repositories.process_repo import ProcessRunRepository

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with connect_from_config(config, db_path) as conn:
        entries = ProcessRunRepository(conn).list_entries(
            project_id, process=process, run_id=run_id
        )
    for e in entries:
        extra = f" {e.duration_ms}ms" if e.duration_ms is not None else ""
        message = f" | {e.message}" if e.message else ""
        typer.echo(f"{e.occurred_at.isoformat()} {e.process:<24} {e.phase:<6}{extra}{message}")


@app.command("export-report")
def export_report(
    project: Optional[list[str]] = typer.Option(
        None, "--project", "-p", help="Project id. Repeatable; all projects if omitted."
    ),
    output_dir: Optional[str] = typer.Option(
        None, "--output-dir", help="Override [reporting] output_dir."
    ),
    parquet: bool = typer.Option(
        False, "--parquet", help="Also export snapshot history to Parquet."
    ),
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Write forecast and recommendation reports (CSV + JSON), optionally Parquet."""
    from project_pulse.db.connection import connect_from_config
    from project_pulse.db.repositories.forecast_repo import (
        ForecastRepository,
        RecommendationRepository,
    )
    from project_pulse.db.repositories.project_repo import ProjectRepository
    from project_pulse.db.repositories.snapshot_repo import SnapshotRepository
    from project_pulse.reporting.export import write_snapshot_parquet
    from project_pulse.reporting.reporter import (
        write_forecast_csv,
        write_recommendation_csv,
        write_recommendation_json,
    )

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    out = Path(output_dir or config.reporting.output_dir)
    today = date.today()
    written: list[Path] = []

    with connect_from_config(config, db_path) as conn:
        project_ids = list(project) if project else [
            p.project_id for p in ProjectRepository(conn).list_projects()
        ]
        for pid in project_ids:
            forecasts = ForecastRepository(conn).list_forecasts(pid, include_unpublished=True)
            recs = RecommendationRepository(conn).list_recommendations(pid, include_hidden=True)
            written.append(write_forecast_csv(forecasts, out / "forecasts", pid, today))
            written.append(write_recommendation_csv(recs, out / "recommendations", pid, today))
            written.append(write_recommendation_json(recs, out / "recommendations", pid, today))

        if parquet:
            snapshots = SnapshotRepository(conn).list_all_snapshots(project_ids or None)
            path = out / "snapshots" / f"snapshots_{today}.parquet"
            write_snapshot_parquet(snapshots, path)
            written.append(path)

    for path in written:
        typer.echo(f"  {path}")
    typer.echo(f"[OK] {len(written)} file(s) written.")


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
