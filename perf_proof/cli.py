"""
Recommendation performance engine: CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Open the database and call ``PerformanceService``.
  5. Report result to stdout (ASCII tables, or JSON with ``--json``).

Install and run::

    pip install -e .
    perf-proof --help
    perf-proof init-db
    perf-proof validate-config
    perf-proof run-evaluation --all
    perf-proof run-evaluation --user user-1
    perf-proof overview --user user-1
    perf-proof scoreboard --user user-1 --horizon 30
    perf-proof outcomes --user user-1 --result loss --page 2
    perf-proof export-scoreboard --user user-1 --out data/exports/scoreboard.csv
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Iterator, Optional

import typer

app = typer.Typer(
    name="perf-proof",
    help="Recommendation performance evaluation: backfill, score and report outcomes.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from perf_proof.config import load_config

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
    from perf_proof.utils.logging import configure_logging
    configure_logging(config.logging, debug=config.debug)


def _parse_date_or_exit(value: Optional[str], flag: str) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        typer.echo(f"[ERROR] {flag} must be YYYY-MM-DD, got '{value}'.", err=True)
        raise typer.Exit(code=1)


def _date_range_or_exit(date_from: Optional[str], date_to: Optional[str]):
    from perf_proof.models.performance import DateRange

    try:
        return DateRange(
            date_from=_parse_date_or_exit(date_from, "--from"),
            date_to=_parse_date_or_exit(date_to, "--to"),
        )
    except ValueError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)


@contextmanager
def _service(config, db_path: Optional[str] = None) -> Iterator:
    """Open the database (schema applied) and yield a ``PerformanceService``.

    Maps the service's expected failures to ``[ERROR]`` + exit code 1.
    """
    from perf_proof.db.connection import get_connection
    from perf_proof.performance.demo_seed import DemoSeedUnavailableError
    from perf_proof.service import PerformanceDisabledError, PerformanceService

    with get_connection(
        db_path or config.database.db_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
        initialize=True,
    ) as conn:
        try:
            yield PerformanceService(config, conn)
        except (PerformanceDisabledError, DemoSeedUnavailableError, ValueError) as exc:
            typer.echo(f"[ERROR] {exc}", err=True)
            raise typer.Exit(code=1)


def _echo_json(payload) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        help="Override DB path from config (e.g. data/db/test.db).",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Initialize the SQLite database and apply the full schema.

    Safe to run multiple times; all DDL uses IF NOT EXISTS.
    Also runs pending schema migrations.
    """
    from perf_proof.db.connection import get_connection
    from perf_proof.db.migrations import initialize_database
    from perf_proof.db.schema import ALL_TABLE_NAMES

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    with get_connection(
        target_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        migrations_applied = initialize_database(conn)

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
    perf = config.performance

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:      {config.database.db_path}")
    typer.echo(f"  Enabled:            {perf.enabled}")
    typer.echo(f"  Horizons (days):    {', '.join(str(h) for h in perf.horizons_days)}")
    typer.echo(f"  Calibration horizon:{perf.calibration_horizon_days}d")
    typer.echo(f"  Hold threshold:     {perf.hold_win_threshold_pct}%")
    typer.echo(f"  Grace window:       {perf.grace_hours}h")
    typer.echo(f"  Price source:       {config.prices.source}")
    typer.echo(f"  Log level:          {config.logging.level}")
    typer.echo(f"  Debug mode:         {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config valid.")


@app.command("run-evaluation")
def run_evaluation(
    user: Optional[str] = typer.Option(None, "--user", help="Evaluate a single user."),
    all_users: bool = typer.Option(False, "--all", help="Evaluate every user (scheduled job)."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Backfill missing snapshots, then score open snapshots at every horizon.

    \b
    Steps (per user, failures isolated):
      1. BackfillStage : snapshot recommendations never captured.
      2. EvaluateStage : write ok / missing rows for due horizons.

    With --all the outcome is recorded as job 'performance-evaluation'.
    Exits with code 1 when the run status is 'failed'.
    """
    if bool(user) == all_users:
        typer.echo("[ERROR] Pass exactly one of --user ID or --all.", err=True)
        raise typer.Exit(code=1)

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    target = "all" if all_users else user

    typer.echo(f"run-evaluation | target={target} | prices={config.prices.source}")
    with _service(config, db_path) as service:
        result = service.run_evaluation(target)

    typer.echo(f"  Users processed:     {result.users_processed}")
    typer.echo(f"  Snapshots created:   {result.backfill.snapshots_created}")
    typer.echo(f"  Skipped (no price):  {result.backfill.skipped_no_price}")
    typer.echo(f"  Snapshots checked:   {result.evaluation.snapshots_checked}")
    typer.echo(f"  Evaluations written: {result.evaluation.evaluations_recorded}")
    typer.echo(f"  Marked missing:      {result.evaluation.missing_marked}")
    if result.demo_seeded:
        typer.echo(f"  Demo snapshots:      {result.demo_seeded}")
    for err in result.errors:
        typer.echo(f"  ! {err}", err=True)

    typer.echo("")
    if result.status == "failed":
        typer.echo("[ERROR] Evaluation run failed.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"[OK] Evaluation run complete (status={result.status}).")


@app.command("overview")
def overview(
    user: str = typer.Option(..., "--user", help="User id."),
    date_from: Optional[str] = typer.Option(None, "--from", help="YYYY-MM-DD (inclusive)."),
    date_to: Optional[str] = typer.Option(None, "--to", help="YYYY-MM-DD (inclusive)."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of tables."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Totals, per-horizon win rates and confidence calibration for a user."""
    from perf_proof.reporting.formatters import format_overview

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    date_range = _date_range_or_exit(date_from, date_to)

    with _service(config, db_path) as service:
        payload = service.get_overview(user, date_range)

    if as_json:
        _echo_json(payload.model_dump(mode="json"))
    else:
        typer.echo(format_overview(user, payload))


@app.command("scoreboard")
def scoreboard(
    user: str = typer.Option(..., "--user", help="User id."),
    horizon: Optional[int] = typer.Option(
        None, "--horizon", help="Horizon in days (default: calibration horizon)."
    ),
    date_from: Optional[str] = typer.Option(None, "--from", help="YYYY-MM-DD (inclusive)."),
    date_to: Optional[str] = typer.Option(None, "--to", help="YYYY-MM-DD (inclusive)."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of tables."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Win rate and returns grouped by action, risk level and confidence bucket."""
    from perf_proof.reporting.formatters import format_scoreboard

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    date_range = _date_range_or_exit(date_from, date_to)

    with _service(config, db_path) as service:
        payload = service.get_scoreboard(user, horizon, date_range)

    if as_json:
        _echo_json(payload.model_dump(mode="json"))
    else:
        typer.echo(format_scoreboard(user, payload))


@app.command("outcomes")
def outcomes(
    user: str = typer.Option(..., "--user", help="User id."),
    horizon: Optional[int] = typer.Option(None, "--horizon", help="Horizon in days."),
    ticker: Optional[str] = typer.Option(None, "--ticker", help="Ticker substring filter."),
    action: Optional[str] = typer.Option(None, "--action", help="buy | sell | hold."),
    result: Optional[str] = typer.Option(None, "--result", help="win | loss | pending."),
    page: int = typer.Option(1, "--page", help="Page number (1-based)."),
    limit: Optional[int] = typer.Option(None, "--limit", help="Page size."),
    date_from: Optional[str] = typer.Option(None, "--from", help="YYYY-MM-DD (inclusive)."),
    date_to: Optional[str] = typer.Option(None, "--to", help="YYYY-MM-DD (inclusive)."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table."),
    out: Optional[str] = typer.Option(None, "--out", help="Also write the page as flat CSV."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Paginated list of recommendations with their per-horizon results."""
    from pydantic import ValidationError

    from perf_proof.models.performance import OutcomeQuery
    from perf_proof.reporting.formatters import format_outcomes

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    perf = config.performance

    try:
        query = OutcomeQuery(
            ticker=ticker,
            action=action,
            horizon=horizon or perf.calibration_horizon_days,
            result=result,
            page=page,
            limit=limit or perf.default_page_size,
            date_from=_parse_date_or_exit(date_from, "--from"),
            date_to=_parse_date_or_exit(date_to, "--to"),
        )
    except ValidationError as exc:
        typer.echo(f"[ERROR] Invalid filters: {exc}", err=True)
        raise typer.Exit(code=1)

    with _service(config, db_path) as service:
        payload = service.list_outcomes(user, query)

    if out:
        from perf_proof.reporting.export import (
            OUTCOME_COLUMNS,
            export_to_csv,
            flatten_outcomes_for_export,
        )

        export_to_csv(flatten_outcomes_for_export(payload), Path(out), fieldnames=OUTCOME_COLUMNS)
        typer.echo(f"  Outcomes written to {out}")

    if as_json:
        _echo_json(payload.model_dump(mode="json"))
    else:
        typer.echo(format_outcomes(payload, query.horizon))


@app.command("feedback")
def feedback(
    user: str = typer.Option(..., "--user", help="User id."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of prompt text."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Track-record summary as fed back into the recommendation prompt."""
    from perf_proof.performance.feedback import MIN_EVALUATIONS, format_feedback_prompt

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with _service(config, db_path) as service:
        summary = service.get_feedback(user)

    if summary is None:
        typer.echo(
            f"  (not enough scored outcomes yet: need at least {MIN_EVALUATIONS} "
            f"at {config.performance.calibration_horizon_days}d)"
        )
        return
    if as_json:
        _echo_json(summary.model_dump(mode="json"))
    else:
        typer.echo(format_feedback_prompt(summary))


@app.command("reseed-demo")
def reseed_demo(
    user: str = typer.Option(..., "--user", help="User id."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Replace a user's history with deterministic demo snapshots (synthetic prices only)."""
    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with _service(config, db_path) as service:
        created = service.reseed_demo(user)

    typer.echo(f"[OK] Seeded {created} demo snapshots for {user}.")


@app.command("job-status")
def job_status(
    job_name: str = typer.Option("performance-evaluation", "--job", help="Job name."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Last run, last success and last error of a scheduled job."""
    from perf_proof.reporting.formatters import format_job_status

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with _service(config, db_path) as service:
        status = service.get_job_status(job_name)

    typer.echo(format_job_status(status, job_name))


@app.command("export-scoreboard")
def export_scoreboard(
    user: str = typer.Option(..., "--user", help="User id."),
    out: str = typer.Option(..., "--out", help="Output path (.csv or .json)."),
    horizon: Optional[int] = typer.Option(None, "--horizon", help="Horizon in days."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Write the scoreboard as flat CSV rows, or as the JSON payload."""
    from perf_proof.reporting.export import (
        SCOREBOARD_COLUMNS,
        export_to_csv,
        export_to_json,
        flatten_scoreboard_for_export,
    )

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    out_path = Path(out)

    with _service(config, db_path) as service:
        payload = service.get_scoreboard(user, horizon)

    if out_path.suffix.lower() == ".json":
        export_to_json(payload.model_dump(mode="json"), out_path)
    else:
        export_to_csv(
            flatten_scoreboard_for_export(payload), out_path, fieldnames=SCOREBOARD_COLUMNS
        )
    typer.echo(f"[OK] Scoreboard written to {out_path}")


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
