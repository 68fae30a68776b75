"""
ASCII terminal formatters for CLI reporting commands.

All formatters accept payload models and return plain multi-line strings
suitable for ``typer.echo()``.

No third-party dependencies (no ``rich``, no ``colorama``).

Missing statistics (``None``: nothing scored yet) render as ``-`` so they
are never mistaken for a 0% win rate.
"""

from __future__ import annotations

from typing import Optional

from perf_proof.models.meta import JobStatus
from perf_proof.models.performance import (
    OutcomePage,
    OverviewPayload,
    ScoreboardPayload,
)


def _pct(value: Optional[float], signed: bool = False) -> str:
    if value is None:
        return "-"
    return f"{value:+.2f}%" if signed else f"{value:.2f}%"


# ── Overview ──────────────────────────────────────────────────────────────────


def format_overview(user_id: str, overview: OverviewPayload) -> str:
    """Totals, per-horizon stats, calibration and data quality."""
    t = overview.totals
    lines = [
        "",
        f"=== Performance Overview: {user_id} ===",
        f"  Snapshots: {t.snapshots}  (scored {t.scored}, stale {t.stale}, pending {t.pending})",
        f"  Data quality: ok={overview.data_quality.ok}  missing={overview.data_quality.missing}",
        "",
        f"    {'Horizon':>7}  {'Count':>5}  {'Win rate':>9}  {'Avg ret':>9}  {'Median':>9}",
        "    " + "-" * 47,
    ]
    for horizon, stats in overview.horizons.items():
        lines.append(
            f"    {horizon + 'd':>7}  {stats.count:>5}  {_pct(stats.win_rate):>9}  "
            f"{_pct(stats.avg_return, True):>9}  {_pct(stats.median_return, True):>9}"
        )

    lines.append("")
    lines.append("  Calibration (confidence bucket -> realised win rate):")
    if not overview.calibration:
        lines.append("    (no scored outcomes at the calibration horizon yet)")
    for row in overview.calibration:
        lines.append(
            f"    {row.bucket:>7}  {row.count:>5}  {_pct(row.win_rate):>9}  "
            f"{_pct(row.avg_return, True):>9}"
        )
    return "\n".join(lines)


# ── Scoreboard ────────────────────────────────────────────────────────────────


def format_scoreboard(user_id: str, scoreboard: ScoreboardPayload) -> str:
    """One block per grouping, best first."""
    lines = ["", f"=== Scoreboard: {user_id} ({scoreboard.horizon}d horizon) ==="]
    for group, title in (
        ("action", "By action"),
        ("risk_level", "By risk level"),
        ("confidence_bucket", "By confidence"),
    ):
        rows = scoreboard.rows_for(group)
        lines.append("")
        lines.append(f"  [{title.upper()}]")
        if not rows:
            lines.append("    (no scored outcomes)")
            continue
        lines.append(
            f"    {'Key':<12}  {'Count':>5}  {'Win rate':>9}  {'Avg ret':>9}  {'Median':>9}"
        )
        lines.append("    " + "-" * 52)
        for row in rows:
            lines.append(
                f"    {row.key:<12}  {row.count:>5}  {_pct(row.win_rate):>9}  "
                f"{_pct(row.avg_return, True):>9}  {_pct(row.median_return, True):>9}"
            )
    return "\n".join(lines)


# ── Outcomes ──────────────────────────────────────────────────────────────────


def format_outcomes(page: OutcomePage, horizon: int) -> str:
    """Paginated outcome listing showing the selected horizon's result."""
    p = page.pagination
    lines = [
        "",
        f"=== Outcomes ({horizon}d) page {p.page}/{max(p.total_pages, 1)}, {p.total} total ===",
    ]
    if not page.items:
        lines.append("  (no matching recommendations)")
        return "\n".join(lines)

    lines.append(
        f"    {'Date':<10}  {'Ticker':<8}  {'Action':<6}  {'Conf':>5}  "
        f"{'Entry':>10}  {'Exit':>10}  {'Return':>9}  {'Result':<7}"
    )
    lines.append("    " + "-" * 78)
    for item in page.items:
        ev = item.evaluations.get(horizon)
        if ev is None or ev.data_quality != "ok":
            exit_str, ret_str = "-", "-"
            result = "missing" if ev is not None else "pending"
        else:
            exit_str = f"{ev.exit_price:.2f}"
            ret_str = _pct(ev.return_pct, True)
            result = "win" if ev.is_win else "loss"
        lines.append(
            f"    {item.generated_date.isoformat():<10}  {item.ticker:<8}  {item.action:<6}  "
            f"{item.confidence:>5.0f}  {item.entry_price:>10.2f}  {exit_str:>10}  "
            f"{ret_str:>9}  {result:<7}"
        )
    return "\n".join(lines)


# ── Job status ────────────────────────────────────────────────────────────────


def format_job_status(status: Optional[JobStatus], job_name: str) -> str:
    if status is None:
        return f"  {job_name}: never run"
    lines = [
        f"  Job:          {status.job_name}",
        f"  Last run:     {status.last_run_at.isoformat() if status.last_run_at else '-'}",
        f"  Last success: {status.last_success_at.isoformat() if status.last_success_at else '-'}",
    ]
    if status.last_error:
        lines.append(f"  Last error:   {status.last_error}")
    if status.last_summary:
        lines.append(
            "  Summary:      "
            + ", ".join(f"{k}={v}" for k, v in status.last_summary.items())
        )
    return "\n".join(lines)
