"""
Export helpers for spreadsheet and manual analysis.

All functions write to disk and return the written ``Path``.
``export_to_csv`` / ``export_to_json`` accept generic ``list[dict]`` data;
the ``flatten_*`` adapters turn the nested payload models into one flat row
per scoreboard group or per (snapshot, horizon) pair so the CSV loads in
Excel or pandas without any pre-processing step.
"""

from __future__ import annotations

import csv
import json
from pathlib import Path

from perf_proof.models.performance import OutcomePage, ScoreboardPayload

SCOREBOARD_COLUMNS = [
    "horizon_days", "group", "key", "count", "win_rate", "avg_return", "median_return",
]

OUTCOME_COLUMNS = [
    "snapshot_id", "ticker", "action", "confidence", "confidence_bucket",
    "entry_price", "currency", "risk_level", "status", "generated_date",
    "horizon_days", "target_date", "exit_price", "return_pct", "is_win", "data_quality",
]


def export_to_csv(
    records: list[dict],
    path: Path,
    fieldnames: list[str] | None = None,
) -> Path:
    """Write ``records`` to a UTF-8 CSV file.

    Args:
        records:    List of row dicts.
        path:       Destination file path (parent dirs created if missing).
        fieldnames: Column order.  If None, uses the keys of the first record.

    Returns:
        ``path`` as written.  With no records and no ``fieldnames`` the file
        is empty; with ``fieldnames`` it holds just the header.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if not records and not fieldnames:
        path.write_text("", encoding="utf-8")
        return path
    cols = fieldnames or list(records[0].keys())
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=cols, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(records)
    return path


def export_to_json(data: dict | list, path: Path) -> Path:
    """Write ``data`` to a pretty-printed JSON file (parent dirs created if missing)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
    return path


def flatten_scoreboard_for_export(scoreboard: ScoreboardPayload) -> list[dict]:
    """One row per (group, key), groups in action / risk / bucket order."""
    rows: list[dict] = []
    for group in ("action", "risk_level", "confidence_bucket"):
        for row in scoreboard.rows_for(group):
            rows.append(
                {
                    "horizon_days":  scoreboard.horizon,
                    "group":         group,
                    "key":           row.key,
                    "count":         row.count,
                    "win_rate":      "" if row.win_rate is None else row.win_rate,
                    "avg_return":    "" if row.avg_return is None else row.avg_return,
                    "median_return": "" if row.median_return is None else row.median_return,
                }
            )
    return rows


def flatten_outcomes_for_export(page: OutcomePage) -> list[dict]:
    """One row per (snapshot, horizon); snapshots without evaluations get one blank-horizon row."""
    rows: list[dict] = []
    for item in page.items:
        base = {
            "snapshot_id":       item.snapshot_id,
            "ticker":            item.ticker,
            "action":            item.action,
            "confidence":        item.confidence,
            "confidence_bucket": item.confidence_bucket,
            "entry_price":       item.entry_price,
            "currency":          item.currency,
            "risk_level":        item.risk_level or "",
            "status":            item.status,
            "generated_date":    item.generated_date.isoformat(),
        }
        if not item.evaluations:
            rows.append({**base, **{c: "" for c in OUTCOME_COLUMNS if c not in base}})
            continue
        for horizon, ev in sorted(item.evaluations.items()):
            rows.append(
                {
                    **base,
                    "horizon_days": horizon,
                    "target_date":  ev.target_date.isoformat(),
                    "exit_price":   "" if ev.exit_price is None else ev.exit_price,
                    "return_pct":   "" if ev.return_pct is None else ev.return_pct,
                    "is_win":       "" if ev.is_win is None else ev.is_win,
                    "data_quality": ev.data_quality,
                }
            )
    return rows
