"""
Repository for ``recommendation_evaluations``.

Writes go through ``upsert()``, keyed by ``(snapshot_id, horizon_days)``.
The ``ON CONFLICT ... DO UPDATE ... WHERE`` guard only lets a write through
when the stored row is not yet final (``data_quality != 'ok'`` or
``return_pct IS NULL``), so a scored outcome can never be overwritten, not
even by a concurrent evaluator that read the row before it was scored.

Read helpers join back to ``recommendation_snapshots`` so the aggregator can
filter by user and ``generated_date`` and group by snapshot attributes.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

from perf_proof.db.repositories.base import BaseRepository, date_range_clause, placeholders
from perf_proof.models.performance import DateRange
from perf_proof.models.snapshot import RecommendationEvaluation
from perf_proof.utils.time_utils import parse_datetime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoredOutcome:
    """An evaluation row joined with the snapshot attributes used for grouping."""

    snapshot_id: str
    horizon_days: int
    return_pct: Optional[float]
    is_win: Optional[bool]
    data_quality: str
    ticker: str
    action: str
    confidence: float
    confidence_bucket: str
    risk_level: Optional[str]
    generated_date: date
    evaluated_at: str


class EvaluationRepository(BaseRepository):
    """Read/write access to ``recommendation_evaluations``."""

    def upsert(self, evaluation: RecommendationEvaluation) -> bool:
        """Insert or rewrite the evaluation for ``(snapshot_id, horizon_days)``.

        An existing ``ok`` row with a known return is left untouched.

        Returns:
            ``True`` if a row was inserted or updated, ``False`` if the guard
            rejected the write.
        """
        cursor = self.execute(
            """
            INSERT INTO recommendation_evaluations (
                snapshot_id, horizon_days, target_date, evaluated_at,
                exit_price, return_pct, is_win, data_quality
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(snapshot_id, horizon_days) DO UPDATE SET
                target_date  = excluded.target_date,
                evaluated_at = excluded.evaluated_at,
                exit_price   = excluded.exit_price,
                return_pct   = excluded.return_pct,
                is_win       = excluded.is_win,
                data_quality = excluded.data_quality
            WHERE recommendation_evaluations.data_quality != 'ok'
               OR recommendation_evaluations.return_pct IS NULL;
            """,
            (
                evaluation.snapshot_id,
                evaluation.horizon_days,
                evaluation.target_date.isoformat(),
                evaluation.evaluated_at.isoformat(),
                evaluation.exit_price,
                evaluation.return_pct,
                None if evaluation.is_win is None else int(evaluation.is_win),
                evaluation.data_quality,
            ),
        )
        written = cursor.rowcount > 0
        if not written:
            logger.debug(
                "Evaluation %s/%dd already final; write skipped.",
                evaluation.snapshot_id,
                evaluation.horizon_days,
            )
        return written

    def get(self, snapshot_id: str, horizon_days: int) -> Optional[RecommendationEvaluation]:
        row = self.fetchone(
            """
            SELECT * FROM recommendation_evaluations
            WHERE snapshot_id = ? AND horizon_days = ?;
            """,
            (snapshot_id, horizon_days),
        )
        return _row_to_evaluation(row) if row else None

    def for_snapshot(self, snapshot_id: str) -> dict[int, RecommendationEvaluation]:
        """Return a snapshot's evaluations keyed by horizon."""
        return self.for_snapshots([snapshot_id]).get(snapshot_id, {})

    def for_snapshots(
        self,
        snapshot_ids: list[str],
        horizons: Optional[list[int]] = None,
    ) -> dict[str, dict[int, RecommendationEvaluation]]:
        """Batch-load evaluations for many snapshots.

        Args:
            snapshot_ids: Snapshots to load.
            horizons: Restrict to these horizons; ``None`` loads all.

        Returns:
            ``{snapshot_id: {horizon_days: evaluation}}``; snapshots without
            rows are absent.
        """
        if not snapshot_ids:
            return {}
        sql = (
            "SELECT * FROM recommendation_evaluations "
            f"WHERE snapshot_id IN ({placeholders(snapshot_ids)})"
        )
        params: list[Any] = list(snapshot_ids)
        if horizons:
            sql += f" AND horizon_days IN ({placeholders(horizons)})"
            params.extend(horizons)
        sql += " ORDER BY snapshot_id, horizon_days;"

        result: dict[str, dict[int, RecommendationEvaluation]] = {}
        for row in self.fetchall(sql, tuple(params)):
            evaluation = _row_to_evaluation(row)
            result.setdefault(evaluation.snapshot_id, {})[evaluation.horizon_days] = evaluation
        return result

    def list_outcomes(
        self,
        user_id: str,
        horizons: list[int],
        date_range: Optional[DateRange] = None,
        ok_only: bool = False,
    ) -> list[ScoredOutcome]:
        """Return a user's evaluations at ``horizons`` joined with snapshot fields.

        Args:
            user_id: Owner of the snapshots.
            horizons: Horizons to include.
            date_range: Optional inclusive filter on ``generated_date``.
            ok_only: If ``True``, only rows with ``data_quality = 'ok'`` and
                non-null return and win.

        Returns:
            Outcomes ordered by ``evaluated_at`` descending.
        """
        if not horizons:
            return []
        date_sql, date_params = date_range_clause(date_range, column="s.generated_date")
        quality_sql = (
            " AND e.data_quality = 'ok' AND e.return_pct IS NOT NULL AND e.is_win IS NOT NULL"
            if ok_only
            else ""
        )
        rows = self.fetchall(
            f"""
            SELECT e.snapshot_id, e.horizon_days, e.return_pct, e.is_win,
                   e.data_quality, e.evaluated_at,
                   s.ticker, s.action, s.confidence, s.confidence_bucket,
                   s.risk_level, s.generated_date
            FROM recommendation_evaluations e
            JOIN recommendation_snapshots s ON s.snapshot_id = e.snapshot_id
            WHERE s.user_id = ?
              AND e.horizon_days IN ({placeholders(horizons)}){date_sql}{quality_sql}
            ORDER BY e.evaluated_at DESC, s.generated_at DESC;
            """,
            (user_id, *horizons, *date_params),
        )
        return [_row_to_outcome(r) for r in rows]


# ── Helpers ────────────────────────────────────────────────────────────────────


def _row_to_evaluation(row: sqlite3.Row) -> RecommendationEvaluation:
    return RecommendationEvaluation(
        evaluation_id=row["evaluation_id"],
        snapshot_id=row["snapshot_id"],
        horizon_days=row["horizon_days"],
        target_date=date.fromisoformat(row["target_date"]),
        evaluated_at=parse_datetime(row["evaluated_at"]),
        exit_price=row["exit_price"],
        return_pct=row["return_pct"],
        is_win=None if row["is_win"] is None else bool(row["is_win"]),
        data_quality=row["data_quality"],
    )


def _row_to_outcome(row: sqlite3.Row) -> ScoredOutcome:
    return ScoredOutcome(
        snapshot_id=row["snapshot_id"],
        horizon_days=row["horizon_days"],
        return_pct=row["return_pct"],
        is_win=None if row["is_win"] is None else bool(row["is_win"]),
        data_quality=row["data_quality"],
        ticker=row["ticker"],
        action=row["action"],
        confidence=row["confidence"],
        confidence_bucket=row["confidence_bucket"],
        risk_level=row["risk_level"],
        generated_date=date.fromisoformat(row["generated_date"]),
        evaluated_at=row["evaluated_at"],
    )
