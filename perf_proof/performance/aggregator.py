"""
Read-only aggregation of persisted evaluation results.

The aggregator never triggers evaluation and never writes. Everything it
reports is derived from ``recommendation_snapshots`` and
``recommendation_evaluations`` as they stand, scoped to one user and an
optional inclusive ``generated_date`` range.

Three views:

  overview     totals by snapshot status, per-horizon win/return statistics,
               confidence calibration at the calibration horizon, and a
               data-quality tally.
  scoreboard   per-horizon statistics grouped by action, risk level and
               confidence bucket, best first.
  outcomes     paginated snapshot listing with per-horizon evaluations.
"""

from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict
from typing import Callable, Iterable, Optional

from perf_proof.config import PerformanceConfig
from perf_proof.db.repositories.evaluation_repo import EvaluationRepository, ScoredOutcome
from perf_proof.db.repositories.snapshot_repo import SnapshotRepository
from perf_proof.models.performance import (
    CalibrationRow,
    DataQualityTally,
    DateRange,
    EvaluationView,
    HorizonStats,
    OutcomeItem,
    OutcomePage,
    OutcomeQuery,
    OverviewPayload,
    OverviewTotals,
    Pagination,
    ScoreboardPayload,
    ScoreboardRow,
)
from perf_proof.performance.outcomes import bucket_floor
from perf_proof.performance.stats import GroupStats, compute_group_stats, sort_scoreboard_rows

logger = logging.getLogger(__name__)

UNKNOWN_RISK = "unknown"


def _is_scored(outcome: ScoredOutcome) -> bool:
    return (
        outcome.data_quality == "ok"
        and outcome.return_pct is not None
        and outcome.is_win is not None
    )


def _pairs(outcomes: Iterable[ScoredOutcome]) -> list[tuple[bool, float]]:
    return [(bool(o.is_win), float(o.return_pct)) for o in outcomes if _is_scored(o)]  # type: ignore[arg-type]


def _grouped_stats(
    outcomes: list[ScoredOutcome],
    key_fn: Callable[[ScoredOutcome], str],
) -> list[GroupStats]:
    groups: dict[str, list[ScoredOutcome]] = defaultdict(list)
    for outcome in outcomes:
        groups[key_fn(outcome)].append(outcome)
    return [compute_group_stats(key, _pairs(rows)) for key, rows in groups.items()]


def _to_row(stats: GroupStats) -> ScoreboardRow:
    return ScoreboardRow(
        key=stats.key,
        count=stats.count,
        win_rate=stats.win_rate,
        avg_return=stats.avg_return,
        median_return=stats.median_return,
    )


class PerformanceAggregator:
    """Builds overview, scoreboard and outcome views for a user.

    Args:
        conn: Open database connection (read-only use).
        config: Horizons and calibration horizon.
    """

    def __init__(self, conn: sqlite3.Connection, config: PerformanceConfig) -> None:
        self.config = config
        self.snapshots = SnapshotRepository(conn)
        self.evaluations = EvaluationRepository(conn)

    def validate_horizon(self, horizon: int) -> int:
        """Return ``horizon`` if configured.

        Raises:
            ValueError: If ``horizon`` is not one of the configured horizons.
        """
        if horizon not in self.config.horizons_days:
            raise ValueError(
                f"Invalid horizon {horizon}; must be one of {self.config.horizons_days}."
            )
        return horizon

    # ── Overview ──────────────────────────────────────────────────────────────

    def get_overview(
        self, user_id: str, date_range: Optional[DateRange] = None
    ) -> OverviewPayload:
        """Headline statistics for ``user_id``."""
        counts = self.snapshots.count_by_status(user_id, date_range)
        totals = OverviewTotals(
            snapshots=sum(counts.values()),
            evaluated=counts["scored"] + counts["stale"],
            pending=counts["pending"],
            scored=counts["scored"],
            stale=counts["stale"],
        )

        outcomes = self.evaluations.list_outcomes(
            user_id, self.config.horizons_days, date_range
        )

        quality = DataQualityTally(
            ok=sum(1 for o in outcomes if o.data_quality == "ok"),
            missing=sum(1 for o in outcomes if o.data_quality == "missing"),
        )

        horizons: dict[str, HorizonStats] = {}
        for horizon in self.config.horizons_days:
            stats = compute_group_stats(
                str(horizon), _pairs(o for o in outcomes if o.horizon_days == horizon)
            )
            horizons[str(horizon)] = HorizonStats(
                count=stats.count,
                win_rate=stats.win_rate,
                avg_return=stats.avg_return,
                median_return=stats.median_return,
            )

        calibration_outcomes = [
            o
            for o in outcomes
            if o.horizon_days == self.config.calibration_horizon_days and _is_scored(o)
        ]
        calibration = [
            CalibrationRow(
                bucket=stats.key,
                count=stats.count,
                win_rate=stats.win_rate,
                avg_return=stats.avg_return,
            )
            for stats in sorted(
                _grouped_stats(calibration_outcomes, lambda o: o.confidence_bucket),
                key=lambda s: (bucket_floor(s.key), s.key),
            )
        ]

        return OverviewPayload(
            totals=totals,
            horizons=horizons,
            calibration=calibration,
            data_quality=quality,
        )

    # ── Scoreboard ────────────────────────────────────────────────────────────

    def get_scoreboard(
        self,
        user_id: str,
        horizon: Optional[int] = None,
        date_range: Optional[DateRange] = None,
    ) -> ScoreboardPayload:
        """Grouped statistics at one horizon (default: the calibration horizon).

        Raises:
            ValueError: If ``horizon`` is not configured. Checked before any query.
        """
        horizon = self.validate_horizon(
            self.config.calibration_horizon_days if horizon is None else horizon
        )
        outcomes = self.evaluations.list_outcomes(user_id, [horizon], date_range, ok_only=True)

        def board(key_fn: Callable[[ScoredOutcome], str]) -> list[ScoreboardRow]:
            return [_to_row(s) for s in sort_scoreboard_rows(_grouped_stats(outcomes, key_fn))]

        return ScoreboardPayload(
            horizon=horizon,
            by_action=board(lambda o: o.action),
            by_risk_level=board(lambda o: o.risk_level or UNKNOWN_RISK),
            by_confidence_bucket=board(lambda o: o.confidence_bucket),
        )

    # ── Outcome listing ───────────────────────────────────────────────────────

    def list_outcomes(self, user_id: str, query: OutcomeQuery) -> OutcomePage:
        """One page of snapshots matching ``query`` with their evaluations.

        Raises:
            ValueError: If ``query.horizon`` is not configured, or
                ``query.limit`` exceeds the configured maximum page size.
        """
        self.validate_horizon(query.horizon)
        if query.limit > self.config.max_page_size:
            raise ValueError(
                f"limit {query.limit} exceeds max page size {self.config.max_page_size}."
            )

        total = self.snapshots.count_outcomes(user_id, query)
        snapshots = self.snapshots.list_outcomes(user_id, query)
        evaluations = self.evaluations.for_snapshots(
            [s.snapshot_id for s in snapshots], horizons=self.config.horizons_days
        )

        items = [
            OutcomeItem(
                snapshot_id=s.snapshot_id,
                ticker=s.ticker,
                action=s.action,
                confidence=s.confidence,
                confidence_bucket=s.confidence_bucket,
                entry_price=s.entry_price,
                currency=s.currency,
                risk_level=s.risk_level,
                status=s.status,
                generated_at=s.generated_at,
                generated_date=s.generated_date,
                evaluations={
                    h: EvaluationView(
                        horizon_days=e.horizon_days,
                        target_date=e.target_date,
                        evaluated_at=e.evaluated_at,
                        exit_price=e.exit_price,
                        return_pct=e.return_pct,
                        is_win=e.is_win,
                        data_quality=e.data_quality,
                    )
                    for h, e in sorted(evaluations.get(s.snapshot_id, {}).items())
                },
            )
            for s in snapshots
        ]

        return OutcomePage(
            items=items,
            pagination=Pagination.build(query.page, query.limit, total),
        )
