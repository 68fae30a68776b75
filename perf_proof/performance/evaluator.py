"""
Horizon evaluation of recommendation snapshots.

For each of a user's ``pending`` / ``stale`` snapshots (oldest first) and each
configured horizon:

  1. ``target = generated_date + horizon`` at 00:00 UTC. Not reached yet: skip.
  2. An existing ``ok`` row with a known return is final: skip.
  3. Resolve the exit price (first price at or after ``target``, if positive).
  4. Found: compute return and win, write an ``ok`` row.
  5. Not found and more than ``grace_hours`` past ``target``: write a
     ``missing`` row (unless one is already there). Within the grace window,
     or when the price source failed transiently, write nothing; the horizon
     stays pending for the next run.

The snapshot's status is then re-derived from its rows (``fold_status``) and
persisted only if it changed. Each snapshot is its own transaction: an
unexpected error rolls back that snapshot's writes, is logged and counted,
and the run moves on.

Running the evaluator twice with the same clock and prices performs no
writes the second time.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Mapping, Optional, Sequence

from perf_proof.config import PerformanceConfig
from perf_proof.db.connection import transaction
from perf_proof.db.repositories.evaluation_repo import EvaluationRepository
from perf_proof.db.repositories.snapshot_repo import SnapshotRepository
from perf_proof.models.snapshot import RecommendationEvaluation, RecommendationSnapshot
from perf_proof.performance.outcomes import (
    calculate_return_pct,
    is_past_grace,
    is_winning_outcome,
)
from perf_proof.performance.price_history import PriceHistoryCache
from perf_proof.utils.time_utils import ensure_utc, horizon_target, utcnow

logger = logging.getLogger(__name__)


@dataclass
class EvaluationCounters:
    """Tallies for one evaluator invocation (one user, or summed over users)."""

    snapshots_checked: int = 0
    evaluations_recorded: int = 0
    missing_marked: int = 0
    pending_snapshots: int = 0
    scored_snapshots: int = 0
    stale_snapshots: int = 0
    errors: int = 0

    def add(self, other: "EvaluationCounters") -> None:
        for name, value in asdict(other).items():
            setattr(self, name, getattr(self, name) + value)

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class SnapshotOutcome:
    """What happened to one snapshot during a pass."""

    status: str
    recorded: int = 0
    missing: int = 0
    status_changed: bool = False
    deferred_horizons: list[int] = field(default_factory=list)


def fold_status(
    evaluations: Mapping[int, RecommendationEvaluation],
    horizons: Sequence[int],
) -> str:
    """Derive a snapshot's status from its evaluation rows.

    ``pending`` until every horizon has a row; then ``scored`` if every row is
    ``ok``, else ``stale``.
    """
    rows = [evaluations.get(h) for h in horizons]
    if not all(rows):
        return "pending"
    if any(row.data_quality != "ok" for row in rows if row is not None):
        return "stale"
    return "scored"


class SnapshotEvaluator:
    """Evaluates snapshots against a price history cache.

    Args:
        conn: Open database connection; the evaluator commits per snapshot.
        config: Horizons, grace window and hold threshold.
        cache: Per-run price history cache.
        now: Evaluation clock; defaults to the current UTC time.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: PerformanceConfig,
        cache: PriceHistoryCache,
        now: Optional[datetime] = None,
    ) -> None:
        self.conn = conn
        self.config = config
        self.cache = cache
        self.now = ensure_utc(now) if now else utcnow()
        self.snapshots = SnapshotRepository(conn)
        self.evaluations = EvaluationRepository(conn)

    def evaluate_user(self, user_id: str) -> EvaluationCounters:
        """Evaluate every open snapshot of ``user_id``."""
        counters = EvaluationCounters()
        open_snapshots = self.snapshots.list_for_evaluation(user_id)
        existing = self.evaluations.for_snapshots([s.snapshot_id for s in open_snapshots])

        for snapshot in open_snapshots:
            counters.snapshots_checked += 1
            try:
                with transaction(self.conn):
                    outcome = self.evaluate_snapshot(
                        snapshot, existing.get(snapshot.snapshot_id, {})
                    )
            except Exception:
                logger.exception(
                    "Evaluation failed for snapshot %s (%s); rolled back.",
                    snapshot.snapshot_id,
                    snapshot.ticker,
                )
                counters.errors += 1
                continue

            counters.evaluations_recorded += outcome.recorded
            counters.missing_marked += outcome.missing
            if outcome.status == "pending":
                counters.pending_snapshots += 1
            elif outcome.status == "scored":
                counters.scored_snapshots += 1
            else:
                counters.stale_snapshots += 1

        logger.info(
            "Evaluated user %s: %d checked, %d recorded, %d missing, %d errors.",
            user_id,
            counters.snapshots_checked,
            counters.evaluations_recorded,
            counters.missing_marked,
            counters.errors,
        )
        return counters

    def evaluate_snapshot(
        self,
        snapshot: RecommendationSnapshot,
        existing: Mapping[int, RecommendationEvaluation],
    ) -> SnapshotOutcome:
        """Evaluate one snapshot at every configured horizon.

        Args:
            snapshot: The snapshot to evaluate.
            existing: Its current evaluation rows keyed by horizon.

        Returns:
            ``SnapshotOutcome`` with the folded status and write counts.
        """
        rows = dict(existing)
        recorded = 0
        missing = 0
        deferred: list[int] = []

        for horizon in self.config.horizons_days:
            target = horizon_target(snapshot.generated_date, horizon)
            if self.now < target:
                continue

            current = rows.get(horizon)
            if current is not None and current.is_final:
                continue

            lookup = self.cache.resolve_exit_price(snapshot.ticker, target)

            if lookup.price is not None:
                return_pct = calculate_return_pct(
                    snapshot.action, snapshot.entry_price, lookup.price
                )
                evaluation = RecommendationEvaluation(
                    snapshot_id=snapshot.snapshot_id,
                    horizon_days=horizon,
                    target_date=target.date(),
                    evaluated_at=self.now,
                    exit_price=lookup.price,
                    return_pct=return_pct,
                    is_win=is_winning_outcome(
                        snapshot.action, return_pct, self.config.hold_win_threshold_pct
                    ),
                    data_quality="ok",
                )
                if self.evaluations.upsert(evaluation):
                    rows[horizon] = evaluation
                    recorded += 1
                else:
                    # Scored concurrently; pick up the stored row
                    stored = self.evaluations.get(snapshot.snapshot_id, horizon)
                    if stored is not None:
                        rows[horizon] = stored
                continue

            if lookup.transient:
                deferred.append(horizon)
                continue

            if not is_past_grace(target, self.now, self.config.grace_hours):
                continue

            if current is not None and current.data_quality == "missing":
                continue

            evaluation = RecommendationEvaluation(
                snapshot_id=snapshot.snapshot_id,
                horizon_days=horizon,
                target_date=target.date(),
                evaluated_at=self.now,
                data_quality="missing",
            )
            if self.evaluations.upsert(evaluation):
                rows[horizon] = evaluation
                missing += 1

        status = fold_status(rows, self.config.horizons_days)
        changed = status != snapshot.status
        if changed:
            self.snapshots.update_status(snapshot.snapshot_id, status)
            logger.debug(
                "Snapshot %s: %s -> %s", snapshot.snapshot_id, snapshot.status, status
            )

        return SnapshotOutcome(
            status=status,
            recorded=recorded,
            missing=missing,
            status_changed=changed,
            deferred_horizons=deferred,
        )


def evaluate_user_snapshots(
    conn: sqlite3.Connection,
    user_id: str,
    config: PerformanceConfig,
    cache: PriceHistoryCache,
    now: Optional[datetime] = None,
) -> EvaluationCounters:
    """Convenience wrapper: evaluate one user's open snapshots."""
    return SnapshotEvaluator(conn, config, cache, now=now).evaluate_user(user_id)
