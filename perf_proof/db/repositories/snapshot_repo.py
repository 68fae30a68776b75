"""
Repository for ``recommendation_snapshots``.

Snapshots are insert-once. The only update this repository offers is
``update_status()``, which the evaluator calls after folding a snapshot's
evaluations. Read helpers used by the aggregator accept an optional
``DateRange`` applied to ``generated_date`` (inclusive on both ends).
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date
from typing import Any, Optional

from perf_proof.db.repositories.base import BaseRepository, date_range_clause
from perf_proof.models.performance import DateRange, OutcomeQuery
from perf_proof.models.snapshot import VALID_SNAPSHOT_STATUSES, RecommendationSnapshot
from perf_proof.utils.time_utils import parse_datetime

logger = logging.getLogger(__name__)


class SnapshotRepository(BaseRepository):
    """Read/write access to ``recommendation_snapshots``."""

    def insert(self, snapshot: RecommendationSnapshot) -> str:
        """Persist a new snapshot and return its ``snapshot_id``.

        Raises:
            sqlite3.IntegrityError: If the id already exists or a CHECK fails.
        """
        self.execute(
            """
            INSERT INTO recommendation_snapshots (
                snapshot_id, user_id, recommendation_id, holding_id, idea_id,
                ticker, action, confidence, confidence_bucket, entry_price,
                currency, risk_level, generated_at, generated_date, status
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                snapshot.snapshot_id,
                snapshot.user_id,
                snapshot.recommendation_id,
                snapshot.holding_id,
                snapshot.idea_id,
                snapshot.ticker,
                snapshot.action,
                snapshot.confidence,
                snapshot.confidence_bucket,
                snapshot.entry_price,
                snapshot.currency,
                snapshot.risk_level,
                snapshot.generated_at.isoformat(),
                snapshot.generated_date.isoformat(),
                snapshot.status,
            ),
        )
        return snapshot.snapshot_id

    def get(self, snapshot_id: str) -> Optional[RecommendationSnapshot]:
        row = self.fetchone(
            "SELECT * FROM recommendation_snapshots WHERE snapshot_id = ?;",
            (snapshot_id,),
        )
        return _row_to_snapshot(row) if row else None

    def update_status(self, snapshot_id: str, status: str) -> None:
        """Set a snapshot's status.

        Raises:
            ValueError: If ``status`` is not a known snapshot status.
        """
        if status not in VALID_SNAPSHOT_STATUSES:
            raise ValueError(
                f"Unknown snapshot status '{status}'. "
                f"Must be one of {sorted(VALID_SNAPSHOT_STATUSES)}."
            )
        self.execute(
            "UPDATE recommendation_snapshots SET status = ? WHERE snapshot_id = ?;",
            (status, snapshot_id),
        )

    def list_for_evaluation(self, user_id: str) -> list[RecommendationSnapshot]:
        """Return a user's ``pending`` and ``stale`` snapshots, oldest first."""
        rows = self.fetchall(
            """
            SELECT * FROM recommendation_snapshots
            WHERE user_id = ? AND status IN ('pending', 'stale')
            ORDER BY generated_at ASC, created_at ASC;
            """,
            (user_id,),
        )
        return [_row_to_snapshot(r) for r in rows]

    def list_for_user(self, user_id: str) -> list[RecommendationSnapshot]:
        rows = self.fetchall(
            """
            SELECT * FROM recommendation_snapshots
            WHERE user_id = ?
            ORDER BY generated_at DESC, created_at DESC;
            """,
            (user_id,),
        )
        return [_row_to_snapshot(r) for r in rows]

    def count_for_user(self, user_id: str) -> int:
        return int(
            self.fetch_scalar(
                "SELECT COUNT(*) FROM recommendation_snapshots WHERE user_id = ?;",
                (user_id,),
            )
        )

    def count_by_status(
        self, user_id: str, date_range: Optional[DateRange] = None
    ) -> dict[str, int]:
        """Return ``{"pending": n, "scored": n, "stale": n}`` for a user.

        Statuses with no snapshots are reported as zero.
        """
        where, params = date_range_clause(date_range, "generated_date")
        rows = self.fetchall(
            f"""
            SELECT status, COUNT(*) AS n FROM recommendation_snapshots
            WHERE user_id = ?{where}
            GROUP BY status;
            """,
            (user_id, *params),
        )
        counts = {status: 0 for status in sorted(VALID_SNAPSHOT_STATUSES)}
        for row in rows:
            counts[row["status"]] = int(row["n"])
        return counts

    def count_outcomes(self, user_id: str, query: OutcomeQuery) -> int:
        where, params = _outcome_filters(user_id, query)
        return int(
            self.fetch_scalar(
                f"SELECT COUNT(*) FROM recommendation_snapshots s WHERE {where};",
                tuple(params),
            )
        )

    def list_outcomes(self, user_id: str, query: OutcomeQuery) -> list[RecommendationSnapshot]:
        """Return one page of snapshots matching ``query``, newest first."""
        where, params = _outcome_filters(user_id, query)
        rows = self.fetchall(
            f"""
            SELECT s.* FROM recommendation_snapshots s
            WHERE {where}
            ORDER BY s.generated_at DESC, s.created_at DESC, s.snapshot_id DESC
            LIMIT ? OFFSET ?;
            """,
            (*params, query.limit, query.offset),
        )
        return [_row_to_snapshot(r) for r in rows]

    def list_snapshot_user_ids(self) -> list[str]:
        rows = self.fetchall(
            "SELECT DISTINCT user_id FROM recommendation_snapshots ORDER BY user_id;"
        )
        return [r["user_id"] for r in rows]

    def delete_for_user(self, user_id: str) -> int:
        """Delete all of a user's snapshots; evaluations cascade.

        Returns:
            Number of snapshots deleted.
        """
        # Explicit delete keeps this correct even with foreign_keys OFF
        self.execute(
            """
            DELETE FROM recommendation_evaluations
            WHERE snapshot_id IN (
                SELECT snapshot_id FROM recommendation_snapshots WHERE user_id = ?
            );
            """,
            (user_id,),
        )
        cursor = self.execute(
            "DELETE FROM recommendation_snapshots WHERE user_id = ?;", (user_id,)
        )
        return cursor.rowcount


# ── Helpers ────────────────────────────────────────────────────────────────────


def _outcome_filters(user_id: str, query: OutcomeQuery) -> tuple[str, list[Any]]:
    """Translate an ``OutcomeQuery`` into a WHERE clause over alias ``s``."""
    clauses = ["s.user_id = ?"]
    params: list[Any] = [user_id]

    if query.ticker:
        clauses.append("instr(s.ticker, ?) > 0")
        params.append(query.ticker.upper())

    if query.action:
        clauses.append("s.action = ?")
        params.append(query.action)

    date_sql, date_params = date_range_clause(query.date_range, column="s.generated_date")
    if date_sql:
        clauses.append(date_sql.removeprefix(" AND "))
        params.extend(date_params)

    if query.result in ("win", "loss"):
        clauses.append(
            """
            EXISTS (
                SELECT 1 FROM recommendation_evaluations e
                WHERE e.snapshot_id = s.snapshot_id
                  AND e.horizon_days = ?
                  AND e.data_quality = 'ok'
                  AND e.is_win = ?
            )
            """
        )
        params.extend([query.horizon, 1 if query.result == "win" else 0])
    elif query.result == "pending":
        clauses.append(
            """
            (
                NOT EXISTS (
                    SELECT 1 FROM recommendation_evaluations e
                    WHERE e.snapshot_id = s.snapshot_id AND e.horizon_days = ?
                )
                OR EXISTS (
                    SELECT 1 FROM recommendation_evaluations e
                    WHERE e.snapshot_id = s.snapshot_id
                      AND e.horizon_days = ?
                      AND (e.is_win IS NULL OR e.data_quality != 'ok')
                )
            )
            """
        )
        params.extend([query.horizon, query.horizon])

    return " AND ".join(c.strip() for c in clauses), params


def _row_to_snapshot(row: sqlite3.Row) -> RecommendationSnapshot:
    return RecommendationSnapshot(
        snapshot_id=row["snapshot_id"],
        user_id=row["user_id"],
        recommendation_id=row["recommendation_id"],
        holding_id=row["holding_id"],
        idea_id=row["idea_id"],
        ticker=row["ticker"],
        action=row["action"],
        confidence=row["confidence"],
        confidence_bucket=row["confidence_bucket"],
        entry_price=row["entry_price"],
        currency=row["currency"],
        risk_level=row["risk_level"],
        generated_at=parse_datetime(row["generated_at"]),
        generated_date=date.fromisoformat(row["generated_date"]),
        status=row["status"],
        created_at=parse_datetime(row["created_at"]) if row["created_at"] else None,
    )
