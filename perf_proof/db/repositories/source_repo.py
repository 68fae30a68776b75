"""
Read-only repository over product-owned tables.

The engine reads ``users``, ``recommendations``, ``holdings`` and ``ideas``
to discover work and resolve entry prices. It never writes them.
"""

from __future__ import annotations

import sqlite3
from datetime import date
from typing import Optional

from perf_proof.db.repositories.base import BaseRepository
from perf_proof.models.source import Holding, Idea, Recommendation
from perf_proof.utils.time_utils import parse_datetime


class SourceRepository(BaseRepository):
    """Queries against the recommendation, holding and idea tables."""

    def list_user_ids(self) -> list[str]:
        rows = self.fetchall("SELECT user_id FROM users ORDER BY user_id;")
        return [r["user_id"] for r in rows]

    def user_exists(self, user_id: str) -> bool:
        return self.fetchone("SELECT 1 FROM users WHERE user_id = ?;", (user_id,)) is not None

    def recommendations_without_snapshots(self, user_id: str) -> list[Recommendation]:
        """Return a user's recommendations that have never been snapshotted, oldest first."""
        rows = self.fetchall(
            """
            SELECT r.* FROM recommendations r
            WHERE r.user_id = ?
              AND NOT EXISTS (
                  SELECT 1 FROM recommendation_snapshots s
                  WHERE s.recommendation_id = r.recommendation_id
              )
            ORDER BY r.created_at ASC, r.recommendation_id ASC;
            """,
            (user_id,),
        )
        return [_row_to_recommendation(r) for r in rows]

    def holdings_for_user(self, user_id: str) -> list[Holding]:
        rows = self.fetchall(
            "SELECT * FROM holdings WHERE user_id = ? ORDER BY created_at ASC;",
            (user_id,),
        )
        return [_row_to_holding(r) for r in rows]

    def latest_ideas_by_ticker(self, limit: int = 100) -> dict[str, Idea]:
        """Return the most recent idea per ticker among the newest ``limit`` ideas."""
        rows = self.fetchall(
            """
            SELECT * FROM ideas
            ORDER BY generated_date DESC, created_at DESC
            LIMIT ?;
            """,
            (limit,),
        )
        latest: dict[str, Idea] = {}
        for row in rows:
            idea = _row_to_idea(row)
            latest.setdefault(idea.ticker, idea)
        return latest

    def get_idea(self, idea_id: str) -> Optional[Idea]:
        row = self.fetchone("SELECT * FROM ideas WHERE idea_id = ?;", (idea_id,))
        return _row_to_idea(row) if row else None

    def recent_ideas(self, limit: int = 10) -> list[Idea]:
        rows = self.fetchall(
            "SELECT * FROM ideas ORDER BY generated_date DESC, created_at DESC LIMIT ?;",
            (limit,),
        )
        return [_row_to_idea(r) for r in rows]


# ── Helpers ────────────────────────────────────────────────────────────────────


def _row_to_recommendation(row: sqlite3.Row) -> Recommendation:
    return Recommendation(
        recommendation_id=row["recommendation_id"],
        user_id=row["user_id"],
        holding_id=row["holding_id"],
        ticker=row["ticker"],
        action=row["action"],
        confidence=row["confidence"],
        reasoning=row["reasoning"],
        generated_at=parse_datetime(row["generated_at"]),
        created_at=parse_datetime(row["created_at"]),
    )


def _row_to_holding(row: sqlite3.Row) -> Holding:
    return Holding(
        holding_id=row["holding_id"],
        user_id=row["user_id"],
        idea_id=row["idea_id"],
        ticker=row["ticker"],
        shares=row["shares"],
        avg_price=row["avg_price"],
        current_price=row["current_price"],
    )


def _row_to_idea(row: sqlite3.Row) -> Idea:
    return Idea(
        idea_id=row["idea_id"],
        user_id=row["user_id"],
        ticker=row["ticker"],
        name=row["name"],
        current_price=row["current_price"],
        currency=row["currency"],
        risk_level=row["risk_level"],
        generated_date=date.fromisoformat(row["generated_date"][:10]),
    )
