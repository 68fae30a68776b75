"""
Backfill: snapshot recommendations that were never captured.

Acts only on a user's recommendations with zero snapshots, so re-running it
is harmless. The entry price is resolved in priority order:

  1. The related holding's last refreshed price (the recommendation's own
     ``holding_id``, else the user's holding in the same ticker).
  2. The most recent idea's quoted price for the ticker.
  3. A live quote from the price provider (failures are logged, not raised).

Recommendations with no positive price from any source are skipped with a
warning; they will be retried on the next run.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, dataclass
from typing import Optional

from perf_proof.config import PerformanceConfig
from perf_proof.db.repositories.source_repo import SourceRepository
from perf_proof.models.source import Holding, Idea, Recommendation
from perf_proof.performance.capture import capture_snapshot
from perf_proof.prices.base import PriceProvider, PriceProviderError
from perf_proof.utils.time_utils import normalize_date

logger = logging.getLogger(__name__)


@dataclass
class BackfillCounters:
    recommendations_seen: int = 0
    snapshots_created: int = 0
    skipped_no_price: int = 0

    def add(self, other: "BackfillCounters") -> None:
        for name, value in asdict(other).items():
            setattr(self, name, getattr(self, name) + value)

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _positive(value: Optional[float]) -> Optional[float]:
    return value if value is not None and value > 0 else None


def resolve_entry_price(
    rec: Recommendation,
    holding: Optional[Holding],
    idea: Optional[Idea],
    provider: PriceProvider,
) -> Optional[float]:
    """Pick the entry price for a recommendation; ``None`` if nothing positive is found."""
    price = _positive(holding.current_price if holding else None)
    if price is None:
        price = _positive(idea.current_price if idea else None)
    if price is None:
        try:
            price = _positive(provider.get_current_price(rec.ticker))
        except PriceProviderError as exc:
            logger.warning("Live price lookup failed for %s: %s", rec.ticker, exc)
            price = None
    return price


def backfill_user_snapshots(
    conn: sqlite3.Connection,
    user_id: str,
    provider: PriceProvider,
    config: PerformanceConfig,
) -> BackfillCounters:
    """Create snapshots for a user's un-snapshotted recommendations.

    Args:
        conn: Open connection; the caller commits.
        user_id: User whose recommendations to backfill.
        provider: Live price fallback.
        config: Supplies the default currency.

    Returns:
        ``BackfillCounters`` for this user.
    """
    counters = BackfillCounters()
    source = SourceRepository(conn)

    recommendations = source.recommendations_without_snapshots(user_id)
    if not recommendations:
        return counters

    holdings = source.holdings_for_user(user_id)
    holding_by_id = {h.holding_id: h for h in holdings}
    holding_by_ticker: dict[str, Holding] = {}
    for h in holdings:
        holding_by_ticker.setdefault(h.ticker, h)
    ideas_by_ticker = source.latest_ideas_by_ticker()

    for rec in recommendations:
        counters.recommendations_seen += 1
        holding = (
            holding_by_id.get(rec.holding_id) if rec.holding_id else None
        ) or holding_by_ticker.get(rec.ticker)
        idea = ideas_by_ticker.get(rec.ticker)

        entry_price = resolve_entry_price(rec, holding, idea, provider)

        idea_id: Optional[str] = idea.idea_id if idea else None
        if idea_id is None and holding is not None and holding.idea_id:
            # Holdings may point at ideas that have since been deleted
            if source.get_idea(holding.idea_id) is not None:
                idea_id = holding.idea_id

        snapshot = capture_snapshot(
            conn,
            user_id=user_id,
            ticker=rec.ticker,
            action=rec.action,
            confidence=rec.confidence,
            entry_price=entry_price,
            generated_at=rec.created_at,
            generated_date=normalize_date(rec.generated_at),
            currency=(idea.currency if idea and idea.currency else config.default_currency),
            risk_level=idea.risk_level if idea else None,
            recommendation_id=rec.recommendation_id,
            holding_id=rec.holding_id or (holding.holding_id if holding else None),
            idea_id=idea_id,
        )
        if snapshot is None:
            counters.skipped_no_price += 1
        else:
            counters.snapshots_created += 1

    logger.info(
        "Backfill for user %s: %d seen, %d created, %d skipped (no price).",
        user_id,
        counters.recommendations_seen,
        counters.snapshots_created,
        counters.skipped_no_price,
    )
    return counters
