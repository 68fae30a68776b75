"""
Snapshot capture: freeze a recommendation at the moment it is made.
"""

from __future__ import annotations

import logging
import math
import sqlite3
import uuid
from datetime import date, datetime
from typing import Optional

from perf_proof.db.repositories.snapshot_repo import SnapshotRepository
from perf_proof.models.snapshot import RecommendationSnapshot
from perf_proof.performance.outcomes import get_confidence_bucket
from perf_proof.utils.time_utils import normalize_date

logger = logging.getLogger(__name__)


def capture_snapshot(
    conn: sqlite3.Connection,
    *,
    user_id: str,
    ticker: str,
    action: str,
    confidence: float,
    entry_price: Optional[float],
    generated_at: datetime,
    generated_date: Optional[date] = None,
    currency: str = "EUR",
    risk_level: Optional[str] = None,
    recommendation_id: Optional[str] = None,
    holding_id: Optional[str] = None,
    idea_id: Optional[str] = None,
) -> Optional[RecommendationSnapshot]:
    """Persist a ``pending`` snapshot, or skip when there is no usable entry price.

    Confidence is clamped to [0, 100] before storage and bucketing.

    Args:
        conn: Open connection; the caller owns the transaction.
        user_id: Owner of the recommendation.
        ticker: Instrument symbol (stored upper case).
        action: ``buy``, ``sell`` or ``hold``.
        confidence: Model confidence, nominally 0 to 100.
        entry_price: Price at generation time.
        generated_at: Exact generation timestamp.
        generated_date: Calendar day horizons count from; defaults to the UTC
            day of ``generated_at``.
        currency: Quote currency of ``entry_price``.
        risk_level: Risk label of the underlying idea.
        recommendation_id: Source recommendation, if any.
        holding_id: Related holding, if any.
        idea_id: Related idea, if any.

    Returns:
        The stored snapshot, or ``None`` if ``entry_price`` is missing,
        non-finite or not positive.
    """
    if entry_price is None or not math.isfinite(entry_price) or entry_price <= 0:
        logger.warning(
            "Skipping snapshot for %s (%s): no positive entry price (got %r).",
            ticker,
            recommendation_id or "ad hoc",
            entry_price,
        )
        return None

    bounded = max(0.0, min(100.0, float(confidence)))
    snapshot = RecommendationSnapshot(
        snapshot_id=uuid.uuid4().hex,
        user_id=user_id,
        recommendation_id=recommendation_id,
        holding_id=holding_id,
        idea_id=idea_id,
        ticker=ticker,
        action=action,
        confidence=bounded,
        confidence_bucket=get_confidence_bucket(bounded),
        entry_price=entry_price,
        currency=currency,
        risk_level=risk_level,
        generated_at=generated_at,
        generated_date=generated_date or normalize_date(generated_at),
        status="pending",
    )
    SnapshotRepository(conn).insert(snapshot)
    logger.debug("Captured snapshot %s for %s %s.", snapshot.snapshot_id, action, snapshot.ticker)
    return snapshot
