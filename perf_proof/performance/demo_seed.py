"""
Deterministic demo history for synthetic-price environments.

``ensure_demo_history`` gives a user enough past snapshots for the
performance views to be meaningful in a demo. It only writes ``pending``
snapshots; the regular evaluator then scores them through the same
``SyntheticPriceProvider`` that priced their entries, so demo outcomes go
through exactly the production evaluation path.

Layout: for each day offset in ``DAY_OFFSETS`` (1 to 45 days ago) up to
three tickers are picked round-robin from a pool built from the user's
holdings, recent ideas and ``FALLBACK_TICKERS``. Action and confidence are
drawn from ``deterministic_unit`` seeded on user, ticker, day and slot, so
reseeding reproduces the same history.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from perf_proof.config import AppConfig
from perf_proof.db.repositories.snapshot_repo import SnapshotRepository
from perf_proof.db.repositories.source_repo import SourceRepository
from perf_proof.performance.capture import capture_snapshot
from perf_proof.prices.factory import FALLBACK_TICKERS
from perf_proof.prices.synthetic_provider import SyntheticPriceProvider, deterministic_unit
from perf_proof.utils.time_utils import start_of_day, utcnow

logger = logging.getLogger(__name__)

DAY_OFFSETS = (1, 2, 3, 5, 7, 10, 14, 18, 22, 26, 30, 34, 38, 45)
TICKERS_PER_DAY = 3


class DemoSeedUnavailableError(RuntimeError):
    """Raised when demo seeding is requested outside synthetic-price mode."""


@dataclass(frozen=True)
class PoolEntry:
    ticker: str
    idea_id: Optional[str]
    currency: str
    risk_level: Optional[str]


def pick_action(seed: str) -> str:
    value = deterministic_unit(f"{seed}:action")
    if value < 0.34:
        return "buy"
    if value < 0.67:
        return "sell"
    return "hold"


def pick_confidence(seed: str) -> int:
    """Confidence between 55 and 90 inclusive."""
    return 55 + int(deterministic_unit(f"{seed}:confidence") * 36)


def _ticker_pool(conn: sqlite3.Connection, user_id: str, default_currency: str) -> list[PoolEntry]:
    source = SourceRepository(conn)
    pool: dict[str, PoolEntry] = {}

    for holding in source.holdings_for_user(user_id)[:20]:
        idea = source.get_idea(holding.idea_id) if holding.idea_id else None
        pool.setdefault(
            holding.ticker,
            PoolEntry(
                ticker=holding.ticker,
                idea_id=None,
                currency=(idea.currency if idea and idea.currency else default_currency),
                risk_level=idea.risk_level if idea else None,
            ),
        )

    for idea in source.recent_ideas(limit=40):
        pool.setdefault(
            idea.ticker,
            PoolEntry(
                ticker=idea.ticker,
                idea_id=idea.idea_id,
                currency=idea.currency or default_currency,
                risk_level=idea.risk_level,
            ),
        )

    for ticker, (_, currency, risk_level) in FALLBACK_TICKERS.items():
        pool.setdefault(
            ticker,
            PoolEntry(ticker=ticker, idea_id=None, currency=currency, risk_level=risk_level),
        )

    return list(pool.values())


def ensure_demo_history(
    conn: sqlite3.Connection,
    user_id: str,
    config: AppConfig,
    provider: SyntheticPriceProvider,
    force: bool = False,
    min_snapshots: Optional[int] = None,
    now: Optional[datetime] = None,
) -> int:
    """Seed demo snapshots for ``user_id`` if they have fewer than ``min_snapshots``.

    Args:
        conn: Open connection; the caller commits.
        user_id: User to seed.
        config: Application config; ``prices.source`` must be ``"synthetic"``.
        provider: Synthetic provider used to price entries.
        force: Delete the user's existing snapshots (and evaluations) first.
        min_snapshots: Target count; defaults to ``config.demo.min_snapshots``.
        now: Clock; defaults to the current UTC time.

    Returns:
        Number of snapshots created.

    Raises:
        DemoSeedUnavailableError: If prices are not synthetic.
    """
    if config.prices.source != "synthetic":
        raise DemoSeedUnavailableError(
            f"Demo seeding requires prices.source = 'synthetic' (got '{config.prices.source}')."
        )

    snapshots = SnapshotRepository(conn)
    if force:
        deleted = snapshots.delete_for_user(user_id)
        logger.info("Reseed: deleted %d existing snapshots for %s.", deleted, user_id)

    target = config.demo.min_snapshots if min_snapshots is None else min_snapshots
    current = snapshots.count_for_user(user_id)
    if current >= target:
        logger.debug("User %s already has %d snapshots (>= %d).", user_id, current, target)
        return 0

    pool = _ticker_pool(conn, user_id, config.performance.default_currency)
    now = now or utcnow()
    created = 0

    for offset in DAY_OFFSETS:
        day = (now - timedelta(days=offset)).date()
        for slot in range(min(TICKERS_PER_DAY, len(pool))):
            entry = pool[(offset + slot) % len(pool)]
            seed = f"{user_id}:{entry.ticker}:{day.isoformat()}:{slot}"
            confidence = pick_confidence(seed)
            snapshot = capture_snapshot(
                conn,
                user_id=user_id,
                ticker=entry.ticker,
                action=pick_action(seed),
                confidence=confidence,
                entry_price=provider.price_on(entry.ticker, day),
                generated_at=start_of_day(day),
                generated_date=day,
                currency=entry.currency,
                risk_level=entry.risk_level,
                idea_id=entry.idea_id,
            )
            if snapshot is not None:
                created += 1

    logger.info("Seeded %d demo snapshots for %s.", created, user_id)
    return created
