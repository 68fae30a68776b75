"""
Mock price provider backed by the product database.

Current prices come from the most recent idea for a ticker; history comes
from the ``price_history`` table. This is the default (``mock``) source in
development, where the product's own price refresher appends rows to
``price_history``.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Callable, Optional

from perf_proof.prices.base import PricePoint, PriceProvider, PriceProviderError
from perf_proof.utils.time_utils import parse_datetime, utcnow

logger = logging.getLogger(__name__)


class MockPriceProvider(PriceProvider):
    """Reads ``ideas.current_price`` and ``price_history`` from SQLite.

    Args:
        conn: Open connection to the product database.
        now_fn: Clock used for the history window; defaults to ``utcnow``.
    """

    name = "mock"

    def __init__(
        self,
        conn: sqlite3.Connection,
        now_fn: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.conn = conn
        self._now = now_fn or utcnow

    def get_current_price(self, ticker: str) -> float:
        try:
            row = self.conn.execute(
                """
                SELECT current_price FROM ideas
                WHERE ticker = ? AND current_price IS NOT NULL
                ORDER BY generated_date DESC, created_at DESC
                LIMIT 1;
                """,
                (ticker.upper(),),
            ).fetchone()
        except sqlite3.Error as exc:
            raise PriceProviderError(f"Price lookup failed for {ticker}: {exc}") from exc

        if row is None:
            raise PriceProviderError(f"No idea found for ticker: {ticker}")
        return float(row["current_price"])

    def get_price_history(self, ticker: str, days: int) -> list[PricePoint]:
        since = (self._now() - timedelta(days=days)).date().isoformat()
        try:
            rows = self.conn.execute(
                """
                SELECT price_date, close_price FROM price_history
                WHERE ticker = ? AND price_date >= ?
                ORDER BY price_date ASC;
                """,
                (ticker.upper(), since),
            ).fetchall()
        except sqlite3.Error as exc:
            raise PriceProviderError(f"History lookup failed for {ticker}: {exc}") from exc

        return [
            PricePoint(timestamp=parse_datetime(r["price_date"]), price=float(r["close_price"]))
            for r in rows
        ]
