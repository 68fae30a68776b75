"""
Build the configured ``PriceProvider``.

``prices.source`` selects the implementation:

  mock       product database (``ideas`` + ``price_history``)
  synthetic  deterministic demo series anchored on known idea prices
  yahoo      live HTTP chart API
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Callable, Optional

from perf_proof.config import AppConfig
from perf_proof.db.repositories.source_repo import SourceRepository
from perf_proof.prices.base import PriceProvider
from perf_proof.prices.db_provider import MockPriceProvider
from perf_proof.prices.synthetic_provider import SyntheticPriceProvider
from perf_proof.prices.yahoo_provider import YahooPriceProvider

logger = logging.getLogger(__name__)

# Demo tickers: (reference price, currency, risk level)
FALLBACK_TICKERS: dict[str, tuple[float, str, str]] = {
    "NRDZ": (42.3, "EUR", "interesting"),
    "SLRQ": (28.5, "EUR", "interesting"),
    "FRML": (15.8, "EUR", "safe"),
    "CRTX": (89.2, "EUR", "spicy"),
    "TMLK": (34.6, "EUR", "interesting"),
}


def get_price_provider(
    config: AppConfig,
    conn: sqlite3.Connection,
    now_fn: Optional[Callable[[], datetime]] = None,
) -> PriceProvider:
    """Return a provider for ``config.prices.source``.

    Args:
        config: Application configuration.
        conn: Open database connection (used by ``mock`` and to anchor ``synthetic``).
        now_fn: Clock bounding the history window; defaults to ``utcnow``.

    Raises:
        ValueError: If the source is unknown (already prevented by config validation).
    """
    source = config.prices.source
    if source == "mock":
        provider: PriceProvider = MockPriceProvider(conn, now_fn=now_fn)
    elif source == "synthetic":
        anchors = {ticker: price for ticker, (price, _, _) in FALLBACK_TICKERS.items()}
        for ticker, idea in SourceRepository(conn).latest_ideas_by_ticker().items():
            if idea.current_price and idea.current_price > 0:
                anchors[ticker] = idea.current_price
        provider = SyntheticPriceProvider(anchors=anchors, now_fn=now_fn)
    elif source == "yahoo":
        provider = YahooPriceProvider(
            base_url=config.prices.base_url,
            timeout_seconds=config.prices.timeout_seconds,
            user_agent=config.prices.user_agent,
            now_fn=now_fn,
        )
    else:
        raise ValueError(f"Unknown price source '{source}'.")

    logger.debug("Using price provider '%s'.", provider.name)
    return provider
