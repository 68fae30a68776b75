"""
Per-run price history cache and exit-price resolution.

A ``PriceHistoryCache`` is created for one evaluation run and discarded
afterwards. Each ticker's history is fetched at most once per run; a failed
fetch is remembered too, so one slow or broken ticker costs a single timeout
per run rather than one per snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from perf_proof.prices.base import PricePoint, PriceProvider, PriceProviderError
from perf_proof.utils.time_utils import ensure_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExitPriceLookup:
    """Result of resolving an exit price.

    Attributes:
        price: Price of the first point at or after the target when it is
            positive, else ``None``.
        transient: ``True`` when the history could not be fetched; the
            absence of a price then says nothing about the data.
    """

    price: Optional[float]
    transient: bool = False


class PriceHistoryCache:
    """Memoises ``provider.get_price_history`` per ticker for one run.

    Args:
        provider: Source of price history.
        lookback_days: History window requested from the provider.
    """

    def __init__(self, provider: PriceProvider, lookback_days: int = 180) -> None:
        self.provider = provider
        self.lookback_days = lookback_days
        self._history: dict[str, list[PricePoint]] = {}
        self._failed: dict[str, str] = {}

    def history(self, ticker: str) -> Optional[list[PricePoint]]:
        """Ascending price history for ``ticker``; ``None`` if the fetch failed."""
        ticker = ticker.upper()
        if ticker in self._failed:
            return None
        if ticker not in self._history:
            try:
                points = self.provider.get_price_history(ticker, self.lookback_days)
            except PriceProviderError as exc:
                logger.warning("Price history unavailable for %s: %s", ticker, exc)
                self._failed[ticker] = str(exc)
                return None
            self._history[ticker] = sorted(points, key=lambda p: ensure_utc(p.timestamp))
        return self._history[ticker]

    def resolve_exit_price(self, ticker: str, target: datetime) -> ExitPriceLookup:
        """Price of the first point at or after ``target``, if that price is positive."""
        points = self.history(ticker)
        if points is None:
            return ExitPriceLookup(price=None, transient=True)

        target = ensure_utc(target)
        for point in points:
            if ensure_utc(point.timestamp) >= target:
                # Only the first point at or after the target counts
                if point.price > 0:
                    return ExitPriceLookup(price=point.price)
                return ExitPriceLookup(price=None)
        return ExitPriceLookup(price=None)

    @property
    def fetched_tickers(self) -> int:
        return len(self._history)

    @property
    def failed_tickers(self) -> dict[str, str]:
        return dict(self._failed)
