"""
Deterministic synthetic price series for demo environments.

Prices are a pure function of ``(ticker, calendar day)``: the same inputs
always give the same price, across processes and machines, so demo history
can be re-evaluated and still land on the same outcomes.

Series shape
------------
  price(day) = anchor × (1 + 0.12·sin(day_index / 9 + phase)) × (1 + noise)

``anchor`` is the ticker's reference price (supplied, or derived from the
ticker hash), ``phase`` is derived from the ticker, and ``noise`` is a
±2.5 % daily jitter seeded from ``"{ticker}:{YYYY-MM-DD}"``. Weekends have
no observation, and roughly 4 % of weekdays are dropped to mimic feed gaps.

Randomness uses 32-bit FNV-1a over the seed string (``deterministic_unit``),
never ``random``, so there is no global state to seed.
"""

from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Mapping, Optional

from perf_proof.prices.base import PricePoint, PriceProvider
from perf_proof.utils.time_utils import utcnow

_FNV_OFFSET = 2166136261
_FNV_PRIME = 16777619
_EPOCH = date(2020, 1, 1)
_CLOSE_TIME = time(21, 0, tzinfo=timezone.utc)
GAP_PROBABILITY = 0.04


def deterministic_unit(seed: str) -> float:
    """Map ``seed`` to a float in [0, 1) with four decimal places of resolution.

    32-bit FNV-1a over the UTF-16 code units of the string, reduced mod 10000.
    """
    h = _FNV_OFFSET
    encoded = seed.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        h ^= encoded[i] | (encoded[i + 1] << 8)
        h = (h * _FNV_PRIME) & 0xFFFFFFFF
    return (h % 10000) / 10000


class SyntheticPriceProvider(PriceProvider):
    """Price provider producing a reproducible series per ticker.

    Args:
        anchors: Reference prices by ticker; unknown tickers get a
            hash-derived anchor between 10 and 100.
        now_fn: Clock bounding the series; no points are produced after
            ``now_fn()``. Defaults to ``utcnow``.
    """

    name = "synthetic"

    def __init__(
        self,
        anchors: Optional[Mapping[str, float]] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._anchors = {k.upper(): float(v) for k, v in (anchors or {}).items() if v and v > 0}
        self._now = now_fn or utcnow

    # ── Series ────────────────────────────────────────────────────────────────

    def anchor(self, ticker: str) -> float:
        ticker = ticker.upper()
        if ticker in self._anchors:
            return self._anchors[ticker]
        return round(10.0 + deterministic_unit(f"{ticker}:anchor") * 90.0, 2)

    def price_on(self, ticker: str, day: date) -> float:
        """Synthetic close for ``ticker`` on ``day``, ignoring weekends and gaps."""
        ticker = ticker.upper()
        phase = deterministic_unit(f"{ticker}:phase") * 2 * math.pi
        index = (day - _EPOCH).days
        wave = 1.0 + 0.12 * math.sin(index / 9.0 + phase)
        noise = (deterministic_unit(f"{ticker}:{day.isoformat()}") - 0.5) * 0.05
        return round(self.anchor(ticker) * wave * (1.0 + noise), 2)

    def has_observation(self, ticker: str, day: date) -> bool:
        if day.weekday() >= 5:
            return False
        return deterministic_unit(f"{ticker.upper()}:{day.isoformat()}:gap") >= GAP_PROBABILITY

    # ── PriceProvider ─────────────────────────────────────────────────────────

    def get_price_history(self, ticker: str, days: int) -> list[PricePoint]:
        now = self._now()
        today = now.date()
        points: list[PricePoint] = []
        for offset in range(days, -1, -1):
            day = today - timedelta(days=offset)
            stamp = datetime.combine(day, _CLOSE_TIME)
            if stamp > now or not self.has_observation(ticker, day):
                continue
            points.append(PricePoint(timestamp=stamp, price=self.price_on(ticker, day)))
        return points

    def get_current_price(self, ticker: str) -> float:
        return self.price_on(ticker, self._now().date())
