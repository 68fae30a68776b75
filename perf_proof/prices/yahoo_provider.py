"""
Live price provider over the Yahoo Finance chart endpoint.

Endpoint::

    GET {base_url}/v8/finance/chart/{ticker}?period1=..&period2=..&interval=1d

Response (relevant parts)::

    {"chart": {"result": [{"meta": {"regularMarketPrice": 41.2, ...},
                           "timestamp": [1736841600, ...],
                           "indicators": {"quote": [{"close": [40.9, null, ...]}]}}],
               "error": null}}

Every request carries an explicit ``timeout`` so a hung upstream can never
stall a scheduled evaluation run. Mapping of failures onto the provider
contract:

  - 404, or a ``chart.error`` payload with code ``Not Found``: unknown ticker,
    history is ``[]``.
  - Transport errors, timeouts, other non-2xx, unparsable or malformed JSON:
    ``PriceProviderError`` (transient; the evaluator retries next run).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx

from perf_proof.prices.base import PricePoint, PriceProvider, PriceProviderError
from perf_proof.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

_CHART_PATH = "/v8/finance/chart/{ticker}"


class YahooPriceProvider(PriceProvider):
    """HTTP price provider.

    Args:
        base_url: API host, e.g. ``"https://query1.finance.yahoo.com"``.
        timeout_seconds: Per-request timeout.
        user_agent: ``User-Agent`` header value.
        client: Optional pre-built ``httpx.Client`` (tests pass one with a
            ``MockTransport``). The provider closes only clients it created.
        now_fn: Clock for the history window; defaults to ``utcnow``.
    """

    name = "yahoo"

    def __init__(
        self,
        base_url: str = "https://query1.finance.yahoo.com",
        timeout_seconds: float = 10.0,
        user_agent: str = "perf-proof/0.1",
        client: Optional[httpx.Client] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._owns_client = client is None
        self._client = client or httpx.Client(headers={"User-Agent": user_agent})
        self._now = now_fn or utcnow

    def get_price_history(self, ticker: str, days: int) -> list[PricePoint]:
        end = self._now()
        start = end - timedelta(days=days)
        data = self._get_chart(
            ticker,
            {
                "period1": int(start.timestamp()),
                "period2": int(end.timestamp()),
                "interval": "1d",
            },
        )
        if data is None:
            return []

        try:
            stamps: list[Any] = data.get("timestamp") or []
            quotes = (data.get("indicators") or {}).get("quote") or [{}]
            closes: list[Any] = quotes[0].get("close") or []
            points = [
                PricePoint(
                    timestamp=datetime.fromtimestamp(ts, tz=timezone.utc), price=float(close)
                )
                for ts, close in zip(stamps, closes)
                if ts is not None and close is not None
            ]
        except (AttributeError, LookupError, TypeError, ValueError, OverflowError, OSError) as exc:
            raise PriceProviderError(f"Malformed price history for {ticker}: {exc}") from exc

        points.sort(key=lambda p: p.timestamp)
        logger.debug("Fetched %d price points for %s.", len(points), ticker)
        return points

    def get_current_price(self, ticker: str) -> float:
        data = self._get_chart(ticker, {"range": "1d", "interval": "1d"})
        meta = (data or {}).get("meta")
        price = meta.get("regularMarketPrice") if isinstance(meta, dict) else None
        if not price:
            raise PriceProviderError(f"No price data for ticker: {ticker}")
        try:
            return float(price)
        except (TypeError, ValueError) as exc:
            raise PriceProviderError(f"Malformed price for {ticker}: {price!r}") from exc

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _get_chart(self, ticker: str, params: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Fetch and unwrap ``chart.result[0]``; ``None`` means unknown ticker."""
        url = self.base_url + _CHART_PATH.format(ticker=ticker.upper())
        try:
            resp = self._client.get(url, params=params, timeout=self.timeout_seconds)
        except httpx.HTTPError as exc:
            raise PriceProviderError(f"Price request for {ticker} failed: {exc}") from exc

        if resp.status_code == 404:
            return None
        try:
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as exc:
            raise PriceProviderError(
                f"Price API returned {exc.response.status_code} for {ticker}."
            ) from exc
        except ValueError as exc:
            raise PriceProviderError(f"Unreadable price payload for {ticker}: {exc}") from exc

        chart = payload.get("chart") if isinstance(payload, dict) else None
        if not isinstance(chart, dict):
            raise PriceProviderError(f"Unexpected price payload shape for {ticker}.")

        error = chart.get("error")
        if error:
            code = error.get("code", "") if isinstance(error, dict) else error
            if str(code).lower() == "not found":
                return None
            raise PriceProviderError(f"Price API error for {ticker}: {error}")

        results = chart.get("result") or []
        if not isinstance(results, list):
            raise PriceProviderError(f"Unexpected price payload shape for {ticker}.")
        if not results:
            return None
        if not isinstance(results[0], dict):
            raise PriceProviderError(f"Unexpected price payload shape for {ticker}.")
        return results[0]
