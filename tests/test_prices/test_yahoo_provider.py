"""Tests for the HTTP price provider, using ``httpx.MockTransport``."""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from perf_proof.performance.price_history import PriceHistoryCache
from perf_proof.prices.base import PriceProviderError
from perf_proof.prices.yahoo_provider import YahooPriceProvider
from tests.conftest import NOW

_T1 = int(datetime(2025, 3, 17, 21, 0, tzinfo=timezone.utc).timestamp())
_T2 = int(datetime(2025, 3, 18, 21, 0, tzinfo=timezone.utc).timestamp())
_T3 = int(datetime(2025, 3, 19, 21, 0, tzinfo=timezone.utc).timestamp())


def _chart(stamps, closes, price=41.2):
    return {
        "chart": {
            "result": [
                {
                    "meta": {"regularMarketPrice": price},
                    "timestamp": stamps,
                    "indicators": {"quote": [{"close": closes}]},
                }
            ],
            "error": None,
        }
    }


def _provider(handler) -> YahooPriceProvider:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return YahooPriceProvider(
        base_url="https://prices.test", client=client, now_fn=lambda: NOW
    )


class TestHistory:
    def test_parses_points_and_skips_nulls(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_chart([_T2, _T1, _T3], [40.5, 40.0, None]))

        points = _provider(handler).get_price_history("acme", 30)
        assert [p.price for p in points] == [40.0, 40.5]
        assert points[0].timestamp == datetime(2025, 3, 17, 21, 0, tzinfo=timezone.utc)
        assert seen[0].url.path == "/v8/finance/chart/ACME"
        assert seen[0].url.params["interval"] == "1d"

    def test_404_is_unknown_ticker(self):
        provider = _provider(lambda request: httpx.Response(404))
        assert provider.get_price_history("NONE", 30) == []

    def test_chart_not_found_error_is_unknown_ticker(self):
        body = {"chart": {"result": None, "error": {"code": "Not Found", "description": "x"}}}
        provider = _provider(lambda request: httpx.Response(200, json=body))
        assert provider.get_price_history("NONE", 30) == []

    def test_other_chart_error_is_transient(self):
        body = {"chart": {"result": None, "error": {"code": "Bad Request"}}}
        provider = _provider(lambda request: httpx.Response(200, json=body))
        with pytest.raises(PriceProviderError):
            provider.get_price_history("ACME", 30)

    def test_server_error_is_transient(self):
        provider = _provider(lambda request: httpx.Response(503))
        with pytest.raises(PriceProviderError, match="503"):
            provider.get_price_history("ACME", 30)

    def test_transport_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(PriceProviderError):
            _provider(handler).get_price_history("ACME", 30)

    def test_unreadable_payload_is_transient(self):
        provider = _provider(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(PriceProviderError):
            provider.get_price_history("ACME", 30)

    @pytest.mark.parametrize(
        "body",
        [
            ["oops"],
            {"chart": "down"},
            {"chart": {"result": "nope", "error": None}},
            {"chart": {"result": [42], "error": None}},
            {"chart": {"result": None, "error": "upstream exploded"}},
        ],
    )
    def test_malformed_payload_is_transient(self, body):
        provider = _provider(lambda request: httpx.Response(200, json=body))
        with pytest.raises(PriceProviderError):
            provider.get_price_history("ACME", 30)

    def test_non_numeric_close_is_transient(self):
        body = _chart([_T1, _T2], [40.0, "n/a"])
        provider = _provider(lambda request: httpx.Response(200, json=body))
        with pytest.raises(PriceProviderError, match="Malformed"):
            provider.get_price_history("ACME", 30)

    def test_malformed_failure_cached_once_per_run(self):
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(200, json=["oops"])

        cache = PriceHistoryCache(_provider(handler))
        first = cache.resolve_exit_price("ACME", NOW)
        second = cache.resolve_exit_price("ACME", NOW)

        assert first.transient and second.transient
        assert len(calls) == 1
        assert "ACME" in cache.failed_tickers


class TestCurrentPrice:
    def test_reads_market_price(self):
        provider = _provider(lambda request: httpx.Response(200, json=_chart([], [], 12.5)))
        assert provider.get_current_price("ACME") == pytest.approx(12.5)

    def test_missing_price_raises(self):
        provider = _provider(lambda request: httpx.Response(404))
        with pytest.raises(PriceProviderError):
            provider.get_current_price("NONE")

    def test_malformed_quote_is_transient(self):
        body = _chart([], [], "n/a")
        provider = _provider(lambda request: httpx.Response(200, json=body))
        with pytest.raises(PriceProviderError):
            provider.get_current_price("ACME")


class TestClose:
    def test_injected_client_left_open(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(404)))
        YahooPriceProvider(client=client).close()
        assert not client.is_closed
        client.close()
