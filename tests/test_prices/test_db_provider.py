"""Tests for the database-backed (mock) price provider."""

from __future__ import annotations

import pytest

from perf_proof.prices.base import PriceProviderError
from perf_proof.prices.db_provider import MockPriceProvider
from tests.conftest import NOW


def _add_close(conn, ticker: str, price_date: str, price: float) -> None:
    conn.execute(
        "INSERT INTO price_history (ticker, price_date, close_price) VALUES (?, ?, ?);",
        (ticker, price_date, price),
    )
    conn.commit()


class TestMockPriceProvider:
    def test_current_price_from_latest_idea(self, in_memory_db, add_idea):
        add_idea("ACME", 90.0, generated_date="2025-03-01")
        add_idea("ACME", 95.0, generated_date="2025-03-10")
        provider = MockPriceProvider(in_memory_db, now_fn=lambda: NOW)
        assert provider.get_current_price("acme") == pytest.approx(95.0)

    def test_current_price_without_idea_raises(self, in_memory_db):
        provider = MockPriceProvider(in_memory_db, now_fn=lambda: NOW)
        with pytest.raises(PriceProviderError):
            provider.get_current_price("NONE")

    def test_history_respects_window(self, in_memory_db):
        _add_close(in_memory_db, "ACME", "2024-12-01", 80.0)
        _add_close(in_memory_db, "ACME", "2025-03-18", 101.0)
        _add_close(in_memory_db, "ACME", "2025-03-10", 99.0)
        provider = MockPriceProvider(in_memory_db, now_fn=lambda: NOW)

        points = provider.get_price_history("ACME", 30)
        assert [p.price for p in points] == [99.0, 101.0]
        assert points[0].timestamp.tzinfo is not None

    def test_unknown_ticker_history_is_empty(self, in_memory_db):
        provider = MockPriceProvider(in_memory_db, now_fn=lambda: NOW)
        assert provider.get_price_history("NONE", 30) == []

    def test_storage_error_is_transient(self, in_memory_db):
        provider = MockPriceProvider(in_memory_db, now_fn=lambda: NOW)
        in_memory_db.execute("DROP TABLE price_history;")
        with pytest.raises(PriceProviderError):
            provider.get_price_history("ACME", 30)
