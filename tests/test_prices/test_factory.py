"""Tests for price provider selection."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from perf_proof.config import AppConfig, PriceConfig
from perf_proof.pipeline.orchestrator import EvaluationOrchestrator
from perf_proof.prices.db_provider import MockPriceProvider
from perf_proof.prices.factory import FALLBACK_TICKERS, get_price_provider
from perf_proof.prices.synthetic_provider import SyntheticPriceProvider
from perf_proof.prices.yahoo_provider import YahooPriceProvider
from perf_proof.utils.time_utils import fixed_clock


class TestGetPriceProvider:
    def test_default_is_mock(self, in_memory_db, app_config):
        assert isinstance(get_price_provider(app_config, in_memory_db), MockPriceProvider)

    def test_yahoo(self, in_memory_db):
        config = AppConfig(prices=PriceConfig(source="yahoo", timeout_seconds=3.0))
        provider = get_price_provider(config, in_memory_db)
        try:
            assert isinstance(provider, YahooPriceProvider)
            assert provider.timeout_seconds == 3.0
        finally:
            provider.close()

    def test_synthetic_anchors_on_idea_prices(self, in_memory_db, add_idea, synthetic_config):
        add_idea("ACME", 77.0)
        provider = get_price_provider(synthetic_config, in_memory_db)
        assert isinstance(provider, SyntheticPriceProvider)
        assert provider.anchor("ACME") == pytest.approx(77.0)
        assert provider.anchor("NRDZ") == pytest.approx(FALLBACK_TICKERS["NRDZ"][0])

    def test_source_is_case_insensitive(self):
        assert PriceConfig(source="Synthetic").source == "synthetic"

    def test_unknown_source_rejected(self):
        with pytest.raises(ValueError):
            PriceConfig(source="bloomberg")


class TestRunClock:
    def test_mock_history_window_follows_fixed_clock(self, in_memory_db, app_config):
        in_memory_db.execute(
            "INSERT INTO price_history (ticker, price_date, close_price) VALUES (?, ?, ?);",
            ("ACME", "2020-01-02", 12.0),
        )
        in_memory_db.commit()
        now = datetime(2020, 1, 10, tzinfo=timezone.utc)

        provider = get_price_provider(app_config, in_memory_db, now_fn=fixed_clock(now))

        assert [p.price for p in provider.get_price_history("ACME", 30)] == [12.0]

    def test_orchestrator_hands_its_clock_to_the_provider(self, in_memory_db, synthetic_config):
        now = datetime(2020, 1, 10, 12, 0)
        orchestrator = EvaluationOrchestrator(synthetic_config, in_memory_db, now=now)
        try:
            points = orchestrator.provider.get_price_history("ACME", 10)
        finally:
            orchestrator.provider.close()

        assert points
        assert max(p.timestamp for p in points) <= datetime(2020, 1, 10, 12, 0, tzinfo=timezone.utc)

    def test_no_clock_means_none(self):
        assert fixed_clock(None) is None
