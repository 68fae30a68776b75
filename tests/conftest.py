"""
Shared pytest fixtures for the perf_proof test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema and migrations applied, plus the user ``user-1``.
  - ``FakePriceProvider``: a scripted ``PriceProvider`` for evaluator tests.
  - Factories for snapshots and product rows (``make_snapshot``,
    ``add_recommendation``, ``add_holding``, ``add_idea``).
  - ``NOW``: the fixed evaluation clock used throughout (Thursday 2025-03-20 12:00 UTC).
"""

from __future__ import annotations

import sqlite3
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Generator, Iterable, Optional

import pytest

from perf_proof.config import AppConfig, PerformanceConfig, PriceConfig
from perf_proof.db.migrations import initialize_database
from perf_proof.db.repositories.snapshot_repo import SnapshotRepository
from perf_proof.models.snapshot import RecommendationSnapshot
from perf_proof.performance.outcomes import get_confidence_bucket
from perf_proof.prices.base import PricePoint, PriceProvider, PriceProviderError
from perf_proof.utils.time_utils import start_of_day

NOW = datetime(2025, 3, 20, 12, 0, 0, tzinfo=timezone.utc)
USER_ID = "user-1"


# ── Price provider double ─────────────────────────────────────────────────────

class FakePriceProvider(PriceProvider):
    """Scripted provider: per-ticker daily closes, current quotes and failures.

    ``closes`` maps ticker -> {date: price}; each close is stamped at 21:00 UTC.
    Tickers in ``failing`` raise ``PriceProviderError``. ``history_calls``
    records every history request.
    """

    name = "fake"

    def __init__(
        self,
        closes: Optional[dict[str, dict[date, float]]] = None,
        current: Optional[dict[str, float]] = None,
        failing: Iterable[str] = (),
    ) -> None:
        self.closes = closes or {}
        self.current = current or {}
        self.failing = set(failing)
        self.history_calls: list[str] = []
        self.closed = False

    def set_close(self, ticker: str, day: date, price: float) -> None:
        self.closes.setdefault(ticker, {})[day] = price

    def get_price_history(self, ticker: str, days: int) -> list[PricePoint]:
        self.history_calls.append(ticker)
        if ticker in self.failing:
            raise PriceProviderError(f"timeout fetching {ticker}")
        return [
            PricePoint(
                timestamp=datetime.combine(day, datetime.min.time(), tzinfo=timezone.utc)
                + timedelta(hours=21),
                price=price,
            )
            for day, price in sorted(self.closes.get(ticker, {}).items())
        ]

    def get_current_price(self, ticker: str) -> float:
        if ticker in self.failing or ticker not in self.current:
            raise PriceProviderError(f"no quote for {ticker}")
        return self.current[ticker]

    def close(self) -> None:
        self.closed = True


# ── Database fixture ──────────────────────────────────────────────────────────

def _insert_user(conn: sqlite3.Connection, user_id: str) -> None:
    conn.execute(
        "INSERT OR IGNORE INTO users (user_id, email) VALUES (?, ?);",
        (user_id, f"{user_id}@example.com"),
    )


@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with schema, migrations and ``user-1``.

    Foreign key enforcement is ON. Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    initialize_database(conn)
    _insert_user(conn, USER_ID)
    conn.commit()
    yield conn
    conn.close()


@pytest.fixture
def add_user(in_memory_db) -> Callable[[str], str]:
    def _add(user_id: str) -> str:
        _insert_user(in_memory_db, user_id)
        in_memory_db.commit()
        return user_id

    return _add


# ── Config fixtures ───────────────────────────────────────────────────────────

@pytest.fixture
def perf_config() -> PerformanceConfig:
    return PerformanceConfig()


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig()


@pytest.fixture
def synthetic_config() -> AppConfig:
    return AppConfig(prices=PriceConfig(source="synthetic"))


# ── Factories ─────────────────────────────────────────────────────────────────

@pytest.fixture
def make_snapshot(in_memory_db) -> Callable[..., RecommendationSnapshot]:
    """Insert a snapshot; defaults to a buy of ACME at 100.0 on 2025-03-01."""

    def _make(
        generated_date: date = date(2025, 3, 1),
        ticker: str = "ACME",
        action: str = "buy",
        entry_price: float = 100.0,
        confidence: float = 70.0,
        user_id: str = USER_ID,
        risk_level: Optional[str] = "safe",
        status: str = "pending",
        generated_at: Optional[datetime] = None,
    ) -> RecommendationSnapshot:
        snapshot = RecommendationSnapshot(
            snapshot_id=uuid.uuid4().hex,
            user_id=user_id,
            ticker=ticker,
            action=action,
            confidence=confidence,
            confidence_bucket=get_confidence_bucket(confidence),
            entry_price=entry_price,
            risk_level=risk_level,
            generated_at=generated_at or start_of_day(generated_date) + timedelta(hours=9),
            generated_date=generated_date,
            status=status,
        )
        SnapshotRepository(in_memory_db).insert(snapshot)
        in_memory_db.commit()
        return snapshot

    return _make


@pytest.fixture
def add_idea(in_memory_db) -> Callable[..., str]:
    def _add(
        ticker: str,
        current_price: Optional[float],
        generated_date: str = "2025-03-01",
        risk_level: Optional[str] = "interesting",
        currency: Optional[str] = "EUR",
        idea_id: Optional[str] = None,
    ) -> str:
        idea_id = idea_id or f"idea-{uuid.uuid4().hex[:8]}"
        in_memory_db.execute(
            """
            INSERT INTO ideas (idea_id, user_id, ticker, name, current_price, currency,
                               risk_level, generated_date)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (idea_id, USER_ID, ticker, f"{ticker} Corp", current_price, currency,
             risk_level, generated_date),
        )
        in_memory_db.commit()
        return idea_id

    return _add


@pytest.fixture
def add_holding(in_memory_db) -> Callable[..., str]:
    def _add(
        ticker: str,
        current_price: Optional[float],
        user_id: str = USER_ID,
        idea_id: Optional[str] = None,
        holding_id: Optional[str] = None,
    ) -> str:
        holding_id = holding_id or f"hold-{uuid.uuid4().hex[:8]}"
        in_memory_db.execute(
            """
            INSERT INTO holdings (holding_id, user_id, idea_id, ticker, shares,
                                  avg_price, current_price)
            VALUES (?, ?, ?, ?, ?, ?, ?);
            """,
            (holding_id, user_id, idea_id, ticker, 10, current_price, current_price),
        )
        in_memory_db.commit()
        return holding_id

    return _add


@pytest.fixture
def add_recommendation(in_memory_db) -> Callable[..., str]:
    def _add(
        ticker: str,
        action: str = "buy",
        confidence: float = 72.0,
        user_id: str = USER_ID,
        holding_id: Optional[str] = None,
        generated_at: str = "2025-03-01T09:00:00Z",
        recommendation_id: Optional[str] = None,
    ) -> str:
        recommendation_id = recommendation_id or f"rec-{uuid.uuid4().hex[:8]}"
        in_memory_db.execute(
            """
            INSERT INTO recommendations (recommendation_id, user_id, holding_id, ticker,
                                         action, confidence, reasoning, generated_at,
                                         created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (recommendation_id, user_id, holding_id, ticker, action, confidence,
             "test", generated_at, generated_at),
        )
        in_memory_db.commit()
        return recommendation_id

    return _add
