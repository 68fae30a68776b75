"""Tests for horizon evaluation, status folding and per-snapshot isolation."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from perf_proof.db.repositories.evaluation_repo import EvaluationRepository
from perf_proof.db.repositories.snapshot_repo import SnapshotRepository
from perf_proof.models.snapshot import RecommendationEvaluation
from perf_proof.performance.evaluator import (
    SnapshotEvaluator,
    evaluate_user_snapshots,
    fold_status,
)
from perf_proof.performance.price_history import PriceHistoryCache
from tests.conftest import NOW, USER_ID, FakePriceProvider

OLD_DAY = date(2025, 2, 10)  # every horizon (1, 7, 30) is due at NOW


def _closes(price: float, day: date = OLD_DAY) -> dict[date, float]:
    """Same close on each horizon target day of a snapshot generated on ``day``."""
    return {day + timedelta(days=h): price for h in (1, 7, 30)}


def _evaluate(conn, provider, config, now=NOW):
    return evaluate_user_snapshots(conn, USER_ID, config, PriceHistoryCache(provider), now=now)


def _ev(horizon: int, quality: str = "ok") -> RecommendationEvaluation:
    kwargs = {"exit_price": 1.0, "return_pct": 0.0, "is_win": False} if quality == "ok" else {}
    return RecommendationEvaluation(
        snapshot_id="s",
        horizon_days=horizon,
        target_date=date(2025, 1, 1),
        evaluated_at=NOW,
        data_quality=quality,
        **kwargs,
    )


class TestFoldStatus:
    def test_pending_until_every_horizon_has_a_row(self):
        assert fold_status({1: _ev(1), 7: _ev(7)}, [1, 7, 30]) == "pending"

    def test_scored_when_all_ok(self):
        assert fold_status({1: _ev(1), 7: _ev(7), 30: _ev(30)}, [1, 7, 30]) == "scored"

    def test_stale_when_any_missing(self):
        rows = {1: _ev(1), 7: _ev(7, "missing"), 30: _ev(30)}
        assert fold_status(rows, [1, 7, 30]) == "stale"

    def test_no_rows_is_pending(self):
        assert fold_status({}, [1, 7, 30]) == "pending"


class TestScenarioReturns:
    @pytest.mark.parametrize(
        "action,exit_price,expected_return,expected_win",
        [
            ("buy", 110.0, 10.0, True),
            ("sell", 110.0, -10.0, False),
            ("hold", 101.0, 1.0, True),
        ],
    )
    def test_scenarios(
        self, in_memory_db, perf_config, make_snapshot,
        action, exit_price, expected_return, expected_win,
    ):
        snap = make_snapshot(generated_date=OLD_DAY, action=action, entry_price=100.0)
        provider = FakePriceProvider(closes={"ACME": _closes(exit_price)})

        counters = _evaluate(in_memory_db, provider, perf_config)

        rows = EvaluationRepository(in_memory_db).for_snapshot(snap.snapshot_id)
        assert sorted(rows) == [1, 7, 30]
        for row in rows.values():
            assert row.data_quality == "ok"
            assert row.exit_price == exit_price
            assert row.return_pct == pytest.approx(expected_return)
            assert row.is_win is expected_win
        assert SnapshotRepository(in_memory_db).get(snap.snapshot_id).status == "scored"
        assert counters.evaluations_recorded == 3
        assert counters.scored_snapshots == 1

    def test_target_date_is_generated_date_plus_horizon(
        self, in_memory_db, perf_config, make_snapshot
    ):
        snap = make_snapshot(generated_date=OLD_DAY)
        _evaluate(in_memory_db, FakePriceProvider(closes={"ACME": _closes(105.0)}), perf_config)
        rows = EvaluationRepository(in_memory_db).for_snapshot(snap.snapshot_id)
        assert rows[7].target_date == date(2025, 2, 17)
        assert rows[30].target_date == date(2025, 3, 12)


class TestHorizonTiming:
    def test_unreached_horizon_left_untouched(self, in_memory_db, perf_config, make_snapshot):
        day = date(2025, 3, 1)
        snap = make_snapshot(generated_date=day)
        provider = FakePriceProvider(closes={"ACME": _closes(105.0, day)})

        _evaluate(in_memory_db, provider, perf_config)

        rows = EvaluationRepository(in_memory_db).for_snapshot(snap.snapshot_id)
        assert sorted(rows) == [1, 7]
        assert SnapshotRepository(in_memory_db).get(snap.snapshot_id).status == "pending"

    def test_exit_price_is_first_point_on_or_after_target(
        self, in_memory_db, perf_config, make_snapshot
    ):
        snap = make_snapshot(generated_date=OLD_DAY)
        provider = FakePriceProvider(
            closes={"ACME": {
                date(2025, 2, 10): 50.0,   # before the 1d target
                date(2025, 2, 13): 120.0,  # first point after it
                date(2025, 2, 14): 130.0,
            }}
        )
        _evaluate(in_memory_db, provider, perf_config)
        row = EvaluationRepository(in_memory_db).get(snap.snapshot_id, 1)
        assert row.exit_price == 120.0

    def test_non_positive_first_point_is_not_skipped(
        self, in_memory_db, perf_config, make_snapshot
    ):
        snap = make_snapshot(generated_date=OLD_DAY)
        provider = FakePriceProvider(
            closes={"ACME": {date(2025, 2, 11): 0.0, date(2025, 2, 12): 105.0}}
        )
        _evaluate(in_memory_db, provider, perf_config)
        row = EvaluationRepository(in_memory_db).get(snap.snapshot_id, 1)
        assert row.data_quality == "missing"
        assert row.exit_price is None

    def test_non_positive_first_point_within_grace_stays_pending(
        self, in_memory_db, perf_config, make_snapshot
    ):
        day = date(2025, 3, 18)  # 1d target is 36h before NOW
        snap = make_snapshot(generated_date=day)
        provider = FakePriceProvider(
            closes={"ACME": {date(2025, 3, 19): -1.0, date(2025, 3, 20): 105.0}}
        )
        counters = _evaluate(in_memory_db, provider, perf_config)
        assert EvaluationRepository(in_memory_db).for_snapshot(snap.snapshot_id) == {}
        assert counters.pending_snapshots == 1

    def test_naive_clock_is_treated_as_utc(self, in_memory_db, perf_config, make_snapshot):
        snap = make_snapshot(generated_date=OLD_DAY)
        provider = FakePriceProvider(closes={"ACME": _closes(110.0)})

        counters = _evaluate(in_memory_db, provider, perf_config, now=NOW.replace(tzinfo=None))

        assert counters.errors == 0
        assert counters.evaluations_recorded == 3
        assert SnapshotRepository(in_memory_db).get(snap.snapshot_id).status == "scored"


class TestMissingData:
    def test_missing_after_grace_marks_stale(self, in_memory_db, perf_config, make_snapshot):
        snap = make_snapshot(generated_date=OLD_DAY)

        counters = _evaluate(in_memory_db, FakePriceProvider(), perf_config)

        rows = EvaluationRepository(in_memory_db).for_snapshot(snap.snapshot_id)
        assert {r.data_quality for r in rows.values()} == {"missing"}
        assert all(r.exit_price is None and r.is_win is None for r in rows.values())
        assert counters.missing_marked == 3
        assert SnapshotRepository(in_memory_db).get(snap.snapshot_id).status == "stale"

    def test_within_grace_writes_nothing(self, in_memory_db, perf_config, make_snapshot):
        snap = make_snapshot(generated_date=date(2025, 3, 18))  # 1d target is 36h ago

        counters = _evaluate(in_memory_db, FakePriceProvider(), perf_config)

        assert EvaluationRepository(in_memory_db).for_snapshot(snap.snapshot_id) == {}
        assert counters.missing_marked == 0
        assert counters.pending_snapshots == 1

    def test_transient_failure_keeps_horizon_pending(
        self, in_memory_db, perf_config, make_snapshot
    ):
        first = make_snapshot(generated_date=OLD_DAY)
        make_snapshot(generated_date=OLD_DAY + timedelta(days=1))
        provider = FakePriceProvider(failing={"ACME"})
        cache = PriceHistoryCache(provider)

        counters = SnapshotEvaluator(in_memory_db, perf_config, cache, now=NOW).evaluate_user(
            USER_ID
        )

        assert EvaluationRepository(in_memory_db).for_snapshot(first.snapshot_id) == {}
        assert counters.missing_marked == 0
        assert counters.errors == 0
        assert counters.pending_snapshots == 2
        assert provider.history_calls == ["ACME"]
        assert "ACME" in cache.failed_tickers

    def test_stale_snapshot_scored_when_price_arrives(
        self, in_memory_db, perf_config, make_snapshot
    ):
        snap = make_snapshot(generated_date=OLD_DAY)
        _evaluate(in_memory_db, FakePriceProvider(), perf_config)
        assert SnapshotRepository(in_memory_db).get(snap.snapshot_id).status == "stale"

        later = NOW + timedelta(days=1)
        counters = _evaluate(
            in_memory_db, FakePriceProvider(closes={"ACME": _closes(110.0)}), perf_config, later
        )

        rows = EvaluationRepository(in_memory_db).for_snapshot(snap.snapshot_id)
        assert {r.data_quality for r in rows.values()} == {"ok"}
        assert counters.evaluations_recorded == 3
        assert SnapshotRepository(in_memory_db).get(snap.snapshot_id).status == "scored"


class TestIdempotence:
    def test_second_run_writes_nothing(self, in_memory_db, perf_config, make_snapshot):
        make_snapshot(generated_date=OLD_DAY)
        make_snapshot(generated_date=date(2025, 3, 1), ticker="BETA")
        make_snapshot(generated_date=OLD_DAY, ticker="GONE")
        provider = FakePriceProvider(
            closes={"ACME": _closes(110.0), "BETA": _closes(50.0, date(2025, 3, 1))}
        )

        _evaluate(in_memory_db, provider, perf_config)
        before = in_memory_db.execute(
            "SELECT * FROM recommendation_evaluations ORDER BY evaluation_id"
        ).fetchall()
        counters = _evaluate(in_memory_db, provider, perf_config)
        after = in_memory_db.execute(
            "SELECT * FROM recommendation_evaluations ORDER BY evaluation_id"
        ).fetchall()

        assert [tuple(r) for r in before] == [tuple(r) for r in after]
        assert counters.evaluations_recorded == 0
        assert counters.missing_marked == 0

    def test_ok_rows_never_rewritten(self, in_memory_db, perf_config, make_snapshot):
        snap = make_snapshot(generated_date=date(2025, 3, 1))
        _evaluate(
            in_memory_db,
            FakePriceProvider(closes={"ACME": _closes(110.0, date(2025, 3, 1))}),
            perf_config,
        )

        # Prices restated later; the stored 1d outcome must not move
        _evaluate(
            in_memory_db,
            FakePriceProvider(closes={"ACME": _closes(90.0, date(2025, 3, 1))}),
            perf_config,
            NOW + timedelta(days=1),
        )
        row = EvaluationRepository(in_memory_db).get(snap.snapshot_id, 1)
        assert row.exit_price == 110.0
        assert row.is_win is True


class TestIsolation:
    def test_failing_snapshot_is_rolled_back_and_counted(
        self, in_memory_db, perf_config, make_snapshot
    ):
        good = make_snapshot(generated_date=OLD_DAY)
        make_snapshot(generated_date=OLD_DAY, ticker="BOOM")

        class ExplodingEvaluator(SnapshotEvaluator):
            def evaluate_snapshot(self, snapshot, existing):
                if snapshot.ticker == "BOOM":
                    raise RuntimeError("boom")
                return super().evaluate_snapshot(snapshot, existing)

        provider = FakePriceProvider(closes={"ACME": _closes(110.0)})
        counters = ExplodingEvaluator(
            in_memory_db, perf_config, PriceHistoryCache(provider), now=NOW
        ).evaluate_user(USER_ID)

        assert counters.errors == 1
        assert counters.snapshots_checked == 2
        assert counters.scored_snapshots == 1
        assert SnapshotRepository(in_memory_db).get(good.snapshot_id).status == "scored"

    def test_only_the_requested_user_is_evaluated(
        self, in_memory_db, perf_config, make_snapshot, add_user
    ):
        add_user("user-2")
        other = make_snapshot(generated_date=OLD_DAY, user_id="user-2")
        provider = FakePriceProvider(closes={"ACME": _closes(110.0)})

        counters = _evaluate(in_memory_db, provider, perf_config)

        assert counters.snapshots_checked == 0
        assert EvaluationRepository(in_memory_db).for_snapshot(other.snapshot_id) == {}
