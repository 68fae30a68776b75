"""Tests for the snapshot, evaluation, run metadata and job status repositories."""

from __future__ import annotations

import sqlite3
import uuid
from datetime import date, datetime, timedelta, timezone

import pytest

from perf_proof.db.repositories.evaluation_repo import EvaluationRepository
from perf_proof.db.repositories.run_repo import JobStatusRepository, RunMetadataRepository
from perf_proof.db.repositories.snapshot_repo import SnapshotRepository
from perf_proof.db.repositories.source_repo import SourceRepository
from perf_proof.models.meta import RunMetadata
from perf_proof.models.performance import DateRange
from perf_proof.models.snapshot import RecommendationEvaluation
from tests.conftest import NOW, USER_ID


def _ok(snapshot_id: str, horizon: int, return_pct: float, exit_price: float = 110.0):
    return RecommendationEvaluation(
        snapshot_id=snapshot_id,
        horizon_days=horizon,
        target_date=date(2025, 3, 1) + timedelta(days=horizon),
        evaluated_at=NOW,
        exit_price=exit_price,
        return_pct=return_pct,
        is_win=return_pct > 0,
        data_quality="ok",
    )


def _missing(snapshot_id: str, horizon: int):
    return RecommendationEvaluation(
        snapshot_id=snapshot_id,
        horizon_days=horizon,
        target_date=date(2025, 3, 1) + timedelta(days=horizon),
        evaluated_at=NOW,
        data_quality="missing",
    )


class TestSnapshotRepository:
    def test_insert_and_get_roundtrip(self, in_memory_db, make_snapshot):
        snap = make_snapshot(ticker="acme", confidence=64.0)
        loaded = SnapshotRepository(in_memory_db).get(snap.snapshot_id)
        assert loaded is not None
        assert loaded.ticker == "ACME"
        assert loaded.confidence_bucket == "60-69"
        assert loaded.generated_date == date(2025, 3, 1)
        assert loaded.generated_at.tzinfo is not None
        assert loaded.created_at is not None

    def test_get_unknown_returns_none(self, in_memory_db):
        assert SnapshotRepository(in_memory_db).get("nope") is None

    def test_duplicate_id_rejected(self, in_memory_db, make_snapshot):
        snap = make_snapshot()
        with pytest.raises(sqlite3.IntegrityError):
            SnapshotRepository(in_memory_db).insert(snap)

    def test_update_status(self, in_memory_db, make_snapshot):
        snap = make_snapshot()
        repo = SnapshotRepository(in_memory_db)
        repo.update_status(snap.snapshot_id, "scored")
        assert repo.get(snap.snapshot_id).status == "scored"

    def test_update_status_rejects_unknown(self, in_memory_db, make_snapshot):
        snap = make_snapshot()
        with pytest.raises(ValueError, match="Unknown snapshot status"):
            SnapshotRepository(in_memory_db).update_status(snap.snapshot_id, "done")

    def test_list_for_evaluation_skips_scored(self, in_memory_db, make_snapshot):
        pending = make_snapshot(generated_date=date(2025, 3, 2))
        stale = make_snapshot(generated_date=date(2025, 3, 1), status="stale")
        make_snapshot(status="scored")
        listed = SnapshotRepository(in_memory_db).list_for_evaluation(USER_ID)
        assert [s.snapshot_id for s in listed] == [stale.snapshot_id, pending.snapshot_id]

    def test_count_by_status_reports_zeros(self, in_memory_db, make_snapshot):
        make_snapshot()
        counts = SnapshotRepository(in_memory_db).count_by_status(USER_ID)
        assert counts == {"pending": 1, "scored": 0, "stale": 0}

    def test_count_by_status_date_range(self, in_memory_db, make_snapshot):
        make_snapshot(generated_date=date(2025, 2, 1))
        make_snapshot(generated_date=date(2025, 3, 1))
        counts = SnapshotRepository(in_memory_db).count_by_status(
            USER_ID, DateRange(date_from=date(2025, 3, 1))
        )
        assert counts["pending"] == 1

    def test_delete_for_user_removes_evaluations(self, in_memory_db, make_snapshot):
        snap = make_snapshot()
        EvaluationRepository(in_memory_db).upsert(_ok(snap.snapshot_id, 1, 5.0))
        deleted = SnapshotRepository(in_memory_db).delete_for_user(USER_ID)
        assert deleted == 1
        count = in_memory_db.execute(
            "SELECT COUNT(*) FROM recommendation_evaluations;"
        ).fetchone()[0]
        assert count == 0

    def test_delete_for_user_leaves_other_users(self, in_memory_db, make_snapshot, add_user):
        add_user("user-2")
        make_snapshot()
        make_snapshot(user_id="user-2")
        SnapshotRepository(in_memory_db).delete_for_user(USER_ID)
        assert SnapshotRepository(in_memory_db).count_for_user("user-2") == 1


class TestEvaluationRepository:
    def test_insert_and_get(self, in_memory_db, make_snapshot):
        snap = make_snapshot()
        repo = EvaluationRepository(in_memory_db)
        assert repo.upsert(_ok(snap.snapshot_id, 7, 4.5)) is True
        loaded = repo.get(snap.snapshot_id, 7)
        assert loaded.return_pct == pytest.approx(4.5)
        assert loaded.is_win is True
        assert loaded.data_quality == "ok"

    def test_ok_row_is_never_overwritten(self, in_memory_db, make_snapshot):
        snap = make_snapshot()
        repo = EvaluationRepository(in_memory_db)
        repo.upsert(_ok(snap.snapshot_id, 7, 4.5))
        assert repo.upsert(_ok(snap.snapshot_id, 7, -9.0, exit_price=91.0)) is False
        assert repo.upsert(_missing(snap.snapshot_id, 7)) is False
        assert repo.get(snap.snapshot_id, 7).return_pct == pytest.approx(4.5)

    def test_missing_row_can_be_upgraded(self, in_memory_db, make_snapshot):
        snap = make_snapshot()
        repo = EvaluationRepository(in_memory_db)
        repo.upsert(_missing(snap.snapshot_id, 7))
        assert repo.upsert(_ok(snap.snapshot_id, 7, 2.0)) is True
        assert repo.get(snap.snapshot_id, 7).data_quality == "ok"

    def test_one_row_per_horizon(self, in_memory_db, make_snapshot):
        snap = make_snapshot()
        repo = EvaluationRepository(in_memory_db)
        repo.upsert(_missing(snap.snapshot_id, 7))
        repo.upsert(_missing(snap.snapshot_id, 7))
        repo.upsert(_ok(snap.snapshot_id, 1, 1.0))
        assert sorted(repo.for_snapshot(snap.snapshot_id)) == [1, 7]

    def test_for_snapshots_filters_horizons(self, in_memory_db, make_snapshot):
        a, b = make_snapshot(), make_snapshot()
        repo = EvaluationRepository(in_memory_db)
        for snap in (a, b):
            repo.upsert(_ok(snap.snapshot_id, 1, 1.0))
            repo.upsert(_ok(snap.snapshot_id, 7, 2.0))
        loaded = repo.for_snapshots([a.snapshot_id, b.snapshot_id], horizons=[7])
        assert set(loaded) == {a.snapshot_id, b.snapshot_id}
        assert all(list(v) == [7] for v in loaded.values())

    def test_for_snapshots_empty_input(self, in_memory_db):
        assert EvaluationRepository(in_memory_db).for_snapshots([]) == {}

    def test_list_outcomes_ok_only(self, in_memory_db, make_snapshot):
        a, b = make_snapshot(), make_snapshot(ticker="BETA")
        repo = EvaluationRepository(in_memory_db)
        repo.upsert(_ok(a.snapshot_id, 7, 3.0))
        repo.upsert(_missing(b.snapshot_id, 7))
        assert len(repo.list_outcomes(USER_ID, [7])) == 2
        ok = repo.list_outcomes(USER_ID, [7], ok_only=True)
        assert [o.ticker for o in ok] == ["ACME"]
        assert repo.list_outcomes(USER_ID, []) == []


class TestRunMetadataRepository:
    def _run(self, stage: str = "evaluate") -> RunMetadata:
        return RunMetadata(
            run_slug=str(uuid.uuid4()),
            pipeline_stage=stage,
            user_id=USER_ID,
            config_snapshot={"performance": {"horizons_days": [1, 7]}},
            started_at=NOW,
        )

    def test_insert_and_update(self, in_memory_db):
        repo = RunMetadataRepository(in_memory_db)
        run = self._run()
        run.run_id = repo.insert_run(run)
        run.status = "success"
        run.rows_processed = 3
        run.summary = {"evaluations_recorded": 3}
        run.finished_at = NOW + timedelta(seconds=2)
        repo.update_run(run)

        loaded = repo.get_run_by_slug(run.run_slug)
        assert loaded.status == "success"
        assert loaded.summary == {"evaluations_recorded": 3}
        assert loaded.config_snapshot["performance"]["horizons_days"] == [1, 7]

    def test_update_without_id_raises(self, in_memory_db):
        with pytest.raises(ValueError):
            RunMetadataRepository(in_memory_db).update_run(self._run())

    def test_recent_runs_filter_by_stage(self, in_memory_db):
        repo = RunMetadataRepository(in_memory_db)
        repo.insert_run(self._run("backfill"))
        repo.insert_run(self._run("evaluate"))
        assert [r.pipeline_stage for r in repo.get_recent_runs("backfill")] == ["backfill"]
        assert len(repo.get_recent_runs()) == 2


class TestJobStatusRepository:
    def test_unknown_job_is_none(self, in_memory_db):
        assert JobStatusRepository(in_memory_db).get("performance-evaluation") is None

    def test_failure_keeps_last_success(self, in_memory_db):
        repo = JobStatusRepository(in_memory_db)
        first = datetime(2025, 3, 19, 6, 0, tzinfo=timezone.utc)
        repo.record("performance-evaluation", ran_at=first, success=True,
                     summary={"users_processed": 2})
        repo.record("performance-evaluation", ran_at=NOW, success=False, error="boom")

        status = repo.get("performance-evaluation")
        assert status.last_run_at == NOW
        assert status.last_success_at == first
        assert status.last_error == "boom"
        assert status.last_summary == {"users_processed": 2}

    def test_success_clears_error(self, in_memory_db):
        repo = JobStatusRepository(in_memory_db)
        repo.record("performance-evaluation", ran_at=NOW - timedelta(days=1), success=False)
        repo.record("performance-evaluation", ran_at=NOW, success=True, summary={"x": 1})
        status = repo.get("performance-evaluation")
        assert status.last_error is None
        assert status.last_success_at == NOW


class TestSourceRepository:
    def test_user_listing(self, in_memory_db, add_user):
        add_user("user-0")
        repo = SourceRepository(in_memory_db)
        assert repo.list_user_ids() == ["user-0", USER_ID]
        assert repo.user_exists(USER_ID)
        assert not repo.user_exists("ghost")

    def test_recommendations_without_snapshots(self, in_memory_db, add_recommendation):
        rec_id = add_recommendation("ACME")
        pending = SourceRepository(in_memory_db).recommendations_without_snapshots(USER_ID)
        assert [r.recommendation_id for r in pending] == [rec_id]
