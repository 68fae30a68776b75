"""
Repositories for ``run_metadata`` and ``job_status``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Optional

from perf_proof.db.repositories.base import BaseRepository
from perf_proof.models.meta import JobStatus, RunMetadata
from perf_proof.utils.time_utils import parse_datetime

logger = logging.getLogger(__name__)


class RunMetadataRepository(BaseRepository):
    """Read/write access to ``run_metadata``."""

    def insert_run(self, run: RunMetadata) -> int:
        """Insert a new run metadata record and return its ``run_id``."""
        self.execute(
            """
            INSERT INTO run_metadata (
                run_slug, pipeline_stage, status, user_id, config_snapshot,
                rows_processed, summary, error_message, started_at, finished_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                run.run_slug,
                run.pipeline_stage,
                run.status,
                run.user_id,
                json.dumps(run.config_snapshot, default=str),
                run.rows_processed,
                json.dumps(run.summary) if run.summary is not None else None,
                run.error_message,
                run.started_at.isoformat(),
                run.finished_at.isoformat() if run.finished_at else None,
            ),
        )
        return self.last_insert_rowid()

    def update_run(self, run: RunMetadata) -> None:
        """Update the mutable fields of an existing run record.

        Raises:
            ValueError: If ``run.run_id`` is ``None``.
        """
        if run.run_id is None:
            raise ValueError("Cannot update RunMetadata without a run_id.")
        self.execute(
            """
            UPDATE run_metadata SET
                status         = ?,
                rows_processed = ?,
                summary        = ?,
                error_message  = ?,
                finished_at    = ?
            WHERE run_id = ?;
            """,
            (
                run.status,
                run.rows_processed,
                json.dumps(run.summary) if run.summary is not None else None,
                run.error_message,
                run.finished_at.isoformat() if run.finished_at else None,
                run.run_id,
            ),
        )

    def get_run_by_slug(self, run_slug: str) -> Optional[RunMetadata]:
        row = self.fetchone("SELECT * FROM run_metadata WHERE run_slug = ?;", (run_slug,))
        return _row_to_run(row) if row else None

    def get_recent_runs(
        self, pipeline_stage: Optional[str] = None, limit: int = 20
    ) -> list[RunMetadata]:
        """Fetch recent run records, most recent first, optionally filtered by stage."""
        if pipeline_stage:
            rows = self.fetchall(
                """
                SELECT * FROM run_metadata
                WHERE pipeline_stage = ?
                ORDER BY started_at DESC, run_id DESC LIMIT ?;
                """,
                (pipeline_stage, limit),
            )
        else:
            rows = self.fetchall(
                "SELECT * FROM run_metadata ORDER BY started_at DESC, run_id DESC LIMIT ?;",
                (limit,),
            )
        return [_row_to_run(r) for r in rows]


class JobStatusRepository(BaseRepository):
    """Read/write access to ``job_status`` (created by migration 0002)."""

    def record(
        self,
        job_name: str,
        ran_at: datetime,
        success: bool,
        summary: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """Upsert the outcome of a job run.

        On failure ``last_success_at`` and ``last_summary`` keep their
        previous values; on success ``last_error`` is cleared.
        """
        success_at = ran_at.isoformat() if success else None
        self.execute(
            """
            INSERT INTO job_status (
                job_name, last_run_at, last_success_at, last_error, last_summary, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(job_name) DO UPDATE SET
                last_run_at     = excluded.last_run_at,
                last_success_at = COALESCE(excluded.last_success_at, job_status.last_success_at),
                last_error      = excluded.last_error,
                last_summary    = COALESCE(excluded.last_summary, job_status.last_summary),
                updated_at      = excluded.updated_at;
            """,
            (
                job_name,
                ran_at.isoformat(),
                success_at,
                None if success else (error or "Unknown error"),
                json.dumps(summary) if summary is not None else None,
                ran_at.isoformat(),
            ),
        )

    def get(self, job_name: str) -> Optional[JobStatus]:
        row = self.fetchone("SELECT * FROM job_status WHERE job_name = ?;", (job_name,))
        if row is None:
            return None
        return JobStatus(
            job_name=row["job_name"],
            last_run_at=parse_datetime(row["last_run_at"]) if row["last_run_at"] else None,
            last_success_at=(
                parse_datetime(row["last_success_at"]) if row["last_success_at"] else None
            ),
            last_error=row["last_error"],
            last_summary=json.loads(row["last_summary"]) if row["last_summary"] else None,
        )


def _row_to_run(row: sqlite3.Row) -> RunMetadata:
    return RunMetadata(
        run_id=row["run_id"],
        run_slug=row["run_slug"],
        pipeline_stage=row["pipeline_stage"],
        status=row["status"],
        user_id=row["user_id"],
        config_snapshot=json.loads(row["config_snapshot"]),
        rows_processed=row["rows_processed"],
        summary=json.loads(row["summary"]) if row["summary"] else None,
        error_message=row["error_message"],
        started_at=parse_datetime(row["started_at"]),
        finished_at=parse_datetime(row["finished_at"]) if row["finished_at"] else None,
    )
