"""
Run metadata and job status: the audit trail of evaluation runs.

``RunMetadata`` is written once per pipeline stage execution. It records a
``config_snapshot`` (full AppConfig as a dict) so a run's thresholds and
horizons can be recovered later, plus a ``summary`` of the stage's counters.

``RunMetadata`` is NOT frozen: its ``status``, ``rows_processed``,
``summary``, ``error_message`` and ``finished_at`` fields are updated as the
stage executes.

``JobStatus`` is the per-job heartbeat written by scheduled (``"all"``) runs.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

VALID_PIPELINE_STAGES = frozenset({"backfill", "evaluate", "demo_seed", "orchestrator"})
VALID_RUN_STATUSES = frozenset({"started", "success", "failed", "skipped"})

EVALUATION_JOB_NAME = "performance-evaluation"


class RunMetadata(BaseModel):
    """Pipeline execution audit record.

    Attributes:
        run_id: Auto-assigned DB PK; ``None`` before insertion.
        run_slug: UUID4 string uniquely identifying this run.
        pipeline_stage: Which stage produced this run record.
        status: Current execution status.
        user_id: User processed in this run, or ``None`` for global runs.
        config_snapshot: Full ``AppConfig.model_dump()`` at run start time.
        rows_processed: Count of records processed.
        summary: Stage counters, e.g. ``{"snapshots_checked": 12, ...}``.
        error_message: Error description if ``status == "failed"``.
        started_at: UTC datetime when the run began.
        finished_at: UTC datetime when the run completed or failed.
    """

    model_config = ConfigDict(frozen=False)

    run_id: Optional[int] = None
    run_slug: str
    pipeline_stage: str
    status: str = "started"
    user_id: Optional[str] = None
    config_snapshot: dict[str, Any]
    rows_processed: int = 0
    summary: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    @field_validator("pipeline_stage")
    @classmethod
    def validate_pipeline_stage(cls, v: str) -> str:
        if v not in VALID_PIPELINE_STAGES:
            raise ValueError(
                f"Unknown pipeline_stage '{v}'. Must be one of {sorted(VALID_PIPELINE_STAGES)}."
            )
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_RUN_STATUSES:
            raise ValueError(
                f"Unknown status '{v}'. Must be one of {sorted(VALID_RUN_STATUSES)}."
            )
        return v


class JobStatus(BaseModel):
    """Latest outcome of a named scheduled job."""

    model_config = ConfigDict(frozen=True)

    job_name: str
    last_run_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_summary: Optional[dict[str, Any]] = None
