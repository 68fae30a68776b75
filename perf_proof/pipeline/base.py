"""
Abstract base class for the evaluation pipeline stages.

Every stage follows the same contract:
  1. Receive ``AppConfig`` and an open connection at construction.
  2. ``run(**kwargs)`` is the sole public API.
  3. ``run()`` creates a ``RunMetadata`` record, calls ``_execute()``,
     and persists the run record with final status and counters.
  4. ``_execute()`` is the stage-specific implementation (overridden by subclasses).

Stages share the caller's connection rather than opening their own, so a
whole evaluation run (and an in-memory test database) sees one consistent
view of the data.

Usage::

    class MyStage(PipelineStage):
        stage_name = "evaluate"

        def _execute(self, run: RunMetadata, **kwargs) -> int:
            run.summary = {"snapshots_checked": 3}
            return 3

    stage = MyStage(config=app_config, conn=conn)
    result = stage.run(user_id="user-1")
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from uuid import uuid4

from perf_proof.config import AppConfig
from perf_proof.models.meta import RunMetadata
from perf_proof.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class PipelineStage(ABC):
    """Abstract base for all pipeline stages.

    Subclasses must:
      1. Set ``stage_name`` class variable.
      2. Implement ``_execute(run, **kwargs) -> int``.

    Attributes:
        stage_name: String identifier matching a valid ``RunMetadata.pipeline_stage``.
        config: The application configuration for this run.
        conn: Open database connection shared with the caller.
    """

    stage_name: str  # Override in subclass

    def __init__(self, config: AppConfig, conn: sqlite3.Connection) -> None:
        self.config = config
        self.conn = conn

    def run(self, user_id: str | None = None, **kwargs) -> RunMetadata:
        """Execute this pipeline stage.

        Args:
            user_id: User processed by this run (recorded on the run record
                and passed through to ``_execute()``).
            **kwargs: Stage-specific keyword arguments passed to ``_execute()``.

        Returns:
            ``RunMetadata`` with final ``status``, ``rows_processed``,
            ``summary`` and ``finished_at`` set.

        Raises:
            Exception: Re-raises any exception from ``_execute()`` after
                recording ``status='failed'`` in the run record.
        """
        run = RunMetadata(
            run_slug=str(uuid4()),
            pipeline_stage=self.stage_name,
            user_id=user_id,
            config_snapshot=self.config.model_dump(mode="json"),
            started_at=utcnow(),
        )
        logger.info(
            "Stage [%s] starting | user=%s | run_slug=%s",
            self.stage_name, user_id, run.run_slug,
        )

        try:
            rows = self._execute(run=run, user_id=user_id, **kwargs)
            run.status = "success"
            run.rows_processed = rows
            run.finished_at = utcnow()
            logger.info(
                "Stage [%s] completed | rows=%d | run_slug=%s",
                self.stage_name, rows, run.run_slug,
            )

        except Exception as exc:
            run.status = "failed"
            run.error_message = str(exc)
            run.finished_at = utcnow()
            logger.error(
                "Stage [%s] FAILED: %s | run_slug=%s",
                self.stage_name, exc, run.run_slug,
            )
            self._persist_run(run)
            raise

        self._persist_run(run)
        return run

    @abstractmethod
    def _execute(self, run: RunMetadata, user_id: str | None = None, **kwargs) -> int:
        """Stage-specific implementation.

        Args:
            run: The in-progress ``RunMetadata`` record (mutable); set
                ``run.summary`` to record counters.
            user_id: User to process.
            **kwargs: Stage-specific parameters.

        Returns:
            Integer count of rows/records written.
        """
        ...

    def _persist_run(self, run: RunMetadata) -> None:
        """Persist the ``RunMetadata`` record and commit.

        Logs errors rather than raising: run persistence failure should not
        mask the original pipeline error.
        """
        try:
            from perf_proof.db.repositories.run_repo import RunMetadataRepository

            if self.conn.in_transaction and run.status == "failed":
                # Discard the failed stage's partial writes before recording it
                self.conn.rollback()
            repo = RunMetadataRepository(self.conn)
            if run.run_id is None:
                run.run_id = repo.insert_run(run)
            else:
                repo.update_run(run)
            self.conn.commit()
        except Exception as exc:
            logger.error(
                "Failed to persist RunMetadata for run_slug=%s: %s",
                run.run_slug, exc,
            )
