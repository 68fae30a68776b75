"""
Public entry points of the performance engine.

``PerformanceService`` is the single surface the CLI (and any embedding
application) uses. It enforces the ``performance.enabled`` feature flag
before touching storage, and keeps read paths non-fatal: a storage error
while building a view is logged and an empty, well-formed payload is
returned instead.

Usage::

    with get_connection(config.database.db_path, initialize=True) as conn:
        service = PerformanceService(config, conn)
        result = service.run_evaluation("all")
        board = service.get_scoreboard("user-1", horizon=7)
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from perf_proof.config import AppConfig
from perf_proof.db.repositories.run_repo import JobStatusRepository
from perf_proof.models.meta import EVALUATION_JOB_NAME, JobStatus
from perf_proof.models.performance import (
    DateRange,
    FeedbackSummary,
    OutcomePage,
    OutcomeQuery,
    OverviewPayload,
    Pagination,
    ScoreboardPayload,
)
from perf_proof.performance.aggregator import PerformanceAggregator
from perf_proof.pipeline.orchestrator import EvaluationOrchestrator, EvaluationRunResult
from perf_proof.prices.base import PriceProvider
from perf_proof.utils.logging import format_counters
from perf_proof.utils.time_utils import fixed_clock

logger = logging.getLogger(__name__)


class PerformanceDisabledError(RuntimeError):
    """Raised by every entry point while ``performance.enabled`` is false."""


class PerformanceService:
    """Evaluation runs and read views for one database.

    Args:
        config: Application configuration.
        conn: Open database connection (schema already applied).
        provider: Optional price provider override (tests, embedding apps);
            defaults to the one selected by ``prices.source``.
        now: Optional fixed clock for evaluation runs and demo seeding.
    """

    def __init__(
        self,
        config: AppConfig,
        conn: sqlite3.Connection,
        provider: Optional[PriceProvider] = None,
        now: Optional[datetime] = None,
    ) -> None:
        self.config = config
        self.conn = conn
        self.provider = provider
        self.now = now
        self.aggregator = PerformanceAggregator(conn, config.performance)

    def _require_enabled(self) -> None:
        if not self.config.performance.enabled:
            raise PerformanceDisabledError("Performance evaluation is disabled.")

    # ── Writes ────────────────────────────────────────────────────────────────

    def run_evaluation(self, target: str) -> EvaluationRunResult:
        """Backfill and evaluate for a user id, or for every user with ``"all"``."""
        self._require_enabled()
        result = EvaluationOrchestrator(
            self.config, self.conn, provider=self.provider, now=self.now
        ).run(target)
        logger.info("Evaluation run %s: %s", target, format_counters(result.summary()))
        return result

    def reseed_demo(self, user_id: str) -> int:
        """Replace a user's history with fresh demo snapshots, then evaluate them.

        Returns:
            Number of demo snapshots created.

        Raises:
            DemoSeedUnavailableError: If ``prices.source`` is not ``"synthetic"``.
        """
        self._require_enabled()
        from perf_proof.performance.demo_seed import ensure_demo_history
        from perf_proof.prices.factory import get_price_provider

        provider = self.provider or get_price_provider(
            self.config, self.conn, now_fn=fixed_clock(self.now)
        )
        try:
            created = ensure_demo_history(
                self.conn,
                user_id,
                self.config,
                provider,  # type: ignore[arg-type]
                force=True,
                min_snapshots=self.config.demo.reseed_min_snapshots,
                now=self.now,
            )
            self.conn.commit()
            EvaluationOrchestrator(self.config, self.conn, provider=provider, now=self.now).run(
                user_id
            )
        finally:
            if self.provider is None:
                provider.close()
        return created

    # ── Reads ─────────────────────────────────────────────────────────────────

    def get_overview(
        self, user_id: str, date_range: Optional[DateRange] = None
    ) -> OverviewPayload:
        self._require_enabled()
        try:
            return self.aggregator.get_overview(user_id, date_range)
        except sqlite3.Error as exc:
            logger.error("Overview query failed for %s: %s", user_id, exc)
            return OverviewPayload()

    def get_scoreboard(
        self,
        user_id: str,
        horizon: Optional[int] = None,
        date_range: Optional[DateRange] = None,
    ) -> ScoreboardPayload:
        """Raises ``ValueError`` for an unconfigured horizon before any query."""
        self._require_enabled()
        horizon = self.aggregator.validate_horizon(
            self.config.performance.calibration_horizon_days if horizon is None else horizon
        )
        try:
            return self.aggregator.get_scoreboard(user_id, horizon, date_range)
        except sqlite3.Error as exc:
            logger.error("Scoreboard query failed for %s: %s", user_id, exc)
            return ScoreboardPayload(horizon=horizon)

    def list_outcomes(self, user_id: str, query: OutcomeQuery) -> OutcomePage:
        self._require_enabled()
        try:
            return self.aggregator.list_outcomes(user_id, query)
        except sqlite3.Error as exc:
            logger.error("Outcome listing failed for %s: %s", user_id, exc)
            return OutcomePage(pagination=Pagination.build(query.page, query.limit, 0))

    def get_feedback(self, user_id: str) -> Optional[FeedbackSummary]:
        self._require_enabled()
        from perf_proof.performance.feedback import build_feedback_summary

        try:
            return build_feedback_summary(self.conn, user_id, self.config.performance)
        except sqlite3.Error as exc:
            logger.error("Feedback query failed for %s: %s", user_id, exc)
            return None

    def get_job_status(self, job_name: str = EVALUATION_JOB_NAME) -> Optional[JobStatus]:
        self._require_enabled()
        return JobStatusRepository(self.conn).get(job_name)
