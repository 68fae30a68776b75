"""
Evaluation orchestrator: backfill then evaluate, per user, with isolation.

Pipeline per invocation::

    Step 1: Resolve users       "all" -> every user id; otherwise the one id
    Step 2: Demo seed           single-user runs in synthetic-price mode only
    Step 3: Per user (isolated)
              BackfillStage     snapshot un-captured recommendations
              EvaluateStage     score open snapshots at every horizon
    Step 4: Job status          "all" runs record the outcome under
                                ``performance-evaluation``

A failure in one user's stage is logged and recorded in ``errors``; the
remaining users still run. All users share one ``PriceHistoryCache`` so each
ticker is fetched at most once per invocation.

Status rules:
  success  no errors (per-snapshot errors included)
  partial  some errors, but at least one user completed both stages
  failed   no user completed, or user resolution failed
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from perf_proof.config import AppConfig
from perf_proof.db.repositories.run_repo import JobStatusRepository
from perf_proof.db.repositories.source_repo import SourceRepository
from perf_proof.models.meta import EVALUATION_JOB_NAME
from perf_proof.performance.backfill import BackfillCounters
from perf_proof.performance.evaluator import EvaluationCounters
from perf_proof.performance.price_history import PriceHistoryCache
from perf_proof.prices.base import PriceProvider
from perf_proof.utils.time_utils import fixed_clock, utcnow

logger = logging.getLogger(__name__)

ALL_USERS = "all"


@dataclass
class UserRunResult:
    """Outcome of both stages for a single user."""

    user_id:       str
    success:       bool
    demo_seeded:   int = 0
    backfill:      BackfillCounters   = field(default_factory=BackfillCounters)
    evaluation:    EvaluationCounters = field(default_factory=EvaluationCounters)
    error:         Optional[str] = None


@dataclass
class EvaluationRunResult:
    """Summary of one ``EvaluationOrchestrator.run()`` invocation."""

    target:          str
    started_at:      datetime
    finished_at:     Optional[datetime] = None
    users_processed: int = 0
    demo_seeded:     int = 0
    backfill:        BackfillCounters   = field(default_factory=BackfillCounters)
    evaluation:      EvaluationCounters = field(default_factory=EvaluationCounters)
    user_results:    list[UserRunResult] = field(default_factory=list)
    failed_tickers:  dict[str, str] = field(default_factory=dict)
    errors:          list[str] = field(default_factory=list)
    status:          str = "started"

    @property
    def success(self) -> bool:
        return self.status == "success"

    def summary(self) -> dict[str, Any]:
        """Flat counters, as stored in ``job_status.last_summary``."""
        return {
            "target":          self.target,
            "status":          self.status,
            "users_processed": self.users_processed,
            "demo_seeded":     self.demo_seeded,
            "price_tickers_failed": len(self.failed_tickers),
            **self.backfill.as_dict(),
            **self.evaluation.as_dict(),
            "error_count":     len(self.errors),
        }


class EvaluationOrchestrator:
    """Runs backfill and evaluation for one user or for every user.

    Args:
        config: Application configuration.
        conn: Open database connection (schema already applied).
        provider: Price provider; defaults to ``get_price_provider`` on the
            run clock.
        now: Evaluation clock; defaults to the current UTC time.
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
        self._owns_provider = provider is None
        if provider is None:
            from perf_proof.prices.factory import get_price_provider

            provider = get_price_provider(config, conn, now_fn=fixed_clock(now))
        self.provider = provider
        self.now = now

    def run(self, target: str) -> EvaluationRunResult:
        """Execute the evaluation pipeline for ``target``.

        Args:
            target: A user id, or ``"all"`` for every user.

        Returns:
            EvaluationRunResult summarising all users.
        """
        result = EvaluationRunResult(target=target, started_at=utcnow())
        cache = PriceHistoryCache(
            self.provider, lookback_days=self.config.performance.history_lookback_days
        )

        # ── Step 1: Resolve users ─────────────────────────────────────────────
        try:
            user_ids = self._resolve_users(target)
        except Exception as exc:
            logger.error("Could not resolve users for target=%s: %s", target, exc)
            result.errors.append(f"Resolve users: {exc}")
            user_ids = []

        logger.info(
            "EvaluationOrchestrator | target=%s | users=%d", target, len(user_ids)
        )

        # ── Step 2-3: Demo seed, backfill, evaluate (per user, isolated) ─────
        for user_id in user_ids:
            user_result = UserRunResult(user_id=user_id, success=False)
            if target != ALL_USERS:
                user_result.demo_seeded = self._maybe_seed_demo(user_id, result)
            self._run_user(user_id, cache, user_result)
            result.user_results.append(user_result)

            result.demo_seeded += user_result.demo_seeded
            result.backfill.add(user_result.backfill)
            result.evaluation.add(user_result.evaluation)
            if user_result.error:
                result.errors.append(f"user {user_id}: {user_result.error}")
            if user_result.success:
                result.users_processed += 1

        if self._owns_provider:
            self.provider.close()

        # ── Finalise result ───────────────────────────────────────────────────
        result.failed_tickers = cache.failed_tickers
        result.finished_at = utcnow()
        if result.evaluation.errors:
            result.errors.append(
                f"{result.evaluation.errors} snapshot(s) failed evaluation"
            )

        if not result.errors:
            result.status = "success"
        elif result.users_processed > 0:
            result.status = "partial"
        else:
            result.status = "failed"

        # ── Step 4: Job status (scheduled runs only) ──────────────────────────
        if target == ALL_USERS:
            self._record_job_status(result)

        logger.info(
            "EvaluationOrchestrator finished | status=%s | users_ok=%d/%d | "
            "snapshots_created=%d | evaluations=%d | missing=%d | errors=%d",
            result.status,
            result.users_processed,
            len(user_ids),
            result.backfill.snapshots_created,
            result.evaluation.evaluations_recorded,
            result.evaluation.missing_marked,
            len(result.errors),
        )
        return result

    # ── Private helpers ───────────────────────────────────────────────────────

    def _resolve_users(self, target: str) -> list[str]:
        source = SourceRepository(self.conn)
        if target == ALL_USERS:
            return source.list_user_ids()
        if not target or not target.strip():
            raise ValueError("target must be a user id or 'all'.")
        if not source.user_exists(target):
            raise ValueError(f"Unknown user '{target}'.")
        return [target]

    def _maybe_seed_demo(self, user_id: str, result: EvaluationRunResult) -> int:
        """Top up demo history before a single-user run in synthetic mode."""
        if self.config.prices.source != "synthetic":
            return 0

        from perf_proof.performance.demo_seed import ensure_demo_history
        from perf_proof.prices.synthetic_provider import SyntheticPriceProvider

        if not isinstance(self.provider, SyntheticPriceProvider):
            logger.warning(
                "prices.source is synthetic but provider is %s; demo seed skipped.",
                self.provider.name,
            )
            return 0

        try:
            created = ensure_demo_history(
                self.conn, user_id, self.config, self.provider, now=self.now
            )
            self.conn.commit()
            return created
        except Exception as exc:
            self.conn.rollback()
            logger.error("Demo seed failed for user=%s: %s", user_id, exc)
            result.errors.append(f"demo seed {user_id}: {exc}")
            return 0

    def _run_user(
        self, user_id: str, cache: PriceHistoryCache, user_result: UserRunResult
    ) -> None:
        """Run BackfillStage then EvaluateStage for one user, isolating failures."""
        from perf_proof.pipeline.backfill import BackfillStage
        from perf_proof.pipeline.evaluate import EvaluateStage

        try:
            run = BackfillStage(self.config, self.conn, self.provider).run(user_id=user_id)
            user_result.backfill = BackfillCounters(**(run.summary or {}))
        except Exception as exc:
            logger.error("BackfillStage[%s] failed: %s", user_id, exc)
            user_result.error = f"backfill: {exc}"

        # Evaluation still runs: already-captured snapshots can be scored
        try:
            run = EvaluateStage(self.config, self.conn, cache, now=self.now).run(
                user_id=user_id
            )
            user_result.evaluation = EvaluationCounters(**(run.summary or {}))
        except Exception as exc:
            logger.error("EvaluateStage[%s] failed: %s", user_id, exc)
            user_result.error = (
                f"{user_result.error}; evaluate: {exc}" if user_result.error
                else f"evaluate: {exc}"
            )
            return

        user_result.success = user_result.error is None

    def _record_job_status(self, result: EvaluationRunResult) -> None:
        try:
            JobStatusRepository(self.conn).record(
                EVALUATION_JOB_NAME,
                ran_at=result.finished_at or utcnow(),
                success=result.status != "failed",
                summary=result.summary(),
                error="; ".join(result.errors) if result.errors else None,
            )
            self.conn.commit()
        except Exception as exc:
            logger.error("Failed to record job status for %s: %s", EVALUATION_JOB_NAME, exc)
