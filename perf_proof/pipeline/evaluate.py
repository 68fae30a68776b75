"""
EvaluateStage: score a user's open snapshots at every configured horizon.

Wraps ``SnapshotEvaluator``; each snapshot commits on its own, so a failed
snapshot is counted in ``summary["errors"]`` without failing the stage.
Rows processed = evaluation rows written (``ok`` plus ``missing``).
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from perf_proof.config import AppConfig
from perf_proof.models.meta import RunMetadata
from perf_proof.performance.evaluator import SnapshotEvaluator
from perf_proof.performance.price_history import PriceHistoryCache
from perf_proof.pipeline.base import PipelineStage

logger = logging.getLogger(__name__)


class EvaluateStage(PipelineStage):
    """Evaluate one user's pending and stale snapshots.

    Args:
        config: Application configuration.
        conn: Open database connection.
        cache: Price history cache shared across the users of one run.
        now: Evaluation clock; defaults to the current UTC time.
    """

    stage_name = "evaluate"

    def __init__(
        self,
        config: AppConfig,
        conn: sqlite3.Connection,
        cache: PriceHistoryCache,
        now: Optional[datetime] = None,
    ) -> None:
        super().__init__(config=config, conn=conn)
        self.cache = cache
        self.now = now

    def _execute(self, run: RunMetadata, user_id: str | None = None, **kwargs) -> int:
        if not user_id:
            raise ValueError("EvaluateStage requires a user_id.")

        evaluator = SnapshotEvaluator(
            self.conn, self.config.performance, self.cache, now=self.now
        )
        counters = evaluator.evaluate_user(user_id)
        run.summary = counters.as_dict()
        return counters.evaluations_recorded + counters.missing_marked
