"""
BackfillStage: snapshot a user's recommendations that were never captured.

Wraps ``backfill_user_snapshots`` so the pass is recorded in
``run_metadata`` with its counters. Rows processed = snapshots created.
"""

from __future__ import annotations

import logging
import sqlite3

from perf_proof.config import AppConfig
from perf_proof.models.meta import RunMetadata
from perf_proof.performance.backfill import backfill_user_snapshots
from perf_proof.pipeline.base import PipelineStage
from perf_proof.prices.base import PriceProvider

logger = logging.getLogger(__name__)


class BackfillStage(PipelineStage):
    """Create missing snapshots for one user.

    Args:
        config: Application configuration.
        conn: Open database connection.
        provider: Live price fallback for entry prices.
    """

    stage_name = "backfill"

    def __init__(
        self,
        config: AppConfig,
        conn: sqlite3.Connection,
        provider: PriceProvider,
    ) -> None:
        super().__init__(config=config, conn=conn)
        self.provider = provider

    def _execute(self, run: RunMetadata, user_id: str | None = None, **kwargs) -> int:
        if not user_id:
            raise ValueError("BackfillStage requires a user_id.")

        counters = backfill_user_snapshots(
            self.conn, user_id, self.provider, self.config.performance
        )
        self.conn.commit()
        run.summary = counters.as_dict()
        return counters.snapshots_created
