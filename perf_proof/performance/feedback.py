"""
Track-record feedback for the recommendation prompt.

Summarises a user's scored outcomes at the calibration horizon (7 days by
default) into a compact structure the recommendation provider can fold into
its prompt, so the model sees where it has been right and wrong. Returns
``None`` below ``MIN_EVALUATIONS`` scored outcomes: too little to learn from.
"""

from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict
from typing import Optional

from perf_proof.config import PerformanceConfig
from perf_proof.db.repositories.evaluation_repo import EvaluationRepository, ScoredOutcome
from perf_proof.models.performance import FeedbackBreakdown, FeedbackExample, FeedbackSummary
from perf_proof.performance.stats import round_pct

logger = logging.getLogger(__name__)

MIN_EVALUATIONS = 3
RECENT_EXAMPLES = 5


def _breakdown(outcomes: list[ScoredOutcome], attr: str) -> list[FeedbackBreakdown]:
    groups: dict[str, list[ScoredOutcome]] = defaultdict(list)
    for o in outcomes:
        groups[getattr(o, attr) or "unknown"].append(o)

    rows = [
        FeedbackBreakdown(
            key=key,
            count=len(rows),
            win_rate=int(round_pct(sum(1 for r in rows if r.is_win) / len(rows) * 100, 0) or 0),
            avg_return=round_pct(sum(r.return_pct or 0.0 for r in rows) / len(rows)) or 0.0,
        )
        for key, rows in groups.items()
    ]
    # Stable sort keeps first-seen (most recent) order among equal counts
    return sorted(rows, key=lambda r: -r.count)


def _example(outcome: ScoredOutcome) -> FeedbackExample:
    return FeedbackExample(
        ticker=outcome.ticker,
        action=outcome.action,
        confidence=outcome.confidence,
        return_pct=round_pct(outcome.return_pct) or 0.0,
        is_win=bool(outcome.is_win),
        horizon_days=outcome.horizon_days,
    )


def build_feedback_summary(
    conn: sqlite3.Connection,
    user_id: str,
    config: PerformanceConfig,
) -> Optional[FeedbackSummary]:
    """Summarise ``user_id``'s scored outcomes at the calibration horizon.

    Returns:
        ``FeedbackSummary``, or ``None`` when fewer than ``MIN_EVALUATIONS``
        scored outcomes exist.
    """
    horizon = config.calibration_horizon_days
    outcomes = EvaluationRepository(conn).list_outcomes(user_id, [horizon], ok_only=True)
    if len(outcomes) < MIN_EVALUATIONS:
        logger.debug(
            "Feedback for %s skipped: %d scored outcomes (< %d).",
            user_id,
            len(outcomes),
            MIN_EVALUATIONS,
        )
        return None

    wins = sum(1 for o in outcomes if o.is_win)
    total_return = sum(o.return_pct or 0.0 for o in outcomes)

    return FeedbackSummary(
        horizon_days=horizon,
        total_evaluated=len(outcomes),
        win_rate=int(round_pct(wins / len(outcomes) * 100, 0) or 0),
        avg_return=round_pct(total_return / len(outcomes)) or 0.0,
        by_action=_breakdown(outcomes, "action"),
        by_risk_level=_breakdown(outcomes, "risk_level"),
        recent_mistakes=[_example(o) for o in outcomes if not o.is_win][:RECENT_EXAMPLES],
        recent_successes=[_example(o) for o in outcomes if o.is_win][:RECENT_EXAMPLES],
    )


def format_feedback_prompt(summary: FeedbackSummary) -> str:
    """Render a summary as a plain-text block for inclusion in a prompt."""
    lines = [
        f"Your track record ({summary.horizon_days}-day outcomes, "
        f"{summary.total_evaluated} recommendations):",
        f"- Win rate: {summary.win_rate}%, average return {summary.avg_return:+.2f}%",
    ]
    for row in summary.by_action:
        lines.append(
            f"- {row.key}: {row.count} calls, {row.win_rate}% wins, {row.avg_return:+.2f}% avg"
        )
    for row in summary.by_risk_level:
        lines.append(
            f"- risk {row.key}: {row.count} calls, {row.win_rate}% wins, "
            f"{row.avg_return:+.2f}% avg"
        )
    if summary.recent_mistakes:
        lines.append("Recent mistakes:")
        lines.extend(
            f"  {m.action.upper()} {m.ticker} at {m.confidence:.0f}% confidence: "
            f"{m.return_pct:+.2f}%"
            for m in summary.recent_mistakes
        )
    if summary.recent_successes:
        lines.append("Recent successes:")
        lines.extend(
            f"  {s.action.upper()} {s.ticker} at {s.confidence:.0f}% confidence: "
            f"{s.return_pct:+.2f}%"
            for s in summary.recent_successes
        )
    return "\n".join(lines)
