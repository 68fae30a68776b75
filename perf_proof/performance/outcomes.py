"""
Return and outcome calculation for recommendation snapshots.

Outcome rules
-------------
Return
  Measured from the entry price captured at generation time to the first
  available price on or after the horizon's target date, in percent.
  ``sell`` calls profit when the price falls, so their return is the negated
  long return.  ``buy`` and ``hold`` use the long return unchanged.
  Degenerate inputs (non-positive or non-finite entry, non-finite exit)
  yield ``0.0``; these functions never raise.

Win
  ``buy`` / ``sell``: the direction-adjusted return is strictly positive.
  ``hold``: the price stayed within ``±HOLD_WIN_THRESHOLD_PCT`` (inclusive),
  i.e. "nothing much happened" was the right call.

Confidence bucket
  Confidence is clamped to [0, 100], floored to an integer, then to a
  multiple of ten: ``57 → "50-59"``.  The top bucket is ``"100-100"``.
"""

from __future__ import annotations

import math
from datetime import datetime

from perf_proof.utils.time_utils import hours_between

HOLD_WIN_THRESHOLD_PCT = 2.0
EVALUATION_GRACE_HOURS = 72


def calculate_return_pct(action: str, entry_price: float, exit_price: float) -> float:
    """Direction-adjusted percentage return of a recommendation.

    Args:
        action: ``"buy"``, ``"sell"`` or ``"hold"``.
        entry_price: Price when the recommendation was made.
        exit_price: Price at (or just after) the horizon target.

    Returns:
        Return in percent; ``0.0`` for degenerate inputs.

    Example::

        >>> calculate_return_pct("sell", 100.0, 110.0)
        -10.0
    """
    if not math.isfinite(entry_price) or entry_price <= 0 or not math.isfinite(exit_price):
        return 0.0

    long_return = (exit_price - entry_price) / entry_price * 100.0

    if action == "sell":
        return -long_return
    return long_return


def is_winning_outcome(
    action: str,
    return_pct: float,
    hold_threshold_pct: float = HOLD_WIN_THRESHOLD_PCT,
) -> bool:
    """Classify a direction-adjusted return as a win.

    Args:
        action: ``"buy"``, ``"sell"`` or ``"hold"``.
        return_pct: Output of ``calculate_return_pct``.
        hold_threshold_pct: Absolute move within which a hold wins.
    """
    if action == "hold":
        return abs(return_pct) <= hold_threshold_pct
    return return_pct > 0


def get_confidence_bucket(confidence: float) -> str:
    """Ten-point bucket label for a confidence value, e.g. ``"70-79"``."""
    if not math.isfinite(confidence):
        confidence = 0.0
    bounded = max(0, min(100, math.floor(confidence)))
    floor = bounded // 10 * 10
    ceiling = 100 if floor == 100 else floor + 9
    return f"{floor}-{ceiling}"


def bucket_floor(bucket: str) -> int:
    """Numeric lower bound of a bucket label; unparsable labels sort last."""
    head = bucket.split("-", 1)[0]
    try:
        return int(head)
    except ValueError:
        return 10_000


def is_past_grace(
    target: datetime,
    now: datetime,
    grace_hours: float = EVALUATION_GRACE_HOURS,
) -> bool:
    """``True`` once more than ``grace_hours`` have elapsed since ``target``."""
    return hours_between(target, now) > grace_hours
