"""
Summary statistics over scored outcomes.

Percentages are rounded half-away-from-zero to two decimals so that a
57.125 % win rate reports as 57.13 regardless of binary float artefacts.
Every statistic is ``None`` (not zero) when there is nothing to summarise.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence


def median(values: Sequence[float]) -> Optional[float]:
    """Median of ``values``; mean of the middle pair for even sizes, ``None`` if empty.

    Example::

        >>> median([-5, 2, 8, 10])
        5.0
    """
    if not values:
        return None
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return float(ordered[mid])


def round_pct(value: Optional[float], places: int = 2) -> Optional[float]:
    """Round to ``places`` decimals, half away from zero; ``None`` passes through."""
    if value is None or not math.isfinite(value):
        return None
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class GroupStats:
    """Win/return statistics for one group of outcomes.

    Attributes:
        key: Group label (horizon, action, risk level or bucket).
        count: Number of scored outcomes in the group.
        win_rate: Percentage of wins, 0 to 100.
        avg_return: Mean direction-adjusted return in percent.
        median_return: Median direction-adjusted return in percent.
    """

    key: str
    count: int
    win_rate: Optional[float]
    avg_return: Optional[float]
    median_return: Optional[float]


def compute_group_stats(key: str, outcomes: Iterable[tuple[bool, float]]) -> GroupStats:
    """Summarise ``(is_win, return_pct)`` pairs.

    Args:
        key: Label for the resulting group.
        outcomes: Scored outcomes; callers pass only ``ok`` rows.

    Returns:
        ``GroupStats`` with rounded percentages.
    """
    wins = 0
    returns: list[float] = []
    for is_win, return_pct in outcomes:
        returns.append(return_pct)
        if is_win:
            wins += 1

    count = len(returns)
    if count == 0:
        return GroupStats(key=key, count=0, win_rate=None, avg_return=None, median_return=None)

    return GroupStats(
        key=key,
        count=count,
        win_rate=round_pct(wins / count * 100.0),
        avg_return=round_pct(sum(returns) / count),
        median_return=round_pct(median(returns)),
    )


def _desc(value: Optional[float]) -> float:
    return -value if value is not None else math.inf


def sort_scoreboard_rows(rows: Iterable[GroupStats]) -> list[GroupStats]:
    """Order rows by win rate desc, average return desc, count desc, key asc.

    Rows without statistics sort after every row that has them.
    """
    return sorted(rows, key=lambda r: (_desc(r.win_rate), _desc(r.avg_return), -r.count, r.key))
