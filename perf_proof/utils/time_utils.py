"""
Time and date utilities for horizon-based evaluation.

Key concepts:
  - Generated date: the UTC calendar day a recommendation was produced.
  - Horizon target: ``generated_date + horizon_days`` at UTC midnight. A
    horizon becomes evaluable once ``now`` reaches that instant.
  - Grace window: how long after the target a missing price is still
    treated as "not arrived yet" rather than "missing".

All datetimes handled here are timezone-aware UTC. Naive datetimes coming out
of SQLite text columns are assumed to be UTC.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional, Union

DateLike = Union[date, datetime, str]


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime, or convert an aware one to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def fixed_clock(now: Optional[datetime]) -> Optional[Callable[[], datetime]]:
    """Clock that always returns ``now`` (as UTC); ``None`` when ``now`` is ``None``."""
    if now is None:
        return None
    pinned = ensure_utc(now)
    return lambda: pinned


def parse_datetime(value: Union[datetime, str]) -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware UTC datetime.

    Args:
        value: A ``datetime`` or ISO string such as ``"2025-01-10T09:30:00Z"``.

    Returns:
        Timezone-aware UTC datetime.

    Raises:
        ValueError: If the string is not ISO-8601.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def normalize_date(value: DateLike) -> date:
    """Return the UTC calendar day of a date, datetime or ISO string.

    Strings of the form ``YYYY-MM-DD`` are parsed as dates; longer strings as
    datetimes and then truncated to their UTC day.
    """
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    if isinstance(value, date):
        return value
    text = value.strip()
    if len(text) == 10:
        return date.fromisoformat(text)
    return parse_datetime(text).date()


def start_of_day(day: date) -> datetime:
    """UTC midnight at the start of ``day``."""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def add_days(day: date, days: int) -> date:
    """Shift a calendar day by ``days`` (negative allowed)."""
    return day + timedelta(days=days)


def horizon_target(generated_date: date, horizon_days: int) -> datetime:
    """Return the instant at which a horizon becomes evaluable.

    Args:
        generated_date: UTC day the recommendation was produced.
        horizon_days: Horizon length in days.

    Returns:
        ``generated_date + horizon_days`` at 00:00 UTC.
    """
    return start_of_day(add_days(generated_date, horizon_days))


def hours_between(earlier: datetime, later: datetime) -> float:
    """Signed number of hours from ``earlier`` to ``later``."""
    return (ensure_utc(later) - ensure_utc(earlier)).total_seconds() / 3600.0


def to_iso(value: datetime) -> str:
    """Serialise a datetime as an ISO-8601 UTC string for storage."""
    return ensure_utc(value).isoformat()
