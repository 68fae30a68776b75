"""
Query and payload models for the performance read paths.

Queries (``DateRange``, ``OutcomeQuery``) are validated on construction, so
an invalid filter raises ``pydantic.ValidationError`` before any SQL runs.

Payloads are frozen and serialise with ``model_dump(mode="json")`` for the
CLI's JSON output and the export helpers. Rates and returns are percentages
rounded to two decimals; ``None`` means "no data" rather than zero.
"""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from perf_proof.models.snapshot import RecommendationAction, SnapshotStatus

OutcomeResult = Literal["win", "loss", "pending"]
ScoreboardGroup = Literal["action", "risk_level", "confidence_bucket"]

# ── Queries ────────────────────────────────────────────────────────────────────


class DateRange(BaseModel):
    """Inclusive filter on a snapshot's ``generated_date``. Either bound may be open."""

    model_config = ConfigDict(frozen=True)

    date_from: Optional[date] = None
    date_to: Optional[date] = None

    @model_validator(mode="after")
    def validate_order(self) -> "DateRange":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError(
                f"date_from ({self.date_from}) must be <= date_to ({self.date_to})."
            )
        return self

    @property
    def is_open(self) -> bool:
        return self.date_from is None and self.date_to is None


class OutcomeQuery(BaseModel):
    """Filters and paging for the outcome listing.

    ``horizon`` membership in the configured horizons is checked by the
    aggregator, which knows the configuration.
    """

    model_config = ConfigDict(frozen=True)

    ticker: Optional[str] = Field(default=None, min_length=1, max_length=12)
    action: Optional[RecommendationAction] = None
    horizon: int = 7
    result: Optional[OutcomeResult] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    @field_validator("ticker")
    @classmethod
    def normalize_ticker(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else v

    @model_validator(mode="after")
    def validate_dates(self) -> "OutcomeQuery":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError(
                f"date_from ({self.date_from}) must be <= date_to ({self.date_to})."
            )
        return self

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def date_range(self) -> DateRange:
        return DateRange(date_from=self.date_from, date_to=self.date_to)


# ── Overview ───────────────────────────────────────────────────────────────────


class OverviewTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    snapshots: int = 0
    evaluated: int = 0
    pending: int = 0
    scored: int = 0
    stale: int = 0


class HorizonStats(BaseModel):
    """Win/return statistics for one horizon over ``ok`` evaluations."""

    model_config = ConfigDict(frozen=True)

    count: int = 0
    win_rate: Optional[float] = None
    avg_return: Optional[float] = None
    median_return: Optional[float] = None


class CalibrationRow(BaseModel):
    """Realised win rate for one confidence bucket."""

    model_config = ConfigDict(frozen=True)

    bucket: str
    count: int
    win_rate: Optional[float] = None
    avg_return: Optional[float] = None


class DataQualityTally(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: int = 0
    missing: int = 0


class OverviewPayload(BaseModel):
    """Headline performance summary for one user.

    ``horizons`` is keyed by horizon length in days (as a string, matching
    the JSON shape). ``calibration`` is sorted by bucket floor ascending.
    """

    model_config = ConfigDict(frozen=True)

    totals: OverviewTotals = OverviewTotals()
    horizons: dict[str, HorizonStats] = {}
    calibration: list[CalibrationRow] = []
    data_quality: DataQualityTally = DataQualityTally()


# ── Scoreboard ─────────────────────────────────────────────────────────────────


class ScoreboardRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    count: int
    win_rate: Optional[float] = None
    avg_return: Optional[float] = None
    median_return: Optional[float] = None


class ScoreboardPayload(BaseModel):
    """Grouped statistics for a single horizon.

    Each list is sorted by win rate desc, average return desc, count desc,
    then key asc.
    """

    model_config = ConfigDict(frozen=True)

    horizon: int
    by_action: list[ScoreboardRow] = []
    by_risk_level: list[ScoreboardRow] = []
    by_confidence_bucket: list[ScoreboardRow] = []

    def rows_for(self, group: ScoreboardGroup) -> list[ScoreboardRow]:
        return {
            "action": self.by_action,
            "risk_level": self.by_risk_level,
            "confidence_bucket": self.by_confidence_bucket,
        }[group]


# ── Outcome listing ────────────────────────────────────────────────────────────


class EvaluationView(BaseModel):
    model_config = ConfigDict(frozen=True)

    horizon_days: int
    target_date: date
    evaluated_at: datetime
    exit_price: Optional[float] = None
    return_pct: Optional[float] = None
    is_win: Optional[bool] = None
    data_quality: str


class OutcomeItem(BaseModel):
    """One snapshot with its evaluations keyed by horizon length."""

    model_config = ConfigDict(frozen=True)

    snapshot_id: str
    ticker: str
    action: RecommendationAction
    confidence: float
    confidence_bucket: str
    entry_price: float
    currency: str
    risk_level: Optional[str] = None
    status: SnapshotStatus
    generated_at: datetime
    generated_date: date
    evaluations: dict[int, EvaluationView] = {}


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit))


class OutcomePage(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: list[OutcomeItem] = []
    pagination: Pagination


# ── Feedback ───────────────────────────────────────────────────────────────────


class FeedbackBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    count: int
    win_rate: int
    avg_return: float


class FeedbackExample(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticker: str
    action: RecommendationAction
    confidence: float
    return_pct: float
    is_win: bool
    horizon_days: int


class FeedbackSummary(BaseModel):
    """Compact track-record summary handed to the recommendation prompt builder."""

    model_config = ConfigDict(frozen=True)

    horizon_days: int
    total_evaluated: int
    win_rate: int
    avg_return: float
    by_action: list[FeedbackBreakdown] = []
    by_risk_level: list[FeedbackBreakdown] = []
    recent_mistakes: list[FeedbackExample] = []
    recent_successes: list[FeedbackExample] = []
