"""
Recommendation snapshot and evaluation models.

``RecommendationSnapshot`` is the immutable point-in-time record of an AI
recommendation: ticker, action, confidence and the entry price at the moment
it was made. Only ``status`` ever changes after insertion, and only the
evaluator changes it (via the snapshot repository, never on the model).

``RecommendationEvaluation`` is the outcome of one snapshot at one horizon.
Its identity is ``(snapshot_id, horizon_days)``. A row with
``data_quality == "ok"`` carries a full price/return/win triple; a
``"missing"`` row carries none of them.
"""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from perf_proof.utils.time_utils import ensure_utc

RecommendationAction = Literal["buy", "sell", "hold"]
SnapshotStatus = Literal["pending", "scored", "stale"]
DataQuality = Literal["ok", "missing"]

VALID_ACTIONS: frozenset[str] = frozenset({"buy", "sell", "hold"})
VALID_SNAPSHOT_STATUSES: frozenset[str] = frozenset({"pending", "scored", "stale"})


class RecommendationSnapshot(BaseModel):
    """Immutable capture of one recommendation at generation time.

    Attributes:
        snapshot_id: Opaque unique id (uuid4 hex).
        user_id: Owner of the recommendation.
        recommendation_id: Source recommendation, if captured from one.
        holding_id: Portfolio holding the recommendation concerned, if any.
        idea_id: Investment idea the entry price came from, if any.
        ticker: Upper-case instrument symbol.
        action: ``buy``, ``sell`` or ``hold``.
        confidence: Model confidence in [0, 100].
        confidence_bucket: Ten-point bucket label, e.g. ``"50-59"``.
        entry_price: Price at generation time; always positive.
        currency: ISO currency code of ``entry_price``.
        risk_level: Risk label copied from the idea, or ``None``.
        generated_at: Exact UTC timestamp of generation.
        generated_date: UTC calendar day of generation; horizons count from here.
        status: ``pending`` until every horizon has a row.
        created_at: When the snapshot row was written.
    """

    model_config = ConfigDict(frozen=True)

    snapshot_id: str
    user_id: str
    recommendation_id: Optional[str] = None
    holding_id: Optional[str] = None
    idea_id: Optional[str] = None
    ticker: str
    action: RecommendationAction
    confidence: float
    confidence_bucket: str
    entry_price: float
    currency: str = "EUR"
    risk_level: Optional[str] = None
    generated_at: datetime
    generated_date: date
    status: SnapshotStatus = "pending"
    created_at: Optional[datetime] = None

    @field_validator("ticker")
    @classmethod
    def normalize_ticker(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("ticker must not be empty.")
        return v

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        if not 0.0 <= v <= 100.0:
            raise ValueError(f"confidence must be in [0, 100], got {v}.")
        return v

    @field_validator("generated_at", "created_at")
    @classmethod
    def to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else v

    @field_validator("entry_price")
    @classmethod
    def validate_entry_price(cls, v: float) -> float:
        if not math.isfinite(v) or v <= 0:
            raise ValueError(f"entry_price must be a positive finite number, got {v}.")
        return v


class RecommendationEvaluation(BaseModel):
    """Outcome of a snapshot at one horizon.

    Attributes:
        evaluation_id: Auto-assigned DB PK; ``None`` before insertion.
        snapshot_id: FK to ``recommendation_snapshots.snapshot_id``.
        horizon_days: Horizon length in days.
        target_date: ``generated_date + horizon_days``.
        evaluated_at: When this row was last written.
        exit_price: Price on or after the target date (``ok`` only).
        return_pct: Direction-adjusted return in percent (``ok`` only).
        is_win: Outcome classification (``ok`` only).
        data_quality: ``ok`` or ``missing``.
    """

    model_config = ConfigDict(frozen=True)

    evaluation_id: Optional[int] = None
    snapshot_id: str
    horizon_days: int
    target_date: date
    evaluated_at: datetime
    exit_price: Optional[float] = None
    return_pct: Optional[float] = None
    is_win: Optional[bool] = None
    data_quality: DataQuality

    @model_validator(mode="after")
    def validate_quality_consistency(self) -> "RecommendationEvaluation":
        values = (self.exit_price, self.return_pct, self.is_win)
        if self.data_quality == "ok" and any(v is None for v in values):
            raise ValueError(
                "An 'ok' evaluation requires exit_price, return_pct and is_win."
            )
        if self.data_quality == "missing" and any(v is not None for v in values):
            raise ValueError(
                "A 'missing' evaluation must not carry exit_price, return_pct or is_win."
            )
        if self.horizon_days <= 0:
            raise ValueError(f"horizon_days must be positive, got {self.horizon_days}.")
        return self

    @property
    def is_final(self) -> bool:
        """``True`` for an ``ok`` row with a known return; such rows are never rewritten."""
        return self.data_quality == "ok" and self.return_pct is not None
