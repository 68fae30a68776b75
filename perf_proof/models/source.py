"""
Read-only views of product-side records the engine consumes.

``Recommendation`` is a row produced by the external recommendation provider.
``Holding`` and ``Idea`` are the portfolio and idea records used to resolve
an entry price during backfill. The engine never writes these tables outside
demo seeding and tests.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class Recommendation(BaseModel):
    """A buy/sell/hold call made by the recommendation provider."""

    model_config = ConfigDict(frozen=True)

    recommendation_id: str
    user_id: str
    holding_id: Optional[str] = None
    ticker: str
    action: Literal["buy", "sell", "hold"]
    confidence: float = 0.0
    reasoning: Optional[str] = None
    generated_at: datetime
    created_at: datetime

    @field_validator("ticker")
    @classmethod
    def normalize_ticker(cls, v: str) -> str:
        return v.strip().upper()


class Holding(BaseModel):
    """A portfolio position; ``current_price`` is the last refreshed quote."""

    model_config = ConfigDict(frozen=True)

    holding_id: str
    user_id: str
    idea_id: Optional[str] = None
    ticker: str
    shares: float = 0.0
    avg_price: Optional[float] = None
    current_price: Optional[float] = None

    @field_validator("ticker")
    @classmethod
    def normalize_ticker(cls, v: str) -> str:
        return v.strip().upper()


class Idea(BaseModel):
    """A generated investment idea with its quoted price and risk label."""

    model_config = ConfigDict(frozen=True)

    idea_id: str
    user_id: Optional[str] = None
    ticker: str
    name: Optional[str] = None
    current_price: Optional[float] = None
    currency: Optional[str] = None
    risk_level: Optional[str] = None
    generated_date: date

    @field_validator("ticker")
    @classmethod
    def normalize_ticker(cls, v: str) -> str:
        return v.strip().upper()
