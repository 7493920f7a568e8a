"""
Pydantic schemas for data validation and serialization.

Used for API request bodies and responses.
"""
from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from oddsedge.data.quote_store import RawQuote

MAX_INGEST_BATCH = 5000


# =============================================================================
# INGEST SCHEMAS
# =============================================================================
class IngestQuote(BaseModel):
    """One sportsbook price pushed by an upstream feed."""

    sportsbook: str = Field(min_length=1)  # e.g., 'draftkings'
    event_id: str = Field(min_length=1)
    market: str = Field(min_length=1)  # e.g., 'spreads', 'totals', 'player_points'
    side: str  # over/under, home/away, yes/no
    timestamp: Union[datetime, float, str]
    american_price: Optional[float] = None
    decimal_price: Optional[float] = None
    line: Optional[float] = None
    selection: str = ""
    deep_link: Optional[str] = None
    sport: str = ""
    league: str = ""
    event_start: Optional[datetime] = None
    is_live: bool = False
    description: str = ""

    @field_validator("sportsbook", "side")
    @classmethod
    def lowercase(cls, v: str) -> str:
        return v.strip().lower()

    @model_validator(mode="after")
    def price_required(self) -> "IngestQuote":
        if self.american_price is None and self.decimal_price is None:
            raise ValueError("american_price or decimal_price is required")
        return self

    def to_raw(self) -> RawQuote:
        return RawQuote(**self.model_dump())


class IngestRequest(BaseModel):
    """Batch of quotes for POST /api/ingest/quotes."""

    quotes: list[IngestQuote] = Field(max_length=MAX_INGEST_BATCH)


class IngestResponse(BaseModel):
    """Outcome of an ingest batch."""

    accepted: int
    rejected: int
    store_size: int
    rejected_by_reason: dict[str, int] = Field(default_factory=dict)
