"""Pydantic schemas for market price quotes."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class PriceQuote(BaseModel):
    """Current price of one unit of an asset, expressed in the base currency."""

    ask: Decimal = Field(ge=0, decimal_places=8)
    bid: Decimal | None = Field(default=None, ge=0, decimal_places=8)

    model_config = ConfigDict(frozen=True)


class PriceQuoteBatch(BaseModel):
    """Schema for recording a batch of collected quotes for one base currency."""

    base: str = Field(min_length=1)
    quotes: dict[str, PriceQuote]
    collected_at: datetime | None = None


class PriceRecordResponse(BaseModel):
    """Result of recording a batch of quotes."""

    recorded: int
    pruned: int
