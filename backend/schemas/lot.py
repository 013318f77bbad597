"""Pydantic schemas for lot-based asset tracking."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from schemas.market_price import PriceQuote


class AssetLotCreate(BaseModel):
    """Schema for adding a newly acquired lot."""

    base: str = Field(min_length=1)
    asset_type: str = Field(min_length=1)
    units: Decimal
    rate: Decimal


class LotRemovalRequest(BaseModel):
    """Schema for disposing of units of an asset.

    ``rate`` is the sale price per unit, used only for the history record.
    """

    base: str = Field(min_length=1)
    asset_type: str = Field(min_length=1)
    units: Decimal
    rate: Decimal | None = None


class ReconcileRequest(BaseModel):
    """Schema for aligning tracked lots with balances observed on the market.

    Asset types missing from ``prices`` fall back to the latest stored quote.
    """

    balances: dict[str, Decimal]
    prices: dict[str, PriceQuote] = {}


class AssetLotResponse(BaseModel):
    """Schema for a lot in API responses."""

    id: str
    base: str
    asset_type: str
    units: Decimal
    rate: Decimal

    model_config = ConfigDict(from_attributes=True)


class LotActionResponse(BaseModel):
    """A deletion or partial consumption applied to a lot by a removal."""

    action: str  # "deleted" / "updated"
    lot: AssetLotResponse


class LotHistoryResponse(BaseModel):
    """Schema for a history entry in API responses."""

    id: str
    base: str
    asset_type: str
    type: str
    units: Decimal
    rate: Decimal
    total: Decimal
    source: str
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)
