"""Pydantic request/response schemas."""

from .lot import (
    AssetLotCreate,
    AssetLotResponse,
    LotActionResponse,
    LotHistoryResponse,
    LotRemovalRequest,
    ReconcileRequest,
)
from .market_price import PriceQuote, PriceQuoteBatch, PriceRecordResponse

__all__ = [
    "AssetLotCreate",
    "AssetLotResponse",
    "LotActionResponse",
    "LotHistoryResponse",
    "LotRemovalRequest",
    "PriceQuote",
    "PriceQuoteBatch",
    "PriceRecordResponse",
    "ReconcileRequest",
]
