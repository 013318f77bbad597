"""SQLAlchemy ORM models."""

from .asset_lot import AssetLot
from .lot_history import LotHistoryEntry
from .market_price import MarketPrice
from .utils import generate_uuid

__all__ = ["AssetLot", "LotHistoryEntry", "MarketPrice", "generate_uuid"]
