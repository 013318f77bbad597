"""MarketPrice model - time-bounded history of collected quotes."""

from decimal import Decimal

from sqlalchemy import Column, DateTime, Index, Numeric, String

from database import Base
from models.utils import generate_uuid, utcnow


class MarketPrice(Base):
    """Ask (and optionally bid) price of one unit of an asset on a market."""

    __tablename__ = "market_prices"
    __table_args__ = (
        Index("ix_market_price_lookup", "market", "base", "asset_type", "collected_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    market = Column(String, nullable=False)
    base = Column(String, nullable=False)
    asset_type = Column(String, nullable=False)
    price = Column(Numeric(28, 8), nullable=False)  # lowest ask
    bid = Column(Numeric(28, 8), nullable=True)
    units = Column(Numeric(28, 8), nullable=False, default=Decimal("1"))
    collected_at = Column(
        DateTime, nullable=False, default=utcnow
    )
