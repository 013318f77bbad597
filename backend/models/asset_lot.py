"""AssetLot model - persistent record for each acquisition of a virtual currency."""

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, Numeric, String

from database import Base
from models.utils import generate_uuid, utcnow


class AssetLot(Base):
    """A lot of an asset held in an account on a market, valued in a base currency.

    Each acquisition is its own row, even when the rate repeats. ``rate`` is
    fixed at creation; only ``units`` shrinks as the lot is consumed, and the
    row is deleted once nothing is left.
    """

    __tablename__ = "asset_lots"
    __table_args__ = (
        CheckConstraint("units > 0", name="ck_asset_lot_units_positive"),
        CheckConstraint("rate >= 0", name="ck_asset_lot_rate_non_negative"),
        Index("ix_asset_lot_key", "account_id", "market", "base", "asset_type"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(String, nullable=False)
    market = Column(String, nullable=False)  # e.g., "poloniex"
    base = Column(String, nullable=False)  # e.g., "USDT", "BTC"
    asset_type = Column(String, nullable=False)  # e.g., "ETH"
    units = Column(Numeric(28, 8), nullable=False)
    rate = Column(Numeric(28, 8), nullable=False)
    position = Column(Integer, nullable=False)  # insertion order within the key
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
    )
