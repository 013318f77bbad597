"""LotHistoryEntry model - trade history logged around ledger operations."""

from sqlalchemy import Column, DateTime, Index, Numeric, String

from database import Base
from models.utils import generate_uuid, utcnow


class LotHistoryEntry(Base):
    """A buy or sell event recorded for an account's asset on a market."""

    __tablename__ = "lot_history"
    __table_args__ = (
        Index("ix_lot_history_account_market", "account_id", "market"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(String, nullable=False)
    market = Column(String, nullable=False)
    base = Column(String, nullable=False)
    asset_type = Column(String, nullable=False)
    type = Column(String, nullable=False)  # "buy" / "sell"
    units = Column(Numeric(28, 8), nullable=False)
    rate = Column(Numeric(28, 8), nullable=False)
    total = Column(Numeric(28, 8), nullable=False)
    source = Column(String, nullable=False)  # "trade" / "sync"
    timestamp = Column(
        DateTime, nullable=False, default=utcnow, index=True
    )
