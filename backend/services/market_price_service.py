"""Market price service - time-bounded history of collected quotes.

Callers that poll a market hand the resolved quotes to ``record_quotes``;
entries older than the retention window are pruned on every write.
"""

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from config import settings
from models import MarketPrice
from schemas.market_price import PriceQuote

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    """Normalize to UTC; the collected_at column stores wall time without an offset."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class MarketPriceService:
    """Stores and serves per-market price quotes."""

    @staticmethod
    def record_quotes(
        db: Session,
        market: str,
        base: str,
        quotes: Mapping[str, PriceQuote],
        collected_at: datetime | None = None,
    ) -> tuple[int, int]:
        """Store one price row per asset type and prune expired rows.

        Args:
            db: Database session
            market: Market the quotes were collected from
            base: Base currency the prices are expressed in
            quotes: Map of asset_type -> quote
            collected_at: Collection time (defaults to now; stored as UTC,
                naive values are taken as UTC)

        Returns:
            (recorded, pruned) row counts.
        """
        collected_at = _as_utc(collected_at or datetime.now(timezone.utc))

        for asset_type, quote in quotes.items():
            db.add(
                MarketPrice(
                    market=market,
                    base=base,
                    asset_type=asset_type,
                    price=quote.ask,
                    bid=quote.bid,
                    collected_at=collected_at,
                )
            )
        db.flush()

        cutoff = collected_at - timedelta(hours=settings.PRICE_RETENTION_HOURS)
        pruned = MarketPriceService.prune(db, market, cutoff)
        logger.info(
            "Recorded %d %s quotes for %s (pruned %d)",
            len(quotes), base, market, pruned,
        )
        return len(quotes), pruned

    @staticmethod
    def prune(db: Session, market: str, older_than: datetime) -> int:
        """Delete quotes for a market collected before ``older_than``."""
        count = (
            db.query(MarketPrice)
            .filter(
                MarketPrice.market == market,
                MarketPrice.collected_at < _as_utc(older_than),
            )
            .delete(synchronize_session=False)
        )
        db.flush()
        return count

    @staticmethod
    def latest_quotes(db: Session, market: str, base: str) -> dict[str, PriceQuote]:
        """Get the most recent quote per asset type for a market and base."""
        rows = (
            db.query(MarketPrice)
            .filter_by(market=market, base=base)
            .order_by(MarketPrice.collected_at.asc())
            .all()
        )
        # Later rows overwrite earlier ones
        latest: dict[str, PriceQuote] = {}
        for row in rows:
            latest[row.asset_type] = PriceQuote(ask=row.price, bid=row.bid)
        return latest
