"""Market price API endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from schemas.market_price import PriceQuote, PriceQuoteBatch, PriceRecordResponse
from services.market_price_service import MarketPriceService

router = APIRouter(prefix="/api/markets/{market}", tags=["market-data"])


@router.post("/prices", response_model=PriceRecordResponse, status_code=201)
def record_prices(
    market: str,
    batch: PriceQuoteBatch,
    db: Session = Depends(get_db),
):
    """Store collected quotes and prune those past the retention window."""
    recorded, pruned = MarketPriceService.record_quotes(
        db, market, batch.base, batch.quotes, batch.collected_at
    )
    db.commit()
    return PriceRecordResponse(recorded=recorded, pruned=pruned)


@router.get("/prices/latest", response_model=dict[str, PriceQuote])
def get_latest_prices(
    market: str,
    base: str = Query(..., description="Base currency the prices are expressed in"),
    db: Session = Depends(get_db),
):
    """Get the most recent quote per asset type."""
    return MarketPriceService.latest_quotes(db, market, base)
