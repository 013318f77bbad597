"""Lot management API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.helpers import lot_response_dict, raise_for_ledger_error
from database import get_db
from schemas.lot import (
    AssetLotCreate,
    AssetLotResponse,
    LotActionResponse,
    LotHistoryResponse,
    LotRemovalRequest,
    ReconcileRequest,
)
from services.asset_account_service import AssetAccountService
from services.exceptions import LedgerError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/accounts/{account_id}/markets/{market}", tags=["lots"])


@router.get("/lots", response_model=dict[str, dict[str, list[AssetLotResponse]]])
def get_lots(
    account_id: str,
    market: str,
    base: Optional[str] = Query(default=None),
    asset_type: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    """Get lots grouped by base currency and asset type."""
    try:
        grouped = AssetAccountService.search_assets(db, account_id, market, base, asset_type)
    except LedgerError as e:
        raise_for_ledger_error(e)
    return {
        lot_base: {
            lot_asset: [lot_response_dict(lot) for lot in lots]
            for lot_asset, lots in by_asset.items()
        }
        for lot_base, by_asset in grouped.items()
    }


@router.post("/lots", response_model=AssetLotResponse, status_code=201)
def add_lot(
    account_id: str,
    market: str,
    lot_data: AssetLotCreate,
    db: Session = Depends(get_db),
):
    """Record a purchase as a new lot."""
    try:
        lot = AssetAccountService.add_asset(
            db,
            account_id,
            market,
            lot_data.base,
            lot_data.asset_type,
            lot_data.units,
            lot_data.rate,
        )
        db.commit()
    except LedgerError as e:
        raise_for_ledger_error(e)
    return lot_response_dict(lot)


@router.post("/lots/remove", response_model=list[LotActionResponse])
def remove_units(
    account_id: str,
    market: str,
    removal: LotRemovalRequest,
    db: Session = Depends(get_db),
):
    """Dispose of units, consuming the lowest-rate lots first.

    Returns the deleted and partially consumed lots in consumption order.
    Responds 409 without touching any lot when not enough units are held.
    """
    try:
        actions = AssetAccountService.remove_asset(
            db,
            account_id,
            market,
            removal.base,
            removal.asset_type,
            removal.units,
            removal.rate,
        )
        db.commit()
    except LedgerError as e:
        raise_for_ledger_error(e)
    return [{"action": a.action, "lot": lot_response_dict(a.lot)} for a in actions]


@router.post(
    "/bases/{base}/reconcile",
    response_model=dict[str, list[AssetLotResponse]],
)
def reconcile(
    account_id: str,
    market: str,
    base: str,
    request: ReconcileRequest,
    db: Session = Depends(get_db),
):
    """Align tracked lots with the balances reported by the market.

    Returns the resulting lots for every asset type in the request.
    """
    try:
        lot_sets = AssetAccountService.sync_assets(
            db, account_id, market, base, request.balances, request.prices
        )
        db.commit()
    except LedgerError as e:
        raise_for_ledger_error(e)
    return {
        asset_type: [lot_response_dict(lot) for lot in lots]
        for asset_type, lots in lot_sets.items()
    }


@router.get(
    "/history",
    response_model=dict[str, dict[str, list[LotHistoryResponse]]],
)
def get_history(
    account_id: str,
    market: str,
    base: Optional[str] = Query(default=None),
    asset_type: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    """Get buy/sell history grouped by base currency and asset type."""
    history = AssetAccountService.get_history(db, account_id, market, base, asset_type)
    return {
        entry_base: {
            entry_asset: [LotHistoryResponse.model_validate(e) for e in entries]
            for entry_asset, entries in by_asset.items()
        }
        for entry_base, by_asset in history.items()
    }
