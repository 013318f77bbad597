"""Shared API helpers for route handlers.

Error translation and response builders used across multiple route files.
"""

from typing import NoReturn

from fastapi import HTTPException

from services.exceptions import (
    InsufficientHoldingsError,
    InvalidQuantityError,
    LedgerError,
    StorageUnavailableError,
)
from services.lot_store import Lot


def raise_for_ledger_error(error: LedgerError) -> NoReturn:
    """Translate a ledger error into the matching HTTP error.

    Args:
        error: The error raised by the ledger.

    Raises:
        HTTPException:
            - 400 Bad Request: invalid units, rate or balance
            - 409 Conflict: not enough units held
            - 503 Service Unavailable: lot storage failed
    """
    if isinstance(error, InvalidQuantityError):
        raise HTTPException(status_code=400, detail=str(error)) from error
    if isinstance(error, InsufficientHoldingsError):
        raise HTTPException(
            status_code=409,
            detail={
                "message": str(error),
                "requested": str(error.requested),
                "available": str(error.available),
            },
        ) from error
    if isinstance(error, StorageUnavailableError):
        raise HTTPException(status_code=503, detail="Lot storage unavailable") from error
    raise HTTPException(status_code=500, detail=str(error)) from error


def lot_response_dict(lot: Lot) -> dict:
    """Build an AssetLotResponse-compatible dict from a Lot."""
    return {
        "id": lot.id,
        "base": lot.base,
        "asset_type": lot.asset_type,
        "units": lot.units,
        "rate": lot.rate,
    }
