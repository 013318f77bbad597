"""Test fixtures and sample data."""
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from services.lot_ledger_service import LotLedgerService
from services.lot_store import Lot, LotKey, SqlAlchemyLotStore

ACCOUNT_ID = "test-user"
MARKET = "poloniex"


def seed_lots(
    db: Session,
    key: LotKey,
    lots: list[tuple[str, str]],
) -> list[Lot]:
    """Store lots for a key in the given order and commit.

    This is a helper function (not a fixture) for tests that need a
    specific starting lot set.

    Args:
        db: Database session
        key: Key to store the lots under
        lots: List of (units, rate) string pairs, in storage order

    Returns:
        The stored lots, in storage order
    """
    store = SqlAlchemyLotStore(db)
    created = [store.add(key, Decimal(units), Decimal(rate)) for units, rate in lots]
    db.commit()
    return created


def units_and_rates(lots: list[Lot]) -> list[tuple[Decimal, Decimal]]:
    """Reduce lots to comparable (units, rate) pairs."""
    return [(lot.units, lot.rate) for lot in lots]


@pytest.fixture
def lot_key() -> LotKey:
    """Key for ETH held against a BTC base."""
    return LotKey(ACCOUNT_ID, MARKET, "BTC", "ETH")


@pytest.fixture
def lot_store(db: Session) -> SqlAlchemyLotStore:
    """A lot store on the test database."""
    return SqlAlchemyLotStore(db)


@pytest.fixture
def ledger(lot_store: SqlAlchemyLotStore) -> LotLedgerService:
    """A ledger with the default reconciliation tolerance."""
    return LotLedgerService(lot_store, epsilon=Decimal("0.00000001"))
