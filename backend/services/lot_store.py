"""Lot storage collaborator for the ledger.

Defines the ``Lot`` record the ledger works with, the ``LotStore`` protocol
it reads and writes through, and the SQLAlchemy-backed implementation.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Protocol

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import AssetLot
from services.exceptions import StorageUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LotKey:
    """Identifies one lot set: an asset held in an account on a market, in a base currency."""

    account_id: str
    market: str
    base: str
    asset_type: str


@dataclass(frozen=True)
class Lot:
    """A discrete acquisition of ``units`` at a fixed ``rate`` (price per unit in ``base``)."""

    id: str
    base: str
    asset_type: str
    units: Decimal
    rate: Decimal

    def with_units(self, units: Decimal) -> "Lot":
        """Return a copy of this lot holding ``units``; the rate never changes."""
        return replace(self, units=units)


class LotStore(Protocol):
    """Protocol for lot persistence.

    Implementations return lots in the order they were stored. Mutations
    become durable on ``commit()``.
    """

    def load(self, key: LotKey) -> list[Lot]:
        """Return all lots for ``key`` in storage order."""
        ...

    def add(self, key: LotKey, units: Decimal, rate: Decimal) -> Lot:
        """Store a new lot at the end of the key's storage order."""
        ...

    def update_units(self, key: LotKey, lot_id: str, units: Decimal) -> Lot:
        """Set the remaining units of an existing lot."""
        ...

    def delete(self, key: LotKey, lot_id: str) -> None:
        """Remove a lot."""
        ...

    def load_account(
        self,
        account_id: str,
        market: str,
        base: str | None = None,
        asset_type: str | None = None,
    ) -> dict[str, dict[str, list[Lot]]]:
        """Return lots grouped as ``{base: {asset_type: [lots]}}``."""
        ...

    def commit(self) -> None:
        """Make pending mutations durable."""
        ...

    def rollback(self) -> None:
        """Discard pending mutations."""
        ...


def _to_lot(row: AssetLot) -> Lot:
    return Lot(
        id=row.id,
        base=row.base,
        asset_type=row.asset_type,
        units=row.units,
        rate=row.rate,
    )


class SqlAlchemyLotStore:
    """LotStore backed by the ``asset_lots`` table.

    Any database error rolls the session back and is re-raised as
    ``StorageUnavailableError``.
    """

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, action: str, key: object):
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Lot store %s failed for %s: %s", action, key, e)
            raise StorageUnavailableError(f"Lot store {action} failed: {e}") from e

    @staticmethod
    def _key_filter(key: LotKey) -> tuple:
        return (
            AssetLot.account_id == key.account_id,
            AssetLot.market == key.market,
            AssetLot.base == key.base,
            AssetLot.asset_type == key.asset_type,
        )

    def _get_row(self, key: LotKey, lot_id: str) -> AssetLot:
        row = self.db.query(AssetLot).filter(AssetLot.id == lot_id, *self._key_filter(key)).first()
        if row is None:
            raise ValueError(f"Lot not found: {lot_id}")
        return row

    def load(self, key: LotKey) -> list[Lot]:
        with self._guard("load", key):
            rows = (
                self.db.query(AssetLot)
                .filter(*self._key_filter(key))
                .order_by(AssetLot.position.asc())
                .all()
            )
        return [_to_lot(row) for row in rows]

    def add(self, key: LotKey, units: Decimal, rate: Decimal) -> Lot:
        with self._guard("add", key):
            last_position = (
                self.db.query(func.max(AssetLot.position))
                .filter(*self._key_filter(key))
                .scalar()
            )
            row = AssetLot(
                account_id=key.account_id,
                market=key.market,
                base=key.base,
                asset_type=key.asset_type,
                units=units,
                rate=rate,
                position=(last_position or 0) + 1,
            )
            self.db.add(row)
            self.db.flush()
        return Lot(id=row.id, base=key.base, asset_type=key.asset_type, units=units, rate=rate)

    def update_units(self, key: LotKey, lot_id: str, units: Decimal) -> Lot:
        with self._guard("update", key):
            row = self._get_row(key, lot_id)
            row.units = units
            self.db.flush()
        return Lot(id=row.id, base=row.base, asset_type=row.asset_type, units=units, rate=row.rate)

    def delete(self, key: LotKey, lot_id: str) -> None:
        with self._guard("delete", key):
            row = self._get_row(key, lot_id)
            self.db.delete(row)
            self.db.flush()

    def load_account(
        self,
        account_id: str,
        market: str,
        base: str | None = None,
        asset_type: str | None = None,
    ) -> dict[str, dict[str, list[Lot]]]:
        with self._guard("load", (account_id, market, base, asset_type)):
            query = self.db.query(AssetLot).filter_by(account_id=account_id, market=market)
            if base is not None:
                query = query.filter_by(base=base)
            if asset_type is not None:
                query = query.filter_by(asset_type=asset_type)
            rows = query.order_by(
                AssetLot.base.asc(),
                AssetLot.asset_type.asc(),
                AssetLot.position.asc(),
            ).all()

        result: dict[str, dict[str, list[Lot]]] = {}
        for row in rows:
            result.setdefault(row.base, {}).setdefault(row.asset_type, []).append(_to_lot(row))
        return result

    def commit(self) -> None:
        with self._guard("commit", None):
            self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
