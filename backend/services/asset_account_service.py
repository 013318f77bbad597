"""Asset account service - records trades and syncs against the lot ledger.

Sits between the API and ``LotLedgerService``: runs ledger operations for an
account on a market and logs each buy and sell to the history table.
"""

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from models import LotHistoryEntry
from schemas.market_price import PriceQuote
from services.lot_ledger_service import AssetReconciliation, LotAction, LotLedgerService
from services.lot_store import Lot, LotKey, SqlAlchemyLotStore
from services.market_price_service import MarketPriceService

logger = logging.getLogger(__name__)

HISTORY_TYPES = {"buy", "sell"}
HISTORY_SOURCES = {"trade", "sync"}


class AssetAccountService:
    """Account-level asset operations with history logging."""

    @staticmethod
    def _ledger(db: Session) -> LotLedgerService:
        return LotLedgerService(SqlAlchemyLotStore(db))

    # --- Lots ---

    @staticmethod
    def add_asset(
        db: Session,
        account_id: str,
        market: str,
        base: str,
        asset_type: str,
        units: Decimal,
        rate: Decimal,
    ) -> Lot:
        """Record a purchase as a new lot and log a buy."""
        key = LotKey(account_id, market, base, asset_type)
        lot = AssetAccountService._ledger(db).add_lot(key, units, rate)
        AssetAccountService.add_history(
            db, account_id, market, base, asset_type,
            type="buy", units=lot.units, rate=lot.rate, source="trade",
        )
        return lot

    @staticmethod
    def remove_asset(
        db: Session,
        account_id: str,
        market: str,
        base: str,
        asset_type: str,
        units: Decimal,
        rate: Decimal | None = None,
    ) -> list[LotAction]:
        """Dispose of units lowest rate first and log a sell.

        Args:
            rate: Sale price per unit, recorded in history only ($0 if unknown)
        """
        key = LotKey(account_id, market, base, asset_type)
        actions = AssetAccountService._ledger(db).remove_units(key, units)
        consumed = sum((a.consumed for a in actions), Decimal("0"))
        AssetAccountService.add_history(
            db, account_id, market, base, asset_type,
            type="sell", units=consumed, rate=rate or Decimal("0"), source="trade",
        )
        return actions

    @staticmethod
    def sync_assets(
        db: Session,
        account_id: str,
        market: str,
        base: str,
        balances: Mapping[str, Decimal],
        prices: Mapping[str, PriceQuote] | None = None,
    ) -> dict[str, list[Lot]]:
        """Reconcile lots with balances reported by the market.

        Quotes missing from ``prices`` fall back to the latest stored quote
        for the market and base. Lots synthesized or consumed are logged as
        buys and sells with source ``"sync"``.

        Returns:
            Dict of asset_type -> resulting lots for every asset in ``balances``.
        """
        quotes = dict(prices or {})
        if any(asset_type not in quotes for asset_type in balances):
            stored = MarketPriceService.latest_quotes(db, market, base)
            for asset_type in balances:
                if asset_type not in quotes and asset_type in stored:
                    quotes[asset_type] = stored[asset_type]

        def log_history(asset_type: str, outcome: AssetReconciliation) -> None:
            if outcome.added is not None:
                AssetAccountService.add_history(
                    db, account_id, market, base, asset_type,
                    type="buy", units=outcome.added.units, rate=outcome.added.rate,
                    source="sync",
                )
            if outcome.removed:
                quote = quotes.get(asset_type)
                AssetAccountService.add_history(
                    db, account_id, market, base, asset_type,
                    type="sell",
                    units=sum((a.consumed for a in outcome.removed), Decimal("0")),
                    rate=quote.ask if quote else Decimal("0"),
                    source="sync",
                )

        # History is written inside the reconcile transaction
        outcomes = AssetAccountService._ledger(db).reconcile_with_actions(
            account_id, market, base, balances, quotes, on_reconciled=log_history
        )

        changed = sum(1 for outcome in outcomes.values() if outcome.changed)
        logger.info(
            "Synced %d assets for account %s on %s/%s (%d changed)",
            len(outcomes), account_id, market, base, changed,
        )
        return {asset_type: outcome.lots for asset_type, outcome in outcomes.items()}

    @staticmethod
    def search_assets(
        db: Session,
        account_id: str,
        market: str,
        base: str | None = None,
        asset_type: str | None = None,
    ) -> dict[str, dict[str, list[Lot]]]:
        """Get lots grouped as ``{base: {asset_type: [lots]}}``."""
        return SqlAlchemyLotStore(db).load_account(account_id, market, base, asset_type)

    # --- History ---

    @staticmethod
    def add_history(
        db: Session,
        account_id: str,
        market: str,
        base: str,
        asset_type: str,
        type: str,
        units: Decimal,
        rate: Decimal,
        source: str = "trade",
        timestamp: datetime | None = None,
    ) -> LotHistoryEntry:
        """Log a buy or sell event."""
        if type not in HISTORY_TYPES:
            raise ValueError(f"Unknown history type: {type}")
        if source not in HISTORY_SOURCES:
            raise ValueError(f"Unknown history source: {source}")

        entry = LotHistoryEntry(
            account_id=account_id,
            market=market,
            base=base,
            asset_type=asset_type,
            type=type,
            units=units,
            rate=rate,
            total=units * rate,
            source=source,
            timestamp=timestamp or datetime.now(timezone.utc),
        )
        db.add(entry)
        db.flush()
        return entry

    @staticmethod
    def get_history(
        db: Session,
        account_id: str,
        market: str,
        base: str | None = None,
        asset_type: str | None = None,
    ) -> dict[str, dict[str, list[LotHistoryEntry]]]:
        """Get history grouped as ``{base: {asset_type: [entries]}}``, oldest first."""
        query = db.query(LotHistoryEntry).filter_by(account_id=account_id, market=market)
        if base is not None:
            query = query.filter_by(base=base)
        if asset_type is not None:
            query = query.filter_by(asset_type=asset_type)

        result: dict[str, dict[str, list[LotHistoryEntry]]] = {}
        for entry in query.order_by(LotHistoryEntry.timestamp.asc()).all():
            result.setdefault(entry.base, {}).setdefault(entry.asset_type, []).append(entry)
        return result
