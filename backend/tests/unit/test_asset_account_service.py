"""Tests for the AssetAccountService."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from models import LotHistoryEntry
from schemas.market_price import PriceQuote
from services.asset_account_service import AssetAccountService
from services.exceptions import InsufficientHoldingsError, InvalidQuantityError
from services.lot_store import LotKey
from services.market_price_service import MarketPriceService
from tests.fixtures import ACCOUNT_ID, MARKET, seed_lots, units_and_rates


def _history(db: Session) -> list[LotHistoryEntry]:
    return db.query(LotHistoryEntry).order_by(LotHistoryEntry.timestamp.asc()).all()


class TestAddAsset:
    def test_add_asset_logs_buy(self, db: Session):
        lot = AssetAccountService.add_asset(
            db, ACCOUNT_ID, MARKET, "USDT", "BTC", Decimal("1.23"), Decimal("2500")
        )

        assert lot.base == "USDT"
        assert lot.asset_type == "BTC"
        assert lot.units == Decimal("1.23")

        entries = _history(db)
        assert len(entries) == 1
        assert entries[0].type == "buy"
        assert entries[0].source == "trade"
        assert entries[0].units == Decimal("1.23")
        assert entries[0].total == Decimal("3075")

    def test_invalid_add_logs_nothing(self, db: Session):
        with pytest.raises(InvalidQuantityError):
            AssetAccountService.add_asset(
                db, ACCOUNT_ID, MARKET, "USDT", "BTC", Decimal("0"), Decimal("2500")
            )
        assert _history(db) == []


class TestRemoveAsset:
    def test_remove_in_order_of_low_rate(self, db: Session):
        key = LotKey(ACCOUNT_ID, MARKET, "USDT", "BTC")
        lots = seed_lots(db, key, [("2", "2500"), ("1", "2400")])

        actions = AssetAccountService.remove_asset(
            db, ACCOUNT_ID, MARKET, "USDT", "BTC", Decimal("2.5"), Decimal("2600")
        )

        assert [(a.action, a.lot.id) for a in actions] == [
            ("deleted", lots[1].id),
            ("updated", lots[0].id),
        ]
        assert actions[1].lot.units == Decimal("0.5")

        entries = _history(db)
        assert len(entries) == 1
        assert entries[0].type == "sell"
        assert entries[0].units == Decimal("2.5")
        assert entries[0].rate == Decimal("2600")
        assert entries[0].total == Decimal("6500")

    def test_remove_without_rate_records_zero(self, db: Session):
        seed_lots(db, LotKey(ACCOUNT_ID, MARKET, "USDT", "BTC"), [("1", "2400")])

        AssetAccountService.remove_asset(db, ACCOUNT_ID, MARKET, "USDT", "BTC", Decimal("1"))

        assert _history(db)[0].rate == Decimal("0")

    def test_insufficient_holdings_logs_nothing(self, db: Session):
        seed_lots(db, LotKey(ACCOUNT_ID, MARKET, "USDT", "BTC"), [("1", "2400")])

        with pytest.raises(InsufficientHoldingsError):
            AssetAccountService.remove_asset(
                db, ACCOUNT_ID, MARKET, "USDT", "BTC", Decimal("5")
            )
        assert _history(db) == []


class TestSyncAssets:
    @pytest.fixture
    def seeded(self, db: Session):
        seed_lots(db, LotKey(ACCOUNT_ID, MARKET, "BTC", "BTC"), [("1", "1")])
        seed_lots(db, LotKey(ACCOUNT_ID, MARKET, "BTC", "ETH"), [("1", "0.1"), ("1", "0.2")])
        seed_lots(
            db,
            LotKey(ACCOUNT_ID, MARKET, "BTC", "LTC"),
            [("1", "0.3"), ("1", "0.1"), ("1", "0.2")],
        )

    def test_returns_only_synced_assets(self, seeded, db: Session):
        result = AssetAccountService.sync_assets(
            db, ACCOUNT_ID, MARKET, "BTC",
            {"ETH": Decimal("2"), "LTC": Decimal("3")},
            {"LTC": PriceQuote(ask=Decimal("0.1")), "ETH": PriceQuote(ask=Decimal("0.2"))},
        )

        assert "BTC" not in result
        assert len(result["ETH"]) == 2
        assert len(result["LTC"]) == 3
        assert _history(db) == []

    def test_logs_sync_buys_and_sells(self, seeded, db: Session):
        AssetAccountService.sync_assets(
            db, ACCOUNT_ID, MARKET, "BTC",
            {"ETH": Decimal("3"), "LTC": Decimal("1.5")},
            {"ETH": PriceQuote(ask=Decimal("0.2")), "LTC": PriceQuote(ask=Decimal("0.4"))},
        )

        entries = {e.asset_type: e for e in _history(db)}
        assert entries["ETH"].type == "buy"
        assert entries["ETH"].source == "sync"
        assert entries["ETH"].units == Decimal("1")
        assert entries["ETH"].rate == Decimal("0.2")
        assert entries["LTC"].type == "sell"
        assert entries["LTC"].source == "sync"
        assert entries["LTC"].units == Decimal("1.5")
        assert entries["LTC"].rate == Decimal("0.4")

    def test_missing_quote_uses_latest_stored_price(self, seeded, db: Session):
        now = datetime.now(timezone.utc)
        MarketPriceService.record_quotes(
            db, MARKET, "BTC", {"ETH": PriceQuote(ask=Decimal("0.05"))}, now - timedelta(hours=1)
        )
        MarketPriceService.record_quotes(
            db, MARKET, "BTC", {"ETH": PriceQuote(ask=Decimal("0.07"))}, now
        )

        result = AssetAccountService.sync_assets(
            db, ACCOUNT_ID, MARKET, "BTC", {"ETH": Decimal("2.5")}
        )

        assert units_and_rates(result["ETH"])[-1] == (Decimal("0.5"), Decimal("0.07"))

    def test_explicit_quote_wins_over_stored(self, seeded, db: Session):
        MarketPriceService.record_quotes(
            db, MARKET, "BTC", {"ETH": PriceQuote(ask=Decimal("0.07"))}
        )

        result = AssetAccountService.sync_assets(
            db, ACCOUNT_ID, MARKET, "BTC",
            {"ETH": Decimal("2.5")},
            {"ETH": PriceQuote(ask=Decimal("0.09"))},
        )

        assert result["ETH"][-1].rate == Decimal("0.09")

    def test_missing_quote_for_later_asset_changes_nothing(self, seeded, db: Session):
        with pytest.raises(InvalidQuantityError, match="No ask price for LTC"):
            AssetAccountService.sync_assets(
                db, ACCOUNT_ID, MARKET, "BTC",
                {"ETH": Decimal("3"), "LTC": Decimal("5")},
                {"ETH": PriceQuote(ask=Decimal("0.2"))},
            )

        db.rollback()
        lots = AssetAccountService.search_assets(db, ACCOUNT_ID, MARKET, base="BTC")
        assert len(lots["BTC"]["ETH"]) == 2
        assert len(lots["BTC"]["LTC"]) == 3
        assert _history(db) == []

    def test_history_committed_with_lots(self, seeded, db: Session):
        AssetAccountService.sync_assets(
            db, ACCOUNT_ID, MARKET, "BTC",
            {"ETH": Decimal("3")},
            {"ETH": PriceQuote(ask=Decimal("0.2"))},
        )

        # Committed by the ledger together with the lots
        db.rollback()
        assert [e.type for e in _history(db)] == ["buy"]
        assert len(AssetAccountService.search_assets(db, ACCOUNT_ID, MARKET)["BTC"]["ETH"]) == 3

    def test_missing_quote_without_stored_price(self, seeded, db: Session):
        with pytest.raises(InvalidQuantityError, match="No ask price"):
            AssetAccountService.sync_assets(
                db, ACCOUNT_ID, MARKET, "BTC", {"ETH": Decimal("5")}
            )


class TestSearchAssets:
    def test_search_assets(self, db: Session):
        seed_lots(db, LotKey(ACCOUNT_ID, MARKET, "USDT", "BTC"), [("2", "2500"), ("1", "2400")])

        result = AssetAccountService.search_assets(db, ACCOUNT_ID, MARKET)

        assert list(result) == ["USDT"]
        assert len(result["USDT"]["BTC"]) == 2

    def test_search_filtered_by_asset(self, db: Session):
        seed_lots(db, LotKey(ACCOUNT_ID, MARKET, "USDT", "BTC"), [("2", "2500")])
        seed_lots(db, LotKey(ACCOUNT_ID, MARKET, "USDT", "ETH"), [("2", "250")])

        result = AssetAccountService.search_assets(
            db, ACCOUNT_ID, MARKET, base="USDT", asset_type="ETH"
        )

        assert list(result["USDT"]) == ["ETH"]


class TestHistory:
    def test_get_history_groups_by_base_and_asset(self, db: Session):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        AssetAccountService.add_history(
            db, ACCOUNT_ID, MARKET, "USDT", "BTC",
            type="sell", units=Decimal("1.23"), rate=Decimal("2500"),
            timestamp=start + timedelta(minutes=1),
        )
        AssetAccountService.add_history(
            db, ACCOUNT_ID, MARKET, "USDT", "BTC",
            type="buy", units=Decimal("2"), rate=Decimal("2400"), timestamp=start,
        )
        AssetAccountService.add_history(
            db, ACCOUNT_ID, MARKET, "BTC", "ETH",
            type="buy", units=Decimal("1"), rate=Decimal("0.1"), timestamp=start,
        )

        history = AssetAccountService.get_history(db, ACCOUNT_ID, MARKET, "USDT", "BTC")

        assert list(history) == ["USDT"]
        assert [e.type for e in history["USDT"]["BTC"]] == ["buy", "sell"]
        assert history["USDT"]["BTC"][1].total == Decimal("3075")

    def test_get_history_other_account_empty(self, db: Session):
        AssetAccountService.add_history(
            db, ACCOUNT_ID, MARKET, "USDT", "BTC",
            type="buy", units=Decimal("1"), rate=Decimal("1"),
        )
        assert AssetAccountService.get_history(db, "nobody", MARKET) == {}

    def test_unknown_type_rejected(self, db: Session):
        with pytest.raises(ValueError, match="Unknown history type"):
            AssetAccountService.add_history(
                db, ACCOUNT_ID, MARKET, "USDT", "BTC",
                type="transfer", units=Decimal("1"), rate=Decimal("1"),
            )

    def test_unknown_source_rejected(self, db: Session):
        with pytest.raises(ValueError, match="Unknown history source"):
            AssetAccountService.add_history(
                db, ACCOUNT_ID, MARKET, "USDT", "BTC",
                type="buy", units=Decimal("1"), rate=Decimal("1"), source="import",
            )
