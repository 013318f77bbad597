"""Service for lot-based tracking of virtual-currency holdings.

Adds, consumes and reconciles lots keyed by (account, market, base, asset).
Lots are always consumed lowest acquisition rate first, ties
in storage order, so disposals realize the largest gain first and every run
over the same lots makes the same choices.

Each read-sort-mutate-commit cycle runs under a per-key lock; a
reconciliation holds the locks of every key it touches and commits once.
"""

import logging
import threading
from collections.abc import Callable, Mapping
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from config import settings
from schemas.market_price import PriceQuote
from services.exceptions import InsufficientHoldingsError, InvalidQuantityError
from services.lot_store import Lot, LotKey, LotStore

logger = logging.getLogger(__name__)

# Units, rates and balances are stored as Numeric(28, 8)
UNIT_PLACES = 8
UNIT = Decimal(1).scaleb(-UNIT_PLACES)


@dataclass(frozen=True)
class LotAction:
    """A change applied to one lot by a removal.

    ``action`` is ``"deleted"`` (``lot`` as it was before deletion) or
    ``"updated"`` (``lot`` with its reduced units). ``consumed`` is the
    number of units taken from the lot.
    """

    action: str
    lot: Lot
    consumed: Decimal


@dataclass
class AssetReconciliation:
    """Outcome of reconciling one asset type against its observed balance."""

    lots: list[Lot]
    added: Lot | None = None
    removed: list[LotAction] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.added is not None or bool(self.removed)


def _to_decimal(value, name: str) -> Decimal:
    """Coerce a caller-supplied quantity to a finite Decimal.

    Values must fit the stored unit precision (``UNIT_PLACES`` decimal
    places) exactly; anything finer would be rounded by storage.
    """
    if isinstance(value, bool):
        raise InvalidQuantityError(f"{name} must be a number, got {value!r}")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidQuantityError(f"{name} must be a number, got {value!r}")
    if not result.is_finite():
        raise InvalidQuantityError(f"{name} must be finite, got {value!r}")
    try:
        quantized = result.quantize(UNIT)
    except InvalidOperation:
        raise InvalidQuantityError(f"{name} is out of range, got {value!r}")
    if quantized != result:
        raise InvalidQuantityError(
            f"{name} must have at most {UNIT_PLACES} decimal places, got {value!r}"
        )
    return result


class LotLedgerService:
    """Manages the lots of one lot store with lowest-rate-first consumption."""

    # Shared across instances so every session in the process serializes
    # on the same key.
    _key_locks: dict[LotKey, threading.Lock] = {}
    _registry_lock = threading.Lock()

    def __init__(self, store: LotStore, epsilon: Decimal | None = None):
        self.store = store
        self.epsilon = settings.RECONCILE_EPSILON if epsilon is None else epsilon

    @classmethod
    def _lock_for(cls, key: LotKey) -> threading.Lock:
        with cls._registry_lock:
            lock = cls._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                cls._key_locks[key] = lock
            return lock

    @contextmanager
    def _exclusive(self, key: LotKey):
        with self._lock_for(key):
            yield

    # --- Queries ---

    def get_lots(self, key: LotKey) -> list[Lot]:
        """Get all lots for a key in storage order."""
        return self.store.load(key)

    def total_units(self, key: LotKey) -> Decimal:
        """Sum of units across all lots for a key."""
        return sum((lot.units for lot in self.store.load(key)), Decimal("0"))

    # --- Mutations ---

    def add_lot(self, key: LotKey, units, rate) -> Lot:
        """Create a new lot of ``units`` acquired at ``rate``.

        Never merges with an existing lot, even one with the same rate.

        Raises:
            InvalidQuantityError: units <= 0 or rate < 0.
            StorageUnavailableError: the store failed; nothing was written.
        """
        units = _to_decimal(units, "units")
        rate = _to_decimal(rate, "rate")
        if units <= 0:
            raise InvalidQuantityError(f"units must be positive, got {units}")
        if rate < 0:
            raise InvalidQuantityError(f"rate must not be negative, got {rate}")

        with self._exclusive(key):
            lot = self._add_locked(key, units, rate)
            self.store.commit()
        return lot

    def remove_units(self, key: LotKey, units) -> list[LotAction]:
        """Consume ``units`` from the key's lots, lowest rate first.

        Lots fully consumed are deleted; at most one lot is left partially
        consumed.

        Returns:
            The deletions and the partial update applied, in consumption order.

        Raises:
            InvalidQuantityError: units <= 0.
            InsufficientHoldingsError: units exceed the total held; nothing
                is consumed.
            StorageUnavailableError: the store failed; nothing was written.
        """
        units = _to_decimal(units, "units")
        if units <= 0:
            raise InvalidQuantityError(f"units must be positive, got {units}")

        with self._exclusive(key):
            actions = self._remove_locked(key, units)
            self.store.commit()
        return actions

    def reconcile_to_balances(
        self,
        account_id: str,
        market: str,
        base: str,
        observed_balances: Mapping[str, Decimal],
        market_prices: Mapping[str, PriceQuote],
    ) -> dict[str, list[Lot]]:
        """Align tracked lots with balances observed on the market.

        Returns:
            Dict of asset_type -> resulting lots, for every asset type in
            ``observed_balances``.
        """
        outcomes = self.reconcile_with_actions(
            account_id, market, base, observed_balances, market_prices
        )
        return {asset_type: outcome.lots for asset_type, outcome in outcomes.items()}

    def reconcile_with_actions(
        self,
        account_id: str,
        market: str,
        base: str,
        observed_balances: Mapping[str, Decimal],
        market_prices: Mapping[str, PriceQuote],
        on_reconciled: Callable[[str, AssetReconciliation], None] | None = None,
    ) -> dict[str, AssetReconciliation]:
        """Align tracked lots with observed balances, reporting what changed.

        For each asset type in ``observed_balances``:
        - observed above tracked: the excess becomes a new lot at the
          current ask price (the true acquisition rate is unknown)
        - observed below tracked: the shortfall is removed lowest rate first
        - within ``epsilon``: nothing happens

        Asset types tracked but absent from ``observed_balances`` are left
        alone; absence is not a disposal.

        Every key involved is locked and checked before any lot changes, and
        the call commits once at the end. On any failure all lot sets are
        left as they were.

        Args:
            on_reconciled: Called with (asset_type, outcome) for each asset
                before the commit, so related rows land in the same
                transaction.

        Raises:
            InvalidQuantityError: a balance is negative or not a number, or
                an asset with an untracked excess has no usable quote.
            StorageUnavailableError: the store failed.
        """
        balances: dict[str, Decimal] = {}
        for asset_type, value in observed_balances.items():
            observed = _to_decimal(value, f"balance of {asset_type}")
            if observed < 0:
                raise InvalidQuantityError(
                    f"balance of {asset_type} must not be negative, got {observed}"
                )
            balances[asset_type] = observed

        keys = {
            asset_type: LotKey(account_id, market, base, asset_type)
            for asset_type in balances
        }
        with ExitStack() as stack:
            # Fixed acquisition order so concurrent reconciles cannot deadlock
            for asset_type in sorted(keys):
                stack.enter_context(self._exclusive(keys[asset_type]))

            plans = {
                asset_type: self._plan_locked(
                    keys[asset_type], observed, market_prices.get(asset_type)
                )
                for asset_type, observed in balances.items()
            }

            result: dict[str, AssetReconciliation] = {}
            try:
                for asset_type, plan in plans.items():
                    outcome = self._apply_locked(keys[asset_type], plan)
                    if on_reconciled is not None:
                        on_reconciled(asset_type, outcome)
                    result[asset_type] = outcome
                if any(outcome.changed for outcome in result.values()):
                    self.store.commit()
            except Exception:
                self.store.rollback()
                raise
        return result

    # --- Internals (caller holds the key lock) ---

    def _add_locked(self, key: LotKey, units: Decimal, rate: Decimal) -> Lot:
        lot = self.store.add(key, units, rate)
        logger.info(
            "Created lot %s: %s %s @ %s %s (account %s, market %s)",
            lot.id[:8], units, key.asset_type, rate, key.base,
            key.account_id, key.market,
        )
        return lot

    def _remove_locked(self, key: LotKey, units: Decimal) -> list[LotAction]:
        lots = self.store.load(key)
        available = sum((lot.units for lot in lots), Decimal("0"))
        if units > available:
            logger.warning(
                "Rejected removal of %s %s/%s for account %s: only %s held",
                units, key.asset_type, key.base, key.account_id, available,
            )
            raise InsufficientHoldingsError(
                f"Cannot remove {units} {key.asset_type}: only {available} held",
                requested=units,
                available=available,
            )

        remaining = units
        actions: list[LotAction] = []
        # sorted() is stable: equal rates keep storage order
        for lot in sorted(lots, key=lambda lot: lot.rate):
            if remaining <= 0:
                break
            if lot.units <= remaining:
                self.store.delete(key, lot.id)
                remaining -= lot.units
                actions.append(LotAction("deleted", lot, consumed=lot.units))
                logger.info(
                    "Consumed lot %s: %s %s @ %s (deleted)",
                    lot.id[:8], lot.units, key.asset_type, lot.rate,
                )
            else:
                updated = self.store.update_units(key, lot.id, lot.units - remaining)
                actions.append(LotAction("updated", updated, consumed=remaining))
                logger.info(
                    "Consumed lot %s: %s of %s %s @ %s (remaining: %s)",
                    lot.id[:8], remaining, lot.units, key.asset_type, lot.rate,
                    updated.units,
                )
                remaining = Decimal("0")
        return actions

    def _plan_locked(
        self, key: LotKey, observed: Decimal, quote: PriceQuote | None
    ) -> "_ReconcilePlan":
        lots = self.store.load(key)
        tracked = sum((lot.units for lot in lots), Decimal("0"))
        plan = _ReconcilePlan(lots=lots, observed=observed, tracked=tracked)

        if plan.diff > self.epsilon:
            if quote is None:
                raise InvalidQuantityError(
                    f"No ask price for {key.asset_type}/{key.base} to value "
                    f"{plan.diff} untracked units"
                )
            plan.rate = _to_decimal(quote.ask, f"ask price of {key.asset_type}")
        return plan

    def _apply_locked(self, key: LotKey, plan: "_ReconcilePlan") -> AssetReconciliation:
        diff = plan.diff
        if diff > self.epsilon:
            logger.info(
                "Reconcile %s/%s: observed %s > tracked %s, adding %s @ %s",
                key.asset_type, key.base, plan.observed, plan.tracked, diff, plan.rate,
            )
            added = self._add_locked(key, diff, plan.rate)
            return AssetReconciliation(lots=self.store.load(key), added=added)

        if diff < -self.epsilon:
            logger.info(
                "Reconcile %s/%s: observed %s < tracked %s, removing %s",
                key.asset_type, key.base, plan.observed, plan.tracked, -diff,
            )
            removed = self._remove_locked(key, -diff)
            return AssetReconciliation(lots=self.store.load(key), removed=removed)

        logger.debug(
            "Reconcile %s/%s: observed %s matches tracked %s",
            key.asset_type, key.base, plan.observed, plan.tracked,
        )
        return AssetReconciliation(lots=plan.lots)


@dataclass
class _ReconcilePlan:
    """Tracked state of one asset, read and checked before any lot changes."""

    lots: list[Lot]
    observed: Decimal
    tracked: Decimal
    rate: Decimal | None = None

    @property
    def diff(self) -> Decimal:
        return self.observed - self.tracked
