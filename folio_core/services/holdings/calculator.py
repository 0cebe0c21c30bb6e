# folio_core/services/holdings/calculator.py
"""
Holdings Calculator: replays activities into lots and cash.

The calculator is stateless. Each call copies the starting state (empty,
or a prior snapshot) into a private working state, applies activities in
(date, sequence, id) order and freezes the result into a new
AccountStateSnapshot. Any failure raises before a snapshot is returned, so
callers never observe a half-applied replay.

Per-activity effects (amounts in the activity currency):
    BUY           new lot, cost = qty x price + fee; cash -= cost
    SELL          FIFO relief; cash += qty x price - fee; realized gain booked
    TRANSFER_IN   asset: new lot at the carried unit price, cash -= fee
                  cash:  cash += amount - fee
    TRANSFER_OUT  asset: FIFO relief (relieved cost kept for flow valuation), cash -= fee
                  cash:  cash -= amount + fee
    SPLIT         every lot quantity x ratio, total cost unchanged
    DEPOSIT       cash += amount - fee
    WITHDRAWAL    cash -= amount + fee
    DIVIDEND / INTEREST / CREDIT   cash += amount - fee
    FEE / TAX     cash -= fee (or |amount| when no fee is given)
    ADJUSTMENT    no effect

Usage:
    calculator = HoldingsCalculator()
    snapshot = calculator.compute_state("acc-1", date(2024, 3, 31), activities, "USD")
    later = calculator.resume(snapshot, new_activities, date(2024, 4, 30))
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import date
from decimal import Decimal

from folio_core.models import Activity, ActivityType
from folio_core.services.constants import ZERO
from folio_core.services.exceptions import (
    CurrencyMismatchError,
    InsufficientLotsError,
    InvalidActivityError,
    InvariantViolationError,
)
from folio_core.services.holdings.types import AccountStateSnapshot, Lot, Position

logger = logging.getLogger(__name__)


# =============================================================================
# WORKING STATE
# =============================================================================

class _WorkingState:
    """
    Mutable scratch state used during a single replay.

    Never escapes the calculator; freeze() builds the immutable snapshot.
    """

    def __init__(self, account_id: str, currency: str) -> None:
        self.account_id = account_id
        self.currency = currency
        self.lots: dict[str, list[Lot]] = {}
        self.position_currency: dict[str, str] = {}
        self.cash: dict[str, Decimal] = {}
        self.realized: dict[str, Decimal] = {}
        self.last_key: tuple[date, int, str] | None = None
        self.count = 0
        # Cost relieved by each asset TRANSFER_OUT in this replay, by activity id
        self.transfer_costs: dict[str, Decimal] = {}

    @classmethod
    def from_snapshot(cls, snapshot: AccountStateSnapshot) -> "_WorkingState":
        state = cls(snapshot.account_id, snapshot.currency)
        for asset_id, position in snapshot.positions.items():
            state.lots[asset_id] = list(position.lots)
            state.position_currency[asset_id] = position.currency
        state.cash = dict(snapshot.cash_balances)
        state.realized = dict(snapshot.realized_gains)
        state.last_key = snapshot.last_activity_sequence
        state.count = snapshot.activity_count
        return state

    def add_cash(self, currency: str, delta: Decimal) -> None:
        self.cash[currency] = self.cash.get(currency, ZERO) + delta

    def add_realized(self, currency: str, gain: Decimal) -> None:
        self.realized[currency] = self.realized.get(currency, ZERO) + gain

    def open_quantity(self, asset_id: str) -> Decimal:
        return sum((lot.quantity_remaining for lot in self.lots.get(asset_id, [])), ZERO)

    def freeze(self, snapshot_date: date) -> AccountStateSnapshot:
        positions: dict[str, Position] = {}
        for asset_id in sorted(self.lots):
            lots = [lot for lot in self.lots[asset_id] if lot.quantity_remaining != ZERO]
            for lot in lots:
                if lot.quantity_remaining < ZERO or lot.cost_basis < ZERO:
                    raise InvariantViolationError(
                        f"Negative lot {lot.origin_activity_id} for {asset_id} "
                        f"in account {self.account_id}"
                    )
            if not lots:
                continue
            positions[asset_id] = Position(
                account_id=self.account_id,
                asset_id=asset_id,
                currency=self.position_currency[asset_id],
                lots=tuple(sorted(lots, key=lambda lot: lot.fifo_key)),
            )

        return AccountStateSnapshot(
            account_id=self.account_id,
            snapshot_date=snapshot_date,
            currency=self.currency,
            positions=positions,
            cash_balances=dict(sorted(self.cash.items())),
            realized_gains=dict(sorted(self.realized.items())),
            last_activity_sequence=self.last_key,
            activity_count=self.count,
        )


# =============================================================================
# HOLDINGS CALCULATOR
# =============================================================================

class HoldingsCalculator:
    """
    Folds an ordered activity stream into an AccountStateSnapshot.

    Lot relief is FIFO by (acquisition date, origin sequence). The relieved
    cost is proportional to the units taken from a lot, so a partially sold
    lot keeps its unit cost exactly.
    """

    def __init__(self) -> None:
        self._handlers: dict[ActivityType, Callable[[_WorkingState, Activity], None]] = {
            ActivityType.BUY: self._apply_buy,
            ActivityType.SELL: self._apply_sell,
            ActivityType.TRANSFER_IN: self._apply_transfer_in,
            ActivityType.TRANSFER_OUT: self._apply_transfer_out,
            ActivityType.SPLIT: self._apply_split,
            ActivityType.DEPOSIT: self._apply_cash_in,
            ActivityType.DIVIDEND: self._apply_cash_in,
            ActivityType.INTEREST: self._apply_cash_in,
            ActivityType.CREDIT: self._apply_cash_in,
            ActivityType.WITHDRAWAL: self._apply_withdrawal,
            ActivityType.FEE: self._apply_charge,
            ActivityType.TAX: self._apply_charge,
            ActivityType.ADJUSTMENT: self._apply_adjustment,
        }

    # =========================================================================
    # PUBLIC METHODS
    # =========================================================================

    def compute_state(
            self,
            account_id: str,
            as_of_date: date,
            activities: Iterable[Activity],
            currency: str,
    ) -> AccountStateSnapshot:
        """
        Replay all activities of an account up to and including as_of_date.

        Args:
            account_id: Account to compute
            as_of_date: Last day to include; later activities are ignored
            activities: Activities of this account in any order
            currency: Account currency

        Returns:
            Snapshot for (account_id, as_of_date)

        Raises:
            InsufficientLotsError: A sell/transfer-out exceeds open units
            CurrencyMismatchError: A buy into an existing position in another currency
            InvalidActivityError: Activity for another account or missing its asset
        """
        state = _WorkingState(account_id, currency)
        applied = self._replay(state, activities, as_of_date, after=None)
        snapshot = state.freeze(as_of_date)
        logger.debug(
            f"Computed state for account {account_id} as of {as_of_date}: "
            f"{applied} activities, {len(snapshot.positions)} positions"
        )
        return snapshot

    def resume(
            self,
            prior_snapshot: AccountStateSnapshot,
            activities_since: Iterable[Activity],
            as_of_date: date,
    ) -> AccountStateSnapshot:
        """
        Continue from a prior snapshot with the activities that followed it.

        Activities dated on or before the prior snapshot date are already
        part of it and are skipped, so passing the full ledger is safe.

        Args:
            prior_snapshot: Latest valid snapshot before as_of_date
            activities_since: Activities after prior_snapshot.snapshot_date
            as_of_date: Last day to include

        Returns:
            New snapshot for (account_id, as_of_date); prior_snapshot is untouched
        """
        if as_of_date < prior_snapshot.snapshot_date:
            raise InvariantViolationError(
                f"Cannot resume account {prior_snapshot.account_id} backwards "
                f"from {prior_snapshot.snapshot_date} to {as_of_date}"
            )

        state = _WorkingState.from_snapshot(prior_snapshot)
        applied = self._replay(
            state, activities_since, as_of_date, after=prior_snapshot.snapshot_date
        )
        logger.debug(
            f"Resumed account {prior_snapshot.account_id} from "
            f"{prior_snapshot.snapshot_date} to {as_of_date}: {applied} activities"
        )
        return state.freeze(as_of_date)

    def transfer_out_costs(
            self,
            account_id: str,
            as_of_date: date,
            activities: Iterable[Activity],
            currency: str,
    ) -> dict[str, Decimal]:
        """
        Cost basis relieved by each asset TRANSFER_OUT up to as_of_date.

        Used to value transfers out that carry no price: the units leave
        the account at the FIFO cost of the lots they came from.

        Returns:
            {activity_id: relieved cost} in each activity's currency
        """
        state = _WorkingState(account_id, currency)
        self._replay(state, activities, as_of_date, after=None)
        return dict(state.transfer_costs)

    # =========================================================================
    # REPLAY
    # =========================================================================

    def _replay(
            self,
            state: _WorkingState,
            activities: Iterable[Activity],
            as_of_date: date,
            after: date | None,
    ) -> int:
        ordered = sorted(
            (
                a for a in activities
                if a.date <= as_of_date and (after is None or a.date > after)
            ),
            key=lambda a: a.sort_key,
        )

        for activity in ordered:
            if activity.account_id != state.account_id:
                raise InvalidActivityError(
                    activity.id,
                    f"belongs to account {activity.account_id}, not {state.account_id}",
                )
            handler = self._handlers.get(activity.activity_type)
            if handler is None:
                raise InvalidActivityError(activity.id, f"unsupported type {activity.activity_type}")

            handler(state, activity)
            state.last_key = activity.sort_key
            state.count += 1

        return len(ordered)

    # =========================================================================
    # ASSET EVENTS
    # =========================================================================

    def _apply_buy(self, state: _WorkingState, activity: Activity) -> None:
        asset_id = self._require_asset(activity)
        cost = activity.trade_value + activity.fee
        self._open_lot(state, activity, asset_id, cost)
        state.add_cash(activity.currency, -cost)

    def _apply_sell(self, state: _WorkingState, activity: Activity) -> None:
        asset_id = self._require_asset(activity)
        position_currency = state.position_currency.get(asset_id, activity.currency)
        if position_currency != activity.currency:
            raise CurrencyMismatchError(
                expected=position_currency,
                actual=activity.currency,
                context=f"sell {activity.id} of {asset_id}",
            )
        relieved_cost = self._relieve_fifo(state, activity, asset_id, activity.quantity)
        proceeds = activity.trade_value - activity.fee
        state.add_cash(activity.currency, proceeds)
        state.add_realized(activity.currency, proceeds - relieved_cost)

    def _apply_transfer_in(self, state: _WorkingState, activity: Activity) -> None:
        if not activity.is_asset_event:
            state.add_cash(activity.currency, activity.cash_amount - activity.fee)
            return
        # Cost basis travels with the units at the price given on the activity
        self._open_lot(state, activity, activity.asset_id, activity.trade_value)
        state.add_cash(activity.currency, -activity.fee)

    def _apply_transfer_out(self, state: _WorkingState, activity: Activity) -> None:
        if not activity.is_asset_event:
            state.add_cash(activity.currency, -(activity.cash_amount + activity.fee))
            return
        relieved_cost = self._relieve_fifo(state, activity, activity.asset_id, activity.quantity)
        state.transfer_costs[activity.id] = relieved_cost
        state.add_cash(activity.currency, -activity.fee)

    def _apply_split(self, state: _WorkingState, activity: Activity) -> None:
        asset_id = self._require_asset(activity)
        ratio = activity.split_ratio
        if ratio <= ZERO:
            raise InvalidActivityError(activity.id, f"split ratio must be positive, got {ratio}")

        lots = state.lots.get(asset_id)
        if not lots:
            logger.debug(f"Split {activity.id} for {asset_id} with no open lots, ignored")
            return

        state.lots[asset_id] = [
            replace(lot, quantity_remaining=lot.quantity_remaining * ratio)
            for lot in lots
        ]

    # =========================================================================
    # CASH EVENTS
    # =========================================================================

    def _apply_cash_in(self, state: _WorkingState, activity: Activity) -> None:
        state.add_cash(activity.currency, activity.cash_amount - activity.fee)

    def _apply_withdrawal(self, state: _WorkingState, activity: Activity) -> None:
        state.add_cash(activity.currency, -(activity.cash_amount + activity.fee))

    def _apply_charge(self, state: _WorkingState, activity: Activity) -> None:
        charge = activity.fee if activity.fee != ZERO else abs(activity.cash_amount)
        state.add_cash(activity.currency, -charge)

    def _apply_adjustment(self, state: _WorkingState, activity: Activity) -> None:
        logger.debug(f"Adjustment {activity.id} has no holdings effect")

    # =========================================================================
    # LOT HELPERS
    # =========================================================================

    @staticmethod
    def _require_asset(activity: Activity) -> str:
        if activity.asset_id is None:
            raise InvalidActivityError(
                activity.id, f"{activity.activity_type.value} requires an asset"
            )
        return activity.asset_id

    @staticmethod
    def _open_lot(
            state: _WorkingState,
            activity: Activity,
            asset_id: str,
            cost: Decimal,
    ) -> None:
        existing_currency = state.position_currency.get(asset_id)
        if existing_currency is not None and state.lots.get(asset_id):
            if existing_currency != activity.currency:
                raise CurrencyMismatchError(
                    expected=existing_currency,
                    actual=activity.currency,
                    context=f"activity {activity.id} for {asset_id}",
                )

        state.position_currency[asset_id] = activity.currency
        state.lots.setdefault(asset_id, []).append(
            Lot(
                asset_id=asset_id,
                account_id=state.account_id,
                quantity_remaining=activity.quantity,
                cost_basis=cost,
                acquisition_date=activity.date,
                origin_activity_id=activity.id,
                origin_sequence=activity.sequence,
            )
        )

    @staticmethod
    def _relieve_fifo(
            state: _WorkingState,
            activity: Activity,
            asset_id: str,
            quantity: Decimal,
    ) -> Decimal:
        """
        Take `quantity` units from the oldest lots first.

        Availability is checked before any lot is touched.

        Returns:
            Total cost basis of the relieved units
        """
        available = state.open_quantity(asset_id)
        if available < quantity:
            raise InsufficientLotsError(
                account_id=state.account_id,
                asset_id=asset_id,
                requested=quantity,
                available=available,
                activity_id=activity.id,
            )

        remaining = quantity
        relieved_cost = ZERO
        kept: list[Lot] = []

        for lot in sorted(state.lots.get(asset_id, []), key=lambda lot: lot.fifo_key):
            if remaining == ZERO:
                kept.append(lot)
            elif lot.quantity_remaining <= remaining:
                relieved_cost += lot.cost_basis
                remaining -= lot.quantity_remaining
            else:
                portion = lot.cost_basis * remaining / lot.quantity_remaining
                relieved_cost += portion
                kept.append(
                    replace(
                        lot,
                        quantity_remaining=lot.quantity_remaining - remaining,
                        cost_basis=lot.cost_basis - portion,
                    )
                )
                remaining = ZERO

        state.lots[asset_id] = kept
        return relieved_cost
