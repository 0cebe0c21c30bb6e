# folio_core/services/holdings/types.py
"""
Data types for the Holdings Calculator.

Design Principles:
- Immutable value objects (frozen=True); a new snapshot supersedes the old one
- Decimal for ALL quantities and amounts
- Lots keep their total cost; unit cost is derived, so splits never round

Type Hierarchy:
    Lot                   - Open remainder of one acquisition
    Position              - FIFO-ordered lots for one (account, asset)
    AccountStateSnapshot  - Positions + cash + realized gains at end of a day
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal

from folio_core.services.constants import ZERO


# =============================================================================
# LOTS & POSITIONS
# =============================================================================

@dataclass(frozen=True)
class Lot:
    """
    Open remainder of one acquisition (BUY or TRANSFER_IN).

    Attributes:
        asset_id: Instrument
        account_id: Owning account
        quantity_remaining: Units still open (> 0 for any lot kept in a position)
        cost_basis: Total cost of the remaining units, in the position currency
        acquisition_date: Date of the originating activity
        origin_activity_id: Activity that opened the lot
        origin_sequence: Ledger sequence of that activity (FIFO tie-break)

    Note:
        Quantity only ever decreases, except when a split multiplies it.
    """
    asset_id: str
    account_id: str
    quantity_remaining: Decimal
    cost_basis: Decimal
    acquisition_date: date
    origin_activity_id: str
    origin_sequence: int = 0

    @property
    def unit_cost(self) -> Decimal:
        """Cost per remaining unit (cost_basis / quantity_remaining)."""
        if self.quantity_remaining == ZERO:
            return ZERO
        return self.cost_basis / self.quantity_remaining

    @property
    def fifo_key(self) -> tuple[date, int, str]:
        return (self.acquisition_date, self.origin_sequence, self.origin_activity_id)


@dataclass(frozen=True)
class Position:
    """
    All open lots of one asset in one account.

    Attributes:
        account_id: Owning account
        asset_id: Instrument
        currency: Currency the lots are priced in
        lots: Open lots, oldest first
    """
    account_id: str
    asset_id: str
    currency: str
    lots: tuple[Lot, ...] = ()

    @property
    def total_quantity(self) -> Decimal:
        return sum((lot.quantity_remaining for lot in self.lots), ZERO)

    @property
    def total_cost_basis(self) -> Decimal:
        return sum((lot.cost_basis for lot in self.lots), ZERO)


# =============================================================================
# ACCOUNT SNAPSHOT
# =============================================================================

@dataclass(frozen=True)
class AccountStateSnapshot:
    """
    Holdings and cash of one account at the end of a day.

    Produced by HoldingsCalculator and never modified afterwards; a later
    recalculation produces a new snapshot for the same key. Two snapshots
    computed from the same activities compare equal (calculated_at is
    excluded from equality).

    Attributes:
        account_id: Account
        snapshot_date: End-of-day date the state refers to
        currency: Account currency
        positions: asset_id -> open Position (closed positions are dropped)
        cash_balances: currency -> balance (may be negative)
        realized_gains: currency -> cumulative realized gain on sells
        last_activity_sequence: Sort key of the last applied activity
        activity_count: Number of activities folded into this state
        calculated_at: When the snapshot was produced
    """
    account_id: str
    snapshot_date: date
    currency: str
    positions: dict[str, Position] = field(default_factory=dict)
    cash_balances: dict[str, Decimal] = field(default_factory=dict)
    realized_gains: dict[str, Decimal] = field(default_factory=dict)
    last_activity_sequence: tuple[date, int, str] | None = None
    activity_count: int = 0
    calculated_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc),
        compare=False,
    )

    @property
    def lots(self) -> list[Lot]:
        """All open lots across positions, in FIFO order per asset."""
        return [lot for asset_id in sorted(self.positions) for lot in self.positions[asset_id].lots]

    def cash_in(self, currency: str) -> Decimal:
        return self.cash_balances.get(currency, ZERO)

    def quantity_of(self, asset_id: str) -> Decimal:
        position = self.positions.get(asset_id)
        return position.total_quantity if position else ZERO
