# folio_core/services/valuation/types.py
"""
Internal data types for the Valuation Calculator.

Design Principles:
- Immutable value objects (frozen=True)
- Use Decimal for ALL financial values (never float)
- Money outputs are in the BASE currency, quantized to 0.01
- Warnings accumulate for data quality tracking instead of failing

Type Hierarchy:
    Quote                  - Observed close price of an asset
    PriceStatus            - Whether a position was priced from a fresh quote
    PositionValuation      - One position valued in base currency
    DailyAccountValuation  - Account totals for one day
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum


# =============================================================================
# INPUTS
# =============================================================================

@dataclass(frozen=True)
class Quote:
    """
    Close price of an asset on a date.

    Attributes:
        asset_id: Instrument
        date: Observation date
        close: Close price per unit
        currency: Currency of `close`
        source: Provider that published the quote, if known
    """
    asset_id: str
    date: date
    close: Decimal
    currency: str
    source: str | None = None


class PriceStatus(str, Enum):
    """
    How a position's market value was obtained.

    CURRENT: quote within the staleness window
    STALE: quote older than the window, valued at cost basis
    MISSING: no quote on or before the date, valued at cost basis
    """
    CURRENT = "current"
    STALE = "stale"
    MISSING = "missing"


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True)
class PositionValuation:
    """
    Valuation of one open position.

    Attributes:
        asset_id: Instrument
        quantity: Units held
        currency: Position (cost) currency
        price: Latest quote seen, None when no quote exists
        price_date: Date of that quote
        price_source: Provider of that quote
        price_status: CURRENT / STALE / MISSING
        fx_rate: Rate used to reach base currency
        cost_basis: Cost basis in base currency
        market_value: Market value in base currency
    """
    asset_id: str
    quantity: Decimal
    currency: str
    price: Decimal | None
    price_date: date | None
    price_status: PriceStatus
    fx_rate: Decimal
    cost_basis: Decimal
    market_value: Decimal
    price_source: str | None = None

    @property
    def is_priced_at_cost(self) -> bool:
        return self.price_status is not PriceStatus.CURRENT


@dataclass(frozen=True)
class DailyAccountValuation:
    """
    Base-currency valuation of one account at the end of one day.

    Invariant: total_value == cash_balance + investment_market_value exactly.

    Attributes:
        account_id: Account
        date: Valuation date
        account_currency: Account's own currency
        base_currency: Reporting currency of every money field below
        fx_rate_to_base: Account currency -> base rate on `date`; None when
            the account holds nothing in its own currency and no rate exists
        cash_balance: All cash balances, converted
        investment_market_value: Sum of position market values
        total_value: cash_balance + investment_market_value
        cost_basis: Sum of position cost bases
        net_contribution: External contributions minus withdrawals to date,
            each converted at its own date's rate
        positions: Per-position breakdown, sorted by asset_id
        is_stale: True if any position fell back to cost basis
        warnings: Data quality notes (missing/stale quotes)
        calculated_at: When the valuation was produced
    """
    account_id: str
    date: date
    account_currency: str
    base_currency: str
    fx_rate_to_base: Decimal | None
    cash_balance: Decimal
    investment_market_value: Decimal
    total_value: Decimal
    cost_basis: Decimal
    net_contribution: Decimal
    positions: tuple[PositionValuation, ...] = ()
    is_stale: bool = False
    warnings: tuple[str, ...] = ()
    calculated_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc),
        compare=False,
    )

    @property
    def unrealized_pnl(self) -> Decimal:
        return self.investment_market_value - self.cost_basis
