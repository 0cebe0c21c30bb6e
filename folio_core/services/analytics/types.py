# folio_core/services/analytics/types.py
"""
Data types for the Performance Service.

All returns are expressed as decimals (0.15 = 15%) and use Decimal.

Architecture:
    - DateRange: Inclusive reporting window
    - CashFlow: Dated amount for XIRR
    - DailyValue: One day's value plus the external flow booked that day
    - ReturnPoint: One point of the cumulative TWR series
    - TWRResult: Linked TWR with its sub-periods and daily series
    - PerformanceMetrics: Everything get_performance reports
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from folio_core.services.exceptions import ValidationError
from folio_core.services.flows.types import PerformanceScope


# =============================================================================
# INPUT TYPES
# =============================================================================

@dataclass(frozen=True)
class DateRange:
    """
    Inclusive date window.

    Raises:
        ValidationError: If start is after end
    """
    start: date
    end: date

    def __post_init__(self):
        if self.start > self.end:
            raise ValidationError(
                f"Start date {self.start} is after end date {self.end}",
                field="date_range",
            )

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def contains(self, d: date) -> bool:
        return self.start <= d <= self.end


@dataclass
class CashFlow:
    """
    A cash flow event for XIRR.

    Attributes:
        date: When the cash flow occurred
        amount: Investor's view - negative = paid in, positive = received

    Note:
        The starting value is a negative flow (as if bought at the start)
        and the ending value a positive one (as if sold at the end).
    """
    date: date
    amount: Decimal


@dataclass
class DailyValue:
    """
    A single day's value for time series calculations.

    Attributes:
        date: The valuation date
        value: Total value in base currency
        cash_flow: Net external flow booked at the end of this day (default 0)
    """
    date: date
    value: Decimal
    cash_flow: Decimal = field(default_factory=lambda: Decimal("0"))


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class ReturnPoint:
    """
    One day of the time-weighted return series.

    Attributes:
        date: Valuation date
        value: Total value that day
        daily_return: Flow-adjusted return from the previous point (None if
            the previous value was zero)
        cumulative_return: Linked TWR from the range start to this date
    """
    date: date
    value: Decimal
    daily_return: Decimal | None
    cumulative_return: Decimal


@dataclass
class TWRResult:
    """
    Output of calculate_twr.

    Attributes:
        twr: Linked time-weighted return, None if no sub-period had a
            non-zero starting value
        sub_period_returns: One return per sub-period, split at flow dates
        series: Cumulative series, one point per valuation after the first
    """
    twr: Decimal | None
    sub_period_returns: list[Decimal] = field(default_factory=list)
    series: list[ReturnPoint] = field(default_factory=list)

    @property
    def daily_returns(self) -> list[Decimal]:
        return [p.daily_return for p in self.series if p.daily_return is not None]


@dataclass
class PerformanceMetrics:
    """
    Return-based performance metrics for one scope and date range.

    Attributes:
        scope: ACCOUNT or PORTFOLIO
        subject: Account id, or the portfolio id / account list label
        start_date / end_date: First and last valuation used
        currency: Base currency of all amounts

        simple_return: (end - start - net external flow) / start
        twr: Time-Weighted Return (removes flow timing)
        mwr: Money-Weighted Return (annualized XIRR)
        mwr_period: Money-Weighted Return over the range itself, not annualized
        twr_annualized / simple_return_annualized: Only extrapolated for
            ranges of a year or more; shorter ranges report the total

        start_value / end_value: Aggregated values on the boundary dates
        net_external_flow: Contributions minus withdrawals inside the range
        gain: end - start - net external flow

        volatility: Annualized stdev of daily TWR returns
        max_drawdown: Worst peak-to-trough of the TWR index (negative)

        returns: Daily cumulative TWR series
        sub_period_returns: TWR sub-period returns split at flow dates
        calendar_days: Days between start_date and end_date

        mwr_error: Solver failure message when mwr is None
        warnings: Data quality notes (zero start value, stale valuations)
    """
    scope: PerformanceScope
    subject: str
    start_date: date
    end_date: date
    currency: str

    simple_return: Decimal | None = None
    twr: Decimal | None = None
    mwr: Decimal | None = None
    mwr_period: Decimal | None = None
    twr_annualized: Decimal | None = None
    simple_return_annualized: Decimal | None = None

    start_value: Decimal = field(default_factory=lambda: Decimal("0"))
    end_value: Decimal = field(default_factory=lambda: Decimal("0"))
    net_external_flow: Decimal = field(default_factory=lambda: Decimal("0"))
    gain: Decimal = field(default_factory=lambda: Decimal("0"))

    volatility: Decimal | None = None
    max_drawdown: Decimal | None = None

    returns: list[ReturnPoint] = field(default_factory=list)
    sub_period_returns: list[Decimal] = field(default_factory=list)
    calendar_days: int = 0

    mwr_error: str | None = None
    has_sufficient_data: bool = True
    warnings: list[str] = field(default_factory=list)
