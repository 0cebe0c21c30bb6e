# folio_core/services/analytics/returns.py
"""
Return calculation functions for the Performance Service.

This module contains pure functions for calculating return metrics:
- Simple Return: flow-adjusted holding period return
- Time-Weighted Return (TWR): removes the effect of flow timing
- Money-Weighted Return (MWR): XIRR over start value, flows and end value
- Annualization

All functions are stateless. No external dependencies (scipy, numpy) - pure Python only.

Formulas:
    Simple Return = (End - Start - NetFlow) / Start

    TWR (end-of-period flow convention):
        r_i = (V_end - CF) / V_start - 1
        TWR = prod(1 + r_i) - 1

    Period IRR solves: sum CF_i / (1 + x)^((d_i - d_0) / (d_n - d_0)) = 0
    XIRR (annualized): 1 + r = (1 + x)^(365 / (d_n - d_0))

Precision Note (Decimal vs Float):
    Everything is Decimal except the XIRR solver, which iterates in float
    (exponentials with fractional exponents, 100+ iterations). The root is
    converted back to Decimal with 8 decimal places, accurate to 0.000001%.
"""

import decimal
import logging
import math
from collections.abc import Callable
from decimal import Decimal, ROUND_HALF_UP

from folio_core.services.analytics.types import CashFlow, DailyValue, ReturnPoint, TWRResult
from folio_core.services.constants import (
    CALENDAR_DAYS_PER_YEAR,
    IRR_INITIAL_GUESS,
    IRR_LOWER_BOUND,
    IRR_MAX_ITERATIONS,
    IRR_MAX_UPPER_BOUND,
    IRR_TOLERANCE,
    IRR_UPPER_BOUND,
    ONE,
    RETURN_PRECISION,
    ZERO,
)
from folio_core.services.exceptions import NonConvergentError

logger = logging.getLogger(__name__)


# =============================================================================
# SIMPLE RETURN
# =============================================================================

def calculate_simple_return(
        start_value: Decimal,
        end_value: Decimal,
        net_flow: Decimal = ZERO,
) -> Decimal | None:
    """
    Calculate the flow-adjusted holding period return.

    Formula: (End - Start - NetFlow) / Start

    Args:
        start_value: Value at start of period
        end_value: Value at end of period
        net_flow: External contributions minus withdrawals during the period

    Returns:
        Return as decimal (e.g., 0.15 = 15%), or None if start_value is 0
    """
    if start_value == ZERO:
        return None

    return (end_value - start_value - net_flow) / start_value


def annualize_return(
        total_return: Decimal,
        days: int,
        extrapolate: bool = False,
) -> Decimal | None:
    """
    Annualize a return over a given number of calendar days.

    Formula: (1 + r)^(365/days) - 1

    Periods shorter than a year are reported unchanged unless extrapolate
    is set; compounding a few weeks into a yearly figure mostly amplifies noise.

    Args:
        total_return: Total return as decimal
        days: Number of calendar days in the period
        extrapolate: Annualize periods shorter than one year as well

    Returns:
        Annualized return, or None if days <= 0
    """
    if days <= 0:
        return None

    if days < CALENDAR_DAYS_PER_YEAR and not extrapolate:
        return total_return

    base = ONE + total_return
    if base <= ZERO:
        return Decimal("-1")  # Total loss

    exponent = Decimal(CALENDAR_DAYS_PER_YEAR) / Decimal(days)

    try:
        annualized = base ** exponent - ONE
    except decimal.InvalidOperation:
        # Extremely large/small values
        annualized = Decimal(str(float(base) ** float(exponent))) - ONE

    return annualized


# =============================================================================
# TIME-WEIGHTED RETURN (TWR)
# =============================================================================

def calculate_twr(daily_values: list[DailyValue]) -> TWRResult:
    """
    Calculate Time-Weighted Return by linking flow-adjusted returns.

    A flow booked on a day is treated as arriving at the end of that day:
    the sub-period ending that day is measured without it, and the next
    sub-period starts from the value that includes it. Sub-periods are
    therefore split at every flow date; between flow dates the daily
    returns telescope to V_end / V_start.

    A step whose starting value is zero (empty account, full liquidation)
    has no defined return and is skipped.

    Formula:
        r_i = (V_i - CF_i) / V_{i-1} - 1
        TWR = prod(1 + r_i) - 1

    Args:
        daily_values: DailyValue list; the first entry's cash_flow is ignored

    Returns:
        TWRResult with the linked return, sub-period returns and the series
    """
    ordered = sorted(daily_values, key=lambda x: x.date)
    if len(ordered) < 2:
        return TWRResult(twr=None)

    cumulative = ONE
    sub_period = ONE
    sub_period_open = False
    linked_steps = 0
    sub_period_returns: list[Decimal] = []
    series: list[ReturnPoint] = []

    for prev, curr in zip(ordered, ordered[1:]):
        daily_return: Decimal | None = None

        if prev.value > ZERO:
            daily_return = (curr.value - curr.cash_flow) / prev.value - ONE
            cumulative *= ONE + daily_return
            sub_period *= ONE + daily_return
            sub_period_open = True
            linked_steps += 1

        if curr.cash_flow != ZERO and sub_period_open:
            sub_period_returns.append(sub_period - ONE)
            sub_period = ONE
            sub_period_open = False

        series.append(
            ReturnPoint(
                date=curr.date,
                value=curr.value,
                daily_return=daily_return,
                cumulative_return=cumulative - ONE,
            )
        )

    if sub_period_open:
        sub_period_returns.append(sub_period - ONE)

    if linked_steps == 0:
        logger.debug("TWR: no sub-period with a positive starting value")
        return TWRResult(twr=None, series=series)

    return TWRResult(
        twr=cumulative - ONE,
        sub_period_returns=sub_period_returns,
        series=series,
    )


def link_returns(sub_period_returns: list[Decimal]) -> Decimal:
    """
    Chain sub-period returns.

    Formula: prod(1 + r_i) - 1
    """
    cumulative = ONE
    for r in sub_period_returns:
        cumulative *= ONE + r
    return cumulative - ONE


# =============================================================================
# MONEY-WEIGHTED RETURN (XIRR)
# =============================================================================

def build_mwr_cash_flows(
        start: DailyValue,
        flows: list[CashFlow],
        end: DailyValue,
) -> list[CashFlow]:
    """
    Assemble the XIRR cash flows for a period, investor's point of view.

        -start_value at the start date   (as if bought in)
        -flow for every contribution     (+ for withdrawals)
        +end_value at the end date       (as if sold out)

    Args:
        start: First valuation point
        flows: External flows inside the period, + = contribution
        end: Last valuation point
    """
    cash_flows: list[CashFlow] = []
    if start.value != ZERO:
        cash_flows.append(CashFlow(date=start.date, amount=-start.value))
    cash_flows.extend(CashFlow(date=f.date, amount=-f.amount) for f in flows if f.amount != ZERO)
    if end.value != ZERO:
        cash_flows.append(CashFlow(date=end.date, amount=end.value))
    return cash_flows


def calculate_period_irr(
        cash_flows: list[CashFlow],
        max_iterations: int = IRR_MAX_ITERATIONS,
        tolerance: Decimal = IRR_TOLERANCE,
) -> Decimal:
    """
    Internal rate of return over the whole span of the cash flows.

    The rate x compounds once over the span from the first to the last
    flow; a flow at fraction w of the span is discounted by (1 + x)^w:

        Solve for x: sum CF_i / (1 + x)^((d_i - d_0) / (d_n - d_0)) = 0

    Working in period terms keeps the root near the period's actual gain
    for short ranges, where the annualized rate can be in the hundreds.

    Newton-Raphson starts from IRR_INITIAL_GUESS. If it fails, bisection
    runs over [IRR_LOWER_BOUND, IRR_UPPER_BOUND], doubling the upper bound
    until the NPV changes sign or IRR_MAX_UPPER_BOUND is passed.

    Args:
        cash_flows: Dated amounts; needs at least one of each sign on two dates
        max_iterations: Iteration bound for each solver stage
        tolerance: NPV tolerance relative to the largest absolute flow

    Returns:
        Period-equivalent rate as decimal, 8 decimal places

    Raises:
        NonConvergentError: If no root is found
    """
    if len(cash_flows) < 2:
        raise NonConvergentError(0, "at least two cash flows are required")

    sorted_flows = sorted(cash_flows, key=lambda x: x.date)
    base_date = sorted_flows[0].date
    span_days = (sorted_flows[-1].date - base_date).days
    if span_days <= 0:
        raise NonConvergentError(0, "cash flows must span at least one day")

    flows = [
        ((cf.date - base_date).days / span_days, float(cf.amount))
        for cf in sorted_flows
    ]

    has_positive = any(amount > 0 for _, amount in flows)
    has_negative = any(amount < 0 for _, amount in flows)
    if not (has_positive and has_negative):
        raise NonConvergentError(0, "cash flows must include both signs")

    scale = max(abs(amount) for _, amount in flows)
    threshold = float(tolerance) * max(scale, 1.0)

    def npv(rate: float) -> float:
        return sum(amount / (1 + rate) ** weight for weight, amount in flows)

    def npv_derivative(rate: float) -> float:
        return sum(-weight * amount / (1 + rate) ** (weight + 1) for weight, amount in flows if weight > 0)

    rate = _newton(npv, npv_derivative, float(IRR_INITIAL_GUESS), threshold, max_iterations)
    if rate is None:
        logger.debug("IRR: Newton-Raphson did not converge, falling back to bisection")
        rate = _bisect(npv, IRR_LOWER_BOUND, IRR_UPPER_BOUND, threshold, max_iterations)

    if rate is None:
        logger.warning(f"IRR did not converge after {max_iterations} iterations")
        raise NonConvergentError(max_iterations)

    return Decimal(str(rate)).quantize(RETURN_PRECISION, rounding=ROUND_HALF_UP)


def annualize_period_rate(period_rate: Decimal, days: int) -> Decimal:
    """
    Restate a rate earned over `days` calendar days as a yearly rate.

    Formula: (1 + x)^(365/days) - 1, always extrapolated.

    Raises:
        NonConvergentError: If days <= 0 or the yearly rate overflows a float
    """
    if days <= 0:
        raise NonConvergentError(0, "cannot annualize a rate over zero days")

    base = 1 + float(period_rate)
    if base <= 0:
        return Decimal("-1")

    try:
        annual = math.exp(math.log(base) * CALENDAR_DAYS_PER_YEAR / days) - 1
    except OverflowError:
        raise NonConvergentError(
            0, f"period rate {period_rate} over {days} days is too large to annualize"
        ) from None

    return Decimal(repr(annual)).quantize(RETURN_PRECISION, rounding=ROUND_HALF_UP)


def calculate_xirr(
        cash_flows: list[CashFlow],
        max_iterations: int = IRR_MAX_ITERATIONS,
        tolerance: Decimal = IRR_TOLERANCE,
) -> Decimal:
    """
    Calculate Extended Internal Rate of Return (XIRR).

    The annual discount rate that makes the NPV of all dated cash flows zero:

        Solve for r: sum CF_i / (1 + r)^((d_i - d_0) / 365) = 0

    Solved in period terms by calculate_period_irr() and annualized, which
    is the same root: (1 + r) = (1 + x)^(365 / span_days).

    Returns:
        Annualized XIRR as decimal, 8 decimal places

    Raises:
        NonConvergentError: If no root is found

    Example:
        cash_flows = [
            CashFlow(date(2023, 1, 1), Decimal("-1000")),
            CashFlow(date(2024, 1, 1), Decimal("1100")),
        ]
        calculate_xirr(cash_flows)  # Decimal("0.10000000")
    """
    period_rate = calculate_period_irr(cash_flows, max_iterations, tolerance)
    dates = [cf.date for cf in cash_flows]
    return annualize_period_rate(period_rate, (max(dates) - min(dates)).days)


def _newton(
        f: Callable[[float], float],
        df: Callable[[float], float],
        guess: float,
        threshold: float,
        max_iterations: int,
) -> float | None:
    rate = guess
    for _ in range(max_iterations):
        try:
            value = f(rate)
            slope = df(rate)
        except (OverflowError, ZeroDivisionError):
            return None

        if abs(value) < threshold:
            return rate
        if slope == 0 or math.isnan(slope):
            return None

        rate = rate - value / slope

        # (1 + rate) must stay positive
        if rate < IRR_LOWER_BOUND:
            rate = IRR_LOWER_BOUND
        elif rate > IRR_MAX_UPPER_BOUND:
            return None

    return None


def _bisect(
        f: Callable[[float], float],
        low: float,
        high: float,
        threshold: float,
        max_iterations: int,
) -> float | None:
    try:
        f_low = f(low)
        f_high = f(high)
        while f_low * f_high > 0 and high < IRR_MAX_UPPER_BOUND:
            low, f_low = high, f_high
            high = high * 2
            f_high = f(high)
    except (OverflowError, ZeroDivisionError):
        return None

    if f_low * f_high > 0:
        return None

    for _ in range(max_iterations):
        mid = (low + high) / 2
        f_mid = f(mid)
        if abs(f_mid) < threshold or (high - low) / 2 < 1e-12:
            return mid
        if f_low * f_mid < 0:
            high = mid
        else:
            low, f_low = mid, f_mid

    return None
