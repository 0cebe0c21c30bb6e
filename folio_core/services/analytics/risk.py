# folio_core/services/analytics/risk.py
"""
Risk calculation functions for the Performance Service.

- Volatility: Standard deviation of daily TWR returns, annualized
- Max Drawdown: Largest peak-to-trough decline of the TWR index

Both work on flow-adjusted returns, so a large withdrawal is not
mistaken for a loss. Pure Decimal arithmetic.

Formulas:
    Volatility (annualized) = std(daily_returns) * sqrt(252)

    Max Drawdown = min((Index_t - Peak_t) / Peak_t),  Index_t = 1 + TWR_t
"""

import logging
from decimal import Decimal

from folio_core.services.analytics.types import ReturnPoint
from folio_core.services.constants import (
    MIN_RETURNS_FOR_VOLATILITY,
    ONE,
    RISK_PRECISION,
    TRADING_DAYS_PER_YEAR,
    ZERO,
)

logger = logging.getLogger(__name__)


# =============================================================================
# HELPERS
# =============================================================================

def _decimal_stdev(values: list[Decimal]) -> Decimal | None:
    """
    Sample standard deviation using pure Decimal arithmetic.

    Formula: sigma = sqrt(sum((x - mean)^2) / (n - 1))

    Returns:
        Standard deviation, or None if fewer than two values
    """
    if len(values) < MIN_RETURNS_FOR_VOLATILITY:
        return None

    n = Decimal(len(values))
    mean_val = sum(values, ZERO) / n
    sum_squared_diffs = sum(((x - mean_val) ** 2 for x in values), ZERO)
    variance = sum_squared_diffs / (n - ONE)

    return variance.sqrt()


# =============================================================================
# VOLATILITY
# =============================================================================

def calculate_volatility(
        daily_returns: list[Decimal],
        annualize: bool = True,
) -> Decimal | None:
    """
    Calculate volatility (standard deviation of returns).

    Args:
        daily_returns: Flow-adjusted daily returns
        annualize: If True, multiply by sqrt(252)

    Returns:
        Volatility as decimal (e.g., 0.20 = 20%), or None if insufficient data
    """
    vol = _decimal_stdev(daily_returns)
    if vol is None:
        return None

    if annualize:
        vol = vol * Decimal(TRADING_DAYS_PER_YEAR).sqrt()

    return vol.quantize(RISK_PRECISION)


# =============================================================================
# DRAWDOWN
# =============================================================================

def calculate_max_drawdown(series: list[ReturnPoint]) -> Decimal | None:
    """
    Worst peak-to-trough decline of the cumulative TWR index.

    The index starts at 1 on the day before the first point.

    Args:
        series: Cumulative TWR series in date order

    Returns:
        Max drawdown as a negative decimal (e.g., -0.25 = -25%), or None
        if the index never fell below a previous peak
    """
    if not series:
        return None

    peak = ONE
    max_drawdown = ZERO

    for point in series:
        index = ONE + point.cumulative_return
        if index > peak:
            peak = index
            continue
        if peak > ZERO:
            drawdown = (index - peak) / peak
            if drawdown < max_drawdown:
                max_drawdown = drawdown

    if max_drawdown == ZERO:
        return None

    return max_drawdown.quantize(RISK_PRECISION)
