# folio_core/services/constants.py
"""
Centralized constants for the computation core services.

Usage:
    from folio_core.services.constants import (
        CURRENCY_PRECISION,
        TRADING_DAYS_PER_YEAR,
        ZERO,
    )
"""

from decimal import Decimal


# =============================================================================
# FINANCIAL CALENDAR CONSTANTS
# =============================================================================

# Trading days per year, used to annualize daily volatility
TRADING_DAYS_PER_YEAR: int = 252

# Calendar days per year, used for XIRR exponents and annualized returns
CALENDAR_DAYS_PER_YEAR: int = 365


# =============================================================================
# DECIMAL PRECISION
# =============================================================================

ZERO: Decimal = Decimal("0")
ONE: Decimal = Decimal("1")

# Money outputs of the valuation calculator (2 decimal places)
CURRENCY_PRECISION: Decimal = Decimal("0.01")

# Returns and rates (as decimals, 0.15 = 15%)
RETURN_PRECISION: Decimal = Decimal("0.00000001")

# Risk metrics reported to four places (-0.2500 = -25%)
RISK_PRECISION: Decimal = Decimal("0.0001")


# =============================================================================
# QUOTE FALLBACK SETTINGS
# =============================================================================

# A quote older than this many days (at the valuation date) is stale.
# Stale and missing quotes fall back to cost basis.
QUOTE_STALENESS_DAYS: int = 5


# =============================================================================
# IRR/XIRR CALCULATION SETTINGS
# =============================================================================

# Iteration bound for each solver stage (Newton-Raphson, then bisection)
IRR_MAX_ITERATIONS: int = 100

# Convergence tolerance on NPV, relative to the largest absolute cash flow
IRR_TOLERANCE: Decimal = Decimal("0.0000001")

# Starting point for Newton-Raphson (10% over the period)
IRR_INITIAL_GUESS: Decimal = Decimal("0.1")

# Initial bisection bracket for the period rate: -99.9999% .. +1000%.
# The upper bound doubles until the NPV changes sign, up to IRR_MAX_UPPER_BOUND.
IRR_LOWER_BOUND: float = -0.999999
IRR_UPPER_BOUND: float = 10.0
IRR_MAX_UPPER_BOUND: float = 1_000_000.0


# =============================================================================
# RISK METRIC THRESHOLDS
# =============================================================================

# Minimum number of daily returns for a standard deviation
MIN_RETURNS_FOR_VOLATILITY: int = 2


# =============================================================================
# PORTFOLIO AGGREGATION
# =============================================================================

# Pseudo account id meaning "all accounts" for portfolio-scope requests
PORTFOLIO_TOTAL_ID: str = "TOTAL"


# =============================================================================
# CACHE SETTINGS
# =============================================================================

# Time-to-live for cached performance results in seconds
CACHE_TTL_SECONDS: int = 3600

# Maximum number of cached performance results
PERFORMANCE_CACHE_MAX_SIZE: int = 1000
