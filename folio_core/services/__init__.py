# folio_core/services/__init__.py
"""
Service layer of the portfolio computation core.

Services:
- Have NO knowledge of transport or storage details beyond the protocols
- Raise domain-specific exceptions
- Receive their data sources as constructor parameters
- Are easily testable with in-memory fakes

Usage:
    from folio_core.services.recalculation import RecalculationService
    from folio_core.services import HoldingsCalculator
    from folio_core.services import ValuationCalculator
    from folio_core.services import PerformanceService
    from folio_core.services import (
        InsufficientLotsError,
        MissingFxRateError,
        InsufficientHistoryError,
        NonConvergentError,
    )

Architecture:
    services/
    ├── __init__.py                  # This file - main exports
    ├── exceptions.py                # Domain exceptions
    ├── constants.py                 # Business constants and limits
    ├── protocols.py                 # Data source interfaces (Protocol classes)
    ├── fx_rate_service.py           # FX lookup and conversion
    ├── snapshot_store.py            # In-memory and SQL snapshot stores
    ├── recalculation.py             # Pipeline orchestration, locking, coalescing
    ├── holdings/                    # Activity replay
    │   ├── calculator.py            # FIFO lots and cash
    │   └── types.py                 # Lot, Position, AccountStateSnapshot
    ├── valuation/                   # Base-currency valuation
    │   ├── calculator.py            # Snapshot -> DailyAccountValuation
    │   └── types.py                 # Valuation data types
    ├── flows/                       # Flow classification
    │   ├── classifier.py            # FlowType by scope
    │   └── types.py                 # FlowType, PerformanceScope
    └── analytics/                   # Performance engine
        ├── service.py               # Performance orchestrator and cache
        ├── types.py                 # Analytics data types
        ├── returns.py               # Simple return, TWR, XIRR
        └── risk.py                  # Volatility, drawdown
"""

# Exceptions
from folio_core.services.exceptions import (
    ServiceError,
    ValidationError,
    NotFoundError,
    AccountNotFoundError,
    CoreError,
    InsufficientLotsError,
    CurrencyMismatchError,
    InvalidActivityError,
    InvariantViolationError,
    QuoteError,
    MissingQuoteError,
    StaleQuoteError,
    FXRateError,
    MissingFxRateError,
    AnalyticsError,
    InsufficientHistoryError,
    NonConvergentError,
)

# FX
from folio_core.services.fx_rate_service import FXRateService, FXRateResult, FxObservation

# Calculators
from folio_core.services.holdings import HoldingsCalculator, AccountStateSnapshot, Lot, Position
from folio_core.services.flows import ClassifiedFlow, FlowType, PerformanceScope, classify
from folio_core.services.valuation import DailyAccountValuation, Quote, ValuationCalculator
from folio_core.services.analytics import DateRange, PerformanceMetrics, PerformanceService

__all__ = [
    # Exceptions
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "AccountNotFoundError",
    "CoreError",
    "InsufficientLotsError",
    "CurrencyMismatchError",
    "InvalidActivityError",
    "InvariantViolationError",
    "QuoteError",
    "MissingQuoteError",
    "StaleQuoteError",
    "FXRateError",
    "MissingFxRateError",
    "AnalyticsError",
    "InsufficientHistoryError",
    "NonConvergentError",
    # FX
    "FXRateService",
    "FXRateResult",
    "FxObservation",
    # Calculators
    "HoldingsCalculator",
    "AccountStateSnapshot",
    "Lot",
    "Position",
    "ClassifiedFlow",
    "FlowType",
    "PerformanceScope",
    "classify",
    "DailyAccountValuation",
    "Quote",
    "ValuationCalculator",
    "DateRange",
    "PerformanceMetrics",
    "PerformanceService",
]
