# folio_core/services/analytics/__init__.py
"""
Performance analytics: simple return, TWR, MWR, volatility and drawdown.

Usage:
    from folio_core.services.analytics import PerformanceService, DateRange

    metrics = PerformanceService().compute(scope, DateRange(start, end), valuations, flows)
"""

from folio_core.services.analytics.service import PerformanceCache, PerformanceService
from folio_core.services.analytics.types import (
    CashFlow,
    DailyValue,
    DateRange,
    PerformanceMetrics,
    ReturnPoint,
    TWRResult,
)

__all__ = [
    "PerformanceService",
    "PerformanceCache",
    "CashFlow",
    "DailyValue",
    "DateRange",
    "PerformanceMetrics",
    "ReturnPoint",
    "TWRResult",
]
