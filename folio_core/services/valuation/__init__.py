# folio_core/services/valuation/__init__.py
"""
Valuation: snapshots + quotes + FX -> base-currency daily valuations.

Usage:
    from folio_core.services.valuation import ValuationCalculator

    valuation = ValuationCalculator("USD").valuate(snapshot, quotes, fx)
"""

from folio_core.services.valuation.calculator import ValuationCalculator
from folio_core.services.valuation.types import (
    DailyAccountValuation,
    PositionValuation,
    PriceStatus,
    Quote,
)

__all__ = [
    "ValuationCalculator",
    "DailyAccountValuation",
    "PositionValuation",
    "PriceStatus",
    "Quote",
]
