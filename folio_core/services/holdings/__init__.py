# folio_core/services/holdings/__init__.py
"""
Holdings: activity replay into FIFO lots and per-currency cash.

Usage:
    from folio_core.services.holdings import HoldingsCalculator

    snapshot = HoldingsCalculator().compute_state(account_id, as_of, activities, "USD")
"""

from folio_core.services.holdings.calculator import HoldingsCalculator
from folio_core.services.holdings.types import AccountStateSnapshot, Lot, Position

__all__ = [
    "HoldingsCalculator",
    "AccountStateSnapshot",
    "Lot",
    "Position",
]
