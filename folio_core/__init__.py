# folio_core/__init__.py
"""
Portfolio computation core.

Derives holdings, base-currency valuations and performance metrics from an
append-only ledger of account activities. Entry point:

    from folio_core.services.recalculation import create_recalculation_service
"""

__version__ = "0.1.0"
