# folio_core/utils/__init__.py
"""
Cross-cutting utilities for the portfolio computation core.

- logging: Logging configuration with correlation ID support
- context: Correlation ID management for recalculation runs
- date_utils: Calendar helpers

Usage:
    from folio_core.utils import setup_logging, get_logger
    from folio_core.utils import correlation_scope
"""

from folio_core.utils.context import (
    get_correlation_id,
    set_correlation_id,
    clear_correlation_id,
    correlation_scope,
)
from folio_core.utils.logging import setup_logging, get_logger

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    # Context
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "correlation_scope",
]
