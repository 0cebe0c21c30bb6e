# folio_core/utils/context.py
"""
Execution context for recalculation runs.

Each pipeline run (one account recalculation, one performance request) gets
a correlation ID so log lines from the holdings, valuation and performance
stages can be tied together.

Uses contextvars, so worker threads started from a ThreadPoolExecutor keep
their own value and never see another run's ID.

Usage:
    from folio_core.utils.context import correlation_scope

    with correlation_scope("recalc"):
        ...  # every log record emitted here carries the same ID
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

# =============================================================================
# CONTEXT VARIABLES
# =============================================================================

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


# =============================================================================
# CORRELATION ID
# =============================================================================

def get_correlation_id() -> str | None:
    """
    Get the current run's correlation ID.

    Returns:
        The correlation ID, or None if not inside a run.
    """
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current context."""
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    """Clear the correlation ID."""
    _correlation_id_var.set(None)


def new_correlation_id(prefix: str) -> str:
    """Build a short unique ID such as ``recalc-1a2b3c4d``."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@contextmanager
def correlation_scope(prefix: str) -> Iterator[str]:
    """
    Run a block under a fresh correlation ID.

    Nested scopes reuse the outer ID so one recalculation that triggers
    another (history backfill) logs under a single ID.

    Args:
        prefix: Label for the kind of run (e.g. "recalc", "perf")

    Yields:
        The active correlation ID
    """
    existing = _correlation_id_var.get()
    if existing is not None:
        yield existing
        return

    token = _correlation_id_var.set(new_correlation_id(prefix))
    try:
        yield _correlation_id_var.get()
    finally:
        _correlation_id_var.reset(token)
