# folio_core/services/protocols.py
"""
Protocol interfaces for the data the computation core consumes.

Using typing.Protocol enables structural subtyping:
- Any repository, API client or in-memory fake satisfies the protocols
  without inheriting from them
- Calculators receive these explicitly; nothing is looked up globally
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from folio_core.models import Activity
    from folio_core.services.fx_rate_service import FxObservation
    from folio_core.services.holdings.types import AccountStateSnapshot
    from folio_core.services.valuation.types import Quote


class ActivitySource(Protocol):
    """Read access to the append-only activity ledger."""

    def activities_for(self, account_id: str, up_to: date) -> Sequence[Activity]:
        """All activities of an account dated on or before `up_to`, any order."""
        ...

    def account_ids(self) -> Sequence[str]:
        ...

    def account_currency(self, account_id: str) -> str:
        """Raises AccountNotFoundError for unknown accounts."""
        ...


class QuoteSource(Protocol):
    """Interface required by ValuationCalculator."""

    def latest_quote_on_or_before(self, asset_id: str, on: date) -> Quote | None:
        ...


class FxRateSource(Protocol):
    """
    Interface required by FXRateService.

    Returns "1 from_currency = rate to_currency" observed on or before the
    date. Implementations may return a bare Decimal or an FxObservation that
    also carries the observation date.
    """

    def rate_on_or_before(
            self,
            from_currency: str,
            to_currency: str,
            on: date,
    ) -> FxObservation | Decimal | None:
        ...


class SnapshotStore(Protocol):
    """Cache of computed AccountStateSnapshots keyed by (account, date)."""

    def get_snapshot(self, account_id: str, on: date) -> AccountStateSnapshot | None:
        ...

    def put_snapshot(self, snapshot: AccountStateSnapshot) -> None:
        """Replace any snapshot stored for the same (account, date)."""
        ...

    def latest_snapshot_on_or_before(
            self,
            account_id: str,
            on: date,
    ) -> AccountStateSnapshot | None:
        ...

    def delete_from(self, account_id: str, from_date: date) -> int:
        """Drop snapshots dated on or after from_date. Returns rows removed."""
        ...
