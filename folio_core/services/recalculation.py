# folio_core/services/recalculation.py
"""
Recalculation Service: the public entry point of the computation core.

Runs the per-account pipeline

    activities -> HoldingsCalculator -> snapshot -> ValuationCalculator -> valuation

and answers performance queries over the resulting valuation history.

Concurrency:
    - At most one pipeline runs per account at a time (per-account lock)
    - Different accounts run in parallel (ThreadPoolExecutor)
    - request_recalculation() coalesces: a trigger that arrives while the
      account is being recalculated marks it dirty, and the running worker
      re-runs once with the latest requested date
    - A snapshot is written with a single put_snapshot after valuation
      succeeded, so a failed run leaves the store as it was

Incremental replay:
    The latest stored snapshot before the requested date is resumed with
    the activities that follow it. notify_activities_changed() drops stored
    snapshots from the earliest affected date so the next run replays from
    there.

Usage:
    service = create_recalculation_service(activity_source, quote_source, fx_source)

    valuation = service.recalculate_account("acc-1", date(2024, 6, 30))
    metrics = service.get_performance(
        PerformanceScope.PORTFOLIO,
        PORTFOLIO_TOTAL_ID,
        DateRange(date(2024, 1, 1), date(2024, 6, 30)),
    )
"""

import logging
import threading
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from folio_core.config import Settings, settings as default_settings
from folio_core.database import create_snapshot_engine
from folio_core.models import Activity
from folio_core.services.analytics.service import PerformanceCache, PerformanceService
from folio_core.services.analytics.types import DateRange, PerformanceMetrics
from folio_core.services.constants import PORTFOLIO_TOTAL_ID
from folio_core.services.exceptions import ServiceError, ValidationError
from folio_core.services.flows.classifier import (
    classify_flows,
    convert_flows,
    external_flows,
    is_unpriced_transfer_out,
)
from folio_core.services.flows.types import ClassifiedFlow, PerformanceScope
from folio_core.services.fx_rate_service import FXRateService
from folio_core.services.holdings.calculator import HoldingsCalculator
from folio_core.services.holdings.types import AccountStateSnapshot
from folio_core.services.protocols import ActivitySource, FxRateSource, QuoteSource, SnapshotStore
from folio_core.services.snapshot_store import InMemorySnapshotStore, SqlSnapshotStore
from folio_core.services.valuation.calculator import ValuationCalculator
from folio_core.services.valuation.types import DailyAccountValuation
from folio_core.utils.context import correlation_scope
from folio_core.utils.date_utils import calendar_days, previous_day

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT DATA CLASSES
# =============================================================================

@dataclass
class BatchRecalculationResult:
    """Result of recalculating several accounts in parallel."""

    as_of_date: date
    valuations: dict[str, DailyAccountValuation] = field(default_factory=dict)
    errors: dict[str, ServiceError] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


# =============================================================================
# RECALCULATION SERVICE
# =============================================================================

class RecalculationService:
    """
    Orchestrates holdings, valuation and performance for a set of accounts.

    All data access goes through the injected sources; the calculators
    themselves never perform I/O.
    """

    def __init__(
            self,
            activities: ActivitySource,
            quotes: QuoteSource,
            fx_source: FxRateSource,
            store: SnapshotStore | None = None,
            config: Settings | None = None,
    ) -> None:
        self._config = config or default_settings
        self._activities = activities
        self._quotes = quotes
        self._fx = FXRateService(fx_source, max_fallback_days=self._config.fx_fallback_days)
        self._store: SnapshotStore = store if store is not None else InMemorySnapshotStore()

        self._holdings = HoldingsCalculator()
        self._valuation = ValuationCalculator(
            base_currency=self._config.base_currency,
            quote_staleness_days=self._config.quote_staleness_days,
            strict_quotes=self._config.strict_quotes,
        )
        self._performance = PerformanceService(irr_max_iterations=self._config.irr_max_iterations)
        self._cache = PerformanceCache(ttl_seconds=self._config.performance_cache_ttl_seconds)

        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

        # Coalescing state, guarded by _state_lock
        self._state_lock = threading.Lock()
        self._running: set[str] = set()
        self._pending: dict[str, date] = {}

    @property
    def base_currency(self) -> str:
        return self._valuation.base_currency

    # =========================================================================
    # ACCOUNT PIPELINE
    # =========================================================================

    def recalculate_account(self, account_id: str, as_of_date: date) -> DailyAccountValuation:
        """
        Bring an account's snapshot up to as_of_date and value it.

        Args:
            account_id: Account to recalculate
            as_of_date: Valuation date

        Returns:
            DailyAccountValuation in the base currency

        Raises:
            AccountNotFoundError: Unknown account
            InsufficientLotsError, CurrencyMismatchError, InvalidActivityError:
                The ledger cannot be replayed
            MissingFxRateError: A required rate is unavailable
        """
        with correlation_scope("recalc"), self._account_lock(account_id):
            started = time.perf_counter()
            currency = self._activities.account_currency(account_id)
            activities = list(self._activities.activities_for(account_id, as_of_date))

            snapshot, is_cached = self._snapshot_for(account_id, as_of_date, activities, currency)
            flows = classify_flows(
                activities, PerformanceScope.ACCOUNT, end_date=as_of_date,
                transfer_costs=self._transfer_costs(account_id, as_of_date, activities, currency),
            )
            valuation = self._valuation.valuate(
                snapshot, self._quotes, self._fx, external_flows=flows
            )

            if not is_cached:
                self._store.put_snapshot(snapshot)

            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.debug(
                f"Recalculated account {account_id} as of {as_of_date} in {elapsed_ms:.1f}ms: "
                f"total={valuation.total_value} {valuation.base_currency}"
                f"{' (cached snapshot)' if is_cached else ''}",
                extra={"account_id": account_id, "as_of_date": as_of_date},
            )
            return valuation

    def _snapshot_for(
            self,
            account_id: str,
            as_of_date: date,
            activities: list[Activity],
            currency: str,
    ) -> tuple[AccountStateSnapshot, bool]:
        cached = self._store.get_snapshot(account_id, as_of_date)
        if cached is not None:
            return cached, True

        prior = self._store.latest_snapshot_on_or_before(account_id, previous_day(as_of_date))
        if prior is None:
            return self._holdings.compute_state(account_id, as_of_date, activities, currency), False

        since = [a for a in activities if a.date > prior.snapshot_date]
        return self._holdings.resume(prior, since, as_of_date), False

    def _transfer_costs(
            self,
            account_id: str,
            as_of_date: date,
            activities: list[Activity],
            currency: str,
    ) -> dict[str, Decimal]:
        # Only a ledger with unpriced transfers out needs the full replay
        if not any(is_unpriced_transfer_out(a) for a in activities):
            return {}
        return self._holdings.transfer_out_costs(account_id, as_of_date, activities, currency)

    def _account_lock(self, account_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[account_id] = lock
            return lock

    # =========================================================================
    # TRIGGERS
    # =========================================================================

    def request_recalculation(
            self,
            account_id: str,
            as_of_date: date,
    ) -> DailyAccountValuation | None:
        """
        Trigger a recalculation, coalescing with one already in flight.

        If the account is idle, the caller runs the pipeline (and any
        requests that arrive meanwhile) and gets the last valuation back.
        If it is busy, the request is recorded and None is returned; the
        busy worker picks it up when its current run finishes.
        """
        with self._state_lock:
            pending = self._pending.get(account_id)
            self._pending[account_id] = max(pending, as_of_date) if pending else as_of_date
            if account_id in self._running:
                logger.debug(f"Recalculation of {account_id} coalesced into running job")
                return None
            self._running.add(account_id)

        result: DailyAccountValuation | None = None
        try:
            while True:
                with self._state_lock:
                    target = self._pending.pop(account_id, None)
                    if target is None:
                        self._running.discard(account_id)
                        return result
                result = self.recalculate_account(account_id, target)
        except Exception:
            with self._state_lock:
                self._running.discard(account_id)
            raise

    def recalculate_accounts(
            self,
            account_ids: Sequence[str] | None,
            as_of_date: date,
    ) -> BatchRecalculationResult:
        """
        Recalculate several accounts in parallel.

        One account failing does not stop the others; failures are
        collected in the result.

        Args:
            account_ids: Accounts to process (None = every known account)
            as_of_date: Valuation date
        """
        ids = list(account_ids) if account_ids is not None else list(self._activities.account_ids())
        result = BatchRecalculationResult(as_of_date=as_of_date)

        with ThreadPoolExecutor(max_workers=self._config.max_workers) as executor:
            futures = {
                executor.submit(self.recalculate_account, account_id, as_of_date): account_id
                for account_id in ids
            }
            for future in as_completed(futures):
                account_id = futures[future]
                try:
                    result.valuations[account_id] = future.result()
                except ServiceError as exc:
                    logger.error(
                        f"Recalculation of {account_id} as of {as_of_date} failed: {exc}",
                        extra={"account_id": account_id, "error_type": type(exc).__name__},
                    )
                    result.errors[account_id] = exc

        logger.info(
            f"Recalculated {len(result.valuations)}/{len(ids)} accounts as of {as_of_date}"
        )
        return result

    def notify_activities_changed(self, account_id: str, earliest_date: date) -> int:
        """
        Invalidate derived state after activities were added or corrected.

        Waits for an in-flight run of the account so its snapshot cannot be
        written after the invalidation.

        Args:
            account_id: Account whose ledger changed
            earliest_date: Earliest activity date affected

        Returns:
            Number of snapshots dropped
        """
        with self._account_lock(account_id):
            removed = self._store.delete_from(account_id, earliest_date)
        self._cache.invalidate(account_id)
        logger.info(
            f"Activities changed for {account_id} from {earliest_date}: "
            f"{removed} snapshots invalidated",
            extra={"account_id": account_id},
        )
        return removed

    # =========================================================================
    # HISTORY & PERFORMANCE
    # =========================================================================

    def valuation_history(
            self,
            account_id: str,
            start_date: date,
            end_date: date,
    ) -> list[DailyAccountValuation]:
        """
        Daily valuations of an account over an inclusive range.

        Each day resumes from the previous day's snapshot, so a fresh range
        costs one replay of the ledger overall.
        """
        if start_date > end_date:
            raise ValidationError(f"Start date {start_date} is after end date {end_date}", field="start_date")
        return [self.recalculate_account(account_id, day) for day in calendar_days(start_date, end_date)]

    def get_performance(
            self,
            scope: PerformanceScope,
            account_id_or_portfolio: str | Sequence[str],
            date_range: DateRange,
    ) -> PerformanceMetrics:
        """
        Performance of an account or a portfolio over a date range.

        Args:
            scope: ACCOUNT for a single account, PORTFOLIO for a group
            account_id_or_portfolio: Account id (ACCOUNT scope), or
                PORTFOLIO_TOTAL_ID / a list of account ids (PORTFOLIO scope)
            date_range: Inclusive window

        Returns:
            PerformanceMetrics

        Raises:
            ValidationError: Target does not fit the scope
            InsufficientHistoryError: Fewer than two valuation points
            CoreError: Any failure of the underlying recalculations
        """
        account_ids, subject = self._resolve_target(scope, account_id_or_portfolio)
        cache_key = (scope.value, tuple(account_ids), date_range.start, date_range.end)

        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        with correlation_scope("perf"):
            valuations: list[DailyAccountValuation] = []
            flows: list[ClassifiedFlow] = []

            for account_id in account_ids:
                valuations.extend(
                    self.valuation_history(account_id, date_range.start, date_range.end)
                )
                activities = list(self._activities.activities_for(account_id, date_range.end))
                transfer_costs = self._transfer_costs(
                    account_id, date_range.end, activities,
                    self._activities.account_currency(account_id),
                )
                account_flows = external_flows(
                    classify_flows(
                        activities, scope,
                        start_date=date_range.start, end_date=date_range.end,
                        transfer_costs=transfer_costs,
                    )
                )
                flows.extend(convert_flows(account_flows, self._fx, self.base_currency))

            metrics = self._performance.compute(scope, date_range, valuations, flows, subject=subject)

        self._cache.set(cache_key, metrics)
        return metrics

    def _resolve_target(
            self,
            scope: PerformanceScope,
            target: str | Sequence[str],
    ) -> tuple[list[str], str]:
        if scope is PerformanceScope.ACCOUNT:
            if not isinstance(target, str) or target == PORTFOLIO_TOTAL_ID:
                raise ValidationError(
                    "Account scope requires a single account id", field="account_id_or_portfolio"
                )
            self._activities.account_currency(target)  # raises AccountNotFoundError
            return [target], target

        if isinstance(target, str):
            if target != PORTFOLIO_TOTAL_ID:
                raise ValidationError(
                    f"Portfolio scope takes '{PORTFOLIO_TOTAL_ID}' or a list of account ids",
                    field="account_id_or_portfolio",
                )
            return sorted(self._activities.account_ids()), PORTFOLIO_TOTAL_ID

        account_ids = sorted(set(target))
        if not account_ids:
            raise ValidationError("Portfolio scope requires at least one account", field="account_id_or_portfolio")
        return account_ids, ",".join(account_ids)


# =============================================================================
# FACTORY
# =============================================================================

def create_recalculation_service(
        activities: ActivitySource,
        quotes: QuoteSource,
        fx_source: FxRateSource,
        config: Settings | None = None,
) -> RecalculationService:
    """
    Build a RecalculationService with the snapshot store chosen by settings.

    A configured snapshot_database_url selects the SQL store, otherwise
    snapshots are kept in memory.
    """
    config = config or default_settings
    if config.snapshot_database_url:
        store: SnapshotStore = SqlSnapshotStore(create_snapshot_engine(config.snapshot_database_url))
    else:
        store = InMemorySnapshotStore()
    return RecalculationService(activities, quotes, fx_source, store=store, config=config)


__all__ = [
    "BatchRecalculationResult",
    "RecalculationService",
    "create_recalculation_service",
]
