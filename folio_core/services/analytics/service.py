# folio_core/services/analytics/service.py
"""
Performance Service.

Turns a sequence of daily valuations and classified flows into
PerformanceMetrics for one scope and date range:

1. Aggregates valuations per date (summing accounts for portfolio scope)
2. Books each external flow on the first valuation date on or after it
3. Delegates to the return and risk functions
4. Records data quality warnings instead of failing where possible

Failure modes:
    InsufficientHistoryError  fewer than two valuation points in range
    NonConvergentError        caught; mwr is None and mwr_error explains why

Architecture:
    PerformanceService
        ├── uses → returns.calculate_simple_return / calculate_twr / calculate_period_irr
        ├── uses → risk.calculate_volatility / calculate_max_drawdown
        └── PerformanceCache (TTL + LRU, owned by the recalculation service)
"""

import bisect
import logging
import threading
from collections import OrderedDict
from collections.abc import Hashable, Iterable, Sequence
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

from folio_core.services.analytics.returns import (
    annualize_period_rate,
    annualize_return,
    build_mwr_cash_flows,
    calculate_period_irr,
    calculate_simple_return,
    calculate_twr,
)
from folio_core.services.analytics.risk import calculate_max_drawdown, calculate_volatility
from folio_core.services.analytics.types import (
    CashFlow,
    DailyValue,
    DateRange,
    PerformanceMetrics,
)
from folio_core.services.constants import (
    CACHE_TTL_SECONDS,
    IRR_MAX_ITERATIONS,
    PERFORMANCE_CACHE_MAX_SIZE,
    ZERO,
)
from folio_core.services.exceptions import (
    CurrencyMismatchError,
    InsufficientHistoryError,
    NonConvergentError,
)
from folio_core.services.flows.types import ClassifiedFlow, PerformanceScope
from folio_core.services.valuation.types import DailyAccountValuation

logger = logging.getLogger(__name__)


# =============================================================================
# PERFORMANCE SERVICE
# =============================================================================

class PerformanceService:
    """
    Computes simple return, TWR and MWR plus the derived series and risk figures.

    Stateless apart from its solver configuration.
    """

    def __init__(self, irr_max_iterations: int = IRR_MAX_ITERATIONS) -> None:
        self._irr_max_iterations = irr_max_iterations

    def compute(
            self,
            scope: PerformanceScope,
            date_range: DateRange,
            valuations: Sequence[DailyAccountValuation],
            classified_flows: Iterable[ClassifiedFlow],
            subject: str = "",
    ) -> PerformanceMetrics:
        """
        Compute performance for a scope over a date range.

        Args:
            scope: Scope the flows were classified at
            date_range: Inclusive reporting window
            valuations: Daily valuations of every account in the scope, all
                in the same base currency; for portfolio scope every account
                must be valued on the same dates
            classified_flows: Flows classified at `scope`, already converted
                to the base currency; non-external flows are ignored
            subject: Label for the account or portfolio being measured

        Returns:
            PerformanceMetrics

        Raises:
            InsufficientHistoryError: Fewer than two valuation dates in range
            CurrencyMismatchError: Valuations or flows in mixed currencies
        """
        points, currency, stale_dates = self._aggregate_valuations(valuations, date_range)
        if len(points) < 2:
            raise InsufficientHistoryError(len(points))

        flows = [
            f for f in classified_flows
            if f.is_external and f.scope is scope and points[0].date < f.date <= points[-1].date
        ]
        for flow in flows:
            if flow.currency != currency:
                raise CurrencyMismatchError(currency, flow.currency, f"flow {flow.activity_id}")

        flows_by_point = self._book_flows(points, flows)
        for point, amount in zip(points, flows_by_point):
            point.cash_flow = amount

        start, end = points[0], points[-1]
        net_flow = sum(flows_by_point, ZERO)
        days = (end.date - start.date).days

        metrics = PerformanceMetrics(
            scope=scope,
            subject=subject,
            start_date=start.date,
            end_date=end.date,
            currency=currency,
            start_value=start.value,
            end_value=end.value,
            net_external_flow=net_flow,
            gain=end.value - start.value - net_flow,
            calendar_days=days,
        )

        if stale_dates:
            metrics.warnings.append(
                f"{len(stale_dates)} valuation dates priced some positions at cost basis"
            )

        # Simple return
        metrics.simple_return = calculate_simple_return(start.value, end.value, net_flow)
        if metrics.simple_return is None:
            metrics.warnings.append("Simple return undefined: starting value is zero")
        else:
            metrics.simple_return_annualized = annualize_return(metrics.simple_return, days)

        # Time-weighted return
        twr = calculate_twr(points)
        metrics.twr = twr.twr
        metrics.sub_period_returns = twr.sub_period_returns
        metrics.returns = twr.series
        if twr.twr is None:
            metrics.has_sufficient_data = False
            metrics.warnings.append("TWR undefined: no sub-period with a positive starting value")
        else:
            metrics.twr_annualized = annualize_return(twr.twr, days)

        metrics.volatility = calculate_volatility(twr.daily_returns)
        metrics.max_drawdown = calculate_max_drawdown(twr.series)

        # Money-weighted return
        cash_flows = build_mwr_cash_flows(
            start,
            [CashFlow(date=f.date, amount=f.amount) for f in flows],
            end,
        )
        try:
            metrics.mwr_period = calculate_period_irr(cash_flows, max_iterations=self._irr_max_iterations)
            flow_dates = [cf.date for cf in cash_flows]
            metrics.mwr = annualize_period_rate(
                metrics.mwr_period, (max(flow_dates) - min(flow_dates)).days
            )
        except NonConvergentError as exc:
            metrics.mwr_error = str(exc)
            metrics.warnings.append(f"MWR unavailable: {exc}")
            logger.warning(f"MWR for {scope.value} {subject} {date_range.start}..{date_range.end}: {exc}")

        logger.info(
            f"Computed {scope.value} performance for {subject or 'unnamed'} "
            f"{start.date}..{end.date}: twr={metrics.twr}, mwr={metrics.mwr}"
        )
        return metrics

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _aggregate_valuations(
            valuations: Sequence[DailyAccountValuation],
            date_range: DateRange,
    ) -> tuple[list[DailyValue], str, set[date]]:
        totals: dict[date, Decimal] = {}
        stale_dates: set[date] = set()
        currency: str | None = None

        for valuation in valuations:
            if not date_range.contains(valuation.date):
                continue
            if currency is None:
                currency = valuation.base_currency
            elif valuation.base_currency != currency:
                raise CurrencyMismatchError(
                    currency, valuation.base_currency, f"valuation of {valuation.account_id}"
                )
            totals[valuation.date] = totals.get(valuation.date, ZERO) + valuation.total_value
            if valuation.is_stale:
                stale_dates.add(valuation.date)

        points = [DailyValue(date=d, value=v) for d, v in sorted(totals.items())]
        return points, currency or "", stale_dates

    @staticmethod
    def _book_flows(points: list[DailyValue], flows: list[ClassifiedFlow]) -> list[Decimal]:
        """Net flow per point; a flow lands on the first point dated on or after it."""
        dates = [p.date for p in points]
        booked = [ZERO] * len(points)
        for flow in flows:
            index = bisect.bisect_left(dates, flow.date)
            booked[index] += flow.amount
        return booked


# =============================================================================
# CACHE
# =============================================================================

class PerformanceCache:
    """
    Thread-safe bounded LRU cache with TTL for performance results.

    Keys are tuples such as (scope, account_ids, start, end) where
    account_ids is itself a tuple; invalidate() drops every key that
    mentions an account at either level.
    """

    def __init__(
            self,
            ttl_seconds: int = CACHE_TTL_SECONDS,
            max_size: int = PERFORMANCE_CACHE_MAX_SIZE,
    ):
        self._cache: OrderedDict[Hashable, tuple[datetime, Any]] = OrderedDict()
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_size = max_size
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Any | None:
        """Return the cached value if present and not expired (LRU touch)."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            timestamp, result = entry
            if datetime.now() - timestamp < self._ttl:
                self._cache.move_to_end(key)
                logger.debug(f"Cache hit for {key}")
                return result
            del self._cache[key]
            logger.debug(f"Cache expired for {key}")
        return None

    def set(self, key: Hashable, result: Any) -> None:
        with self._lock:
            if key in self._cache:
                del self._cache[key]
            while len(self._cache) >= self._max_size:
                oldest_key = next(iter(self._cache))
                del self._cache[oldest_key]
                logger.debug(f"Cache evicted {oldest_key} (LRU)")
            self._cache[key] = (datetime.now(), result)

    def invalidate(self, subject: str) -> int:
        """
        Drop every entry whose key mentions `subject`.

        Returns:
            Number of entries invalidated
        """
        with self._lock:
            keys_to_delete = [
                k for k in self._cache
                if isinstance(k, tuple) and (subject in k or any(
                    isinstance(part, tuple) and subject in part for part in k
                ))
            ]
            for key in keys_to_delete:
                del self._cache[key]

        if keys_to_delete:
            logger.debug(f"Invalidated {len(keys_to_delete)} cache entries for {subject}")
        return len(keys_to_delete)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
