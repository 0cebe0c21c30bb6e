# tests/services/test_recalculation.py
"""
Integration tests for the RecalculationService.

These tests run the full pipeline (activities -> snapshot -> valuation ->
performance) against the in-memory sources from conftest.

Test Coverage:
- recalculate_account: valuation, snapshot caching, incremental resume
- notify_activities_changed: invalidation and recomputation
- request_recalculation: coalescing of triggers
- recalculate_accounts: parallel runs with per-account failures
- get_performance: account and portfolio scope, caching, target validation
- unpriced asset transfers out booked at their relieved FIFO cost
- create_recalculation_service: store selection from settings
"""

import threading
from datetime import date
from decimal import Decimal

import pytest

from folio_core.config import Settings
from folio_core.models import ActivityType
from folio_core.schemas import ActivityCreate
from folio_core.services.analytics import DateRange
from folio_core.services.constants import PORTFOLIO_TOTAL_ID
from folio_core.services.exceptions import (
    AccountNotFoundError,
    InsufficientHistoryError,
    InsufficientLotsError,
    ValidationError,
)
from folio_core.services.flows import PerformanceScope
from folio_core.services.recalculation import RecalculationService, create_recalculation_service
from folio_core.services.snapshot_store import InMemorySnapshotStore, SqlSnapshotStore
from tests.conftest import buy, create_activity, deposit, sell


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def store() -> InMemorySnapshotStore:
    return InMemorySnapshotStore()


@pytest.fixture
def service(activity_source, quote_source, fx_source, store, test_settings) -> RecalculationService:
    return RecalculationService(
        activity_source, quote_source, fx_source, store=store, config=test_settings,
    )


@pytest.fixture
def funded_account(activity_source, quote_source):
    """Deposit 1000, buy 10 AAPL at 100, quoted 110 from Jan 2."""
    activity_source.add_account("acc-1", "USD")
    activity_source.add(
        deposit("a1", date(2024, 1, 1), "1000", sequence=1),
        buy("a2", date(2024, 1, 2), "AAPL", "10", "100", sequence=2),
    )
    quote_source.set_quote("AAPL", date(2024, 1, 1), "100")
    quote_source.set_quote("AAPL", date(2024, 1, 2), "110")
    return "acc-1"


# =============================================================================
# ACCOUNT PIPELINE
# =============================================================================

class TestRecalculateAccount:
    """Tests for recalculate_account."""

    def test_valuation(self, service, funded_account):
        valuation = service.recalculate_account(funded_account, date(2024, 1, 2))

        assert valuation.total_value == Decimal("1100")
        assert valuation.cash_balance == Decimal("0")
        assert valuation.investment_market_value == Decimal("1100")
        assert valuation.net_contribution == Decimal("1000")

    def test_snapshot_is_stored(self, service, store, funded_account):
        service.recalculate_account(funded_account, date(2024, 1, 2))

        snapshot = store.get_snapshot(funded_account, date(2024, 1, 2))
        assert snapshot is not None
        assert snapshot.quantity_of("AAPL") == Decimal("10")

    def test_repeated_calls_are_equal(self, service, funded_account):
        first = service.recalculate_account(funded_account, date(2024, 1, 2))
        second = service.recalculate_account(funded_account, date(2024, 1, 2))

        assert first == second

    def test_resumes_from_stored_snapshot(
            self, service, store, activity_source, quote_source, fx_source, funded_account,
    ):
        """A later date continues from the stored day and matches a fresh replay."""
        activity_source.add(sell("a3", date(2024, 1, 5), "AAPL", "4", "110", sequence=3))
        service.recalculate_account(funded_account, date(2024, 1, 2))

        resumed = service.recalculate_account(funded_account, date(2024, 1, 5))

        fresh_service = RecalculationService(
            activity_source, quote_source, fx_source, store=InMemorySnapshotStore(),
        )
        assert resumed == fresh_service.recalculate_account(funded_account, date(2024, 1, 5))
        assert store.get_snapshot(funded_account, date(2024, 1, 5)).cash_in("USD") == Decimal("440")

    def test_unknown_account(self, service):
        with pytest.raises(AccountNotFoundError):
            service.recalculate_account("nope", date(2024, 1, 2))

    def test_failed_replay_stores_nothing(self, service, store, activity_source, funded_account):
        activity_source.add(sell("a3", date(2024, 1, 3), "AAPL", "50", "110", sequence=3))

        with pytest.raises(InsufficientLotsError):
            service.recalculate_account(funded_account, date(2024, 1, 3))

        assert store.get_snapshot(funded_account, date(2024, 1, 3)) is None

    def test_valuation_history(self, service, funded_account):
        history = service.valuation_history(funded_account, date(2024, 1, 1), date(2024, 1, 3))

        assert [v.date for v in history] == [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)]
        assert [v.total_value for v in history] == [Decimal("1000"), Decimal("1100"), Decimal("1100")]

    def test_valuation_history_rejects_inverted_range(self, service, funded_account):
        with pytest.raises(ValidationError):
            service.valuation_history(funded_account, date(2024, 1, 3), date(2024, 1, 1))


# =============================================================================
# INVALIDATION
# =============================================================================

class TestNotifyActivitiesChanged:
    """Tests for notify_activities_changed."""

    def test_backdated_activity_is_picked_up(self, service, store, activity_source, funded_account):
        service.valuation_history(funded_account, date(2024, 1, 1), date(2024, 1, 4))

        activity_source.add(deposit("late", date(2024, 1, 2), "500", sequence=9))
        removed = service.notify_activities_changed(funded_account, date(2024, 1, 2))
        valuation = service.recalculate_account(funded_account, date(2024, 1, 4))

        assert removed == 3
        assert store.get_snapshot(funded_account, date(2024, 1, 1)) is not None
        assert valuation.cash_balance == Decimal("500")
        assert valuation.net_contribution == Decimal("1500")

    def test_stale_snapshot_is_served_until_notified(self, service, activity_source, funded_account):
        """Snapshots are a cache: without a notification the old state is reused."""
        service.recalculate_account(funded_account, date(2024, 1, 2))
        activity_source.add(deposit("late", date(2024, 1, 2), "500", sequence=9))

        cached = service.recalculate_account(funded_account, date(2024, 1, 2))
        service.notify_activities_changed(funded_account, date(2024, 1, 2))
        fresh = service.recalculate_account(funded_account, date(2024, 1, 2))

        assert cached.cash_balance == Decimal("0")
        assert fresh.cash_balance == Decimal("500")


# =============================================================================
# COALESCING & PARALLELISM
# =============================================================================

class TestTriggers:
    """Tests for request_recalculation and recalculate_accounts."""

    def test_idle_request_runs_immediately(self, service, funded_account):
        valuation = service.request_recalculation(funded_account, date(2024, 1, 2))

        assert valuation is not None
        assert valuation.total_value == Decimal("1100")

    def test_requests_during_a_run_are_coalesced(self, activity_source, quote_source, fx_source, test_settings, funded_account):
        """Triggers arriving mid-run collapse into one re-run at the latest date."""
        started = threading.Event()
        release = threading.Event()
        runs: list[date] = []

        class BlockingStore(InMemorySnapshotStore):
            def put_snapshot(self, snapshot):
                runs.append(snapshot.snapshot_date)
                if len(runs) == 1:
                    started.set()
                    release.wait(timeout=5)
                super().put_snapshot(snapshot)

        service = RecalculationService(
            activity_source, quote_source, fx_source, store=BlockingStore(), config=test_settings,
        )
        results = {}

        def first_trigger():
            results["first"] = service.request_recalculation(funded_account, date(2024, 1, 2))

        worker = threading.Thread(target=first_trigger)
        worker.start()
        assert started.wait(timeout=5)

        assert service.request_recalculation(funded_account, date(2024, 1, 3)) is None
        assert service.request_recalculation(funded_account, date(2024, 1, 4)) is None
        assert service.request_recalculation(funded_account, date(2024, 1, 3)) is None

        release.set()
        worker.join(timeout=5)

        assert runs == [date(2024, 1, 2), date(2024, 1, 4)]
        assert results["first"].date == date(2024, 1, 4)

    def test_failed_request_releases_account(self, service, activity_source, funded_account):
        activity_source.add(sell("bad", date(2024, 1, 3), "AAPL", "50", "110", sequence=3))

        with pytest.raises(InsufficientLotsError):
            service.request_recalculation(funded_account, date(2024, 1, 3))

        assert service.request_recalculation(funded_account, date(2024, 1, 2)) is not None

    def test_batch_collects_failures(self, service, activity_source, funded_account):
        activity_source.add_account("acc-2", "USD")
        activity_source.add(
            deposit("b1", date(2024, 1, 1), "200", account_id="acc-2"),
            sell("b2", date(2024, 1, 2), "AAPL", "1", "110", account_id="acc-2"),
        )
        activity_source.add_account("acc-3", "USD")
        activity_source.add(deposit("c1", date(2024, 1, 1), "300", account_id="acc-3"))

        result = service.recalculate_accounts(None, date(2024, 1, 2))

        assert not result.success
        assert set(result.valuations) == {"acc-1", "acc-3"}
        assert isinstance(result.errors["acc-2"], InsufficientLotsError)
        assert result.valuations["acc-3"].total_value == Decimal("300")


# =============================================================================
# PERFORMANCE
# =============================================================================

class TestGetPerformance:
    """Tests for get_performance at account and portfolio scope."""

    @pytest.fixture
    def two_accounts(self, activity_source, quote_source):
        """
        acc-a deposits 1000 and buys AAPL; on Jan 3 it transfers 100 cash to acc-b.
        acc-b starts with 500 cash.
        """
        activity_source.add_account("acc-a", "USD")
        activity_source.add_account("acc-b", "USD")
        activity_source.add(
            deposit("a1", date(2024, 1, 1), "1000", account_id="acc-a", sequence=1),
            buy("a2", date(2024, 1, 1), "AAPL", "9", "100", account_id="acc-a", sequence=2),
            create_activity(
                "a3", ActivityType.TRANSFER_OUT, date(2024, 1, 3),
                account_id="acc-a", amount="100", sequence=3,
            ),
            deposit("b1", date(2024, 1, 1), "500", account_id="acc-b", sequence=1),
            create_activity(
                "b2", ActivityType.TRANSFER_IN, date(2024, 1, 3),
                account_id="acc-b", amount="100", sequence=2,
            ),
        )
        quote_source.set_quote("AAPL", date(2024, 1, 1), "100")
        quote_source.set_quote("AAPL", date(2024, 1, 2), "110")
        quote_source.set_quote("AAPL", date(2024, 1, 3), "110")
        return ["acc-a", "acc-b"]

    def test_account_performance(self, service, two_accounts):
        """acc-a: 1000 -> 1090 on Jan 2; the transfer out on Jan 3 is external for the account."""
        metrics = service.get_performance(
            PerformanceScope.ACCOUNT, "acc-a", DateRange(date(2024, 1, 1), date(2024, 1, 3)),
        )

        assert metrics.start_value == Decimal("1000")
        assert metrics.end_value == Decimal("990")
        assert metrics.net_external_flow == Decimal("-100")
        assert metrics.twr == Decimal("0.09")

    def test_portfolio_performance_ignores_internal_transfer(self, service, two_accounts):
        metrics = service.get_performance(
            PerformanceScope.PORTFOLIO, PORTFOLIO_TOTAL_ID, DateRange(date(2024, 1, 1), date(2024, 1, 3)),
        )

        assert metrics.subject == PORTFOLIO_TOTAL_ID
        assert metrics.start_value == Decimal("1500")
        assert metrics.end_value == Decimal("1590")
        assert metrics.net_external_flow == Decimal("0")
        assert metrics.twr == Decimal("0.06")

    def test_portfolio_of_listed_accounts(self, service, two_accounts):
        metrics = service.get_performance(
            PerformanceScope.PORTFOLIO, ["acc-b", "acc-a"], DateRange(date(2024, 1, 1), date(2024, 1, 3)),
        )

        assert metrics.subject == "acc-a,acc-b"
        assert metrics.end_value == Decimal("1590")

    def test_results_are_cached_until_invalidated(self, service, activity_source, two_accounts):
        date_range = DateRange(date(2024, 1, 1), date(2024, 1, 3))
        first = service.get_performance(PerformanceScope.ACCOUNT, "acc-b", date_range)
        reads = activity_source.read_count

        again = service.get_performance(PerformanceScope.ACCOUNT, "acc-b", date_range)
        assert again is first
        assert activity_source.read_count == reads

        service.notify_activities_changed("acc-b", date(2024, 1, 2))
        refreshed = service.get_performance(PerformanceScope.ACCOUNT, "acc-b", date_range)
        assert refreshed is not first

    def test_single_day_range_is_insufficient(self, service, two_accounts):
        with pytest.raises(InsufficientHistoryError):
            service.get_performance(
                PerformanceScope.ACCOUNT, "acc-a", DateRange(date(2024, 1, 2), date(2024, 1, 2)),
            )

    def test_unpriced_asset_transfer_out_is_booked_at_cost(self, service, activity_source, quote_source):
        """5 of 10 AAPL leave without a price: the flow is their FIFO cost, not zero."""
        activity_source.add_account("acc-1", "USD")
        activity_source.add(
            deposit("a1", date(2024, 1, 1), "1000", sequence=1),
            buy("a2", date(2024, 1, 1), "AAPL", "10", "100", sequence=2),
            ActivityCreate(
                id="a3", account_id="acc-1", activity_type="TRANSFER_OUT",
                date=date(2024, 1, 2), currency="USD", asset_id="AAPL", quantity="5", sequence=3,
            ).to_activity(),
        )
        for day in (1, 2, 3):
            quote_source.set_quote("AAPL", date(2024, 1, day), "100")

        metrics = service.get_performance(
            PerformanceScope.ACCOUNT, "acc-1", DateRange(date(2024, 1, 1), date(2024, 1, 3)),
        )

        assert metrics.start_value == Decimal("1000")
        assert metrics.end_value == Decimal("500")
        assert metrics.net_external_flow == Decimal("-500")
        assert metrics.twr == Decimal("0")
        assert metrics.gain == Decimal("0")

        valuation = service.recalculate_account("acc-1", date(2024, 1, 3))
        assert valuation.net_contribution == Decimal("500")

    @pytest.mark.parametrize("scope,target", [
        (PerformanceScope.ACCOUNT, PORTFOLIO_TOTAL_ID),
        (PerformanceScope.ACCOUNT, ["acc-a"]),
        (PerformanceScope.PORTFOLIO, "acc-a"),
        (PerformanceScope.PORTFOLIO, []),
    ])
    def test_target_must_fit_scope(self, service, two_accounts, scope, target):
        with pytest.raises(ValidationError):
            service.get_performance(scope, target, DateRange(date(2024, 1, 1), date(2024, 1, 3)))


# =============================================================================
# FACTORY
# =============================================================================

class TestFactory:
    """Tests for create_recalculation_service."""

    def test_sql_store_when_url_configured(self, activity_source, quote_source, fx_source):
        config = Settings(environment="test", snapshot_database_url="sqlite:///:memory:")

        service = create_recalculation_service(activity_source, quote_source, fx_source, config=config)

        assert isinstance(service._store, SqlSnapshotStore)

    def test_memory_store_by_default(self, activity_source, quote_source, fx_source):
        config = Settings(environment="development", snapshot_database_url=None)

        service = create_recalculation_service(activity_source, quote_source, fx_source, config=config)

        assert isinstance(service._store, InMemorySnapshotStore)
        assert service.base_currency == "USD"
