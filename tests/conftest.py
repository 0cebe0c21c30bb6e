# tests/conftest.py
"""
Pytest configuration and fixtures.

This module provides shared fixtures for all tests:
- In-memory activity, quote and FX sources (the protocols the core reads)
- Snapshot database fixtures (in-memory SQLite)
- Sample data factories
"""

import os

os.environ.setdefault("FOLIO_ENVIRONMENT", "test")

import bisect
import threading
from datetime import date
from decimal import Decimal

import pytest

from folio_core.config import Settings
from folio_core.database import create_snapshot_engine
from folio_core.models import Activity, ActivityType
from folio_core.services.exceptions import AccountNotFoundError
from folio_core.services.fx_rate_service import FXRateService, FxObservation
from folio_core.services.valuation.types import Quote


# =============================================================================
# MOCK ACTIVITY SOURCE
# =============================================================================

class MockActivitySource:
    """
    In-memory activity ledger.

    Tracks how often activities were read so tests can observe caching.
    """

    def __init__(self):
        self._currencies: dict[str, str] = {}
        self._activities: dict[str, list[Activity]] = {}
        self._lock = threading.Lock()
        self.read_count = 0

    def add_account(self, account_id: str, currency: str = "USD") -> None:
        self._currencies[account_id] = currency
        self._activities.setdefault(account_id, [])

    def add(self, *activities: Activity) -> None:
        for activity in activities:
            if activity.account_id not in self._currencies:
                self.add_account(activity.account_id, activity.currency)
            self._activities[activity.account_id].append(activity)

    def activities_for(self, account_id: str, up_to: date) -> list[Activity]:
        with self._lock:
            self.read_count += 1
        self.account_currency(account_id)
        return [a for a in self._activities[account_id] if a.date <= up_to]

    def account_ids(self) -> list[str]:
        return sorted(self._currencies)

    def account_currency(self, account_id: str) -> str:
        if account_id not in self._currencies:
            raise AccountNotFoundError(account_id)
        return self._currencies[account_id]


# =============================================================================
# MOCK QUOTE SOURCE
# =============================================================================

class MockQuoteSource:
    """In-memory close prices with on-or-before lookup."""

    def __init__(self):
        self._dates: dict[str, list[date]] = {}
        self._quotes: dict[str, dict[date, Quote]] = {}

    def set_quote(
            self,
            asset_id: str,
            quote_date: date,
            close: Decimal | str,
            currency: str = "USD",
            source: str | None = None,
    ) -> None:
        by_date = self._quotes.setdefault(asset_id, {})
        dates = self._dates.setdefault(asset_id, [])
        if quote_date not in by_date:
            bisect.insort(dates, quote_date)
        by_date[quote_date] = Quote(
            asset_id=asset_id,
            date=quote_date,
            close=Decimal(close),
            currency=currency,
            source=source,
        )

    def latest_quote_on_or_before(self, asset_id: str, on: date) -> Quote | None:
        dates = self._dates.get(asset_id, [])
        index = bisect.bisect_right(dates, on)
        if index == 0:
            return None
        return self._quotes[asset_id][dates[index - 1]]


# =============================================================================
# MOCK FX SOURCE
# =============================================================================

class MockFxRateSource:
    """
    In-memory FX observations keyed by directed pair.

    Returns FxObservation by default; with bare_decimals=True it returns the
    rate only, like sources that do not know the observation date.
    """

    def __init__(self, bare_decimals: bool = False):
        self._dates: dict[tuple[str, str], list[date]] = {}
        self._rates: dict[tuple[str, str], dict[date, Decimal]] = {}
        self._bare_decimals = bare_decimals

    def set_rate(self, from_currency: str, to_currency: str, rate_date: date, rate: Decimal | str) -> None:
        pair = (from_currency, to_currency)
        by_date = self._rates.setdefault(pair, {})
        dates = self._dates.setdefault(pair, [])
        if rate_date not in by_date:
            bisect.insort(dates, rate_date)
        by_date[rate_date] = Decimal(rate)

    def rate_on_or_before(
            self,
            from_currency: str,
            to_currency: str,
            on: date,
    ) -> FxObservation | Decimal | None:
        pair = (from_currency, to_currency)
        dates = self._dates.get(pair, [])
        index = bisect.bisect_right(dates, on)
        if index == 0:
            return None
        observed = dates[index - 1]
        rate = self._rates[pair][observed]
        if self._bare_decimals:
            return rate
        return FxObservation(date=observed, rate=rate)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def activity_source() -> MockActivitySource:
    return MockActivitySource()


@pytest.fixture
def quote_source() -> MockQuoteSource:
    return MockQuoteSource()


@pytest.fixture
def fx_source() -> MockFxRateSource:
    return MockFxRateSource()


@pytest.fixture
def fx_service(fx_source) -> FXRateService:
    return FXRateService(fx_source)


@pytest.fixture(scope="function")
def snapshot_engine():
    """Create an in-memory SQLite engine with the snapshot tables."""
    engine = create_snapshot_engine("sqlite:///:memory:")
    yield engine
    engine.dispose()


@pytest.fixture
def test_settings() -> Settings:
    """Settings for services under test: USD base, no performance caching surprises."""
    return Settings(
        environment="test",
        base_currency="USD",
        quote_staleness_days=5,
        max_workers=4,
        snapshot_database_url="sqlite:///:memory:",
    )


# =============================================================================
# SAMPLE DATA FACTORIES
# =============================================================================

def create_activity(
        activity_id: str,
        activity_type: ActivityType,
        activity_date: date,
        account_id: str = "acc-1",
        currency: str = "USD",
        asset_id: str | None = None,
        quantity: Decimal | str = "0",
        unit_price: Decimal | str = "0",
        fee: Decimal | str = "0",
        amount: Decimal | str | None = None,
        sequence: int = 0,
        is_external: bool = False,
) -> Activity:
    """Factory function for creating Activity test data."""
    return Activity(
        id=activity_id,
        account_id=account_id,
        activity_type=activity_type,
        date=activity_date,
        currency=currency,
        asset_id=asset_id,
        quantity=Decimal(quantity),
        unit_price=Decimal(unit_price),
        fee=Decimal(fee),
        amount=Decimal(amount) if amount is not None else None,
        sequence=sequence,
        is_external=is_external,
    )


def deposit(activity_id: str, activity_date: date, amount: str, **kwargs) -> Activity:
    return create_activity(activity_id, ActivityType.DEPOSIT, activity_date, amount=amount, **kwargs)


def withdrawal(activity_id: str, activity_date: date, amount: str, **kwargs) -> Activity:
    return create_activity(activity_id, ActivityType.WITHDRAWAL, activity_date, amount=amount, **kwargs)


def buy(activity_id: str, activity_date: date, asset_id: str, quantity: str, price: str, **kwargs) -> Activity:
    return create_activity(
        activity_id, ActivityType.BUY, activity_date,
        asset_id=asset_id, quantity=quantity, unit_price=price, **kwargs,
    )


def sell(activity_id: str, activity_date: date, asset_id: str, quantity: str, price: str, **kwargs) -> Activity:
    return create_activity(
        activity_id, ActivityType.SELL, activity_date,
        asset_id=asset_id, quantity=quantity, unit_price=price, **kwargs,
    )
