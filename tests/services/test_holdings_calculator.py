# tests/services/test_holdings_calculator.py
"""
Unit tests for the Holdings Calculator.

These tests replay hand-built ledgers and check lots and cash by hand.

Test Coverage:
- BUY / SELL: lot creation, FIFO relief, realized gains, fees
- SPLIT: quantity scaling with unchanged cost
- Cash events: deposits, withdrawals, income, charges
- Transfers: cash and asset, with carried cost
- Ordering: (date, sequence, id), determinism
- resume(): equivalence with a full replay
- Error handling: oversell, currency mismatch, foreign activities
"""

from datetime import date
from decimal import Decimal

import pytest

from folio_core.models import ActivityType
from folio_core.services.exceptions import (
    CurrencyMismatchError,
    InsufficientLotsError,
    InvalidActivityError,
    InvariantViolationError,
)
from folio_core.services.holdings import HoldingsCalculator
from tests.conftest import buy, create_activity, deposit, sell, withdrawal


@pytest.fixture
def calculator() -> HoldingsCalculator:
    return HoldingsCalculator()


@pytest.fixture
def basic_ledger():
    """Deposit 1000, buy 10 AAPL at 100."""
    return [
        deposit("a1", date(2024, 1, 1), "1000", sequence=1),
        buy("a2", date(2024, 1, 2), "AAPL", "10", "100", sequence=2),
    ]


# =============================================================================
# TRADES
# =============================================================================

class TestTrades:
    """Tests for BUY and SELL replay."""

    def test_buy_opens_lot_and_debits_cash(self, calculator, basic_ledger):
        """Buying 10 at 100 leaves one lot at cost 1000 and no cash."""
        snapshot = calculator.compute_state("acc-1", date(2024, 1, 2), basic_ledger, "USD")

        assert snapshot.cash_in("USD") == Decimal("0")
        assert snapshot.quantity_of("AAPL") == Decimal("10")
        lot = snapshot.positions["AAPL"].lots[0]
        assert lot.cost_basis == Decimal("1000")
        assert lot.unit_cost == Decimal("100")
        assert lot.origin_activity_id == "a2"

    def test_buy_fee_is_capitalized(self, calculator):
        """Fees on a buy are part of the lot cost."""
        activities = [buy("b1", date(2024, 1, 2), "AAPL", "10", "100", fee="5")]

        snapshot = calculator.compute_state("acc-1", date(2024, 1, 2), activities, "USD")

        assert snapshot.positions["AAPL"].total_cost_basis == Decimal("1005")
        assert snapshot.cash_in("USD") == Decimal("-1005")

    def test_partial_sell_relieves_proportional_cost(self, calculator, basic_ledger):
        """Selling 4 at 110 from a 10@100 lot leaves 6@100 and realizes 40."""
        activities = basic_ledger + [sell("a3", date(2024, 1, 3), "AAPL", "4", "110", sequence=3)]

        snapshot = calculator.compute_state("acc-1", date(2024, 1, 3), activities, "USD")

        assert snapshot.cash_in("USD") == Decimal("440")
        lot = snapshot.positions["AAPL"].lots[0]
        assert lot.quantity_remaining == Decimal("6")
        assert lot.cost_basis == Decimal("600")
        assert lot.unit_cost == Decimal("100")
        assert snapshot.realized_gains["USD"] == Decimal("40")

    def test_sell_is_fifo_across_lots(self, calculator):
        """The oldest lot is consumed before the newer one."""
        activities = [
            buy("b1", date(2024, 1, 1), "AAPL", "5", "100", sequence=1),
            buy("b2", date(2024, 1, 2), "AAPL", "5", "120", sequence=2),
            sell("s1", date(2024, 1, 3), "AAPL", "7", "130", sequence=3),
        ]

        snapshot = calculator.compute_state("acc-1", date(2024, 1, 3), activities, "USD")

        lots = snapshot.positions["AAPL"].lots
        assert len(lots) == 1
        assert lots[0].origin_activity_id == "b2"
        assert lots[0].quantity_remaining == Decimal("3")
        assert lots[0].cost_basis == Decimal("360")
        # Relieved cost = 500 + 2 x 120 = 740, proceeds = 910
        assert snapshot.realized_gains["USD"] == Decimal("170")

    def test_sell_fee_reduces_proceeds(self, calculator, basic_ledger):
        activities = basic_ledger + [sell("a3", date(2024, 1, 3), "AAPL", "10", "110", fee="10")]

        snapshot = calculator.compute_state("acc-1", date(2024, 1, 3), activities, "USD")

        assert snapshot.cash_in("USD") == Decimal("1090")
        assert snapshot.realized_gains["USD"] == Decimal("90")

    def test_full_sell_closes_position(self, calculator, basic_ledger):
        """A fully relieved position disappears from the snapshot."""
        activities = basic_ledger + [sell("a3", date(2024, 1, 3), "AAPL", "10", "100")]

        snapshot = calculator.compute_state("acc-1", date(2024, 1, 3), activities, "USD")

        assert "AAPL" not in snapshot.positions
        assert snapshot.lots == []

    def test_oversell_raises_insufficient_lots(self, calculator, basic_ledger):
        """Selling more than is open fails with the counts in the error."""
        activities = basic_ledger + [sell("a3", date(2024, 1, 3), "AAPL", "11", "110")]

        with pytest.raises(InsufficientLotsError) as exc_info:
            calculator.compute_state("acc-1", date(2024, 1, 3), activities, "USD")

        assert exc_info.value.requested == Decimal("11")
        assert exc_info.value.available == Decimal("10")
        assert exc_info.value.activity_id == "a3"

    def test_sell_without_position_raises(self, calculator):
        activities = [sell("s1", date(2024, 1, 3), "AAPL", "1", "110")]

        with pytest.raises(InsufficientLotsError):
            calculator.compute_state("acc-1", date(2024, 1, 3), activities, "USD")

    def test_buy_in_other_currency_raises(self, calculator):
        """Adding EUR lots to an open USD position is rejected."""
        activities = [
            buy("b1", date(2024, 1, 1), "SAP", "1", "100", sequence=1),
            buy("b2", date(2024, 1, 2), "SAP", "1", "100", currency="EUR", sequence=2),
        ]

        with pytest.raises(CurrencyMismatchError):
            calculator.compute_state("acc-1", date(2024, 1, 2), activities, "USD")

    def test_sell_in_other_currency_raises(self, calculator):
        activities = [
            buy("b1", date(2024, 1, 1), "SAP", "2", "100", sequence=1),
            sell("s1", date(2024, 1, 2), "SAP", "1", "100", currency="EUR", sequence=2),
        ]

        with pytest.raises(CurrencyMismatchError):
            calculator.compute_state("acc-1", date(2024, 1, 2), activities, "USD")


# =============================================================================
# SPLITS
# =============================================================================

class TestSplits:
    """Tests for SPLIT replay."""

    def test_two_for_one_split(self, calculator, basic_ledger):
        """6@100 becomes 12@50; total cost stays 600."""
        activities = basic_ledger + [
            sell("a3", date(2024, 1, 3), "AAPL", "4", "110", sequence=3),
            create_activity("a4", ActivityType.SPLIT, date(2024, 1, 4), asset_id="AAPL", amount="2", sequence=4),
        ]

        snapshot = calculator.compute_state("acc-1", date(2024, 1, 4), activities, "USD")

        lot = snapshot.positions["AAPL"].lots[0]
        assert lot.quantity_remaining == Decimal("12")
        assert lot.cost_basis == Decimal("600")
        assert lot.unit_cost == Decimal("50")
        assert snapshot.cash_in("USD") == Decimal("440")

    def test_ratio_from_quantity(self, calculator, basic_ledger):
        """A ledger without amount carries the ratio in quantity."""
        activities = basic_ledger + [
            create_activity("a3", ActivityType.SPLIT, date(2024, 1, 3), asset_id="AAPL", quantity="3"),
        ]

        snapshot = calculator.compute_state("acc-1", date(2024, 1, 3), activities, "USD")

        assert snapshot.quantity_of("AAPL") == Decimal("30")

    def test_split_without_position_is_ignored(self, calculator):
        activities = [
            create_activity("s1", ActivityType.SPLIT, date(2024, 1, 3), asset_id="AAPL", amount="2"),
        ]

        snapshot = calculator.compute_state("acc-1", date(2024, 1, 3), activities, "USD")

        assert snapshot.positions == {}
        assert snapshot.activity_count == 1

    def test_non_positive_ratio_raises(self, calculator, basic_ledger):
        activities = basic_ledger + [
            create_activity("a3", ActivityType.SPLIT, date(2024, 1, 3), asset_id="AAPL", amount="-2"),
        ]

        with pytest.raises(InvalidActivityError):
            calculator.compute_state("acc-1", date(2024, 1, 3), activities, "USD")


# =============================================================================
# CASH EVENTS & TRANSFERS
# =============================================================================

class TestCashEvents:
    """Tests for deposits, withdrawals, income and charges."""

    def test_cash_movements(self, calculator):
        activities = [
            deposit("c1", date(2024, 1, 1), "1000", sequence=1),
            withdrawal("c2", date(2024, 1, 2), "200", fee="1", sequence=2),
            create_activity("c3", ActivityType.DIVIDEND, date(2024, 1, 3), asset_id="AAPL", amount="15", sequence=3),
            create_activity("c4", ActivityType.INTEREST, date(2024, 1, 4), amount="2", sequence=4),
            create_activity("c5", ActivityType.FEE, date(2024, 1, 5), fee="3", sequence=5),
            create_activity("c6", ActivityType.TAX, date(2024, 1, 6), amount="-4", sequence=6),
            create_activity("c7", ActivityType.ADJUSTMENT, date(2024, 1, 7), sequence=7),
        ]

        snapshot = calculator.compute_state("acc-1", date(2024, 1, 7), activities, "USD")

        # 1000 - 201 + 15 + 2 - 3 - 4
        assert snapshot.cash_in("USD") == Decimal("809")
        assert snapshot.activity_count == 7

    def test_cash_tracked_per_currency(self, calculator):
        activities = [
            deposit("c1", date(2024, 1, 1), "1000"),
            deposit("c2", date(2024, 1, 1), "500", currency="EUR"),
        ]

        snapshot = calculator.compute_state("acc-1", date(2024, 1, 1), activities, "USD")

        assert snapshot.cash_balances == {"EUR": Decimal("500"), "USD": Decimal("1000")}

    def test_asset_transfer_carries_cost(self, calculator):
        """TRANSFER_IN of units opens a lot at the carried price, no cash moves."""
        activities = [
            create_activity(
                "t1", ActivityType.TRANSFER_IN, date(2024, 1, 1),
                asset_id="AAPL", quantity="5", unit_price="80",
            ),
            create_activity(
                "t2", ActivityType.TRANSFER_OUT, date(2024, 1, 2),
                asset_id="AAPL", quantity="2", fee="1",
            ),
        ]

        snapshot = calculator.compute_state("acc-1", date(2024, 1, 2), activities, "USD")

        lot = snapshot.positions["AAPL"].lots[0]
        assert lot.quantity_remaining == Decimal("3")
        assert lot.cost_basis == Decimal("240")
        assert snapshot.cash_in("USD") == Decimal("-1")

    def test_transfer_out_costs_follow_fifo(self, calculator):
        """Units leaving without a price are costed from the oldest lots first."""
        activities = [
            buy("b1", date(2024, 1, 1), "AAPL", "4", "100", sequence=1),
            buy("b2", date(2024, 1, 2), "AAPL", "4", "150", sequence=2),
            create_activity(
                "t1", ActivityType.TRANSFER_OUT, date(2024, 1, 3),
                asset_id="AAPL", quantity="6", sequence=3,
            ),
            create_activity("t2", ActivityType.TRANSFER_OUT, date(2024, 1, 3), amount="50", sequence=4),
        ]

        costs = calculator.transfer_out_costs("acc-1", date(2024, 1, 3), activities, "USD")

        assert costs == {"t1": Decimal("700")}

    def test_cash_transfers(self, calculator):
        activities = [
            create_activity("t1", ActivityType.TRANSFER_IN, date(2024, 1, 1), amount="300"),
            create_activity("t2", ActivityType.TRANSFER_OUT, date(2024, 1, 2), amount="100"),
        ]

        snapshot = calculator.compute_state("acc-1", date(2024, 1, 2), activities, "USD")

        assert snapshot.cash_in("USD") == Decimal("200")


# =============================================================================
# ORDERING & DETERMINISM
# =============================================================================

class TestOrdering:
    """Tests for replay order and reproducibility."""

    def test_input_order_does_not_matter(self, calculator, basic_ledger):
        """Same activities in any order produce equal snapshots."""
        activities = basic_ledger + [sell("a3", date(2024, 1, 3), "AAPL", "4", "110", sequence=3)]

        forward = calculator.compute_state("acc-1", date(2024, 1, 3), activities, "USD")
        backward = calculator.compute_state("acc-1", date(2024, 1, 3), list(reversed(activities)), "USD")

        assert forward == backward

    def test_sequence_breaks_same_day_ties(self, calculator):
        """A same-day buy with a lower sequence is applied before the sell."""
        activities = [
            sell("s1", date(2024, 1, 1), "AAPL", "1", "100", sequence=2),
            buy("b1", date(2024, 1, 1), "AAPL", "1", "90", sequence=1),
        ]

        snapshot = calculator.compute_state("acc-1", date(2024, 1, 1), activities, "USD")

        assert snapshot.realized_gains["USD"] == Decimal("10")
        assert snapshot.last_activity_sequence == (date(2024, 1, 1), 2, "s1")

    def test_activities_after_as_of_are_ignored(self, calculator, basic_ledger):
        snapshot = calculator.compute_state("acc-1", date(2024, 1, 1), basic_ledger, "USD")

        assert snapshot.positions == {}
        assert snapshot.cash_in("USD") == Decimal("1000")
        assert snapshot.activity_count == 1

    def test_foreign_account_activity_raises(self, calculator):
        activities = [deposit("x1", date(2024, 1, 1), "100", account_id="acc-2")]

        with pytest.raises(InvalidActivityError):
            calculator.compute_state("acc-1", date(2024, 1, 1), activities, "USD")


# =============================================================================
# RESUME
# =============================================================================

class TestResume:
    """Tests for incremental replay from a prior snapshot."""

    def test_resume_matches_full_replay(self, calculator, basic_ledger):
        """Resuming from day 2 equals replaying everything to day 5."""
        later = [
            sell("a3", date(2024, 1, 3), "AAPL", "4", "110", sequence=3),
            create_activity("a4", ActivityType.SPLIT, date(2024, 1, 4), asset_id="AAPL", amount="2", sequence=4),
            deposit("a5", date(2024, 1, 5), "50", sequence=5),
        ]

        prior = calculator.compute_state("acc-1", date(2024, 1, 2), basic_ledger, "USD")
        resumed = calculator.resume(prior, later, date(2024, 1, 5))
        full = calculator.compute_state("acc-1", date(2024, 1, 5), basic_ledger + later, "USD")

        assert resumed == full
        assert resumed.activity_count == 5

    def test_resume_skips_already_applied_activities(self, calculator, basic_ledger):
        """Passing the whole ledger to resume() does not double count."""
        prior = calculator.compute_state("acc-1", date(2024, 1, 2), basic_ledger, "USD")

        resumed = calculator.resume(prior, basic_ledger, date(2024, 1, 3))

        assert resumed.quantity_of("AAPL") == Decimal("10")
        assert resumed.snapshot_date == date(2024, 1, 3)

    def test_resume_does_not_touch_prior(self, calculator, basic_ledger):
        prior = calculator.compute_state("acc-1", date(2024, 1, 2), basic_ledger, "USD")

        calculator.resume(prior, [sell("a3", date(2024, 1, 3), "AAPL", "10", "100")], date(2024, 1, 3))

        assert prior.quantity_of("AAPL") == Decimal("10")

    def test_resume_backwards_raises(self, calculator, basic_ledger):
        prior = calculator.compute_state("acc-1", date(2024, 1, 2), basic_ledger, "USD")

        with pytest.raises(InvariantViolationError):
            calculator.resume(prior, [], date(2024, 1, 1))
