"""
Unit tests for envelope budgeting.

Tests funding, moves, spending, rollover policies and concurrency.
"""

import sqlite3
import threading
import pytest
from decimal import Decimal
from datetime import date

from moneybook.core.database import SCHEMA_SQL
from moneybook.core.ledger import Ledger
from moneybook.core.money import Money
from moneybook.services.envelopes import EnvelopeEngine, RolloverPolicy
from moneybook.core.exceptions import (
    CurrencyMismatchError,
    InvalidAmountError,
    RateUnavailableError,
    UnknownEntityError,
    ValidationError,
)


def usd(value):
    return Money(value, "USD")


def _fresh_engine():
    """Engine over its own in-memory database."""
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.executescript(SCHEMA_SQL)
    ledger = Ledger(conn)
    for name in ("A", "B", "C"):
        ledger.add_category(name)
    return EnvelopeEngine(conn, ledger)


class TestFunding:
    """Tests for fund()."""

    def test_fund_accumulates(self, envelopes):
        envelopes.fund("Groceries", "2025-08", Decimal("300"))
        state = envelopes.fund("Groceries", "2025-8", "200")
        assert state.funded == usd("500")
        assert state.month == "2025-08"

    def test_zero_fund_allowed(self, envelopes):
        assert envelopes.fund("Groceries", "2025-08", "0").funded.is_zero()

    def test_negative_fund_rejected(self, envelopes):
        with pytest.raises(InvalidAmountError):
            envelopes.fund("Groceries", "2025-08", "-1")

    def test_fund_in_other_currency_rejected(self, envelopes):
        """Test that envelope amounts are always in base currency."""
        with pytest.raises(CurrencyMismatchError):
            envelopes.fund("Groceries", "2025-08", Money("10", "EUR"))

    def test_unknown_category(self, envelopes):
        with pytest.raises(UnknownEntityError):
            envelopes.fund("Travel", "2025-08", "10")

    def test_bad_month(self, envelopes):
        with pytest.raises(ValidationError):
            envelopes.fund("Groceries", "August", "10")

    def test_fund_commits_without_rollover(self, inr_ledger):
        """Test that an unconvertible earlier month does not fail a written fund."""
        engine = EnvelopeEngine(inr_ledger.conn, inr_ledger)
        inr_ledger.add_transaction("Chase", date(2025, 7, 15), "-5", "Early", category="Groceries")

        totals = engine.fund("Groceries", "2025-08", "100")

        assert totals.funded == Money("100", "INR")
        row = inr_ledger.conn.execute("SELECT funded FROM envelopes").fetchone()
        assert Decimal(row["funded"]) == Decimal("100")
        with pytest.raises(RateUnavailableError):
            engine.status("Groceries", "2025-08")


class TestMoves:
    """Tests for move()."""

    def test_move_updates_both_sides(self, envelopes):
        envelopes.fund("Dining", "2025-08", "100")
        envelopes.move("Dining", "Groceries", "2025-08", "30")

        dining = envelopes.status("Dining", "2025-08")
        groceries = envelopes.status("Groceries", "2025-08")
        assert dining.moved_out == usd("30")
        assert dining.available == usd("70")
        assert groceries.moved_in == usd("30")
        assert groceries.available == usd("30")

    def test_overdraft_allowed(self, envelopes):
        """Test that moving from an empty envelope leaves it negative."""
        envelopes.move("Dining", "Groceries", "2025-08", "50")
        assert envelopes.available("Dining", "2025-08") == usd("-50")

    def test_same_category_rejected(self, envelopes):
        with pytest.raises(ValidationError):
            envelopes.move("Dining", "Dining", "2025-08", "10")

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_non_positive_rejected(self, envelopes, amount):
        with pytest.raises(InvalidAmountError):
            envelopes.move("Dining", "Groceries", "2025-08", amount)

    def test_failed_move_leaves_nothing(self, envelopes):
        with pytest.raises(UnknownEntityError):
            envelopes.move("Dining", "Travel", "2025-08", "10")
        assert envelopes.active_months() == []

    def test_moves_commute(self):
        """Test that the same moves in a different order give the same balances."""
        moves = [("A", "B", "10"), ("B", "C", "25"), ("C", "A", "5"), ("A", "C", "7")]
        first, second = _fresh_engine(), _fresh_engine()
        for engine in (first, second):
            for name in ("A", "B", "C"):
                engine.fund(name, "2025-08", "100")

        for source, target, amount in moves:
            first.move(source, target, "2025-08", amount)
        for source, target, amount in reversed(moves):
            second.move(source, target, "2025-08", amount)

        for name in ("A", "B", "C"):
            assert first.available(name, "2025-08") == second.available(name, "2025-08")
        total = Money.sum((first.available(n, "2025-08") for n in ("A", "B", "C")), "USD")
        assert total == usd("300")


class TestSpending:
    """Tests for spent and available."""

    def test_available_after_spending(self, envelopes, usd_ledger):
        envelopes.fund("Groceries", "2025-08", "500")
        usd_ledger.add_transaction("Checking", date(2025, 8, 10), "-120.55", "Market", category="Groceries")
        usd_ledger.add_transaction("Checking", date(2025, 8, 12), "20.00", "Refund", category="Groceries")

        status = envelopes.status("Groceries", "2025-08")
        assert status.spent == usd("120.55")
        assert status.available == usd("379.45")

    def test_foreign_spend_converted_at_transaction_date(self, inr_ledger):
        engine = EnvelopeEngine(inr_ledger.conn, inr_ledger)
        engine.fund("Groceries", "2025-08", "10000")
        inr_ledger.add_transaction("Chase", date(2025, 8, 10), "-75.30", "Whole Foods", category="Groceries")

        status = engine.status("Groceries", "2025-08")
        assert status.currency == "INR"
        assert status.spent == Money("6325.20", "INR")
        assert status.available == Money("3674.80", "INR")

    def test_base_change_makes_stored_rows_inconsistent(self, envelopes, usd_ledger):
        envelopes.fund("Groceries", "2025-08", "10")
        usd_ledger.set_base_currency("EUR")
        with pytest.raises(CurrencyMismatchError):
            envelopes.status("Groceries", "2025-08")


class TestRollover:
    """Tests for rollover policies."""

    @pytest.fixture
    def overspent_july(self, envelopes, usd_ledger):
        envelopes.fund("Groceries", "2025-07", "100")
        usd_ledger.add_transaction("Checking", date(2025, 7, 15), "-600", "Market", category="Groceries")
        envelopes.fund("Groceries", "2025-08", "200")
        return envelopes

    def test_floor_drops_negative(self, overspent_july):
        """Test that -500 in July rolls into August as 0 under floor."""
        assert overspent_july.available("Groceries", "2025-07") == usd("-500")
        status = overspent_july.status("Groceries", "2025-08")
        assert status.rollover_in == usd("0")
        assert status.available == usd("200")

    def test_carry_keeps_negative(self, overspent_july):
        overspent_july.rollover_policy = RolloverPolicy.CARRY
        status = overspent_july.status("Groceries", "2025-08")
        assert status.rollover_in == usd("-500")
        assert status.available == usd("-300")

    def test_positive_leftover_rolls_through_empty_months(self, envelopes):
        envelopes.fund("Dining", "2025-05", "80")
        assert envelopes.rollover("Dining", "2025-08") == usd("80")
        assert envelopes.get_state("Dining", "2025-08").rollover_in == usd("80")

    def test_no_activity_means_zero(self, envelopes):
        assert envelopes.status("Dining", "2025-08").available.is_zero()

    def test_backdated_transaction_changes_rollover(self, envelopes, usd_ledger):
        """Test that rollover is recomputed, not cached."""
        envelopes.fund("Dining", "2025-07", "50")
        assert envelopes.rollover("Dining", "2025-08") == usd("50")
        usd_ledger.add_transaction("Checking", date(2025, 7, 3), "-20", "Cafe", category="Dining")
        assert envelopes.rollover("Dining", "2025-08") == usd("30")

    def test_policy_from_string(self, usd_ledger):
        engine = EnvelopeEngine(usd_ledger.conn, usd_ledger, "carry")
        assert engine.rollover_policy is RolloverPolicy.CARRY


class TestQueries:
    """Tests for listing helpers."""

    def test_status_all_sorted(self, envelopes):
        envelopes.fund("Groceries", "2025-08", "10")
        statuses = envelopes.status_all("2025-08")
        assert [s.category for s in statuses] == ["Dining", "Groceries"]
        assert statuses[1].to_dict()["available"] == "10"

    def test_active_months(self, envelopes):
        envelopes.fund("Groceries", "2025-08", "10")
        envelopes.fund("Dining", "2025-06", "10")
        assert envelopes.active_months() == ["2025-06", "2025-08"]


class TestConcurrency:
    """Tests for concurrent funding."""

    def test_concurrent_funds_are_not_lost(self, envelopes):
        errors = []

        def fund_many():
            try:
                for _ in range(20):
                    envelopes.fund("Groceries", "2025-08", "1.25")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=fund_many) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert envelopes.get_state("Groceries", "2025-08").funded == usd("125.00")


class TestBudgets:
    """Tests for absolute budgets and budget reports."""

    @pytest.fixture
    def august(self, envelopes, usd_ledger):
        usd_ledger.converter.rates.add_rate(date(2025, 8, 31), "USD", "EUR", Decimal("0.80"))
        envelopes.set_budget("Dining", "2025-08", "100.00")
        usd_ledger.add_transaction("Checking", date(2025, 8, 10), "-20", "Bistro", category="Dining")
        return envelopes

    def test_set_budget_overwrites_funded(self, envelopes):
        envelopes.fund("Groceries", "2025-08", "300")
        envelopes.move("Dining", "Groceries", "2025-08", "10")

        totals = envelopes.set_budget("Groceries", "2025-08", "120")

        assert totals.funded == usd("120")
        assert totals.moved_in == usd("10")
        assert envelopes.available("Groceries", "2025-08") == usd("130")

    def test_negative_budget_rejected(self, envelopes):
        with pytest.raises(InvalidAmountError):
            envelopes.set_budget("Groceries", "2025-08", "-1")

    def test_list_budgets(self, envelopes):
        envelopes.set_budget("Groceries", "2025-08", "100")
        envelopes.set_budget("Dining", "2025-08", "50")
        envelopes.set_budget("Groceries", "2025-07", "30")

        listed = [(b.month, b.funded) for b in envelopes.list_budgets()]
        assert listed == [("2025-08", usd("50")), ("2025-08", usd("100")), ("2025-07", usd("30"))]
        assert [b.funded for b in envelopes.list_budgets("2025-7")] == [usd("30")]

    def test_budget_report_in_base(self, august):
        dining, groceries = august.budget_report("2025-08")
        assert (dining.category, dining.budget, dining.spent) == ("Dining", usd("100"), usd("20"))
        assert dining.remaining == usd("80")
        assert groceries.budget.is_zero() and groceries.spent.is_zero()

    def test_budget_report_in_other_currency(self, august):
        """Test that budget and spending convert at the month end."""
        dining = august.budget_report("2025-08", "eur")[0]
        assert dining.budget == Money("80.00", "EUR")
        assert dining.spent == Money("16.00", "EUR")
        assert dining.to_dict()["remaining"] == "64.00"

    def test_budget_report_without_rate(self, august):
        with pytest.raises(RateUnavailableError):
            august.budget_report("2025-08", "GBP")

    def test_status_in_other_currency(self, august):
        status = august.status("Dining", "2025-08")
        converted = august.status_in(status, "EUR")
        assert converted.funded == Money("80.00", "EUR")
        assert converted.spent == Money("16.00", "EUR")
        assert converted.available == Money("64.00", "EUR")
        assert august.status_in(status, "USD") is status
