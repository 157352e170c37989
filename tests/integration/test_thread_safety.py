"""
Integration tests for thread safety and concurrent access.

Writers from several threads share one connection; every mutation must
land exactly once and readers must never see half of a move or sell.
"""

import pytest
import threading
from decimal import Decimal
from datetime import date

from moneybook.core.database import DatabaseManager
from moneybook.core.ledger import Ledger
from moneybook.core.money import Money
from moneybook.services.envelopes import EnvelopeEngine
from moneybook.services.portfolio import PortfolioService


@pytest.fixture
def file_ledger(tmp_path):
    """Ledger over a WAL-mode file database."""
    DatabaseManager.reset_instance()
    manager = DatabaseManager()
    conn = manager.init(str(tmp_path / "concurrent.db"), "test_password")
    ledger = Ledger(conn)
    ledger.add_account("Checking", "checking", "USD")
    ledger.add_account("Brokerage", "investment", "USD")
    for name in ("A", "B", "C"):
        ledger.add_category(name)
    ledger.add_asset("VTI", currency="USD")
    yield ledger
    manager.close()
    DatabaseManager.reset_instance()


def _run_threads(target, count, *args):
    errors = []

    def wrapper(index):
        try:
            target(index, *args)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=wrapper, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return errors


class TestConcurrentWrites:
    """Tests for concurrent mutations."""

    def test_concurrent_moves_conserve_budget(self, file_ledger):
        """Test that moves in opposing directions keep the total fixed."""
        engine = EnvelopeEngine(file_ledger.conn, file_ledger)
        for name in ("A", "B", "C"):
            engine.fund(name, "2025-08", "100")

        pairs = [("A", "B"), ("B", "A"), ("B", "C"), ("C", "A")]
        seen_totals = []

        def mover(index):
            source, target = pairs[index % len(pairs)]
            for _ in range(25):
                engine.move(source, target, "2025-08", "1")

        def reader(index):
            for _ in range(25):
                total = Money.sum((engine.available(n, "2025-08") for n in ("A", "B", "C")), "USD")
                seen_totals.append(total)

        errors = _run_threads(mover, 4)
        errors += _run_threads(reader, 2)

        assert errors == []
        assert all(total == Money("300", "USD") for total in seen_totals)
        state = {n: engine.get_state(n, "2025-08") for n in ("A", "B", "C")}
        assert state["A"].moved_in.amount == Decimal("50")
        assert state["B"].moved_out.amount == Decimal("50")

    def test_concurrent_transactions(self, file_ledger):
        def writer(index):
            for i in range(20):
                file_ledger.add_transaction("Checking", date(2025, 8, 1 + index), "-1.05", f"T{index}-{i}",
                                            category="A")

        errors = _run_threads(writer, 5)

        assert errors == []
        assert len(file_ledger.list_transactions()) == 100
        assert file_ledger.spent("A", "2025-08") == Money("105.00", "USD")

    def test_concurrent_buys_then_sell(self, file_ledger):
        portfolio = PortfolioService(file_ledger.conn, file_ledger)

        def buyer(index):
            for _ in range(10):
                portfolio.buy("VTI", "Brokerage", date(2025, 1, 1 + index), "1", "100")

        errors = _run_threads(buyer, 4)
        assert errors == []
        assert portfolio.lots.open_quantity("VTI") == Decimal("40")

        gains = portfolio.sell("VTI", "Brokerage", date(2025, 6, 1), "40", "120")
        assert sum(g.quantity for g in gains) == Decimal("40")
        assert [g.open_date for g in gains] == sorted(g.open_date for g in gains)

        reloaded = PortfolioService(file_ledger.conn, file_ledger)
        assert reloaded.lots.open_quantity("VTI") == Decimal("0")
        assert len(reloaded.realized_gains()) == 40
