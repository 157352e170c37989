"""
End-to-end scenario: a household in INR with a USD card and a USD brokerage.

Walks through rates, import with rules, envelopes with rollover,
investments, reports, export and the doctor on one database.
"""

import json
import pytest
from decimal import Decimal
from datetime import date

from moneybook.core.money import Money
from moneybook.services.doctor import Doctor
from moneybook.services.envelopes import EnvelopeEngine
from moneybook.services.exporter import TransactionExporter
from moneybook.services.importer import TransactionImporter
from moneybook.services.portfolio import PortfolioService
from moneybook.services.rules import RuleEngine


def inr(value):
    return Money(value, "INR")


@pytest.fixture
def household(ledger, tmp_path):
    ledger.set_base_currency("INR")
    ledger.add_account("HDFC", "savings", "INR")
    ledger.add_account("Chase", "credit", "USD")
    ledger.add_account("Schwab", "investment", "USD")
    for name in ("Groceries", "Dining", "Salary"):
        ledger.add_category(name)

    rates_file = tmp_path / "rates.csv"
    rates_file.write_text(
        "date,base,quote,rate\n"
        "2025-07-01,USD,INR,83.00\n"
        "2025-08-01,USD,INR,84.00\n"
        "2025-08-01,EUR,INR,90.00\n"
        "2025-09-01,USD,INR,85.00\n"
    )
    rules = RuleEngine(ledger.conn, ledger)
    TransactionImporter(ledger.conn, ledger, rules).import_rates_csv(rates_file)
    return ledger, rules


class TestHousehold:
    """A month of bookkeeping from import to reports."""

    def test_full_flow(self, household, tmp_path):
        ledger, rules = household
        rules.add(r"(?i)whole\s*foods", category="Groceries", payee_rewrite="Whole Foods")
        rules.add(r"(?i)payroll", category="Salary")

        statement = tmp_path / "august.csv"
        statement.write_text(
            "date,payee,amount,account,category,currency,note\n"
            "2025-07-20,WHOLEFOODS MKT,-30.00,Chase,,USD,\n"
            "2025-08-01,ACME PAYROLL,150000,HDFC,,INR,\n"
            "2025-08-10,WHOLE FOODS #118,-75.30,Chase,,USD,\n"
            "2025-08-11,Trattoria,-2500,HDFC,Dining,,dinner\n"
        )
        result = TransactionImporter(ledger.conn, ledger, rules).import_csv(statement)
        assert result.imported == 4

        envelopes = EnvelopeEngine(ledger.conn, ledger)
        envelopes.fund("Groceries", "2025-07", "2000")
        envelopes.fund("Groceries", "2025-08", "10000")
        envelopes.fund("Dining", "2025-08", "2000")
        envelopes.move("Groceries", "Dining", "2025-08", "1000")

        groceries = envelopes.status("Groceries", "2025-08")
        # July: 2000 - 30 * 83 = -490 -> floor 0
        assert groceries.rollover_in == inr("0")
        assert groceries.spent == inr("6325.20")
        assert groceries.available == inr("2674.80")
        assert envelopes.available("Dining", "2025-08") == inr("500")

        flow = {row.month: row for row in ledger.cashflow()}
        assert flow["2025-08"].income == inr("150000")
        assert flow["2025-08"].expense == inr("8825.20")
        assert flow["2025-07"].expense == inr("2490.00")

        portfolio = PortfolioService(ledger.conn, ledger)
        ledger.add_asset("VTI", currency="USD")
        portfolio.buy("VTI", "Schwab", date(2025, 8, 5), "10", "250", fees="5")
        gain, = portfolio.sell("VTI", "Schwab", date(2025, 9, 2), "4", "260")
        # cost (4*250 + 2) * 84, proceeds 1040 * 85
        assert gain.cost_basis == inr("84168.00")
        assert gain.proceeds == inr("88400.00")
        assert gain.gain == inr("4232.00")

        ledger.converter.rates.add_price("VTI", date(2025, 9, 2), Money("260", "USD"))
        holding, = portfolio.holdings(date(2025, 9, 3))
        assert holding.value == inr("132600.00")

        eur = ledger.converter.convert(Money("100", "EUR"), "USD", date(2025, 8, 15))
        assert eur == Money("107.14", "USD")

        out = tmp_path / "export.json"
        assert TransactionExporter(ledger).export_transactions(out) == 4
        assert json.loads(out.read_text())[0]["payee"] == "Whole Foods"

        issues = Doctor(ledger, envelopes).run()
        assert [(i.kind, i.detail.split(":")[0]) for i in issues] == [
            ("negative_envelope", "Groceries 2025-07"),
        ]

    def test_doctor_reports_gaps(self, household):
        ledger, _ = household
        ledger.add_transaction("Chase", date(2025, 6, 30), "-1", "Before any rate")
        envelopes = EnvelopeEngine(ledger.conn, ledger)
        envelopes.move("Groceries", "Dining", "2025-08", "1")

        kinds = sorted(issue.kind for issue in Doctor(ledger, envelopes).run())
        assert kinds == ["missing_fx", "negative_envelope"]
