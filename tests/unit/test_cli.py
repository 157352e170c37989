"""
Unit tests for the moneybook command line.

Each command runs against a file database under a temporary data root.
"""

import json
import pytest

from moneybook.cli.main import main
from moneybook.core.database import DatabaseManager


@pytest.fixture
def run(tmp_path, capsys):
    """Run the CLI and return (exit code, stdout, stderr)."""
    DatabaseManager.reset_instance()

    def _run(*args):
        code = main(["--data-root", str(tmp_path), *args])
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    yield _run
    DatabaseManager.reset_instance()


@pytest.fixture
def book(run):
    """Data root with INR base, a USD card and a USD/INR rate."""
    run("fx", "set-base", "INR")
    run("account", "add", "Chase", "--type", "credit", "--currency", "USD")
    run("category", "add", "Groceries")
    run("fx", "add", "--date", "2025-08-01", "--base", "USD", "--quote", "INR", "--rate", "84.00")
    return run


class TestCli:
    """Tests for command dispatch and output."""

    def test_no_command_prints_help(self, run):
        code, out, _ = run()
        assert code == 1
        assert "usage" in out.lower()

    def test_account_list_json(self, book):
        code, out, _ = book("account", "list", "--json")
        assert code == 0
        assert json.loads(out) == [{"id": 1, "name": "Chase", "type": "credit", "currency": "USD"}]

    def test_unknown_account_error(self, book):
        code, _, err = book("txn", "add", "--account", "Nope", "--date", "2025-08-10",
                            "--amount", "-1", "--payee", "X")
        assert code == 1
        assert "Error [UNKNOWN_ENTITY]: Unknown account: Nope" in err

    def test_fx_convert(self, book):
        code, out, _ = book("fx", "convert", "--amount", "75.30", "--from", "USD", "--to", "INR",
                            "--date", "2025-08-10")
        assert code == 0
        assert "INR 6325.20" in out

    def test_fx_convert_without_rate(self, book):
        code, _, err = book("fx", "convert", "--amount", "1", "--from", "USD", "--to", "INR",
                            "--date", "2025-07-01")
        assert code == 1
        assert "RATE_UNAVAILABLE" in err

    def test_envelope_flow(self, book):
        book("envelope", "fund", "--category", "Groceries", "--month", "2025-08", "--amount", "10000")
        book("txn", "add", "--account", "Chase", "--date", "2025-08-10", "--amount", "-75.30",
             "--payee", "Whole Foods", "--category", "Groceries")

        code, out, _ = book("envelope", "status", "--month", "2025-08", "--json")
        assert code == 0
        status, = json.loads(out)
        assert status["spent"] == "6325.20"
        assert status["available"] == "3674.80"

    def test_report_spend(self, book):
        book("txn", "add", "--account", "Chase", "--date", "2025-08-10", "--amount", "-75.30",
             "--payee", "Whole Foods", "--category", "Groceries")
        code, out, _ = book("report", "spend", "--month", "2025-08", "--json")
        assert code == 0
        assert json.loads(out)[0]["spent"] == "6325.20"

    def test_import_and_export(self, book, tmp_path):
        source = tmp_path / "in.csv"
        source.write_text(
            "date,payee,amount,account\n"
            "2025-08-01,Market,-10,Chase\n"
            "2025-08-02,Market,-10,Missing\n"
        )
        code, out, _ = book("import", "transactions", str(source), "--on-error", "skip")
        assert code == 0
        assert "Imported 1 transaction(s)" in out

        target = tmp_path / "out.json"
        code, out, _ = book("export", "transactions", "--format", "json", "--out", str(target))
        assert code == 0
        assert len(json.loads(target.read_text())) == 1

    def test_import_abort_exit_code(self, book, tmp_path):
        source = tmp_path / "in.csv"
        source.write_text("date,payee,amount,account\n2025-08-02,Market,-10,Missing\n")
        code, out, _ = book("import", "transactions", str(source))
        assert code == 1
        assert "Imported 0" in out

    def test_portfolio_flow(self, run):
        run("account", "add", "Brokerage", "--type", "investment")
        run("portfolio", "add-asset", "VTI", "--currency", "USD")
        run("portfolio", "buy", "--ticker", "VTI", "--account", "Brokerage", "--date", "2025-01-02",
            "--quantity", "10", "--price", "200")
        run("portfolio", "buy", "--ticker", "VTI", "--account", "Brokerage", "--date", "2025-02-03",
            "--quantity", "10", "--price", "210")

        code, out, _ = run("portfolio", "sell", "--ticker", "VTI", "--account", "Brokerage",
                           "--date", "2025-06-02", "--quantity", "15", "--price", "230", "--json")
        assert code == 0
        assert [g["gain"] for g in json.loads(out)] == ["300.00", "100.00"]

        code, out, _ = run("portfolio", "gains", "--summary", "--json")
        assert json.loads(out)[0]["gain"] == "400.00"

    def test_doctor_clean(self, run):
        code, out, _ = run("doctor")
        assert code == 0
        assert "no issues" in out

    def test_rules_commands(self, book):
        code, out, _ = book("rules", "add", "--pattern", "(?i)whole", "--category", "Groceries")
        assert code == 0
        book("txn", "add", "--account", "Chase", "--date", "2025-08-10", "--amount", "-5",
             "--payee", "WHOLE FOODS")
        code, out, _ = book("rules", "apply")
        assert "Categorized 1 transaction(s)" in out
        code, out, _ = book("rules", "rm", "99")
        assert code == 1

    def test_txn_add_applies_rules(self, book):
        book("rules", "add", "--pattern", "(?i)whole", "--category", "Groceries",
             "--payee-rewrite", "Whole Foods")
        code, out, _ = book("txn", "add", "--account", "Chase", "--date", "2025-08-10",
                            "--amount", "-5", "--payee", "WHOLE FDS #12")
        assert code == 0
        assert "Whole Foods" in out

        code, out, _ = book("txn", "list", "--json")
        txn, = json.loads(out)
        assert txn["payee"] == "Whole Foods"
        assert txn["category"] == "Groceries"

    def test_envelope_status_in_other_currency(self, book):
        book("envelope", "fund", "--category", "Groceries", "--month", "2025-08", "--amount", "8400")
        book("txn", "add", "--account", "Chase", "--date", "2025-08-10", "--amount", "-75.30",
             "--payee", "Whole Foods", "--category", "Groceries")

        code, out, _ = book("envelope", "status", "--month", "2025-08", "--currency", "USD", "--json")
        assert code == 0
        status, = json.loads(out)
        assert status["currency"] == "USD"
        assert status["funded"] == "100.00"
        assert status["spent"] == "75.30"
        assert status["available"] == "24.70"


class TestBudgetCli:
    """Tests for the budget commands."""

    def test_set_and_list(self, book):
        code, out, _ = book("budget", "set", "--category", "Groceries", "--month", "2025-08",
                            "--amount", "8400")
        assert code == 0
        assert "Budget set for 2025-08 / Groceries" in out
        book("budget", "set", "--category", "Groceries", "--month", "2025-08", "--amount", "9000")

        code, out, _ = book("budget", "list", "--json")
        assert json.loads(out) == [
            {"month": "2025-08", "category": "Groceries", "budget": "9000", "currency": "INR"},
        ]

    def test_negative_budget(self, book):
        code, _, err = book("budget", "set", "--category", "Groceries", "--month", "2025-08",
                            "--amount", "-1")
        assert code == 1
        assert "INVALID_AMOUNT" in err

    def test_report_in_other_currency(self, book):
        book("budget", "set", "--category", "Groceries", "--month", "2025-08", "--amount", "8400")
        book("txn", "add", "--account", "Chase", "--date", "2025-08-10", "--amount", "-75.30",
             "--payee", "Whole Foods", "--category", "Groceries")

        code, out, _ = book("budget", "report", "--month", "2025-08", "--currency", "USD", "--json")
        assert code == 0
        line, = json.loads(out)
        assert line["budget"] == "100.00"
        assert line["spent"] == "75.30"
        assert line["remaining"] == "24.70"

    def test_report_in_base(self, book):
        book("budget", "set", "--category", "Groceries", "--month", "2025-08", "--amount", "8400")
        code, out, _ = book("budget", "report", "--month", "2025-08")
        assert code == 0
        assert "Groceries" in out


class TestPortfolioCli:
    """Tests for portfolio output."""

    def test_buy_json(self, run):
        run("account", "add", "Brokerage", "--type", "investment")
        run("portfolio", "add-asset", "VTI", "--currency", "USD")
        code, out, _ = run("portfolio", "buy", "--ticker", "VTI", "--account", "Brokerage",
                           "--date", "2025-01-02", "--quantity", "10", "--price", "200", "--json")
        assert code == 0
        lot = json.loads(out)
        assert lot["ticker"] == "VTI"
        assert lot["quantity"] == "10"
        assert lot["remaining"] == "10"
        assert lot["open_date"] == "2025-01-02"
