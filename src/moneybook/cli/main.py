#!/usr/bin/env python3
"""
moneybook CLI - personal bookkeeping from the command line.

Usage:
    moneybook account add Chase --type checking --currency USD
    moneybook txn add --account Chase --date 2025-08-10 --amount -75.30 --payee "Whole Foods" --category Groceries
    moneybook fx set-base INR
    moneybook fx add --date 2025-08-10 --base USD --quote INR --rate 84.00
    moneybook envelope fund --category Groceries --month 2025-08 --amount 10000
    moneybook envelope status --month 2025-08
    moneybook budget report --month 2025-08 --currency USD
    moneybook report cashflow --months 6
    moneybook portfolio buy --ticker VTI --account Brokerage --date 2025-01-02 --quantity 10 --price 200
    moneybook doctor
"""

import argparse
import json
import logging
import os
import sys
from datetime import date
from pathlib import Path
from typing import List, Optional

from moneybook.core.database import DatabaseManager
from moneybook.core.exceptions import MoneybookError
from moneybook.core.ledger import Ledger
from moneybook.core.models import AccountType, parse_month
from moneybook.core.money import Money, to_decimal
from moneybook.core.paths import PathResolver
from moneybook.core.preferences import UserPreferences
from moneybook.services.doctor import Doctor
from moneybook.services.envelopes import EnvelopeEngine, RolloverPolicy
from moneybook.services.exporter import SUPPORTED_FORMATS, TransactionExporter
from moneybook.services.importer import TransactionImporter
from moneybook.services.portfolio import PortfolioService
from moneybook.services.rules import RuleEngine

logger = logging.getLogger(__name__)

DEFAULT_PASSWORD = "moneybook_secure"
PASSWORD_ENV = "MONEYBOOK_DB_PASSWORD"


def setup_logging(verbose: bool = False, debug: bool = False):
    """Configure logging."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def parse_date(value: str) -> date:
    """argparse type for YYYY-MM-DD dates."""
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date '{value}' (expected YYYY-MM-DD)")


class App:
    """Services wired to one database connection."""

    def __init__(self, conn, prefs: UserPreferences, paths: PathResolver):
        self.conn = conn
        self.prefs = prefs
        self.paths = paths
        self.ledger = Ledger(conn, max_lookback_days=prefs.fx.max_lookback_days)
        self.envelopes = EnvelopeEngine(conn, self.ledger, prefs.envelopes.rollover_policy)
        self.rules = RuleEngine(conn, self.ledger)
        self._portfolio = None

    @property
    def portfolio(self) -> PortfolioService:
        if self._portfolio is None:
            self._portfolio = PortfolioService(self.conn, self.ledger)
        return self._portfolio

    def fmt(self, money: Money) -> str:
        return self.prefs.display.format_amount(money.amount, money.currency)


def print_table(headers: List[str], rows: List[list]) -> None:
    """Print rows as a left-aligned text table."""
    if not rows:
        print("(none)")
        return
    cells = [[str(c) if c is not None else "" for c in row] for row in rows]
    widths = [max(len(h), *(len(r[i]) for r in cells)) for i, h in enumerate(headers)]
    print("  ".join(h.ljust(w) for h, w in zip(headers, widths)))
    print("  ".join("-" * w for w in widths))
    for row in cells:
        print("  ".join(c.ljust(w) for c, w in zip(row, widths)))


def print_json(data) -> None:
    print(json.dumps(data, indent=2))


# ============================================================================
# Command Handlers
# ============================================================================

def cmd_account(args, app: App) -> int:
    if args.action == "add":
        account = app.ledger.add_account(args.name, args.type, args.currency)
        print(f"Added account {account.name} ({account.account_type.value}, {account.currency})")
    else:
        accounts = app.ledger.list_accounts()
        if args.json:
            print_json([
                {"id": a.id, "name": a.name, "type": a.account_type.value, "currency": a.currency}
                for a in accounts
            ])
        else:
            print_table(["ID", "Name", "Type", "Currency"],
                        [[a.id, a.name, a.account_type.value, a.currency] for a in accounts])
    return 0


def cmd_category(args, app: App) -> int:
    if args.action == "add":
        category = app.ledger.add_category(args.name)
        print(f"Added category {category.name}")
    else:
        categories = app.ledger.list_categories()
        if args.json:
            print_json([{"id": c.id, "name": c.name} for c in categories])
        else:
            print_table(["ID", "Name"], [[c.id, c.name] for c in categories])
    return 0


def cmd_txn(args, app: App) -> int:
    if args.action == "add":
        payee, category = args.payee, args.category
        if category is None:
            payee, category = app.rules.categorize(payee, args.memo)
        txn = app.ledger.add_transaction(
            args.account, args.date, to_decimal(args.amount), payee,
            category=category, memo=args.memo,
        )
        print(f"Added transaction {txn.id}: {txn.date} {app.fmt(txn.amount)} {txn.payee}")
    elif args.action == "recategorize":
        txn = app.ledger.recategorize(args.id, None if args.clear else args.category)
        print(f"Transaction {txn.id} category: {txn.category_name or '(none)'}")
    else:
        transactions = app.ledger.list_transactions(
            month=args.month, account=args.account, category=args.category, limit=args.limit,
        )
        if args.json:
            print_json([t.to_dict() for t in transactions])
        else:
            print_table(
                ["ID", "Date", "Account", "Payee", "Amount", "Category"],
                [[t.id, t.date, t.account_name, t.payee, app.fmt(t.amount), t.category_name]
                 for t in transactions],
            )
    return 0


def cmd_fx(args, app: App) -> int:
    rates = app.ledger.converter.rates
    if args.action == "set-base":
        base = app.ledger.set_base_currency(args.currency)
        print(f"Base currency set to {base}")
    elif args.action == "add":
        added = rates.add_rate(args.date, args.base, args.quote, to_decimal(args.rate), args.source)
        status = "Added" if added else "Already recorded"
        print(f"{status}: 1 {args.base.upper()} = {args.rate} {args.quote.upper()} on {args.date}")
    elif args.action == "import":
        importer = TransactionImporter(app.conn, app.ledger, app.rules)
        count = importer.import_rates_csv(Path(args.path), rates)
        print(f"Imported {count} rate(s) from {args.path}")
    elif args.action == "convert":
        as_of = args.date or date.today()
        conversion = app.ledger.converter.convert_detailed(
            Money(to_decimal(args.amount), args.from_currency), args.to_currency, as_of
        )
        if args.json:
            print_json(conversion.to_dict())
        else:
            print(f"{conversion.source} = {conversion.result} "
                  f"(rate {conversion.rate}, {conversion.method}, as of {as_of})")
    else:
        observations = rates.list_rates(limit=args.limit)
        if args.json:
            print_json([
                {"date": o.date.isoformat(), "base": o.base, "quote": o.quote,
                 "rate": str(o.rate), "source": o.source}
                for o in observations
            ])
        else:
            print_table(["Date", "Base", "Quote", "Rate", "Source"],
                        [[o.date, o.base, o.quote, o.rate, o.source] for o in observations])
    return 0


def cmd_price(args, app: App) -> int:
    rates = app.ledger.converter.rates
    if args.action == "add":
        asset = app.ledger.get_asset(args.ticker)
        added = rates.add_price(asset.ticker, args.date, Money(to_decimal(args.price), asset.currency), args.source)
        status = "Added" if added else "Already recorded"
        print(f"{status}: {asset.ticker} {args.price} {asset.currency} on {args.date}")
    else:
        prices = rates.list_prices(args.ticker, limit=args.limit)
        if args.json:
            print_json([
                {"ticker": p.ticker, "date": p.date.isoformat(), "price": str(p.price.amount),
                 "currency": p.price.currency, "source": p.source}
                for p in prices
            ])
        else:
            print_table(["Ticker", "Date", "Price", "Source"],
                        [[p.ticker, p.date, app.fmt(p.price), p.source] for p in prices])
    return 0


def cmd_envelope(args, app: App) -> int:
    engine = app.envelopes
    if getattr(args, "policy", None):
        engine.rollover_policy = RolloverPolicy(args.policy)

    if args.action == "fund":
        state = engine.fund(args.category, args.month, to_decimal(args.amount))
        print(f"Funded {args.category} for {state.month}: total funded {app.fmt(state.funded)}")
    elif args.action == "move":
        engine.move(args.from_category, args.to_category, args.month, to_decimal(args.amount))
        print(f"Moved {args.amount} {engine.base_currency} from {args.from_category} "
              f"to {args.to_category} for {parse_month(args.month)}")
    else:
        if args.category:
            statuses = [engine.status(args.category, args.month)]
        else:
            statuses = engine.status_all(args.month)
        if args.currency:
            statuses = [engine.status_in(s, args.currency) for s in statuses]
        if args.json:
            print_json([s.to_dict() for s in statuses])
        else:
            print_table(
                ["Category", "Rollover", "Funded", "In", "Out", "Spent", "Available"],
                [[s.category, app.fmt(s.rollover_in), app.fmt(s.funded), app.fmt(s.moved_in),
                  app.fmt(s.moved_out), app.fmt(s.spent), app.fmt(s.available)]
                 for s in statuses],
            )
    return 0


def cmd_budget(args, app: App) -> int:
    engine = app.envelopes
    if args.action == "set":
        totals = engine.set_budget(args.category, args.month, to_decimal(args.amount))
        print(f"Budget set for {totals.month} / {args.category} = {app.fmt(totals.funded)}")
    elif args.action == "list":
        budgets = engine.list_budgets(args.month)
        names = {c.id: c.name for c in app.ledger.list_categories()}
        if args.json:
            print_json([
                {"month": b.month, "category": names[b.category_id],
                 "budget": str(b.funded.amount), "currency": b.funded.currency}
                for b in budgets
            ])
        else:
            print_table(["Month", "Category", "Budget"],
                        [[b.month, names[b.category_id], app.fmt(b.funded)] for b in budgets])
    else:
        lines = engine.budget_report(args.month, args.currency)
        if args.json:
            print_json([line.to_dict() for line in lines])
        else:
            print_table(["Category", "Budget", "Spent", "Remaining"],
                        [[line.category, app.fmt(line.budget), app.fmt(line.spent),
                          app.fmt(line.remaining)] for line in lines])
    return 0


def cmd_report(args, app: App) -> int:
    if args.action == "balances":
        balances = app.ledger.balances(currency=args.currency, as_of=args.as_of, in_base=args.base)
        if args.json:
            print_json([b.to_dict() for b in balances])
        else:
            rows = []
            for b in balances:
                rows.append([b.account, app.fmt(b.native),
                             app.fmt(b.converted) if b.converted is not None else ""])
            print_table(["Account", "Balance", "Converted"], rows)
    elif args.action == "cashflow":
        rows = app.ledger.cashflow(months=args.months, currency=args.currency)
        if args.json:
            print_json([r.to_dict() for r in rows])
        else:
            print_table(["Month", "Income", "Expense", "Net"],
                        [[r.month, app.fmt(r.income), app.fmt(r.expense), app.fmt(r.net)] for r in rows])
    else:
        rows = app.ledger.spend_by_category(args.month, currency=args.currency)
        if args.json:
            print_json([r.to_dict() for r in rows])
        else:
            print_table(["Category", "Spent", "Count"],
                        [[r.category, app.fmt(r.spent), r.transactions] for r in rows])
    return 0


def cmd_portfolio(args, app: App) -> int:
    if args.action == "add-asset":
        asset = app.ledger.add_asset(args.ticker, args.name, args.currency)
        print(f"Added asset {asset.ticker} ({asset.currency})")
    elif args.action == "list-assets":
        assets = app.ledger.list_assets()
        if args.json:
            print_json([{"ticker": a.ticker, "name": a.name, "currency": a.currency} for a in assets])
        else:
            print_table(["Ticker", "Name", "Currency"], [[a.ticker, a.name, a.currency] for a in assets])
    elif args.action == "buy":
        lot = app.portfolio.buy(args.ticker, args.account, args.date,
                                to_decimal(args.quantity), to_decimal(args.price),
                                to_decimal(args.fees), args.note)
        if args.json:
            print_json(lot.to_dict())
        else:
            print(f"Bought {lot.quantity} {lot.ticker} @ {app.fmt(lot.unit_cost)} on {lot.open_date}")
    elif args.action == "sell":
        gains = app.portfolio.sell(args.ticker, args.account, args.date,
                                   to_decimal(args.quantity), to_decimal(args.price),
                                   to_decimal(args.fees), args.note)
        if args.json:
            print_json([g.to_dict() for g in gains])
        else:
            print_table(
                ["Opened", "Qty", "Proceeds", "Cost", "Gain", "Days"],
                [[g.open_date, g.quantity, app.fmt(g.proceeds), app.fmt(g.cost_basis),
                  app.fmt(g.gain), g.holding_days] for g in gains],
            )
    elif args.action == "value":
        holdings = app.portfolio.holdings(args.as_of)
        if args.json:
            print_json([h.to_dict() for h in holdings])
        else:
            print_table(
                ["Ticker", "Qty", "Cost", "Price", "Value", "Unrealized"],
                [[h.ticker, h.quantity, app.fmt(h.cost_basis),
                  app.fmt(h.price.price) if h.price else "n/a",
                  app.fmt(h.value) if h.value is not None else "n/a",
                  app.fmt(h.unrealized_gain) if h.value is not None else "n/a"]
                 for h in holdings],
            )
    else:
        fy_start = app.prefs.portfolio.fy_start_month
        if args.summary:
            summaries = app.portfolio.gains_summary(fy_start)
            if args.json:
                print_json([s.to_dict() for s in summaries])
            else:
                print_table(["FY", "Proceeds", "Cost", "Gain", "Disposals"],
                            [[s.financial_year, app.fmt(s.proceeds), app.fmt(s.cost_basis),
                              app.fmt(s.gain), s.disposals] for s in summaries])
            return 0
        gains = app.portfolio.realized_gains(
            ticker=args.ticker, year=args.year, financial_year=args.fy, fy_start_month=fy_start,
        )
        if args.json:
            print_json([g.to_dict() for g in gains])
        else:
            print_table(
                ["Ticker", "Sold", "Opened", "Qty", "Proceeds", "Cost", "Gain"],
                [[g.ticker, g.sell_date, g.open_date, g.quantity, app.fmt(g.proceeds),
                  app.fmt(g.cost_basis), app.fmt(g.gain)] for g in gains],
            )
    return 0


def cmd_rules(args, app: App) -> int:
    if args.action == "add":
        rule = app.rules.add(args.pattern, args.category, args.payee_rewrite, args.note)
        print(f"Added rule {rule.id}: /{rule.pattern}/ -> {rule.category_name or '-'}"
              f"{', payee ' + rule.payee_rewrite if rule.payee_rewrite else ''}")
    elif args.action == "rm":
        app.rules.remove(args.id)
        print(f"Removed rule {args.id}")
    elif args.action == "apply":
        count = app.rules.apply_to_existing(args.month)
        print(f"Categorized {count} transaction(s)")
    else:
        rules = app.rules.list()
        if args.json:
            print_json([r.to_dict() for r in rules])
        else:
            print_table(["ID", "Pattern", "Category", "Payee Rewrite"],
                        [[r.id, r.pattern, r.category_name, r.payee_rewrite] for r in rules])
    return 0


def cmd_import(args, app: App) -> int:
    importer = TransactionImporter(app.conn, app.ledger, app.rules)
    on_error = args.on_error or app.prefs.import_on_error
    result = importer.import_csv(Path(args.path), on_error=on_error)

    print(f"Imported {result.imported} transaction(s) from {args.path}")
    for warning in result.warnings:
        print(f"  Warning: {warning}")
    for error in result.errors:
        print(f"  {'Skipped' if on_error == 'skip' else 'Aborted at'} {error}")
    return 0 if result.success or on_error == "skip" else 1


def cmd_export(args, app: App) -> int:
    out = Path(args.out) if args.out else app.paths.export_file("transactions", args.format)
    count = TransactionExporter(app.ledger).export_transactions(out, args.format, month=args.month)
    print(f"Exported {count} transaction(s) to {out}")
    return 0


def cmd_doctor(args, app: App) -> int:
    issues = Doctor(app.ledger, app.envelopes).run()
    if args.json:
        print_json([i.to_dict() for i in issues])
    elif not issues:
        print("doctor: no issues found")
    else:
        print_table(["Issue", "Detail"], [[i.kind, i.detail] for i in issues])
    return 0


# ============================================================================
# Parser
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="moneybook",
        description="moneybook - multi-currency bookkeeping, envelopes and FIFO gains",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--debug", action="store_true", help="Debug output")
    parser.add_argument("--data-root", help="Data root directory (default: $MONEYBOOK_DATA_ROOT or ~/.moneybook)")
    parser.add_argument("--db", help="Database file (default: <data root>/moneybook.db)")
    parser.add_argument("--db-password", default=os.environ.get(PASSWORD_ENV, DEFAULT_PASSWORD),
                        help="Database password (SQLCipher only)")

    sub = parser.add_subparsers(dest="command", help="Command")

    def json_flag(p):
        p.add_argument("--json", action="store_true", help="JSON output")

    # account
    account = sub.add_parser("account", help="Manage accounts").add_subparsers(dest="action", required=True)
    p = account.add_parser("add", help="Add an account")
    p.add_argument("name")
    p.add_argument("--type", default="checking", choices=[t.value for t in AccountType])
    p.add_argument("--currency", help="Account currency (default: base currency)")
    json_flag(account.add_parser("list", help="List accounts"))

    # category
    category = sub.add_parser("category", help="Manage categories").add_subparsers(dest="action", required=True)
    category.add_parser("add", help="Add a category").add_argument("name")
    json_flag(category.add_parser("list", help="List categories"))

    # txn
    txn = sub.add_parser("txn", help="Transactions").add_subparsers(dest="action", required=True)
    p = txn.add_parser("add", help="Add a transaction (negative amount = outflow)")
    p.add_argument("--account", required=True)
    p.add_argument("--date", required=True, type=parse_date)
    p.add_argument("--amount", required=True)
    p.add_argument("--payee", required=True)
    p.add_argument("--category")
    p.add_argument("--memo")
    p = txn.add_parser("list", help="List transactions")
    p.add_argument("--month")
    p.add_argument("--account")
    p.add_argument("--category")
    p.add_argument("--limit", type=int)
    json_flag(p)
    p = txn.add_parser("recategorize", help="Change a transaction's category")
    p.add_argument("id", type=int)
    p.add_argument("category", nargs="?")
    p.add_argument("--clear", action="store_true", help="Remove the category")

    # fx
    fx = sub.add_parser("fx", help="Exchange rates").add_subparsers(dest="action", required=True)
    fx.add_parser("set-base", help="Set the base currency").add_argument("currency")
    p = fx.add_parser("add", help="Record a rate: 1 BASE = RATE QUOTE")
    p.add_argument("--date", required=True, type=parse_date)
    p.add_argument("--base", required=True)
    p.add_argument("--quote", required=True)
    p.add_argument("--rate", required=True)
    p.add_argument("--source", default="MANUAL")
    p = fx.add_parser("list", help="List recent rates")
    p.add_argument("--limit", type=int, default=50)
    json_flag(p)
    p = fx.add_parser("convert", help="Convert an amount")
    p.add_argument("--amount", required=True)
    p.add_argument("--from", dest="from_currency", required=True)
    p.add_argument("--to", dest="to_currency", required=True)
    p.add_argument("--date", type=parse_date)
    json_flag(p)
    fx.add_parser("import", help="Import rates CSV (date,base,quote,rate)").add_argument("path")

    # price
    price = sub.add_parser("price", help="Security prices").add_subparsers(dest="action", required=True)
    p = price.add_parser("add", help="Record a price")
    p.add_argument("ticker")
    p.add_argument("--date", required=True, type=parse_date)
    p.add_argument("--price", required=True)
    p.add_argument("--source", default="MANUAL")
    p = price.add_parser("list", help="List recent prices")
    p.add_argument("--ticker")
    p.add_argument("--limit", type=int, default=50)
    json_flag(p)

    # envelope
    envelope = sub.add_parser("envelope", help="Envelope budgets").add_subparsers(dest="action", required=True)
    p = envelope.add_parser("fund", help="Fund an envelope")
    p.add_argument("--category", required=True)
    p.add_argument("--month", required=True)
    p.add_argument("--amount", required=True)
    p = envelope.add_parser("move", help="Move budget between envelopes")
    p.add_argument("--from", dest="from_category", required=True)
    p.add_argument("--to", dest="to_category", required=True)
    p.add_argument("--month", required=True)
    p.add_argument("--amount", required=True)
    p = envelope.add_parser("status", help="Envelope status for a month")
    p.add_argument("--month", required=True)
    p.add_argument("--category")
    p.add_argument("--currency", help="Show amounts in this currency (converted at month end)")
    p.add_argument("--policy", choices=[r.value for r in RolloverPolicy],
                   help="Override the rollover policy from preferences")
    json_flag(p)

    # budget
    budget = sub.add_parser("budget", help="Monthly budgets").add_subparsers(dest="action", required=True)
    p = budget.add_parser("set", help="Set the budget of a category for a month")
    p.add_argument("--category", required=True)
    p.add_argument("--month", required=True)
    p.add_argument("--amount", required=True)
    p = budget.add_parser("list", help="List budgets")
    p.add_argument("--month")
    json_flag(p)
    p = budget.add_parser("report", help="Budget against spending for a month")
    p.add_argument("--month", required=True)
    p.add_argument("--currency", help="Show amounts in this currency (converted at month end)")
    json_flag(p)

    # report
    report = sub.add_parser("report", help="Reports").add_subparsers(dest="action", required=True)
    p = report.add_parser("balances", help="Account balances")
    p.add_argument("--currency", help="Also show balances converted to this currency")
    p.add_argument("--base", action="store_true", help="Also show balances in base currency")
    p.add_argument("--as-of", type=parse_date)
    json_flag(p)
    p = report.add_parser("cashflow", help="Monthly income and expense")
    p.add_argument("--months", type=int, default=12)
    p.add_argument("--currency")
    json_flag(p)
    p = report.add_parser("spend", help="Spending by category for a month")
    p.add_argument("--month", required=True)
    p.add_argument("--currency")
    json_flag(p)

    # portfolio
    portfolio = sub.add_parser("portfolio", help="Investments").add_subparsers(dest="action", required=True)
    p = portfolio.add_parser("add-asset", help="Register a tradeable asset")
    p.add_argument("ticker")
    p.add_argument("--name")
    p.add_argument("--currency")
    json_flag(portfolio.add_parser("list-assets", help="List assets"))
    for side in ("buy", "sell"):
        p = portfolio.add_parser(side, help=f"Record a {side} trade")
        p.add_argument("--ticker", required=True)
        p.add_argument("--account", required=True)
        p.add_argument("--date", required=True, type=parse_date)
        p.add_argument("--quantity", required=True)
        p.add_argument("--price", required=True, help="Unit price in the asset currency")
        p.add_argument("--fees", default="0")
        p.add_argument("--note")
        json_flag(p)
    p = portfolio.add_parser("value", help="Value holdings at latest prices")
    p.add_argument("--as-of", type=parse_date)
    json_flag(p)
    p = portfolio.add_parser("gains", help="Realized gains")
    p.add_argument("--ticker")
    p.add_argument("--year", type=int)
    p.add_argument("--fy", help="Financial year, e.g. 2025 or 2024-25")
    p.add_argument("--summary", action="store_true", help="Totals per financial year")
    json_flag(p)

    # rules
    rules = sub.add_parser("rules", help="Categorization rules").add_subparsers(dest="action", required=True)
    p = rules.add_parser("add", help="Add a regex rule")
    p.add_argument("--pattern", required=True)
    p.add_argument("--category")
    p.add_argument("--payee-rewrite")
    p.add_argument("--note")
    json_flag(rules.add_parser("list", help="List rules, highest priority first"))
    rules.add_parser("rm", help="Remove a rule").add_argument("id", type=int)
    rules.add_parser("apply", help="Categorize stored uncategorized transactions").add_argument("--month")

    # import / export
    imp = sub.add_parser("import", help="Import data").add_subparsers(dest="action", required=True)
    p = imp.add_parser("transactions", help="Import transactions CSV")
    p.add_argument("path")
    p.add_argument("--on-error", choices=["abort", "skip"])

    exp = sub.add_parser("export", help="Export data").add_subparsers(dest="action", required=True)
    p = exp.add_parser("transactions", help="Export transactions")
    p.add_argument("--format", choices=list(SUPPORTED_FORMATS), default="csv")
    p.add_argument("--out")
    p.add_argument("--month")

    json_flag(sub.add_parser("doctor", help="Check data health"))

    return parser


HANDLERS = {
    "account": cmd_account,
    "category": cmd_category,
    "txn": cmd_txn,
    "fx": cmd_fx,
    "price": cmd_price,
    "envelope": cmd_envelope,
    "budget": cmd_budget,
    "report": cmd_report,
    "portfolio": cmd_portfolio,
    "rules": cmd_rules,
    "import": cmd_import,
    "export": cmd_export,
    "doctor": cmd_doctor,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.verbose, args.debug)

    paths = PathResolver(args.data_root)
    db_path = args.db or str(paths.db_path())

    db = DatabaseManager()
    try:
        conn = db.init(db_path, args.db_password)
        app = App(conn, paths.get_preferences(), paths)
        return HANDLERS[args.command](args, app)
    except MoneybookError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        if args.debug:
            import traceback
            traceback.print_exc()
        return 1
    except KeyboardInterrupt:
        print("\nOperation cancelled")
        return 130
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
