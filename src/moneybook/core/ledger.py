"""
Ledger - accounts, categories, assets and transactions with reporting queries.

Transactions are append-only: once stored, only the category may change
(manual recategorisation or rule application). Every transaction is
denominated in its account's currency. Aggregate queries convert each
transaction at its own date, so backfilled historical rates flow into
reports without any cached totals to invalidate.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Union
import logging
import sqlite3

from moneybook.core.currency import CurrencyConverter
from moneybook.core.database import atomic
from moneybook.core.exceptions import (
    CurrencyMismatchError,
    UnknownEntityError,
    ValidationError,
)
from moneybook.core.models import (
    Account,
    AccountBalance,
    AccountType,
    Asset,
    CashflowRow,
    Category,
    CategorySpend,
    Transaction,
    month_bounds,
    month_of,
    parse_month,
)
from moneybook.core.money import Money, to_decimal, validate_currency
from moneybook.core.rates import RateStore

logger = logging.getLogger(__name__)

DEFAULT_BASE_CURRENCY = "USD"
UNCATEGORIZED = "(uncategorized)"

_TXN_SELECT = """
    SELECT t.*, a.name AS account_name, c.name AS category_name
    FROM transactions t
    JOIN accounts a ON t.account_id = a.id
    LEFT JOIN categories c ON t.category_id = c.id
"""


class Ledger:
    """
    Accounts and transactions plus balance/cashflow queries.

    Usage:
        ledger = Ledger(conn)
        ledger.set_base_currency("INR")
        ledger.add_account("Chase", "checking", "USD")
        ledger.add_category("Groceries")
        ledger.add_transaction("Chase", date(2025, 8, 10), Decimal("-75.30"),
                               "Whole Foods", category="Groceries")
        ledger.spent("Groceries", "2025-08")   # Money in INR
    """

    def __init__(
        self,
        db_connection: sqlite3.Connection,
        converter: Optional[CurrencyConverter] = None,
        max_lookback_days: Optional[int] = None,
    ):
        """
        Initialize the ledger.

        Args:
            db_connection: SQLite database connection
            converter: Converter to use; built from the stored base
                currency when omitted
            max_lookback_days: Rate fallback window for the built converter
        """
        self.conn = db_connection
        if converter is None:
            store = RateStore(db_connection, self.base_currency, max_lookback_days)
            converter = CurrencyConverter(store, self.base_currency)
        self.converter = converter

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    @property
    def base_currency(self) -> str:
        row = self.conn.execute(
            "SELECT value FROM settings WHERE key = 'base_currency'"
        ).fetchone()
        return row["value"] if row else DEFAULT_BASE_CURRENCY

    def set_base_currency(self, currency: str) -> str:
        """Store the base currency and point the converter at it."""
        currency = validate_currency(currency)
        with atomic(self.conn):
            self.conn.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES ('base_currency', ?)",
                (currency,),
            )
        self.converter.base_currency = currency
        self.converter.rates.base_currency = currency
        logger.info(f"Base currency set to {currency}")
        return currency

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def add_account(self, name: str, account_type="checking", currency: str = None) -> Account:
        """
        Create an account.

        Raises:
            ValidationError: If the name is empty or already used
            UnknownEntityError: If the currency code is unknown
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Account name is required", field="name")
        account_type = AccountType.parse(account_type)
        currency = validate_currency(currency or self.base_currency)

        with atomic(self.conn):
            if self._find_account(name) is not None:
                raise ValidationError(f"Account already exists: {name}", field="name")
            cursor = self.conn.execute(
                "INSERT INTO accounts (name, account_type, currency) VALUES (?, ?, ?)",
                (name, account_type.value, currency),
            )
            account_id = cursor.lastrowid

        logger.debug(f"Added account {name} ({account_type.value}, {currency})")
        return self.get_account(account_id)

    def _find_account(self, name_or_id: Union[str, int]) -> Optional[Account]:
        if isinstance(name_or_id, int):
            row = self.conn.execute("SELECT * FROM accounts WHERE id = ?", (name_or_id,)).fetchone()
        else:
            row = self.conn.execute(
                "SELECT * FROM accounts WHERE name = ?", (str(name_or_id).strip(),)
            ).fetchone()
        return Account.from_row(row) if row else None

    def get_account(self, name_or_id: Union[str, int]) -> Account:
        account = self._find_account(name_or_id)
        if account is None:
            raise UnknownEntityError("account", name_or_id)
        return account

    def list_accounts(self) -> List[Account]:
        return [
            Account.from_row(row)
            for row in self.conn.execute("SELECT * FROM accounts ORDER BY name")
        ]

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def add_category(self, name: str) -> Category:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Category name is required", field="name")
        with atomic(self.conn):
            if self._find_category(name) is not None:
                raise ValidationError(f"Category already exists: {name}", field="name")
            cursor = self.conn.execute("INSERT INTO categories (name) VALUES (?)", (name,))
        logger.debug(f"Added category {name}")
        return Category(id=cursor.lastrowid, name=name)

    def _find_category(self, name_or_id: Union[str, int]) -> Optional[Category]:
        if isinstance(name_or_id, int):
            row = self.conn.execute("SELECT * FROM categories WHERE id = ?", (name_or_id,)).fetchone()
        else:
            row = self.conn.execute(
                "SELECT * FROM categories WHERE name = ?", (str(name_or_id).strip(),)
            ).fetchone()
        return Category.from_row(row) if row else None

    def get_category(self, name_or_id: Union[str, int]) -> Category:
        category = self._find_category(name_or_id)
        if category is None:
            raise UnknownEntityError("category", name_or_id)
        return category

    def ensure_category(self, name: str) -> Category:
        """Get a category by name, creating it if needed."""
        with atomic(self.conn):
            category = self._find_category(name)
            if category is None:
                category = self.add_category(name)
        return category

    def list_categories(self) -> List[Category]:
        return [
            Category.from_row(row)
            for row in self.conn.execute("SELECT * FROM categories ORDER BY name")
        ]

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    def add_asset(self, ticker: str, name: str = None, currency: str = None) -> Asset:
        ticker = (ticker or "").strip().upper()
        if not ticker:
            raise ValidationError("Ticker is required", field="ticker")
        currency = validate_currency(currency or self.base_currency)
        with atomic(self.conn):
            if self.conn.execute("SELECT 1 FROM assets WHERE ticker = ?", (ticker,)).fetchone():
                raise ValidationError(f"Asset already exists: {ticker}", field="ticker")
            cursor = self.conn.execute(
                "INSERT INTO assets (ticker, name, currency) VALUES (?, ?, ?)",
                (ticker, name or ticker, currency),
            )
        logger.debug(f"Added asset {ticker} ({currency})")
        return Asset(id=cursor.lastrowid, ticker=ticker, name=name or ticker, currency=currency)

    def get_asset(self, ticker: str) -> Asset:
        row = self.conn.execute(
            "SELECT * FROM assets WHERE ticker = ?", (str(ticker).strip().upper(),)
        ).fetchone()
        if row is None:
            raise UnknownEntityError("ticker", ticker)
        return Asset.from_row(row)

    def list_assets(self) -> List[Asset]:
        return [Asset.from_row(row) for row in self.conn.execute("SELECT * FROM assets ORDER BY ticker")]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def add_transaction(
        self,
        account: Union[str, int],
        txn_date: date,
        amount: Union[Money, Decimal, str, int],
        payee: str,
        category: Union[str, int, None] = None,
        memo: Optional[str] = None,
    ) -> Transaction:
        """
        Record a transaction against an account.

        Args:
            account: Account name or id
            txn_date: Transaction date
            amount: Signed amount (negative = outflow); a Money must be in
                the account currency
            payee: Counterparty
            category: Category name or id, optional
            memo: Free-text note

        Returns:
            Stored Transaction

        Raises:
            UnknownEntityError: If account or category does not exist
            CurrencyMismatchError: If a Money amount is in another currency
            InvalidAmountError: If the amount is not an exact decimal
        """
        acct = self.get_account(account)
        if isinstance(amount, Money):
            if amount.currency != acct.currency:
                raise CurrencyMismatchError(acct.currency, amount.currency)
            money = amount
        else:
            money = Money(to_decimal(amount), acct.currency)

        category_id = self.get_category(category).id if category not in (None, "") else None
        payee = (payee or "").strip()

        with atomic(self.conn):
            cursor = self.conn.execute(
                """
                INSERT INTO transactions (account_id, date, amount, currency, payee, category_id, memo)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    acct.id,
                    txn_date.isoformat(),
                    str(money.amount),
                    money.currency,
                    payee,
                    category_id,
                    memo,
                ),
            )
            txn_id = cursor.lastrowid

        logger.debug(f"Added transaction {txn_id}: {acct.name} {txn_date} {money} {payee}")
        return self.get_transaction(txn_id)

    def get_transaction(self, transaction_id: int) -> Transaction:
        row = self.conn.execute(_TXN_SELECT + " WHERE t.id = ?", (transaction_id,)).fetchone()
        if row is None:
            raise UnknownEntityError("transaction", transaction_id)
        return Transaction.from_row(row)

    def recategorize(self, transaction_id: int, category: Union[str, int, None]) -> Transaction:
        """Change (or clear, with None) the category of a stored transaction."""
        self.get_transaction(transaction_id)
        category_id = self.get_category(category).id if category not in (None, "") else None
        with atomic(self.conn):
            self.conn.execute(
                "UPDATE transactions SET category_id = ? WHERE id = ?",
                (category_id, transaction_id),
            )
        return self.get_transaction(transaction_id)

    def list_transactions(
        self,
        month: Optional[str] = None,
        account: Union[str, int, None] = None,
        category: Union[str, int, None] = None,
        limit: Optional[int] = None,
    ) -> List[Transaction]:
        """Transactions newest first, optionally filtered."""
        sql = _TXN_SELECT + " WHERE 1=1"
        params: list = []
        if month is not None:
            start, end = month_bounds(month)
            sql += " AND t.date >= ? AND t.date < ?"
            params += [start.isoformat(), end.isoformat()]
        if account is not None:
            sql += " AND t.account_id = ?"
            params.append(self.get_account(account).id)
        if category is not None:
            sql += " AND t.category_id = ?"
            params.append(self.get_category(category).id)
        sql += " ORDER BY t.date DESC, t.id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [Transaction.from_row(row) for row in self.conn.execute(sql, params)]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def balances(
        self,
        currency: Optional[str] = None,
        as_of: Optional[date] = None,
        in_base: bool = False,
    ) -> List[AccountBalance]:
        """
        Balance of every account as of a date.

        Native balances are exact sums in the account currency. When a
        target currency is given (or in_base is set) each balance is also
        converted at the as_of rate.

        Raises:
            RateUnavailableError: If a conversion is requested and impossible
        """
        as_of = as_of or date.today()
        target = validate_currency(currency) if currency else (self.base_currency if in_base else None)

        result = []
        for acct in self.list_accounts():
            rows = self.conn.execute(
                "SELECT amount FROM transactions WHERE account_id = ? AND date <= ?",
                (acct.id, as_of.isoformat()),
            ).fetchall()
            native = Money(sum((Decimal(row["amount"]) for row in rows), Decimal("0")), acct.currency)

            balance = AccountBalance(account=acct.name, native=native)
            if target is not None:
                conversion = self.converter.convert_detailed(native, target, as_of)
                balance.converted = conversion.result
                balance.conversion = conversion
            result.append(balance)
        return result

    def cashflow(self, months: int = 12, currency: Optional[str] = None) -> List[CashflowRow]:
        """
        Income and expense per month, each transaction converted at its own date.

        Returns the most recent `months` months that have activity, newest first.
        """
        target = validate_currency(currency) if currency else self.base_currency
        income: Dict[str, Money] = defaultdict(lambda: Money.zero(target))
        expense: Dict[str, Money] = defaultdict(lambda: Money.zero(target))

        for txn in self._iter_transactions():
            converted = self.converter.convert(txn.amount, target, txn.date)
            month = month_of(txn.date)
            if converted.is_negative():
                expense[month] = expense[month] + abs(converted)
            else:
                income[month] = income[month] + converted

        all_months = sorted(set(income) | set(expense), reverse=True)[:months]
        return [
            CashflowRow(month=m, income=income[m], expense=expense[m])
            for m in all_months
        ]

    def spend_by_category(self, month: str, currency: Optional[str] = None) -> List[CategorySpend]:
        """Outflows per category within a month, largest first."""
        target = validate_currency(currency) if currency else self.base_currency
        totals: Dict[str, Money] = defaultdict(lambda: Money.zero(target))
        counts: Dict[str, int] = defaultdict(int)

        for txn in self.list_transactions(month=month):
            if not txn.is_outflow:
                continue
            name = txn.category_name or UNCATEGORIZED
            totals[name] = totals[name] + abs(self.converter.convert(txn.amount, target, txn.date))
            counts[name] += 1

        rows = [CategorySpend(name, totals[name], counts[name]) for name in totals]
        rows.sort(key=lambda r: (-r.spent.amount, r.category))
        return rows

    def spent(
        self,
        category: Union[str, int],
        month: str,
        currency: Optional[str] = None,
    ) -> Money:
        """
        Sum of outflows in a category and calendar month, as a positive amount.

        Each transaction is converted at its own date. Inflows (refunds)
        do not reduce the figure.
        """
        cat = self.get_category(category)
        target = validate_currency(currency) if currency else self.base_currency
        start, end = month_bounds(parse_month(month))

        rows = self.conn.execute(
            """
            SELECT date, amount, currency FROM transactions
            WHERE category_id = ? AND date >= ? AND date < ?
            ORDER BY date, id
            """,
            (cat.id, start.isoformat(), end.isoformat()),
        ).fetchall()

        total = Money.zero(target)
        for row in rows:
            amount = Decimal(row["amount"])
            if amount >= 0:
                continue
            txn_date = date.fromisoformat(row["date"])
            total = total + self.converter.convert(Money(-amount, row["currency"]), target, txn_date)
        return total

    def first_activity_month(self, category: Union[str, int]) -> Optional[str]:
        """Earliest month with a transaction in the category, or None."""
        cat = self.get_category(category)
        row = self.conn.execute(
            "SELECT MIN(date) AS first FROM transactions WHERE category_id = ?",
            (cat.id,),
        ).fetchone()
        return month_of(date.fromisoformat(row["first"])) if row and row["first"] else None

    def _iter_transactions(self):
        rows = self.conn.execute(_TXN_SELECT + " ORDER BY t.date, t.id").fetchall()
        for row in rows:
            yield Transaction.from_row(row)
