"""
Core models for moneybook - ledger entities and query results.

This module provides:
- Account, Category, Transaction, Asset: stored ledger entities
- AccountBalance, CashflowRow, CategorySpend: ledger query results
- Month helpers: budgeting months are "YYYY-MM" strings
- Financial year helpers for gains summaries

All monetary values use Money (Decimal + currency).
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple
import re
import sqlite3

from moneybook.core.currency import Conversion
from moneybook.core.exceptions import ValidationError
from moneybook.core.money import Money


class AccountType(Enum):
    """Kind of account; informational only, balances treat all alike."""
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT = "credit"
    CASH = "cash"
    INVESTMENT = "investment"
    LOAN = "loan"
    OTHER = "other"

    @classmethod
    def parse(cls, value) -> "AccountType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(t.value for t in cls)
            raise ValidationError(
                f"Unknown account type '{value}' (expected one of: {choices})",
                field="account_type",
            )


def _parse_date(value) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass
class Account:
    """A place money lives, denominated in one currency."""
    id: int
    name: str
    account_type: AccountType
    currency: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Account":
        created = row["created_at"]
        return cls(
            id=row["id"],
            name=row["name"],
            account_type=AccountType(row["account_type"]),
            currency=row["currency"],
            created_at=datetime.fromisoformat(created) if isinstance(created, str) else created,
        )


@dataclass
class Category:
    """Spending/income category; also the key of an envelope."""
    id: int
    name: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Category":
        return cls(id=row["id"], name=row["name"])


@dataclass
class Transaction:
    """
    A dated signed amount against an account.

    Negative amounts are outflows (spending), positive are inflows. The
    currency always equals the account currency.
    """
    id: int
    account_id: int
    date: date
    amount: Money
    payee: str
    category_id: Optional[int] = None
    memo: Optional[str] = None
    account_name: str = ""
    category_name: Optional[str] = None

    @property
    def is_outflow(self) -> bool:
        return self.amount.is_negative()

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Transaction":
        keys = row.keys()
        return cls(
            id=row["id"],
            account_id=row["account_id"],
            date=_parse_date(row["date"]),
            amount=Money(Decimal(row["amount"]), row["currency"]),
            payee=row["payee"],
            category_id=row["category_id"],
            memo=row["memo"],
            account_name=row["account_name"] if "account_name" in keys else "",
            category_name=row["category_name"] if "category_name" in keys else None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "account": self.account_name,
            "payee": self.payee,
            "amount": str(self.amount.amount),
            "currency": self.amount.currency,
            "category": self.category_name,
            "memo": self.memo,
        }


@dataclass
class Asset:
    """A tradeable security priced in one currency."""
    id: int
    ticker: str
    name: str
    currency: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Asset":
        return cls(id=row["id"], ticker=row["ticker"], name=row["name"], currency=row["currency"])


@dataclass
class AccountBalance:
    """Balance of one account, optionally converted for reporting."""
    account: str
    native: Money
    converted: Optional[Money] = None
    conversion: Optional[Conversion] = None

    def to_dict(self) -> dict:
        data = {"account": self.account, "balance": self.native.to_dict()}
        if self.converted is not None:
            data["converted"] = self.converted.to_dict()
        return data


@dataclass
class CashflowRow:
    """Income, expense and net for one month in the reporting currency."""
    month: str
    income: Money
    expense: Money

    @property
    def net(self) -> Money:
        return self.income - self.expense

    def to_dict(self) -> dict:
        return {
            "month": self.month,
            "currency": self.income.currency,
            "income": str(self.income.amount),
            "expense": str(self.expense.amount),
            "net": str(self.net.amount),
        }


@dataclass
class CategorySpend:
    """Outflows of one category within a month."""
    category: str
    spent: Money
    transactions: int = 0

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "spent": str(self.spent.amount),
            "currency": self.spent.currency,
            "transactions": self.transactions,
        }


# ----------------------------------------------------------------------
# Months
# ----------------------------------------------------------------------

_MONTH_RE = re.compile(r"^(\d{4})-(\d{1,2})$")


def parse_month(value) -> str:
    """
    Normalise a month to "YYYY-MM".

    Accepts "YYYY-MM", "YYYY-M" or a date (its calendar month).

    Raises:
        ValidationError: If the value is not a valid month
    """
    if isinstance(value, date):
        return f"{value.year:04d}-{value.month:02d}"
    match = _MONTH_RE.match(str(value).strip())
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise ValidationError(f"Invalid month '{value}' (expected YYYY-MM)", field="month")
    return f"{int(match.group(1)):04d}-{int(match.group(2)):02d}"


def month_of(dt: date) -> str:
    return f"{dt.year:04d}-{dt.month:02d}"


def month_bounds(month: str) -> Tuple[date, date]:
    """First day of the month and first day of the next month (exclusive end)."""
    month = parse_month(month)
    year, mon = int(month[:4]), int(month[5:])
    start = date(year, mon, 1)
    end = date(year + 1, 1, 1) if mon == 12 else date(year, mon + 1, 1)
    return start, end


def next_month(month: str) -> str:
    return month_of(month_bounds(month)[1])


def previous_month(month: str) -> str:
    month = parse_month(month)
    year, mon = int(month[:4]), int(month[5:])
    return f"{year - 1:04d}-12" if mon == 1 else f"{year:04d}-{mon - 1:02d}"


# ----------------------------------------------------------------------
# Financial years
# ----------------------------------------------------------------------

def get_financial_year(dt: date, start_month: int = 1) -> str:
    """
    Get financial year string for a date.

    With start_month=1 the financial year is the calendar year ("2025").
    Otherwise it spans two calendar years, e.g. start_month=4:
    April 2024 -> "2024-25"
    March 2025 -> "2024-25"

    Args:
        dt: Date to get FY for
        start_month: First month of the financial year (1-12)

    Returns:
        Financial year string
    """
    if not 1 <= start_month <= 12:
        raise ValidationError(f"Invalid financial year start month: {start_month}", field="fy_start_month")
    if start_month == 1:
        return str(dt.year)
    if dt.month >= start_month:
        return f"{dt.year}-{str(dt.year + 1)[2:]}"
    return f"{dt.year - 1}-{str(dt.year)[2:]}"


def get_fy_dates(financial_year: str, start_month: int = 1) -> tuple:
    """
    Get start and end dates (both inclusive) for a financial year.

    Args:
        financial_year: FY string ("2025" or "2024-25")
        start_month: First month of the financial year

    Returns:
        Tuple of (start_date, end_date)
    """
    try:
        start_year = int(str(financial_year).split('-')[0])
    except ValueError:
        raise ValidationError(f"Invalid financial year '{financial_year}'", field="financial_year")
    if start_month == 1:
        return (date(start_year, 1, 1), date(start_year, 12, 31))
    end_month = start_month - 1
    _, end_exclusive = month_bounds(f"{start_year + 1}-{end_month:02d}")
    return (date(start_year, start_month, 1), date.fromordinal(end_exclusive.toordinal() - 1))
