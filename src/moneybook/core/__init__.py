"""
Core module - Foundation components for moneybook.

Provides:
- Money: exact decimal amounts tagged with an ISO currency
- DatabaseManager: SQLCipher (or SQLite) database management
- RateStore: historical FX rates and security prices
- CurrencyConverter: as-of conversion with inverse and triangulated rates
- Ledger: accounts, categories, assets, transactions, balance/cashflow queries
- UserPreferences / PathResolver: configuration and data locations
"""

from moneybook.core.money import Money, CURRENCIES, validate_currency, minor_units, to_decimal
from moneybook.core.database import DatabaseManager, atomic, get_connection
from moneybook.core.rates import RateStore, RateObservation, PriceObservation, ResolvedRate
from moneybook.core.currency import CurrencyConverter, Conversion
from moneybook.core.ledger import Ledger, UNCATEGORIZED
from moneybook.core.locks import KeyedLocks
from moneybook.core.models import (
    Account,
    AccountType,
    Category,
    Transaction,
    Asset,
    AccountBalance,
    CashflowRow,
    CategorySpend,
    parse_month,
    month_bounds,
    next_month,
    previous_month,
    get_financial_year,
    get_fy_dates,
)
from moneybook.core.preferences import UserPreferences
from moneybook.core.paths import PathResolver
from moneybook.core.exceptions import (
    MoneybookError,
    DatabaseError,
    ValidationError,
    InvalidAmountError,
    RateUnavailableError,
    InsufficientLotsError,
    UnknownEntityError,
    CurrencyMismatchError,
)

__all__ = [
    # Money
    "Money",
    "CURRENCIES",
    "validate_currency",
    "minor_units",
    "to_decimal",
    # Storage
    "DatabaseManager",
    "atomic",
    "get_connection",
    "KeyedLocks",
    # Rates
    "RateStore",
    "RateObservation",
    "PriceObservation",
    "ResolvedRate",
    "CurrencyConverter",
    "Conversion",
    # Ledger
    "Ledger",
    "UNCATEGORIZED",
    "Account",
    "AccountType",
    "Category",
    "Transaction",
    "Asset",
    "AccountBalance",
    "CashflowRow",
    "CategorySpend",
    "parse_month",
    "month_bounds",
    "next_month",
    "previous_month",
    "get_financial_year",
    "get_fy_dates",
    # Configuration
    "UserPreferences",
    "PathResolver",
    # Exceptions
    "MoneybookError",
    "DatabaseError",
    "ValidationError",
    "InvalidAmountError",
    "RateUnavailableError",
    "InsufficientLotsError",
    "UnknownEntityError",
    "CurrencyMismatchError",
]
