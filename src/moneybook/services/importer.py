"""
CSV import for transactions and rate tuples.

Transaction CSV columns (header row required, names case-insensitive):
    date, payee, amount, account        required
    category, currency, note            optional

Rows without a category go through the rule engine, which may assign a
category and rewrite the payee. A non-empty currency must equal the
account currency.

Error modes:
- abort: the whole file is one database transaction; the first bad row
  rolls everything back
- skip: bad rows are reported and the remaining rows are kept
"""

from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import List, Optional, Union
import logging

import pandas as pd

from moneybook.core.database import atomic
from moneybook.core.exceptions import (
    CurrencyMismatchError,
    MoneybookError,
    ValidationError,
)
from moneybook.core.ledger import Ledger
from moneybook.core.money import Money, to_decimal
from moneybook.core.rates import RateStore
from moneybook.services.rules import RuleEngine

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("date", "payee", "amount", "account")
OPTIONAL_COLUMNS = ("category", "currency", "note")
RATE_COLUMNS = ("date", "base", "quote", "rate")
ON_ERROR_MODES = ("abort", "skip")


@dataclass
class RowError:
    """A rejected CSV row (row_number counts data rows from 1)."""
    row_number: int
    message: str
    code: Optional[str] = None

    def __str__(self) -> str:
        return f"row {self.row_number}: {self.message}"


@dataclass
class ImportResult:
    """Outcome of one import run."""
    source_file: str
    mode: str = "abort"
    imported: int = 0
    transaction_ids: List[int] = field(default_factory=list)
    errors: List[RowError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def skipped(self) -> int:
        return len(self.errors) if self.mode == "skip" else 0

    def add_error(self, row_number: int, error: Exception) -> None:
        code = getattr(error, "code", None)
        message = getattr(error, "message", str(error))
        self.errors.append(RowError(row_number, message, code))

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)


def _read_csv(path: Path, required: tuple) -> pd.DataFrame:
    """Read every cell as text so decimal amounts stay exact."""
    if not path.exists():
        raise ValidationError(f"File not found: {path}", field="path")
    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValidationError(f"{path} is not valid UTF-8: {e.reason} at byte {e.start}", field="path")
    except pd.errors.EmptyDataError:
        raise ValidationError(f"{path} is empty", field="path")
    except pd.errors.ParserError as e:
        raise ValidationError(f"Could not parse {path}: {e}", field="path")
    df.columns = df.columns.str.strip().str.lower()
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise ValidationError(
            f"Missing column(s) {', '.join(missing)}. Found columns: {list(df.columns)}",
            field="columns",
        )
    return df


def _parse_date(value: str) -> date:
    value = (value or "").strip()
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid date '{value}' (expected YYYY-MM-DD)", field="date")


class TransactionImporter:
    """
    Import transactions and FX rates from CSV files.

    Usage:
        importer = TransactionImporter(conn, ledger, rules)
        result = importer.import_csv(Path("august.csv"), on_error="skip")
        print(f"Imported {result.imported}, skipped {result.skipped}")
    """

    def __init__(self, db_connection, ledger: Ledger, rules: Optional[RuleEngine] = None):
        self.conn = db_connection
        self.ledger = ledger
        self.rules = rules or RuleEngine(db_connection, ledger)

    def _import_row(self, row: dict) -> int:
        account = self.ledger.get_account(row["account"].strip())
        txn_date = _parse_date(row["date"])
        amount = to_decimal(row["amount"])

        currency = row.get("currency", "").strip()
        if currency:
            money = Money(amount, currency)
            if money.currency != account.currency:
                raise CurrencyMismatchError(account.currency, money.currency)

        payee = row["payee"].strip()
        note = row.get("note", "").strip() or None
        category = row.get("category", "").strip() or None
        if category is None:
            payee, category = self.rules.categorize(payee, note)

        txn = self.ledger.add_transaction(account.id, txn_date, amount, payee, category=category, memo=note)
        return txn.id

    def import_csv(self, path: Union[str, Path], on_error: str = "abort") -> ImportResult:
        """
        Import a transaction CSV.

        Args:
            path: CSV file path
            on_error: "abort" (all-or-nothing) or "skip" (keep good rows)

        Returns:
            ImportResult; in abort mode a failure leaves imported=0

        Raises:
            ValidationError: If the file is missing, a required column is
                absent, or on_error is not a known mode
        """
        if on_error not in ON_ERROR_MODES:
            raise ValidationError(f"on_error must be one of {ON_ERROR_MODES}", field="on_error")
        path = Path(path)
        df = _read_csv(path, REQUIRED_COLUMNS)
        result = ImportResult(source_file=str(path), mode=on_error)

        if len(df) == 0:
            result.add_warning("File is empty (no data rows)")
            return result

        records = df.to_dict(orient="records")
        if on_error == "abort":
            row_number = 0
            try:
                with atomic(self.conn):
                    for row_number, row in enumerate(records, start=1):
                        result.transaction_ids.append(self._import_row(row))
            except MoneybookError as e:
                result.transaction_ids.clear()
                result.add_error(row_number, e)
                logger.warning(f"Import of {path.name} aborted at row {row_number}: {e}")
                return result
        else:
            with atomic(self.conn):
                for row_number, row in enumerate(records, start=1):
                    try:
                        with atomic(self.conn):
                            result.transaction_ids.append(self._import_row(row))
                    except MoneybookError as e:
                        result.add_error(row_number, e)
                        logger.warning(f"Skipped row {row_number} of {path.name}: {e}")

        result.imported = len(result.transaction_ids)
        logger.info(f"Imported {result.imported} transaction(s) from {path.name}")
        return result

    def import_rates_csv(self, path: Union[str, Path], rate_store: Optional[RateStore] = None,
                         source: str = "CSV") -> int:
        """
        Load provider rate tuples (date, base, quote, rate) in one transaction.

        Returns:
            Number of new observations stored
        """
        store = rate_store or self.ledger.converter.rates
        df = _read_csv(Path(path), RATE_COLUMNS)
        tuples = [
            (_parse_date(row["date"]), row["base"], row["quote"], row["rate"])
            for row in df.to_dict(orient="records")
        ]
        count = store.bulk_add_rates(tuples, source=source)
        logger.info(f"Loaded {count} new rate(s) from {Path(path).name}")
        return count
