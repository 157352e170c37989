"""
Envelope budgeting - per (category, month) allocations in base currency.

Stored per envelope row: funded, moved_in, moved_out. Derived on read:
- spent: outflows in the category during the month (from the Ledger,
  converted at each transaction's own date)
- rollover_in: the previous month's available amount, subject to the
  rollover policy
- available = rollover_in + funded + moved_in - moved_out - spent

Rollover is recomputed from the first month with any activity every
time it is needed; nothing derived is ever stored.

Budgets: `set_budget` overwrites the funded amount while `fund` adds to
it; `budget_report` lists budget against spending.

Rollover policies:
- FLOOR (default): negative availability is not carried forward
- CARRY: negative availability is carried forward as debt
"""

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Union
import logging
import sqlite3

from moneybook.core.database import atomic
from moneybook.core.exceptions import (
    CurrencyMismatchError,
    InvalidAmountError,
    ValidationError,
)
from moneybook.core.ledger import Ledger
from moneybook.core.locks import KeyedLocks
from moneybook.core.models import month_bounds, next_month, parse_month
from moneybook.core.money import Money, to_decimal, validate_currency

logger = logging.getLogger(__name__)


class RolloverPolicy(Enum):
    """How a month's leftover flows into the next month."""
    FLOOR = "floor"    # max(0, available)
    CARRY = "carry"    # available, including negatives

    def apply(self, available: Money) -> Money:
        if self is RolloverPolicy.FLOOR and available.is_negative():
            return Money.zero(available.currency)
        return available


@dataclass(frozen=True)
class EnvelopeTotals:
    """Stored amounts of one envelope; nothing derived."""
    category_id: int
    month: str
    funded: Money
    moved_in: Money
    moved_out: Money


@dataclass(frozen=True)
class BudgetLine:
    """Budget and spending of one category for a month."""
    category: str
    month: str
    budget: Money
    spent: Money

    @property
    def remaining(self) -> Money:
        return self.budget - self.spent

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "month": self.month,
            "currency": self.budget.currency,
            "budget": str(self.budget.amount),
            "spent": str(self.spent.amount),
            "remaining": str(self.remaining.amount),
        }


@dataclass(frozen=True)
class EnvelopeState:
    """Stored tuple of one envelope plus its derived rollover."""
    category_id: int
    month: str
    funded: Money
    moved_in: Money
    moved_out: Money
    rollover_in: Money


@dataclass(frozen=True)
class EnvelopeStatus:
    """Full breakdown of one envelope for a month, in base currency."""
    category: str
    month: str
    rollover_in: Money
    funded: Money
    moved_in: Money
    moved_out: Money
    spent: Money

    @property
    def available(self) -> Money:
        return self.rollover_in + self.funded + self.moved_in - self.moved_out - self.spent

    @property
    def currency(self) -> str:
        return self.funded.currency

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "month": self.month,
            "currency": self.currency,
            "rollover_in": str(self.rollover_in.amount),
            "funded": str(self.funded.amount),
            "moved_in": str(self.moved_in.amount),
            "moved_out": str(self.moved_out.amount),
            "spent": str(self.spent.amount),
            "available": str(self.available.amount),
        }


class EnvelopeEngine:
    """
    Fund, move and report envelope budgets.

    Usage:
        engine = EnvelopeEngine(conn, ledger)
        engine.fund("Groceries", "2025-08", Decimal("500"))
        engine.move("Dining", "Groceries", "2025-08", Decimal("50"))
        status = engine.status("Groceries", "2025-08")
        status.available   # Money in base currency
    """

    def __init__(
        self,
        db_connection: sqlite3.Connection,
        ledger: Ledger,
        rollover_policy: Union[RolloverPolicy, str] = RolloverPolicy.FLOOR,
    ):
        self.conn = db_connection
        self.ledger = ledger
        self.rollover_policy = RolloverPolicy(rollover_policy)
        self._locks = KeyedLocks()

    @property
    def base_currency(self) -> str:
        return self.ledger.base_currency

    def _amount(self, amount: Union[Money, Decimal, str, int]) -> Money:
        base = self.base_currency
        if isinstance(amount, Money):
            if amount.currency != base:
                raise CurrencyMismatchError(base, amount.currency)
            return amount
        return Money(to_decimal(amount), base)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _row(self, category_id: int, month: str) -> Optional[sqlite3.Row]:
        return self.conn.execute(
            "SELECT * FROM envelopes WHERE category_id = ? AND month = ?",
            (category_id, month),
        ).fetchone()

    def _bump(self, category_id: int, month: str, column: str, amount: Money) -> None:
        """Add amount to one stored column."""
        row = self._row(category_id, month)
        if row is not None:
            if row["currency"] != amount.currency:
                raise CurrencyMismatchError(row["currency"], amount.currency)
            amount = Money(Decimal(row[column]) + amount.amount, amount.currency)
        self._set(category_id, month, column, amount)

    def _set(self, category_id: int, month: str, column: str, amount: Money) -> None:
        """Overwrite one stored column, creating the row on first touch."""
        row = self._row(category_id, month)
        if row is None:
            self.conn.execute(
                f"""
                INSERT INTO envelopes (category_id, month, {column}, currency)
                VALUES (?, ?, ?, ?)
                """,
                (category_id, month, str(amount.amount), amount.currency),
            )
            return
        if row["currency"] != amount.currency:
            raise CurrencyMismatchError(row["currency"], amount.currency)
        self.conn.execute(
            f"""
            UPDATE envelopes SET {column} = ?, updated_at = CURRENT_TIMESTAMP
            WHERE category_id = ? AND month = ?
            """,
            (str(amount.amount), category_id, month),
        )

    def _totals(self, category_id: int, month: str) -> EnvelopeTotals:
        funded, moved_in, moved_out = self._stored(category_id, month)
        return EnvelopeTotals(category_id, month, funded, moved_in, moved_out)

    def fund(self, category, month, amount) -> EnvelopeTotals:
        """
        Add to an envelope's funded amount.

        Returns the stored totals read back in the same transaction; no
        rollover is computed, so a missing rate in an earlier month cannot
        fail a fund that was written.

        Raises:
            InvalidAmountError: If amount is negative
            UnknownEntityError: If the category does not exist
            ValidationError: If month is malformed
        """
        money = self._amount(amount)
        if money.is_negative():
            raise InvalidAmountError(money.amount, "fund amount must be >= 0")
        cat = self.ledger.get_category(category)
        month = parse_month(month)

        with self._locks.hold((cat.id, month)):
            with atomic(self.conn):
                self._bump(cat.id, month, "funded", money)
                totals = self._totals(cat.id, month)
        logger.debug(f"Funded {cat.name} {month}: {money}")
        return totals

    def set_budget(self, category, month, amount) -> EnvelopeTotals:
        """
        Set an envelope's funded amount to an absolute value.

        Moves in and out of the envelope are kept as they are.

        Raises:
            InvalidAmountError: If amount is negative
        """
        money = self._amount(amount)
        if money.is_negative():
            raise InvalidAmountError(money.amount, "budget must be >= 0")
        cat = self.ledger.get_category(category)
        month = parse_month(month)

        with self._locks.hold((cat.id, month)):
            with atomic(self.conn):
                self._set(cat.id, month, "funded", money)
                totals = self._totals(cat.id, month)
        logger.debug(f"Budget for {cat.name} {month} set to {money}")
        return totals

    def move(self, from_category, to_category, month, amount) -> None:
        """
        Move budget between two categories within a month.

        Both sides are written in one database transaction. Overdraft is
        allowed and shows up as a negative available amount.

        Raises:
            InvalidAmountError: If amount is not positive
            ValidationError: If both categories are the same
        """
        money = self._amount(amount)
        if not money.is_positive():
            raise InvalidAmountError(money.amount, "move amount must be > 0")
        source = self.ledger.get_category(from_category)
        target = self.ledger.get_category(to_category)
        if source.id == target.id:
            raise ValidationError(f"Cannot move within the same category: {source.name}", field="to_category")
        month = parse_month(month)

        with self._locks.hold_many([(source.id, month), (target.id, month)]):
            with atomic(self.conn):
                self._bump(source.id, month, "moved_out", money)
                self._bump(target.id, month, "moved_in", money)
        logger.debug(f"Moved {money} from {source.name} to {target.name} for {month}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _stored(self, category_id: int, month: str):
        base = self.base_currency
        row = self._row(category_id, month)
        if row is None:
            zero = Money.zero(base)
            return zero, zero, zero
        if row["currency"] != base:
            raise CurrencyMismatchError(base, row["currency"])
        return (
            Money(Decimal(row["funded"]), base),
            Money(Decimal(row["moved_in"]), base),
            Money(Decimal(row["moved_out"]), base),
        )

    def _first_month(self, category_id: int) -> Optional[str]:
        row = self.conn.execute(
            "SELECT MIN(month) AS first FROM envelopes WHERE category_id = ?",
            (category_id,),
        ).fetchone()
        candidates = [m for m in (row["first"] if row else None,
                                  self.ledger.first_activity_month(category_id)) if m]
        return min(candidates) if candidates else None

    def _available(self, category_id: int, month: str, rollover_in: Money) -> Money:
        funded, moved_in, moved_out = self._stored(category_id, month)
        spent = self.ledger.spent(category_id, month, self.base_currency)
        return rollover_in + funded + moved_in - moved_out - spent

    def rollover(self, category, month) -> Money:
        """
        Amount carried into `month` from the month before.

        Walks forward from the first month with any activity, applying the
        rollover policy at every month boundary.
        """
        cat = self.ledger.get_category(category)
        month = parse_month(month)
        carried = Money.zero(self.base_currency)

        current = self._first_month(cat.id)
        if current is None:
            return carried
        while current < month:
            carried = self.rollover_policy.apply(self._available(cat.id, current, carried))
            current = next_month(current)
        return carried

    def get_state(self, category, month) -> EnvelopeState:
        cat = self.ledger.get_category(category)
        month = parse_month(month)
        with self._locks.hold((cat.id, month)):
            funded, moved_in, moved_out = self._stored(cat.id, month)
            return EnvelopeState(
                category_id=cat.id,
                month=month,
                funded=funded,
                moved_in=moved_in,
                moved_out=moved_out,
                rollover_in=self.rollover(cat.id, month),
            )

    def status(self, category, month) -> EnvelopeStatus:
        """Full breakdown (rollover_in, funded, moved_in, moved_out, spent, available)."""
        cat = self.ledger.get_category(category)
        month = parse_month(month)
        with self._locks.hold((cat.id, month)):
            funded, moved_in, moved_out = self._stored(cat.id, month)
            return EnvelopeStatus(
                category=cat.name,
                month=month,
                rollover_in=self.rollover(cat.id, month),
                funded=funded,
                moved_in=moved_in,
                moved_out=moved_out,
                spent=self.ledger.spent(cat.id, month, self.base_currency),
            )

    def available(self, category, month) -> Money:
        return self.status(category, month).available

    def spent(self, category, month) -> Money:
        """Outflows of the category in the month, in base currency."""
        return self.ledger.spent(category, parse_month(month), self.base_currency)

    def status_all(self, month) -> List[EnvelopeStatus]:
        """Status of every category for a month, ordered by category name."""
        month = parse_month(month)
        return [self.status(cat.id, month) for cat in self.ledger.list_categories()]

    def active_months(self) -> List[str]:
        """Months with any stored envelope row, oldest first."""
        rows = self.conn.execute("SELECT DISTINCT month FROM envelopes ORDER BY month").fetchall()
        return [row["month"] for row in rows]

    def list_budgets(self, month=None) -> List[EnvelopeTotals]:
        """Stored envelopes, newest month first, then by category name."""
        query = """
            SELECT e.category_id, e.month FROM envelopes e
            JOIN categories c ON e.category_id = c.id
        """
        params = ()
        if month is not None:
            query += " WHERE e.month = ?"
            params = (parse_month(month),)
        query += " ORDER BY e.month DESC, c.name"
        rows = self.conn.execute(query, params).fetchall()
        return [self._totals(row["category_id"], row["month"]) for row in rows]

    def budget_report(self, month, currency: Optional[str] = None) -> List[BudgetLine]:
        """
        Budget against spending for every category in a month.

        Spending is summed in base currency at each transaction's date.
        With a currency, both columns are then converted at the last day
        of the month.

        Raises:
            RateUnavailableError: If a needed conversion has no rate
        """
        month = parse_month(month)
        base = self.base_currency
        target = validate_currency(currency) if currency else base
        month_end = month_bounds(month)[1] - timedelta(days=1)

        def show(money: Money) -> Money:
            return self.ledger.converter.convert(money, target, month_end).quantize()

        lines = []
        for cat in self.ledger.list_categories():
            funded, _, _ = self._stored(cat.id, month)
            spent = self.ledger.spent(cat.id, month, base)
            lines.append(BudgetLine(cat.name, month, show(funded), show(spent)))
        return lines

    def status_in(self, status: EnvelopeStatus, currency: str) -> EnvelopeStatus:
        """Re-express a status in another currency at the last day of its month."""
        target = validate_currency(currency)
        if target == status.currency:
            return status
        month_end = month_bounds(status.month)[1] - timedelta(days=1)

        def show(money: Money) -> Money:
            return self.ledger.converter.convert(money, target, month_end).quantize()

        return EnvelopeStatus(
            category=status.category,
            month=status.month,
            rollover_in=show(status.rollover_in),
            funded=show(status.funded),
            moved_in=show(status.moved_in),
            moved_out=show(status.moved_out),
            spent=show(status.spent),
        )
