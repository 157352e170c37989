"""
FIFO Lot Ledger - first-in-first-out capital gains calculation.

Each buy opens a lot; each sell consumes the oldest open lots first and
emits one RealizedGain per lot portion consumed, never merged across
lots. Cost basis is converted to base currency as of the lot's own open
date, proceeds as of the sell date.

Features:
- Index-addressable open-lot sequence per ticker with a head cursor
- Backdated buys slot into open_date order (ties keep insertion order)
- Buy fees capitalised into cost, sell fees deducted from proceeds, pro rata
- Sells are planned in full (including every conversion) before any lot
  is touched, so a failure leaves the ledger unchanged
"""

from bisect import bisect_right
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import logging
import threading

from moneybook.core.currency import CurrencyConverter
from moneybook.core.exceptions import (
    CurrencyMismatchError,
    InsufficientLotsError,
    InvalidAmountError,
    UnknownEntityError,
)
from moneybook.core.locks import KeyedLocks
from moneybook.core.money import Money, to_decimal

logger = logging.getLogger(__name__)

# Consumed prefix is dropped once it is at least this long and half the list
COMPACT_THRESHOLD = 32


@dataclass
class Lot:
    """
    A purchase lot.

    quantity and unit_cost never change after creation; only remaining
    decreases as sells consume the lot.
    """
    ticker: str
    open_date: date
    quantity: Decimal
    unit_cost: Money
    fees: Money
    remaining: Decimal
    sequence: int

    @property
    def currency(self) -> str:
        return self.unit_cost.currency

    @property
    def is_exhausted(self) -> bool:
        return self.remaining <= 0

    def cost_of(self, units: Decimal) -> Money:
        """Trade-currency cost of `units` including their share of buy fees."""
        cost = self.unit_cost * units
        if not self.fees.is_zero():
            cost = cost + self.fees * units / self.quantity
        return cost

    def remaining_cost(self) -> Money:
        return self.cost_of(self.remaining)

    @property
    def consumed(self) -> Decimal:
        return self.quantity - self.remaining

    def to_dict(self) -> dict:
        return {
            "ticker": self.ticker,
            "open_date": self.open_date.isoformat(),
            "quantity": str(self.quantity),
            "remaining": str(self.remaining),
            "unit_cost": str(self.unit_cost.amount),
            "fees": str(self.fees.amount),
            "currency": self.currency,
        }


@dataclass(frozen=True)
class RealizedGain:
    """One consumed lot portion; amounts in base currency."""
    ticker: str
    sell_date: date
    open_date: date
    quantity: Decimal
    proceeds: Money
    cost_basis: Money
    gain: Money
    lot_sequence: Optional[int] = None

    @property
    def holding_days(self) -> int:
        return (self.sell_date - self.open_date).days

    def to_dict(self) -> dict:
        return {
            "ticker": self.ticker,
            "sell_date": self.sell_date.isoformat(),
            "open_date": self.open_date.isoformat(),
            "quantity": str(self.quantity),
            "proceeds": str(self.proceeds.amount),
            "cost_basis": str(self.cost_basis.amount),
            "gain": str(self.gain.amount),
            "currency": self.gain.currency,
            "holding_days": self.holding_days,
        }


class TickerLots:
    """
    Open lots of one ticker in consumption order.

    A plain list plus a head index: lots before the head are fully
    consumed and get compacted away in bulk.
    """

    def __init__(self, ticker: str):
        self.ticker = ticker
        self._lots: List[Lot] = []
        self._head = 0

    def __len__(self) -> int:
        return len(self._lots) - self._head

    def __iter__(self):
        return iter(self._lots[self._head:])

    @property
    def currency(self) -> Optional[str]:
        return self._lots[self._head].currency if len(self) else None

    def open_quantity(self, on_or_before: Optional[date] = None) -> Decimal:
        return sum(
            (lot.remaining for lot in self
             if on_or_before is None or lot.open_date <= on_or_before),
            Decimal("0"),
        )

    def insert(self, lot: Lot) -> None:
        """Insert keeping (open_date, sequence) order within the open region."""
        if not len(self) or (self._lots[-1].open_date, self._lots[-1].sequence) <= (lot.open_date, lot.sequence):
            self._lots.append(lot)
            return
        keys = [(existing.open_date, existing.sequence) for existing in self._lots[self._head:]]
        index = self._head + bisect_right(keys, (lot.open_date, lot.sequence))
        self._lots.insert(index, lot)

    def plan(self, quantity: Decimal, sell_date: date) -> List[Tuple[Lot, Decimal]]:
        """
        Portions (lot, units) a sell of `quantity` on `sell_date` would take.

        Only lots opened on or before the sell date are eligible.

        Raises:
            InsufficientLotsError: If eligible lots hold less than quantity
        """
        portions = []
        needed = quantity
        for lot in self:
            if needed <= 0 or lot.open_date > sell_date:
                break
            take = min(lot.remaining, needed)
            portions.append((lot, take))
            needed -= take
        if needed > 0:
            raise InsufficientLotsError(
                self.ticker, str(quantity), str(self.open_quantity(sell_date))
            )
        return portions

    def consume(self, portions: List[Tuple[Lot, Decimal]]) -> None:
        for lot, take in portions:
            lot.remaining -= take
        while self._head < len(self._lots) and self._lots[self._head].is_exhausted:
            self._head += 1
        if self._head >= COMPACT_THRESHOLD and self._head * 2 >= len(self._lots):
            del self._lots[:self._head]
            self._head = 0


class LotLedger:
    """
    FIFO lots for every ticker.

    Usage:
        lots = LotLedger(converter)
        lots.buy("VTI", date(2025, 1, 1), Decimal("10"), Money("200", "USD"))
        lots.buy("VTI", date(2025, 2, 1), Decimal("10"), Money("210", "USD"))
        gains = lots.sell("VTI", date(2025, 6, 1), Decimal("15"), Money("3450", "USD"))
        # two RealizedGain records: 10 units from the January lot, 5 from February
    """

    def __init__(self, converter: CurrencyConverter):
        self.converter = converter
        self._books: Dict[str, TickerLots] = {}
        self._gains: List[RealizedGain] = []
        self._last_sequence = 0
        self._sequence_lock = threading.Lock()
        self._locks = KeyedLocks()

    @property
    def base_currency(self) -> str:
        return self.converter.base_currency

    def _next_sequence(self) -> int:
        with self._sequence_lock:
            self._last_sequence += 1
            return self._last_sequence

    def _book(self, ticker: str) -> TickerLots:
        book = self._books.get(ticker)
        if book is None:
            book = self._books.setdefault(ticker, TickerLots(ticker))
        return book

    def _known_book(self, ticker: str) -> TickerLots:
        book = self._books.get(ticker)
        if book is None:
            raise UnknownEntityError("ticker", ticker)
        return book

    def __contains__(self, ticker: str) -> bool:
        return self._ticker(ticker) in self._books

    @staticmethod
    def _share(total: Money, upto: Decimal, whole: Decimal) -> Money:
        """Rounded share of `total` for the first `upto` of `whole` units.

        Portions taken as differences of consecutive shares add up to
        `total` exactly.
        """
        return (total * upto / whole).quantize()

    def _lot_cost(self, lot: Lot) -> Money:
        """Full cost of a lot (units plus fees) in base currency at its open date."""
        return self.converter.convert(lot.cost_of(lot.quantity), self.base_currency, lot.open_date).quantize()

    @staticmethod
    def _ticker(ticker: str) -> str:
        return ticker.strip().upper()

    def buy(
        self,
        ticker: str,
        buy_date: date,
        quantity,
        unit_cost: Money,
        fees: Optional[Money] = None,
    ) -> Lot:
        """
        Open a new lot.

        Raises:
            InvalidAmountError: If quantity <= 0, or cost/fees negative
            CurrencyMismatchError: If fees differ in currency from unit_cost,
                or the ticker already holds lots in another currency
        """
        ticker = self._ticker(ticker)
        quantity = to_decimal(quantity)
        if quantity <= 0:
            raise InvalidAmountError(quantity, "quantity must be positive")
        if unit_cost.is_negative():
            raise InvalidAmountError(unit_cost.amount, "unit cost must not be negative")
        fees = fees if fees is not None else Money.zero(unit_cost.currency)
        if fees.currency != unit_cost.currency:
            raise CurrencyMismatchError(unit_cost.currency, fees.currency)
        if fees.is_negative():
            raise InvalidAmountError(fees.amount, "fees must not be negative")

        with self._locks.hold(ticker):
            book = self._book(ticker)
            if book.currency is not None and book.currency != unit_cost.currency:
                raise CurrencyMismatchError(book.currency, unit_cost.currency)
            lot = Lot(
                ticker=ticker,
                open_date=buy_date,
                quantity=quantity,
                unit_cost=unit_cost,
                fees=fees,
                remaining=quantity,
                sequence=self._next_sequence(),
            )
            book.insert(lot)

        logger.debug(f"Opened lot {ticker} #{lot.sequence}: {quantity} @ {unit_cost} on {buy_date}")
        return lot

    def sell(
        self,
        ticker: str,
        sell_date: date,
        quantity,
        proceeds: Money,
        fees: Optional[Money] = None,
    ) -> List[RealizedGain]:
        """
        Consume open lots FIFO and record realized gains.

        Args:
            ticker: Asset ticker
            sell_date: Trade date; also the proceeds conversion date
            quantity: Units sold (> 0)
            proceeds: Gross proceeds for the whole quantity
            fees: Sell-side fees, deducted pro rata from each portion

        Returns:
            One RealizedGain per lot portion consumed, in consumption order

        Net proceeds are converted once at the sell date and each lot's
        full cost once at its open date; portions are rounded shares of
        those totals, so they always add up to them.

        Raises:
            UnknownEntityError: If the ticker was never bought
            InsufficientLotsError: If open quantity is less than requested
            RateUnavailableError: If a cost or proceeds conversion fails
        """
        ticker = self._ticker(ticker)
        quantity = to_decimal(quantity)
        if quantity <= 0:
            raise InvalidAmountError(quantity, "quantity must be positive")
        if proceeds.is_negative():
            raise InvalidAmountError(proceeds.amount, "proceeds must not be negative")
        fees = fees if fees is not None else Money.zero(proceeds.currency)
        if fees.currency != proceeds.currency:
            raise CurrencyMismatchError(proceeds.currency, fees.currency)
        net_total = proceeds - fees
        base = self.base_currency

        with self._locks.hold(ticker):
            book = self._known_book(ticker)
            portions = book.plan(quantity, sell_date)

            # Convert everything first; any failure leaves the lots untouched
            net_base = self.converter.convert(net_total, base, sell_date).quantize()
            gains = []
            sold = Decimal("0")
            for lot, take in portions:
                net = (self._share(net_base, sold + take, quantity)
                       - self._share(net_base, sold, quantity))
                sold += take

                lot_cost = self._lot_cost(lot)
                cost = (self._share(lot_cost, lot.consumed + take, lot.quantity)
                        - self._share(lot_cost, lot.consumed, lot.quantity))
                gains.append(RealizedGain(
                    ticker=ticker,
                    sell_date=sell_date,
                    open_date=lot.open_date,
                    quantity=take,
                    proceeds=net,
                    cost_basis=cost,
                    gain=net - cost,
                    lot_sequence=lot.sequence,
                ))

            book.consume(portions)
            self._gains.extend(gains)

        logger.debug(f"Sold {quantity} {ticker} on {sell_date}: {len(gains)} lot portion(s)")
        return gains

    def value(self, ticker: str, price: Money, as_of: date) -> Money:
        """
        Market value of all open units at `price`, in base currency as of `as_of`.

        Pure query; lots are not modified.

        Raises:
            UnknownEntityError: If the ticker was never bought
        """
        ticker = self._ticker(ticker)
        with self._locks.hold(ticker):
            open_qty = self._known_book(ticker).open_quantity()
        if open_qty == 0:
            return Money.zero(self.base_currency)
        return self.converter.convert(price * open_qty, self.base_currency, as_of).quantize()

    def cost_basis(self, ticker: str) -> Money:
        """Remaining cost of open lots, each converted at its open date."""
        ticker = self._ticker(ticker)
        base = self.base_currency
        with self._locks.hold(ticker):
            lots = list(self._books.get(ticker, ()))
        total = Money.zero(base)
        for lot in lots:
            lot_cost = self._lot_cost(lot)
            total = total + lot_cost - self._share(lot_cost, lot.consumed, lot.quantity)
        return total

    def open_lots(self, ticker: str) -> List[Lot]:
        ticker = self._ticker(ticker)
        with self._locks.hold(ticker):
            return list(self._books.get(ticker, ()))

    def open_quantity(self, ticker: str) -> Decimal:
        ticker = self._ticker(ticker)
        with self._locks.hold(ticker):
            book = self._books.get(ticker)
            return book.open_quantity() if book is not None else Decimal("0")

    def realized_gains(self, ticker: Optional[str] = None) -> List[RealizedGain]:
        if ticker is None:
            return list(self._gains)
        ticker = self._ticker(ticker)
        return [g for g in self._gains if g.ticker == ticker]

    def tickers(self) -> List[str]:
        """Tickers with open units."""
        return sorted(t for t, book in self._books.items() if len(book))

    def restore_lot(
        self,
        ticker: str,
        open_date: date,
        quantity: Decimal,
        remaining: Decimal,
        unit_cost: Money,
        fees: Optional[Money] = None,
        sequence: Optional[int] = None,
    ) -> Lot:
        """Load a persisted lot as-is (no validation beyond types)."""
        ticker = self._ticker(ticker)
        if sequence is None:
            sequence = self._next_sequence()
        else:
            with self._sequence_lock:
                self._last_sequence = max(self._last_sequence, sequence)
        lot = Lot(
            ticker=ticker,
            open_date=open_date,
            quantity=quantity,
            unit_cost=unit_cost,
            fees=fees if fees is not None else Money.zero(unit_cost.currency),
            remaining=remaining,
            sequence=sequence,
        )
        with self._locks.hold(ticker):
            book = self._book(ticker)
            if remaining > 0:
                book.insert(lot)
        return lot

    def restore_gain(self, gain: RealizedGain) -> None:
        self._gains.append(gain)
