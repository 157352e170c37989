"""
Money - fixed-precision decimal amounts tagged with a currency.

All accounting in moneybook goes through Money. Amounts are Decimal
throughout; binary floats are rejected at construction so that envelope
sums and FIFO cost bases reconcile exactly.

Usage:
    price = Money("19.99", "usd")      # currency normalised to "USD"
    total = price * 3                  # Money("59.97", "USD")
    total + Money("1", "EUR")          # raises CurrencyMismatchError
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN
from typing import Iterable, Union
import re

from moneybook.core.exceptions import (
    CurrencyMismatchError,
    InvalidAmountError,
    UnknownEntityError,
)


# ISO 4217 codes accepted at entry boundaries, with minor-unit precision
CURRENCIES = {
    "AED": 2, "ARS": 2, "AUD": 2, "BDT": 2, "BGN": 2, "BHD": 3, "BRL": 2,
    "CAD": 2, "CHF": 2, "CLP": 0, "CNY": 2, "COP": 2, "CZK": 2, "DKK": 2,
    "EGP": 2, "EUR": 2, "GBP": 2, "HKD": 2, "HUF": 2, "IDR": 2, "ILS": 2,
    "INR": 2, "ISK": 0, "JPY": 0, "KES": 2, "KRW": 0, "KWD": 3, "LKR": 2,
    "MXN": 2, "MYR": 2, "NGN": 2, "NOK": 2, "NPR": 2, "NZD": 2, "OMR": 3,
    "PHP": 2, "PKR": 2, "PLN": 2, "QAR": 2, "RON": 2, "RUB": 2, "SAR": 2,
    "SEK": 2, "SGD": 2, "THB": 2, "TRY": 2, "TWD": 2, "UAH": 2, "USD": 2,
    "VND": 0, "ZAR": 2,
}

AmountLike = Union[Decimal, int, str]

# Digit grouping accepted in amounts: "1,234,567.89" or Indian "12,34,567.89"
_GROUPED = re.compile(r"^[+-]?(\d{1,3}(,\d{3})+|\d{1,2}(,\d{2})*,\d{3})(\.\d*)?$")


def validate_currency(code: str) -> str:
    """
    Normalise and validate a currency code.

    Args:
        code: Currency code in any case, surrounding whitespace allowed

    Returns:
        Upper-case ISO code

    Raises:
        UnknownEntityError: If the code is not a supported ISO currency
    """
    if not isinstance(code, str):
        raise UnknownEntityError("currency", code)
    normalised = code.strip().upper()
    if normalised not in CURRENCIES:
        raise UnknownEntityError("currency", code)
    return normalised


def minor_units(code: str) -> int:
    """Number of decimal places in the currency's minor unit."""
    return CURRENCIES[validate_currency(code)]


def to_decimal(value: AmountLike) -> Decimal:
    """
    Convert a value to Decimal exactly.

    Floats are refused: their binary representation cannot be recovered
    exactly, so they must be passed as strings instead.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmountError(value, "binary floats are not accepted, pass a string or Decimal")
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, str):
        text = value.strip()
        if "," in text:
            if not _GROUPED.match(text):
                raise InvalidAmountError(value, "misplaced thousands separator")
            text = text.replace(",", "")
        try:
            result = Decimal(text)
        except InvalidOperation:
            raise InvalidAmountError(value, "not a decimal number")
    else:
        raise InvalidAmountError(value, f"unsupported type {type(value).__name__}")

    if not result.is_finite():
        raise InvalidAmountError(value, "must be finite")
    return result


@dataclass(frozen=True)
class Money:
    """An exact decimal amount in a single currency."""

    amount: Decimal
    currency: str

    def __post_init__(self):
        object.__setattr__(self, "amount", to_decimal(self.amount))
        object.__setattr__(self, "currency", validate_currency(self.currency))

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(Decimal("0"), currency)

    @classmethod
    def sum(cls, values: Iterable["Money"], currency: str) -> "Money":
        """Sum values that must all be in `currency`; empty input gives zero."""
        total = cls.zero(currency)
        for value in values:
            total = total + value
        return total

    @property
    def precision(self) -> Decimal:
        """Quantum for the currency's minor unit, e.g. Decimal('0.01')."""
        return Decimal(1).scaleb(-CURRENCIES[self.currency])

    def quantize(self) -> "Money":
        """Round half-even to the currency's minor unit."""
        return Money(self.amount.quantize(self.precision, rounding=ROUND_HALF_EVEN), self.currency)

    def is_zero(self) -> bool:
        return self.amount == 0

    def is_negative(self) -> bool:
        return self.amount < 0

    def is_positive(self) -> bool:
        return self.amount > 0

    def _check(self, other: "Money") -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Expected Money, got {type(other).__name__}")
        if other.currency != self.currency:
            raise CurrencyMismatchError(self.currency, other.currency)

    def __add__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> "Money":
        return Money(-self.amount, self.currency)

    def __abs__(self) -> "Money":
        return Money(abs(self.amount), self.currency)

    def __mul__(self, factor: AmountLike) -> "Money":
        if isinstance(factor, Money):
            raise TypeError("Cannot multiply Money by Money")
        return Money(self.amount * to_decimal(factor), self.currency)

    __rmul__ = __mul__

    def __truediv__(self, divisor: AmountLike) -> "Money":
        if isinstance(divisor, Money):
            raise TypeError("Cannot divide Money by Money")
        divisor = to_decimal(divisor)
        if divisor == 0:
            raise InvalidAmountError(divisor, "division by zero")
        return Money(self.amount / divisor, self.currency)

    def __lt__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount < other.amount

    def __le__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount <= other.amount

    def __gt__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount > other.amount

    def __ge__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount >= other.amount

    def __str__(self) -> str:
        return f"{self.currency} {self.amount}"

    def to_dict(self) -> dict:
        return {"amount": str(self.amount), "currency": self.currency}
