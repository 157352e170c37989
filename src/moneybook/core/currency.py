"""
Currency conversion using the rate store.

A conversion multiplies the source amount by the resolved rate using full
Decimal precision and rounds exactly once, half-even, to the target
currency's minor unit. Rates are never rounded on their own and intermediate
triangulation legs keep full precision, so rounding error cannot compound.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Tuple
import logging

from moneybook.core.exceptions import RateUnavailableError
from moneybook.core.money import Money, validate_currency
from moneybook.core.rates import RateObservation, RateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Conversion:
    """A performed conversion with the rate and observations behind it."""

    source: Money
    result: Money
    rate: Decimal
    method: str
    as_of: date
    observations: Tuple[RateObservation, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "source": self.source.to_dict(),
            "result": self.result.to_dict(),
            "rate": str(self.rate),
            "method": self.method,
            "as_of": self.as_of.isoformat(),
            "observations": [
                {
                    "pair": f"{obs.base}/{obs.quote}",
                    "date": obs.date.isoformat(),
                    "rate": str(obs.rate),
                }
                for obs in self.observations
            ],
        }


class CurrencyConverter:
    """
    Convert Money between currencies as of a date.

    Usage:
        converter = CurrencyConverter(rate_store, "INR")
        converter.convert(Money("84.00", "USD"), "INR", date(2025, 8, 12))
        # Money("7056.00", "INR") with 1 USD = 84.00 INR
    """

    def __init__(self, rate_store: RateStore, base_currency: str = "USD"):
        """
        Initialize the converter.

        Args:
            rate_store: Source of rate observations
            base_currency: Reporting currency and triangulation hub
        """
        self.rates = rate_store
        self.base_currency = validate_currency(base_currency)

    def convert_detailed(self, amount: Money, to_currency: str, as_of: date) -> Conversion:
        """
        Convert and return the audit record.

        Identity conversions return the amount unchanged (no rounding).

        Raises:
            RateUnavailableError: If no usable rate exists on or before as_of
        """
        to_currency = validate_currency(to_currency)
        if amount.currency == to_currency:
            return Conversion(amount, amount, Decimal(1), "identity", as_of)

        resolved = self.rates.resolve(amount.currency, to_currency, as_of, via=self.base_currency)
        result = Money(amount.amount * resolved.rate, to_currency)
        result = Money(
            result.amount.quantize(result.precision, rounding=ROUND_HALF_EVEN),
            to_currency,
        )
        return Conversion(
            source=amount,
            result=result,
            rate=resolved.rate,
            method=resolved.method,
            as_of=as_of,
            observations=resolved.observations,
        )

    def convert(self, amount: Money, to_currency: str, as_of: date) -> Money:
        """
        Convert amount into to_currency using the rate valid on as_of.

        Args:
            amount: Money to convert
            to_currency: Target currency code
            as_of: Date whose rate applies (on-or-before fallback)

        Returns:
            Converted Money rounded half-even to the target minor unit

        Raises:
            RateUnavailableError: If no usable rate exists
        """
        return self.convert_detailed(amount, to_currency, as_of).result

    def to_base(self, amount: Money, as_of: date) -> Money:
        """Convert into the base currency."""
        return self.convert(amount, self.base_currency, as_of)

    def can_convert(self, from_currency: str, to_currency: str, as_of: date) -> bool:
        """True when a direct, inverse or triangulated rate is available."""
        try:
            self.rates.resolve(from_currency, to_currency, as_of, via=self.base_currency)
        except RateUnavailableError:
            return False
        return True
