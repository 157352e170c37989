"""
Unit tests for money module.

Tests exact decimal amounts, currency validation and rounding.
"""

import pytest
from decimal import Decimal

from moneybook.core.money import Money, minor_units, to_decimal, validate_currency
from moneybook.core.exceptions import (
    CurrencyMismatchError,
    InvalidAmountError,
    UnknownEntityError,
)


class TestToDecimal:
    """Tests for amount parsing."""

    def test_string_with_thousands_separator(self):
        """Test that commas are stripped from string amounts."""
        assert to_decimal("1,234.50") == Decimal("1234.50")

    @pytest.mark.parametrize("text, expected", [
        ("-1,234,567.89", "-1234567.89"),
        ("12,34,567.89", "1234567.89"),
        ("1,00,000", "100000"),
    ])
    def test_digit_grouping(self, text, expected):
        assert to_decimal(text) == Decimal(expected)

    @pytest.mark.parametrize("text", ["1,2,3", "12,34", ",100", "1,000,00", "1.000,50"])
    def test_misplaced_separator_rejected(self, text):
        with pytest.raises(InvalidAmountError):
            to_decimal(text)

    def test_int_accepted(self):
        assert to_decimal(42) == Decimal("42")

    def test_float_rejected(self):
        """Test that binary floats are refused."""
        with pytest.raises(InvalidAmountError):
            to_decimal(0.1)

    def test_bool_rejected(self):
        with pytest.raises(InvalidAmountError):
            to_decimal(True)

    def test_garbage_rejected(self):
        with pytest.raises(InvalidAmountError):
            to_decimal("twelve")

    def test_non_finite_rejected(self):
        """Test NaN and Infinity are not amounts."""
        with pytest.raises(InvalidAmountError):
            to_decimal("NaN")
        with pytest.raises(InvalidAmountError):
            to_decimal(Decimal("Infinity"))


class TestCurrencyCodes:
    """Tests for ISO currency validation."""

    def test_normalised_to_upper(self):
        assert validate_currency(" usd ") == "USD"

    def test_unknown_code(self):
        """Test that unknown codes raise UnknownEntityError."""
        with pytest.raises(UnknownEntityError) as exc_info:
            validate_currency("XYZ")
        assert exc_info.value.entity_type == "currency"

    def test_minor_units(self):
        assert minor_units("USD") == 2
        assert minor_units("JPY") == 0
        assert minor_units("KWD") == 3


class TestMoney:
    """Tests for Money arithmetic."""

    def test_construction_normalises(self):
        money = Money("19.99", "usd")
        assert money.amount == Decimal("19.99")
        assert money.currency == "USD"

    def test_addition_same_currency(self):
        assert Money("1.10", "USD") + Money("2.20", "USD") == Money("3.30", "USD")

    def test_addition_different_currency_fails(self):
        """Test that mixing currencies without conversion raises."""
        with pytest.raises(CurrencyMismatchError):
            Money("1", "USD") + Money("1", "EUR")

    def test_comparison_different_currency_fails(self):
        with pytest.raises(CurrencyMismatchError):
            Money("1", "USD") < Money("2", "EUR")

    def test_multiply_and_divide(self):
        assert Money("19.99", "USD") * 3 == Money("59.97", "USD")
        assert (Money("10", "USD") / 4).amount == Decimal("2.5")

    def test_divide_by_zero(self):
        with pytest.raises(InvalidAmountError):
            Money("10", "USD") / 0

    def test_negation_and_abs(self):
        money = Money("-5.25", "EUR")
        assert -money == Money("5.25", "EUR")
        assert abs(money) == Money("5.25", "EUR")
        assert money.is_negative()

    def test_quantize_half_even(self):
        """Test banker's rounding to the minor unit."""
        assert Money("2.345", "USD").quantize().amount == Decimal("2.34")
        assert Money("2.355", "USD").quantize().amount == Decimal("2.36")

    def test_quantize_zero_decimal_currency(self):
        assert Money("100.5", "JPY").quantize().amount == Decimal("100")
        assert Money("101.5", "JPY").quantize().amount == Decimal("102")

    def test_sum(self):
        values = [Money("1.00", "USD"), Money("2.50", "USD")]
        assert Money.sum(values, "USD") == Money("3.50", "USD")
        assert Money.sum([], "USD").is_zero()

    def test_str(self):
        assert str(Money("12.34", "USD")) == "USD 12.34"

    def test_to_dict_keeps_exact_text(self):
        assert Money("0.10", "USD").to_dict() == {"amount": "0.10", "currency": "USD"}
