"""
Custom exceptions for the moneybook core.

All moneybook exceptions inherit from MoneybookError for easy catching.
Each carries a machine-readable code plus the offending identifiers so
callers (CLI, importer, doctor) can report or skip without parsing text.
"""


class MoneybookError(Exception):
    """Base exception for all moneybook errors."""

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        self.code = code


class DatabaseError(MoneybookError):
    """Database operation errors."""

    def __init__(self, message: str, code: str = "DB_ERROR"):
        super().__init__(message, code)


class ValidationError(MoneybookError):
    """Data validation errors."""

    def __init__(self, message: str, field: str = None, code: str = "VALIDATION_ERROR"):
        super().__init__(message, code)
        self.field = field


class InvalidAmountError(MoneybookError):
    """Raised when an amount is negative, zero or inexact where that is not allowed."""

    def __init__(self, amount, reason: str = "must be positive", code: str = "INVALID_AMOUNT"):
        super().__init__(f"Invalid amount {amount}: {reason}", code)
        self.amount = amount
        self.reason = reason


class RateUnavailableError(MoneybookError):
    """
    Raised when no rate (direct, inverse or triangulated) exists on or
    before the requested date.

    Also used for security prices, in which case from_currency holds the
    ticker and to_currency the price currency.
    """

    def __init__(
        self,
        from_currency: str,
        to_currency: str,
        as_of: str,
        code: str = "RATE_UNAVAILABLE"
    ):
        super().__init__(
            f"No rate available for {from_currency}/{to_currency} on or before {as_of}",
            code
        )
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.as_of = as_of


class InsufficientLotsError(MoneybookError):
    """Raised when attempting to sell more units than the open lots hold."""

    def __init__(
        self,
        ticker: str,
        requested: str,
        available: str,
        code: str = "INSUFFICIENT_LOTS"
    ):
        super().__init__(
            f"Insufficient open lots for {ticker}: requested {requested}, available {available}",
            code
        )
        self.ticker = ticker
        self.requested = requested
        self.available = available


class UnknownEntityError(MoneybookError):
    """Raised for references to a nonexistent account, category, ticker or currency."""

    def __init__(self, entity_type: str, identifier, code: str = "UNKNOWN_ENTITY"):
        super().__init__(f"Unknown {entity_type}: {identifier}", code)
        self.entity_type = entity_type
        self.identifier = identifier


class CurrencyMismatchError(MoneybookError):
    """Raised when two amounts in different currencies are combined without conversion."""

    def __init__(self, expected: str, actual: str, code: str = "CURRENCY_MISMATCH"):
        super().__init__(f"Currency mismatch: expected {expected}, got {actual}", code)
        self.expected = expected
        self.actual = actual
