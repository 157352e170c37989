"""
Rate store - historical FX rates and security prices.

Rates are reference values published once per day and valid until
superseded, so lookups use the observation on the requested date or the
most recent one before it. A future observation is never used: it would
leak information that was not available on the transaction date.

Resolution order for a pair (A, B) as of date D:
1. Direct (A->B) or inverse (B->A, reciprocal), whichever was observed
   most recently on or before D (ties prefer direct)
2. Triangulation through the base currency:
   rate(A, B) = rate(A, base) / rate(B, base)

Observations are immutable once stored. External providers supply
(pair, date, rate) and (ticker, date, price) tuples; the store never
fetches anything itself.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple
import logging
import sqlite3

from moneybook.core.database import atomic
from moneybook.core.exceptions import (
    CurrencyMismatchError,
    InvalidAmountError,
    RateUnavailableError,
    UnknownEntityError,
    ValidationError,
)
from moneybook.core.money import Money, to_decimal, validate_currency

logger = logging.getLogger(__name__)


def _as_date(value) -> date:
    return date.fromisoformat(value) if isinstance(value, str) else value


@dataclass(frozen=True)
class RateObservation:
    """1 unit of `base` = `rate` units of `quote` on `date`."""

    base: str
    quote: str
    date: date
    rate: Decimal
    source: str = "MANUAL"

    @property
    def pair(self) -> Tuple[str, str]:
        return (self.base, self.quote)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "RateObservation":
        """Create RateObservation from database row."""
        return cls(
            base=row["base"],
            quote=row["quote"],
            date=_as_date(row["date"]),
            rate=Decimal(row["rate"]),
            source=row["source"],
        )


@dataclass(frozen=True)
class PriceObservation:
    """Price of one unit of `ticker` on `date`."""

    ticker: str
    date: date
    price: Money
    source: str = "MANUAL"


@dataclass(frozen=True)
class ResolvedRate:
    """
    A usable rate for (from_currency -> to_currency) plus how it was found.

    method is one of "direct", "inverse" or "triangulated"; observations
    holds the stored rows that fed the calculation, for audit display.
    """

    from_currency: str
    to_currency: str
    as_of: date
    rate: Decimal
    method: str
    observations: Tuple[RateObservation, ...] = field(default_factory=tuple)

    @property
    def observed_on(self) -> Optional[date]:
        """Oldest observation date used (the staleness of the rate)."""
        if not self.observations:
            return None
        return min(obs.date for obs in self.observations)


class RateStore:
    """
    Stored FX rates and security prices with as-of lookup.

    Usage:
        store = RateStore(conn, base_currency="INR")
        store.add_rate(date(2025, 8, 10), "USD", "INR", Decimal("84.00"))
        resolved = store.resolve("USD", "INR", date(2025, 8, 12))
        # resolved.rate == Decimal("84.00"), resolved.method == "direct"
    """

    def __init__(
        self,
        db_connection: sqlite3.Connection,
        base_currency: str = "USD",
        max_lookback_days: Optional[int] = None,
    ):
        """
        Initialize the rate store.

        Args:
            db_connection: SQLite database connection
            base_currency: Hub currency used for triangulation
            max_lookback_days: Limit on how far back a prior-date fallback
                may reach; None means unlimited
        """
        self.conn = db_connection
        self.base_currency = validate_currency(base_currency)
        if max_lookback_days is not None and max_lookback_days < 0:
            raise ValidationError("max_lookback_days must be >= 0", field="max_lookback_days")
        self.max_lookback_days = max_lookback_days

    # ------------------------------------------------------------------
    # FX rates
    # ------------------------------------------------------------------

    def add_rate(
        self,
        rate_date: date,
        base: str,
        quote: str,
        rate,
        source: str = "MANUAL",
    ) -> bool:
        """
        Store a rate observation.

        Args:
            rate_date: Date the rate was published for
            base: Currency being priced
            quote: Currency the rate is expressed in
            rate: Units of quote per 1 base (must be > 0)
            source: Provider label

        Returns:
            True if stored, False if an identical observation already existed

        Raises:
            InvalidAmountError: If rate is not positive
            ValidationError: If base == quote, or the (pair, date) already
                holds a different rate
        """
        base = validate_currency(base)
        quote = validate_currency(quote)
        if base == quote:
            raise ValidationError(f"Rate pair must differ: {base}/{quote}", field="quote")
        rate = to_decimal(rate)
        if rate <= 0:
            raise InvalidAmountError(rate, "rate must be positive")

        with atomic(self.conn):
            existing = self.get_rate(base, quote, rate_date)
            if existing is not None:
                if existing.rate == rate:
                    return False
                raise ValidationError(
                    f"Rate {base}/{quote} on {rate_date} already recorded as {existing.rate}",
                    field="rate",
                )

            self.conn.execute(
                """
                INSERT INTO fx_rates (date, base, quote, rate, source)
                VALUES (?, ?, ?, ?, ?)
                """,
                (rate_date.isoformat(), base, quote, str(rate), source),
            )

        logger.debug(f"Added rate {base}/{quote} {rate} on {rate_date} ({source})")
        return True

    def bulk_add_rates(
        self,
        rates: Iterable[tuple],
        source: str = "MANUAL",
    ) -> int:
        """
        Add multiple rate observations in one transaction.

        Args:
            rates: Iterable of (date, base, quote, rate) tuples
            source: Provider label

        Returns:
            Number of new observations stored
        """
        count = 0
        with atomic(self.conn):
            for rate_date, base, quote, rate in rates:
                if self.add_rate(_as_date(rate_date), base, quote, rate, source):
                    count += 1
        return count

    def get_rate(self, base: str, quote: str, rate_date: date) -> Optional[RateObservation]:
        """Exact-date lookup for a stored pair; None if not stored."""
        cursor = self.conn.execute(
            """
            SELECT * FROM fx_rates
            WHERE base = ? AND quote = ? AND date = ?
            """,
            (validate_currency(base), validate_currency(quote), rate_date.isoformat()),
        )
        row = cursor.fetchone()
        return RateObservation.from_row(row) if row else None

    def get_rate_on_or_before(
        self,
        base: str,
        quote: str,
        as_of: date,
    ) -> Optional[RateObservation]:
        """
        Most recent stored observation for the pair dated on or before as_of.

        Honours max_lookback_days when set. Never looks forward.
        """
        params = [validate_currency(base), validate_currency(quote), as_of.isoformat()]
        sql = """
            SELECT * FROM fx_rates
            WHERE base = ? AND quote = ? AND date <= ?
        """
        if self.max_lookback_days is not None:
            sql += " AND date >= ?"
            params.append((as_of - timedelta(days=self.max_lookback_days)).isoformat())
        sql += " ORDER BY date DESC LIMIT 1"

        row = self.conn.execute(sql, params).fetchone()
        return RateObservation.from_row(row) if row else None

    def _direct_or_inverse(
        self,
        from_currency: str,
        to_currency: str,
        as_of: date,
    ) -> Optional[ResolvedRate]:
        direct = self.get_rate_on_or_before(from_currency, to_currency, as_of)
        inverse = self.get_rate_on_or_before(to_currency, from_currency, as_of)

        if direct is not None and (inverse is None or direct.date >= inverse.date):
            return ResolvedRate(
                from_currency, to_currency, as_of, direct.rate, "direct", (direct,)
            )
        if inverse is not None:
            return ResolvedRate(
                from_currency, to_currency, as_of, Decimal(1) / inverse.rate, "inverse", (inverse,)
            )
        return None

    def resolve(
        self,
        from_currency: str,
        to_currency: str,
        as_of: date,
        via: Optional[str] = None,
    ) -> ResolvedRate:
        """
        Find the rate converting from_currency into to_currency as of a date.

        Args:
            via: Triangulation hub; defaults to the store's base currency

        Raises:
            RateUnavailableError: If neither a direct, inverse nor
                triangulated rate exists on or before as_of
        """
        from_currency = validate_currency(from_currency)
        to_currency = validate_currency(to_currency)

        if from_currency == to_currency:
            return ResolvedRate(from_currency, to_currency, as_of, Decimal(1), "identity")

        resolved = self._direct_or_inverse(from_currency, to_currency, as_of)
        if resolved is not None:
            if resolved.observed_on and resolved.observed_on < as_of:
                logger.debug(
                    f"Using prior rate for {from_currency}/{to_currency}: "
                    f"{resolved.observed_on} for {as_of}"
                )
            return resolved

        base = validate_currency(via) if via else self.base_currency
        if base not in (from_currency, to_currency):
            leg_from = self._direct_or_inverse(from_currency, base, as_of)
            leg_to = self._direct_or_inverse(to_currency, base, as_of)
            if leg_from is not None and leg_to is not None:
                return ResolvedRate(
                    from_currency,
                    to_currency,
                    as_of,
                    leg_from.rate / leg_to.rate,
                    "triangulated",
                    leg_from.observations + leg_to.observations,
                )

        raise RateUnavailableError(from_currency, to_currency, as_of.isoformat())

    def get_rates_for_period(
        self,
        base: str,
        quote: str,
        start_date: date,
        end_date: date,
    ) -> List[RateObservation]:
        """All stored observations of a pair within a date range, oldest first."""
        cursor = self.conn.execute(
            """
            SELECT * FROM fx_rates
            WHERE base = ? AND quote = ? AND date >= ? AND date <= ?
            ORDER BY date
            """,
            (
                validate_currency(base),
                validate_currency(quote),
                start_date.isoformat(),
                end_date.isoformat(),
            ),
        )
        return [RateObservation.from_row(row) for row in cursor.fetchall()]

    def list_rates(self, limit: Optional[int] = 50) -> List[RateObservation]:
        """Latest observations across all pairs, newest first."""
        sql = "SELECT * FROM fx_rates ORDER BY date DESC, base, quote"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        return [RateObservation.from_row(row) for row in self.conn.execute(sql, params)]

    def currencies(self) -> List[str]:
        """All currency codes that appear in stored observations."""
        cursor = self.conn.execute(
            "SELECT base AS ccy FROM fx_rates UNION SELECT quote FROM fx_rates ORDER BY ccy"
        )
        return [row[0] for row in cursor.fetchall()]

    # ------------------------------------------------------------------
    # Security prices
    # ------------------------------------------------------------------

    def _asset_row(self, ticker: str) -> sqlite3.Row:
        row = self.conn.execute(
            "SELECT id, ticker, currency FROM assets WHERE ticker = ?",
            (ticker.strip(),),
        ).fetchone()
        if row is None:
            raise UnknownEntityError("ticker", ticker)
        return row

    def add_price(
        self,
        ticker: str,
        price_date: date,
        price: Money,
        source: str = "MANUAL",
    ) -> bool:
        """
        Store a price observation for a registered asset.

        Returns:
            True if stored, False if the identical observation already existed

        Raises:
            UnknownEntityError: If the ticker is not a registered asset
            CurrencyMismatchError: If price currency differs from the asset's
            InvalidAmountError: If the price is negative
            ValidationError: If a different price is already stored for that date
        """
        asset = self._asset_row(ticker)
        if price.currency != asset["currency"]:
            raise CurrencyMismatchError(asset["currency"], price.currency)
        if price.is_negative():
            raise InvalidAmountError(price.amount, "price must not be negative")

        with atomic(self.conn):
            existing = self.conn.execute(
                "SELECT price FROM prices WHERE asset_id = ? AND date = ?",
                (asset["id"], price_date.isoformat()),
            ).fetchone()
            if existing is not None:
                if Decimal(existing["price"]) == price.amount:
                    return False
                raise ValidationError(
                    f"Price for {asset['ticker']} on {price_date} already recorded as {existing['price']}",
                    field="price",
                )
            self.conn.execute(
                """
                INSERT INTO prices (asset_id, date, price, currency, source)
                VALUES (?, ?, ?, ?, ?)
                """,
                (asset["id"], price_date.isoformat(), str(price.amount), price.currency, source),
            )

        logger.debug(f"Added price {asset['ticker']} {price} on {price_date} ({source})")
        return True

    def get_price(self, ticker: str, as_of: date) -> PriceObservation:
        """
        Price of a ticker on as_of, or the most recent one before it.

        Raises:
            UnknownEntityError: If the ticker is not registered
            RateUnavailableError: If no price exists on or before as_of
        """
        asset = self._asset_row(ticker)
        params = [asset["id"], as_of.isoformat()]
        sql = "SELECT * FROM prices WHERE asset_id = ? AND date <= ?"
        if self.max_lookback_days is not None:
            sql += " AND date >= ?"
            params.append((as_of - timedelta(days=self.max_lookback_days)).isoformat())
        sql += " ORDER BY date DESC LIMIT 1"

        row = self.conn.execute(sql, params).fetchone()
        if row is None:
            raise RateUnavailableError(asset["ticker"], asset["currency"], as_of.isoformat())
        return PriceObservation(
            ticker=asset["ticker"],
            date=_as_date(row["date"]),
            price=Money(Decimal(row["price"]), row["currency"]),
            source=row["source"],
        )

    def list_prices(self, ticker: Optional[str] = None, limit: Optional[int] = 50) -> List[PriceObservation]:
        """Stored prices, newest first, optionally for one ticker."""
        sql = """
            SELECT a.ticker, p.date, p.price, p.currency, p.source
            FROM prices p JOIN assets a ON p.asset_id = a.id
        """
        params: list = []
        if ticker is not None:
            sql += " WHERE a.id = ?"
            params.append(self._asset_row(ticker)["id"])
        sql += " ORDER BY p.date DESC, a.ticker"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        return [
            PriceObservation(
                ticker=row["ticker"],
                date=_as_date(row["date"]),
                price=Money(Decimal(row["price"]), row["currency"]),
                source=row["source"],
            )
            for row in self.conn.execute(sql, params)
        ]
