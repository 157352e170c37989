"""
Portfolio Service.

Provides:
1. Buy/sell trades persisted alongside the FIFO lots they open or consume
2. Holdings valuation at the latest stored price on or before a date
3. Realized gains history, filtered by calendar or financial year
4. Gains summary per financial year

Prices come from the rate store; nothing here fetches market data.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Union
import logging
import sqlite3

from moneybook.core.database import atomic
from moneybook.core.exceptions import (
    CurrencyMismatchError,
    InsufficientLotsError,
    RateUnavailableError,
)
from moneybook.core.ledger import Ledger
from moneybook.core.models import get_financial_year, get_fy_dates
from moneybook.core.money import Money, to_decimal
from moneybook.core.rates import PriceObservation
from moneybook.services.lots import LotLedger, RealizedGain

logger = logging.getLogger(__name__)


@dataclass
class HoldingValue:
    """Valuation of one ticker's open lots, in base currency."""
    ticker: str
    quantity: Decimal
    cost_basis: Money
    price: Optional[PriceObservation] = None
    value: Optional[Money] = None

    @property
    def unrealized_gain(self) -> Optional[Money]:
        if self.value is None:
            return None
        return self.value - self.cost_basis

    def to_dict(self) -> dict:
        return {
            "ticker": self.ticker,
            "quantity": str(self.quantity),
            "cost_basis": str(self.cost_basis.amount),
            "price": str(self.price.price.amount) if self.price else None,
            "price_date": self.price.date.isoformat() if self.price else None,
            "value": str(self.value.amount) if self.value is not None else None,
            "unrealized_gain": str(self.unrealized_gain.amount) if self.value is not None else None,
            "currency": self.cost_basis.currency,
        }


@dataclass
class GainsSummary:
    """Realized gains aggregated over one financial year."""
    financial_year: str
    proceeds: Money
    cost_basis: Money
    gain: Money
    disposals: int

    def to_dict(self) -> dict:
        return {
            "financial_year": self.financial_year,
            "proceeds": str(self.proceeds.amount),
            "cost_basis": str(self.cost_basis.amount),
            "gain": str(self.gain.amount),
            "currency": self.gain.currency,
            "disposals": self.disposals,
        }


class PortfolioService:
    """
    Trades, lots and valuation backed by the database.

    Example:
        portfolio = PortfolioService(conn, ledger)
        portfolio.buy("VTI", "Brokerage", date(2025, 1, 2), Decimal("10"), Decimal("200"))
        gains = portfolio.sell("VTI", "Brokerage", date(2025, 6, 2), Decimal("4"), Decimal("230"))
        holdings = portfolio.holdings(date(2025, 6, 30))
    """

    def __init__(self, db_connection: sqlite3.Connection, ledger: Ledger):
        """
        Initialize and load persisted lots and gains.

        Args:
            db_connection: SQLite connection object
            ledger: Ledger providing assets, accounts and the converter
        """
        self.conn = db_connection
        self.ledger = ledger
        self.converter = ledger.converter
        self.rates = ledger.converter.rates
        self._load()

    def _load(self) -> None:
        self.lots = LotLedger(self.converter)
        rows = self.conn.execute(
            """
            SELECT l.*, a.ticker FROM lots l
            JOIN assets a ON l.asset_id = a.id
            ORDER BY l.open_date, l.sequence
            """
        ).fetchall()
        for row in rows:
            currency = row["currency"]
            self.lots.restore_lot(
                ticker=row["ticker"],
                open_date=date.fromisoformat(row["open_date"]),
                quantity=Decimal(row["quantity"]),
                remaining=Decimal(row["remaining"]),
                unit_cost=Money(Decimal(row["unit_cost"]), currency),
                fees=Money(Decimal(row["fees"]), currency),
                sequence=row["sequence"],
            )

        gains = self.conn.execute(
            """
            SELECT g.*, a.ticker FROM realized_gains g
            JOIN assets a ON g.asset_id = a.id
            ORDER BY g.sell_date, g.id
            """
        ).fetchall()
        for row in gains:
            currency = row["currency"]
            self.lots.restore_gain(RealizedGain(
                ticker=row["ticker"],
                sell_date=date.fromisoformat(row["sell_date"]),
                open_date=date.fromisoformat(row["open_date"]),
                quantity=Decimal(row["quantity"]),
                proceeds=Money(Decimal(row["proceeds"]), currency),
                cost_basis=Money(Decimal(row["cost_basis"]), currency),
                gain=Money(Decimal(row["gain"]), currency),
            ))
        logger.debug(f"Loaded {len(rows)} lot(s) and {len(gains)} realized gain(s)")

    def _price(self, value, currency: str) -> Money:
        if isinstance(value, Money):
            if value.currency != currency:
                raise CurrencyMismatchError(currency, value.currency)
            return value
        return Money(to_decimal(value), currency)

    def _insert_trade(self, side, asset_id, account_id, trade_date, quantity, price, fees, note) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO trades (date, asset_id, account_id, side, quantity, price, fees, note)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                trade_date.isoformat(),
                asset_id,
                account_id,
                side,
                str(quantity),
                str(price.amount),
                str(fees.amount),
                note,
            ),
        )
        return cursor.lastrowid

    def buy(
        self,
        ticker: str,
        account: Union[str, int],
        trade_date: date,
        quantity,
        price,
        fees=0,
        note: Optional[str] = None,
    ):
        """
        Record a buy trade and open a lot.

        Args:
            price: Unit price in the asset currency (Decimal or Money)
            fees: Total trade fees in the asset currency

        Returns:
            The opened Lot
        """
        asset = self.ledger.get_asset(ticker)
        acct = self.ledger.get_account(account)
        price = self._price(price, asset.currency)
        fees = self._price(fees, asset.currency)
        quantity = to_decimal(quantity)

        try:
            with atomic(self.conn):
                trade_id = self._insert_trade("buy", asset.id, acct.id, trade_date, quantity, price, fees, note)
                lot = self.lots.buy(asset.ticker, trade_date, quantity, price, fees)
                self.conn.execute(
                    """
                    INSERT INTO lots (asset_id, trade_id, open_date, quantity, remaining,
                                      unit_cost, fees, currency, sequence)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        asset.id,
                        trade_id,
                        trade_date.isoformat(),
                        str(lot.quantity),
                        str(lot.remaining),
                        str(lot.unit_cost.amount),
                        str(lot.fees.amount),
                        lot.currency,
                        lot.sequence,
                    ),
                )
        except Exception:
            self._load()
            raise

        logger.info(f"Bought {quantity} {asset.ticker} @ {price} on {trade_date}")
        return lot

    def sell(
        self,
        ticker: str,
        account: Union[str, int],
        trade_date: date,
        quantity,
        price,
        fees=0,
        note: Optional[str] = None,
    ) -> List[RealizedGain]:
        """
        Record a sell trade, consume lots FIFO and store the realized gains.

        Raises:
            InsufficientLotsError: If open quantity is short (nothing recorded)
            RateUnavailableError: If a conversion fails (nothing recorded)
        """
        asset = self.ledger.get_asset(ticker)
        acct = self.ledger.get_account(account)
        price = self._price(price, asset.currency)
        fees = self._price(fees, asset.currency)
        quantity = to_decimal(quantity)
        if asset.ticker not in self.lots:
            raise InsufficientLotsError(asset.ticker, str(quantity), "0")

        try:
            with atomic(self.conn):
                trade_id = self._insert_trade("sell", asset.id, acct.id, trade_date, quantity, price, fees, note)
                gains = self.lots.sell(asset.ticker, trade_date, quantity, price * quantity, fees)
                for gain in gains:
                    row = self.conn.execute(
                        "SELECT id, remaining FROM lots WHERE asset_id = ? AND sequence = ?",
                        (asset.id, gain.lot_sequence),
                    ).fetchone()
                    self.conn.execute(
                        "UPDATE lots SET remaining = ? WHERE id = ?",
                        (str(Decimal(row["remaining"]) - gain.quantity), row["id"]),
                    )
                    self.conn.execute(
                        """
                        INSERT INTO realized_gains (asset_id, trade_id, sell_date, open_date, quantity,
                                                    proceeds, cost_basis, gain, currency)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            asset.id,
                            trade_id,
                            trade_date.isoformat(),
                            gain.open_date.isoformat(),
                            str(gain.quantity),
                            str(gain.proceeds.amount),
                            str(gain.cost_basis.amount),
                            str(gain.gain.amount),
                            gain.gain.currency,
                        ),
                    )
        except Exception:
            self._load()
            raise

        logger.info(f"Sold {quantity} {asset.ticker} @ {price} on {trade_date}: {len(gains)} lot portion(s)")
        return gains

    def holdings(self, as_of: Optional[date] = None) -> List[HoldingValue]:
        """
        Value open lots at the latest price on or before as_of.

        Tickers without any usable price are returned with value=None.
        """
        if as_of is None:
            as_of = date.today()

        result = []
        for ticker in self.lots.tickers():
            holding = HoldingValue(
                ticker=ticker,
                quantity=self.lots.open_quantity(ticker),
                cost_basis=self.lots.cost_basis(ticker),
            )
            try:
                holding.price = self.rates.get_price(ticker, as_of)
            except RateUnavailableError:
                logger.warning(f"No price for {ticker} on or before {as_of}")
            else:
                holding.value = self.lots.value(ticker, holding.price.price, as_of)
            result.append(holding)
        return result

    def realized_gains(
        self,
        ticker: Optional[str] = None,
        year: Optional[int] = None,
        financial_year: Optional[str] = None,
        fy_start_month: int = 1,
    ) -> List[RealizedGain]:
        """Realized gains, optionally limited to a calendar or financial year."""
        gains = self.lots.realized_gains(ticker)
        if year is not None:
            gains = [g for g in gains if g.sell_date.year == year]
        if financial_year is not None:
            start, end = get_fy_dates(financial_year, fy_start_month)
            gains = [g for g in gains if start <= g.sell_date <= end]
        return gains

    def gains_summary(self, fy_start_month: int = 1) -> List[GainsSummary]:
        """Realized gains per financial year, newest first."""
        buckets: Dict[str, List[RealizedGain]] = {}
        for gain in self.lots.realized_gains():
            fy = get_financial_year(gain.sell_date, fy_start_month)
            buckets.setdefault(fy, []).append(gain)

        summaries = []
        for fy in sorted(buckets, reverse=True):
            gains = buckets[fy]
            currency = gains[0].gain.currency
            summaries.append(GainsSummary(
                financial_year=fy,
                proceeds=Money.sum((g.proceeds for g in gains), currency),
                cost_basis=Money.sum((g.cost_basis for g in gains), currency),
                gain=Money.sum((g.gain for g in gains), currency),
                disposals=len(gains),
            ))
        return summaries
