"""
Data health checks.

Read-only scan that reports problems the user has to fix by entering
more data (rates) or correcting entries:
- txn_currency_mismatch: transaction currency differs from its account
- missing_fx: non-base transaction without a usable rate on or before its date
- negative_envelope: an envelope month with negative available budget
"""

from dataclasses import dataclass
from datetime import date
from typing import List
import logging

from moneybook.core.exceptions import RateUnavailableError
from moneybook.core.ledger import Ledger
from moneybook.services.envelopes import EnvelopeEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DoctorIssue:
    """One finding."""
    kind: str
    detail: str

    def to_dict(self) -> dict:
        return {"kind": self.kind, "detail": self.detail}


class Doctor:
    """
    Usage:
        issues = Doctor(ledger, envelopes).run()
    """

    def __init__(self, ledger: Ledger, envelopes: EnvelopeEngine):
        self.ledger = ledger
        self.conn = ledger.conn
        self.envelopes = envelopes

    def run(self) -> List[DoctorIssue]:
        issues = []
        issues.extend(self.check_currency_mismatch())
        issues.extend(self.check_missing_fx())
        issues.extend(self.check_negative_envelopes())
        logger.info(f"Doctor found {len(issues)} issue(s)")
        return issues

    def check_currency_mismatch(self) -> List[DoctorIssue]:
        rows = self.conn.execute(
            """
            SELECT t.id, t.currency, a.name, a.currency AS account_currency
            FROM transactions t JOIN accounts a ON t.account_id = a.id
            WHERE t.currency != a.currency
            ORDER BY t.id
            """
        ).fetchall()
        return [
            DoctorIssue(
                "txn_currency_mismatch",
                f"transaction {row['id']} in {row['currency']} on account {row['name']} ({row['account_currency']})",
            )
            for row in rows
        ]

    def check_missing_fx(self) -> List[DoctorIssue]:
        base = self.ledger.base_currency
        converter = self.ledger.converter
        rows = self.conn.execute(
            "SELECT DISTINCT date, currency FROM transactions WHERE currency != ? ORDER BY date, currency",
            (base,),
        ).fetchall()

        issues = []
        for row in rows:
            if not converter.can_convert(row["currency"], base, date.fromisoformat(row["date"])):
                issues.append(DoctorIssue("missing_fx", f"{row['date']} {row['currency']}->{base}"))
        return issues

    def check_negative_envelopes(self) -> List[DoctorIssue]:
        issues = []
        for month in self.envelopes.active_months():
            for category in self.ledger.list_categories():
                try:
                    status = self.envelopes.status(category.id, month)
                except RateUnavailableError as e:
                    logger.debug(f"Envelope {category.name} {month} not computable: {e}")
                    continue
                if status.available.is_negative():
                    issues.append(DoctorIssue(
                        "negative_envelope",
                        f"{category.name} {month}: available {status.available}",
                    ))
        return issues
