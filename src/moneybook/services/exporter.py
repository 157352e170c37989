"""
Transaction export.

Formats:
- csv: one row per transaction (pandas)
- json: list of objects, amounts as strings so decimals survive exactly
- xlsx: "Transactions" sheet with header styling and auto-filter (openpyxl)
"""

from pathlib import Path
from typing import List, Optional, Union
import json
import logging

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from moneybook.core.exceptions import ValidationError
from moneybook.core.ledger import Ledger
from moneybook.core.models import Transaction

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("csv", "json", "xlsx")
EXPORT_COLUMNS = ["date", "account", "payee", "amount", "currency", "category", "note"]


def _records(transactions: List[Transaction]) -> List[dict]:
    return [
        {
            "date": txn.date.isoformat(),
            "account": txn.account_name,
            "payee": txn.payee,
            "amount": str(txn.amount.amount),
            "currency": txn.amount.currency,
            "category": txn.category_name,
            "note": txn.memo,
        }
        for txn in transactions
    ]


class TransactionExporter:
    """
    Write ledger transactions to a file, oldest first.

    Usage:
        exporter = TransactionExporter(ledger)
        exporter.export_transactions(Path("out.csv"), "csv")
    """

    def __init__(self, ledger: Ledger):
        self.ledger = ledger

    def export_transactions(
        self,
        path: Union[str, Path],
        fmt: Optional[str] = None,
        month: Optional[str] = None,
        account=None,
    ) -> int:
        """
        Export transactions.

        Args:
            path: Output file; parent directories are created
            fmt: csv, json or xlsx; inferred from the suffix when omitted
            month: Optional "YYYY-MM" filter
            account: Optional account name or id filter

        Returns:
            Number of transactions written

        Raises:
            ValidationError: If the format is unknown
        """
        path = Path(path)
        fmt = (fmt or path.suffix.lstrip(".")).strip().lower()
        if fmt not in SUPPORTED_FORMATS:
            raise ValidationError(
                f"Unknown format: {fmt} (use {'|'.join(SUPPORTED_FORMATS)})", field="format"
            )

        transactions = self.ledger.list_transactions(month=month, account=account)
        transactions.reverse()
        records = _records(transactions)

        path.parent.mkdir(parents=True, exist_ok=True)
        if fmt == "csv":
            df = pd.DataFrame(records, columns=EXPORT_COLUMNS)
            df.to_csv(path, index=False)
        elif fmt == "json":
            with open(path, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2)
        else:
            self._write_xlsx(path, transactions)

        logger.info(f"Exported {len(records)} transaction(s) to {path}")
        return len(records)

    def _write_xlsx(self, path: Path, transactions: List[Transaction]) -> None:
        wb = Workbook()
        ws = wb.active
        ws.title = "Transactions"

        header_font = Font(bold=True, color="FFFFFF")
        header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
        for col, header in enumerate(EXPORT_COLUMNS, start=1):
            cell = ws.cell(row=1, column=col, value=header.title())
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = Alignment(horizontal="center")

        for row_idx, txn in enumerate(transactions, start=2):
            ws.cell(row=row_idx, column=1, value=txn.date)
            ws.cell(row=row_idx, column=2, value=txn.account_name)
            ws.cell(row=row_idx, column=3, value=txn.payee)
            amount_cell = ws.cell(row=row_idx, column=4, value=txn.amount.amount)
            amount_cell.number_format = "#,##0.00"
            ws.cell(row=row_idx, column=5, value=txn.amount.currency)
            ws.cell(row=row_idx, column=6, value=txn.category_name or "")
            ws.cell(row=row_idx, column=7, value=txn.memo or "")

        widths = [12, 20, 30, 14, 10, 20, 30]
        for col, width in enumerate(widths, start=1):
            ws.column_dimensions[get_column_letter(col)].width = width
        ws.auto_filter.ref = f"A1:{get_column_letter(len(EXPORT_COLUMNS))}{max(len(transactions) + 1, 1)}"
        ws.freeze_panes = "A2"

        wb.save(path)
