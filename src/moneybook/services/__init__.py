"""Services module for moneybook business logic.

Provides services for:
- Envelopes: per (category, month) budgeting with rollover, budget reports
- Lots: FIFO lot matching and realized gains
- Portfolio: persisted trades, holdings valuation, gains summaries
- Rules: regex categorization with payee rewrite
- Importer / Exporter: CSV import, CSV/JSON/XLSX export
- Doctor: data health checks
"""

from .envelopes import (
    BudgetLine,
    EnvelopeEngine,
    EnvelopeState,
    EnvelopeStatus,
    EnvelopeTotals,
    RolloverPolicy,
)
from .lots import Lot, LotLedger, RealizedGain, TickerLots
from .portfolio import PortfolioService, HoldingValue, GainsSummary
from .rules import RuleEngine, Rule, RuleMatch
from .importer import TransactionImporter, ImportResult, RowError
from .exporter import TransactionExporter, SUPPORTED_FORMATS
from .doctor import Doctor, DoctorIssue

__all__ = [
    # Budgeting
    "BudgetLine",
    "EnvelopeEngine",
    "EnvelopeState",
    "EnvelopeStatus",
    "EnvelopeTotals",
    "RolloverPolicy",
    # Investments
    "Lot",
    "LotLedger",
    "RealizedGain",
    "TickerLots",
    "PortfolioService",
    "HoldingValue",
    "GainsSummary",
    # Ingestion
    "RuleEngine",
    "Rule",
    "RuleMatch",
    "TransactionImporter",
    "ImportResult",
    "RowError",
    "TransactionExporter",
    "SUPPORTED_FORMATS",
    # Health
    "Doctor",
    "DoctorIssue",
]
