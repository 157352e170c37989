"""
Shared pytest fixtures for moneybook tests.

Provides database connections, a ledger with common accounts and
categories, and the service engines built on top of it.
"""

import pytest
import sys
from pathlib import Path
from datetime import date
from decimal import Decimal

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from moneybook.core.database import DatabaseManager
from moneybook.core.ledger import Ledger
from moneybook.services.envelopes import EnvelopeEngine
from moneybook.services.rules import RuleEngine


# Test password for encrypted database
TEST_DB_PASSWORD = "test_password_123"


@pytest.fixture
def db_manager():
    """Provide a fresh DatabaseManager instance for each test."""
    # Reset singleton to ensure clean state
    DatabaseManager.reset_instance()
    manager = DatabaseManager()
    yield manager
    # Cleanup
    manager.close()
    DatabaseManager.reset_instance()


@pytest.fixture
def db_connection(db_manager):
    """Provide an initialized in-memory database connection."""
    conn = db_manager.init(":memory:", TEST_DB_PASSWORD)
    yield conn
    # Connection is closed by db_manager fixture


@pytest.fixture
def ledger(db_connection):
    """Empty ledger with USD base currency."""
    return Ledger(db_connection)


@pytest.fixture
def rates(ledger):
    """The ledger's rate store."""
    return ledger.converter.rates


@pytest.fixture
def inr_ledger(ledger):
    """
    Ledger with INR base, a USD card, an INR savings account and
    the USD/INR rate for August 2025.
    """
    ledger.set_base_currency("INR")
    ledger.add_account("Chase", "credit", "USD")
    ledger.add_account("HDFC", "savings", "INR")
    ledger.add_category("Groceries")
    ledger.add_category("Dining")
    ledger.converter.rates.add_rate(date(2025, 8, 1), "USD", "INR", Decimal("84.00"))
    return ledger


@pytest.fixture
def usd_ledger(ledger):
    """Ledger with USD base, one checking account and two categories."""
    ledger.add_account("Checking", "checking", "USD")
    ledger.add_category("Groceries")
    ledger.add_category("Dining")
    return ledger


@pytest.fixture
def envelopes(usd_ledger):
    """Envelope engine over the USD ledger (floor policy)."""
    return EnvelopeEngine(usd_ledger.conn, usd_ledger)


@pytest.fixture
def rules(usd_ledger):
    """Rule engine over the USD ledger."""
    return RuleEngine(usd_ledger.conn, usd_ledger)
