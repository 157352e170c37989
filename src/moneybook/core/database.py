"""
SQLCipher database initialization and connection management.

Provides the (optionally encrypted) SQLite store behind the ledger, rate
store, envelopes and lot ledger. Uses singleton pattern for connection
management.

Thread Safety Notes:
- Uses check_same_thread=False for multi-threaded access
- WAL mode is enabled for better concurrent read performance
- Use the transaction() context manager for atomic operations
- Mutating services add their own keyed locks on top (see core.locks)
"""

from pathlib import Path
from typing import Optional
from contextlib import contextmanager
import itertools
import logging
import threading

try:
    import sqlcipher3 as sqlite3
    HAS_SQLCIPHER = True
except ImportError:
    import sqlite3
    HAS_SQLCIPHER = False

from moneybook.core.exceptions import DatabaseError, MoneybookError

logger = logging.getLogger(__name__)


# Decimal values are stored as TEXT to keep them exact
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT UNIQUE NOT NULL,
    account_type TEXT NOT NULL,
    currency TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT UNIQUE NOT NULL
);

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id INTEGER NOT NULL,
    date DATE NOT NULL,
    amount TEXT NOT NULL,
    currency TEXT NOT NULL,
    payee TEXT NOT NULL,
    category_id INTEGER,
    memo TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (account_id) REFERENCES accounts(id) ON DELETE RESTRICT,
    FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS envelopes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    category_id INTEGER NOT NULL,
    month TEXT NOT NULL,
    funded TEXT NOT NULL DEFAULT '0',
    moved_in TEXT NOT NULL DEFAULT '0',
    moved_out TEXT NOT NULL DEFAULT '0',
    currency TEXT NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(category_id, month),
    FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS assets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ticker TEXT UNIQUE NOT NULL,
    name TEXT NOT NULL,
    currency TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS trades (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date DATE NOT NULL,
    asset_id INTEGER NOT NULL,
    account_id INTEGER NOT NULL,
    side TEXT NOT NULL CHECK(side IN ('buy', 'sell')),
    quantity TEXT NOT NULL,
    price TEXT NOT NULL,
    fees TEXT NOT NULL DEFAULT '0',
    note TEXT,
    FOREIGN KEY (asset_id) REFERENCES assets(id) ON DELETE RESTRICT,
    FOREIGN KEY (account_id) REFERENCES accounts(id) ON DELETE RESTRICT
);

CREATE TABLE IF NOT EXISTS lots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    asset_id INTEGER NOT NULL,
    trade_id INTEGER,
    open_date DATE NOT NULL,
    quantity TEXT NOT NULL,
    remaining TEXT NOT NULL,
    unit_cost TEXT NOT NULL,
    fees TEXT NOT NULL DEFAULT '0',
    currency TEXT NOT NULL,
    sequence INTEGER NOT NULL,
    FOREIGN KEY (asset_id) REFERENCES assets(id) ON DELETE RESTRICT,
    FOREIGN KEY (trade_id) REFERENCES trades(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS realized_gains (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    asset_id INTEGER NOT NULL,
    trade_id INTEGER,
    sell_date DATE NOT NULL,
    open_date DATE NOT NULL,
    quantity TEXT NOT NULL,
    proceeds TEXT NOT NULL,
    cost_basis TEXT NOT NULL,
    gain TEXT NOT NULL,
    currency TEXT NOT NULL,
    FOREIGN KEY (asset_id) REFERENCES assets(id) ON DELETE RESTRICT,
    FOREIGN KEY (trade_id) REFERENCES trades(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS prices (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    asset_id INTEGER NOT NULL,
    date DATE NOT NULL,
    price TEXT NOT NULL,
    currency TEXT NOT NULL,
    source TEXT DEFAULT 'MANUAL',
    UNIQUE(asset_id, date),
    FOREIGN KEY (asset_id) REFERENCES assets(id) ON DELETE CASCADE
);

-- FX rates: 1 unit of base = rate units of quote
CREATE TABLE IF NOT EXISTS fx_rates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date DATE NOT NULL,
    base TEXT NOT NULL,
    quote TEXT NOT NULL,
    rate TEXT NOT NULL,
    source TEXT DEFAULT 'MANUAL',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(date, base, quote)
);

CREATE TABLE IF NOT EXISTS rules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pattern TEXT NOT NULL,
    category_id INTEGER,
    payee_rewrite TEXT,
    note TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(date);
CREATE INDEX IF NOT EXISTS idx_transactions_account ON transactions(account_id);
CREATE INDEX IF NOT EXISTS idx_transactions_category ON transactions(category_id, date);
CREATE INDEX IF NOT EXISTS idx_envelopes_month ON envelopes(month);
CREATE INDEX IF NOT EXISTS idx_trades_date ON trades(date);
CREATE INDEX IF NOT EXISTS idx_lots_asset ON lots(asset_id, open_date, sequence);
CREATE INDEX IF NOT EXISTS idx_realized_gains_asset ON realized_gains(asset_id, sell_date);
CREATE INDEX IF NOT EXISTS idx_fx_rates_pair ON fx_rates(base, quote, date);
CREATE INDEX IF NOT EXISTS idx_prices_asset ON prices(asset_id, date);
"""


class DatabaseManager:
    """
    Singleton manager for SQLCipher encrypted database connections.

    Usage:
        db = DatabaseManager()
        conn = db.init("/path/to/moneybook.db", "password123")
        # Use connection...
        db.close()
    """

    _instance: Optional["DatabaseManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "DatabaseManager":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._connection = None
                    cls._instance._db_path = None
        return cls._instance

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the current database connection."""
        if self._connection is None:
            raise DatabaseError("Database not initialized. Call init() first.")
        return self._connection

    def init(self, db_path: str, password: str) -> sqlite3.Connection:
        """
        Initialize the database and create the schema.

        Args:
            db_path: Path to database file or ":memory:" for in-memory database
            password: Encryption password (used only when SQLCipher is available)

        Returns:
            Database connection

        Raises:
            DatabaseError: If initialization fails
        """
        try:
            self._db_path = str(db_path)

            if self._db_path != ":memory:":
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

            self._connection = sqlite3.connect(self._db_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row

            if HAS_SQLCIPHER:
                self._connection.execute(f"PRAGMA key = '{password}'")
                self._connection.execute("PRAGMA cipher_compatibility = 4")

            self._connection.execute("PRAGMA foreign_keys = ON")

            # WAL allows readers alongside a single writer
            if self._db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

            self._execute_schema()
            logger.debug(f"Database initialized at {self._db_path} (sqlcipher={HAS_SQLCIPHER})")

            return self._connection

        except Exception as e:
            raise DatabaseError(f"Failed to initialize database: {e}")

    def _execute_schema(self) -> None:
        """Create all tables if not exist."""
        try:
            self._connection.executescript(SCHEMA_SQL)
            self._connection.commit()
        except Exception as e:
            raise DatabaseError(f"Failed to execute schema: {e}")

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute a SQL statement."""
        return self.connection.execute(sql, params)

    def commit(self) -> None:
        """Commit the current transaction."""
        self.connection.commit()

    def rollback(self) -> None:
        """Rollback the current transaction."""
        self.connection.rollback()

    @contextmanager
    def transaction(self):
        """
        Context manager for atomic transactions.

        Usage:
            db = DatabaseManager()
            with db.transaction():
                db.execute("INSERT INTO accounts ...")
                db.execute("INSERT INTO transactions ...")
            # Auto-commits on success, auto-rolls back on exception
        """
        with atomic(self.connection) as conn:
            yield conn

    def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None
            self._db_path = None

    def get_tables(self) -> list[str]:
        """Get list of all tables in database."""
        cursor = self.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
        )
        return [row[0] for row in cursor.fetchall()]

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)."""
        with cls._lock:
            if cls._instance and cls._instance._connection:
                cls._instance._connection.close()
            cls._instance = None


_savepoint_ids = itertools.count(1)
_writer_locks: dict = {}
_writer_locks_guard = threading.Lock()


@contextmanager
def atomic(conn: sqlite3.Connection):
    """
    Run a block of statements as one database transaction.

    Nested use becomes a SAVEPOINT inside the outer transaction, so a
    failed inner block rolls back only its own writes (the importer relies
    on this to skip a bad row while keeping the rest of the file).
    Domain errors propagate unchanged after rollback; anything else is
    wrapped in DatabaseError.

    A connection shared between threads has a single transaction state,
    so the whole block holds a per-connection re-entrant lock.
    """
    with _writer_lock(conn):
        if conn.in_transaction:
            name = f"sp_{next(_savepoint_ids)}"
            conn.execute(f"SAVEPOINT {name}")
            try:
                yield conn
            except BaseException:
                conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
                conn.execute(f"RELEASE SAVEPOINT {name}")
                raise
            conn.execute(f"RELEASE SAVEPOINT {name}")
            return

        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except MoneybookError:
            conn.rollback()
            raise
        except Exception as e:
            conn.rollback()
            raise DatabaseError(f"Transaction failed: {e}") from e


def _writer_lock(conn: sqlite3.Connection) -> threading.RLock:
    with _writer_locks_guard:
        return _writer_locks.setdefault(id(conn), threading.RLock())


def get_connection() -> sqlite3.Connection:
    """Get the current database connection (convenience function)."""
    return DatabaseManager().connection
