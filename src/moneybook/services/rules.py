"""
Categorization rules for transactions.

A rule is a regular expression matched (search, case-sensitive unless
the pattern says otherwise) against "payee memo". The newest matching
rule wins and may assign a category, rewrite the payee, or both.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple
import logging
import re
import sqlite3
import threading

from moneybook.core.database import atomic
from moneybook.core.exceptions import UnknownEntityError, ValidationError
from moneybook.core.ledger import Ledger

logger = logging.getLogger(__name__)


@dataclass
class Rule:
    """A stored categorization rule."""
    id: int
    pattern: str
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    payee_rewrite: Optional[str] = None
    note: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pattern": self.pattern,
            "category": self.category_name,
            "payee_rewrite": self.payee_rewrite,
            "note": self.note,
        }


@dataclass
class RuleMatch:
    """Outcome of applying rules to one payee/memo."""
    rule_id: Optional[int] = None
    category_id: Optional[int] = None
    payee_rewrite: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.rule_id is not None


def compile_pattern(pattern: str) -> re.Pattern:
    """Compile a rule pattern, raising ValidationError when invalid."""
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ValidationError(f"Invalid regex pattern '{pattern}': {e}", field="pattern")


class RuleEngine:
    """
    Stored rules plus a compiled cache.

    Usage:
        rules = RuleEngine(conn, ledger)
        rules.add(r"(?i)whole\\s*foods", category="Groceries", payee_rewrite="Whole Foods")
        match = rules.apply("WHOLEFDS #123", None)
    """

    def __init__(self, db_connection: sqlite3.Connection, ledger: Ledger):
        self.conn = db_connection
        self.ledger = ledger
        self._compiled: Optional[List[Tuple[int, re.Pattern, Optional[int], Optional[str]]]] = None
        self._cache_lock = threading.Lock()

    def invalidate(self) -> None:
        with self._cache_lock:
            self._compiled = None

    def add(
        self,
        pattern: str,
        category=None,
        payee_rewrite: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Rule:
        """
        Store a rule.

        Raises:
            ValidationError: If the pattern is empty or not a valid regex,
                or the rule would do nothing
            UnknownEntityError: If the category does not exist
        """
        pattern = (pattern or "").strip()
        if not pattern:
            raise ValidationError("Rule pattern is required", field="pattern")
        compile_pattern(pattern)
        payee_rewrite = (payee_rewrite or "").strip() or None
        category_id = self.ledger.get_category(category).id if category else None
        if category_id is None and payee_rewrite is None:
            raise ValidationError("Rule needs a category or a payee rewrite", field="category")

        with atomic(self.conn):
            cursor = self.conn.execute(
                "INSERT INTO rules (pattern, category_id, payee_rewrite, note) VALUES (?, ?, ?, ?)",
                (pattern, category_id, payee_rewrite, note),
            )
        self.invalidate()
        logger.debug(f"Added rule {cursor.lastrowid}: /{pattern}/")
        return self.get(cursor.lastrowid)

    def get(self, rule_id: int) -> Rule:
        row = self.conn.execute(
            """
            SELECT r.*, c.name AS category_name FROM rules r
            LEFT JOIN categories c ON r.category_id = c.id
            WHERE r.id = ?
            """,
            (rule_id,),
        ).fetchone()
        if row is None:
            raise UnknownEntityError("rule", rule_id)
        return self._from_row(row)

    def list(self) -> List[Rule]:
        """All rules, newest (highest priority) first."""
        rows = self.conn.execute(
            """
            SELECT r.*, c.name AS category_name FROM rules r
            LEFT JOIN categories c ON r.category_id = c.id
            ORDER BY r.id DESC
            """
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def remove(self, rule_id: int) -> None:
        with atomic(self.conn):
            cursor = self.conn.execute("DELETE FROM rules WHERE id = ?", (rule_id,))
            if cursor.rowcount == 0:
                raise UnknownEntityError("rule", rule_id)
        self.invalidate()
        logger.debug(f"Removed rule {rule_id}")

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Rule:
        return Rule(
            id=row["id"],
            pattern=row["pattern"],
            category_id=row["category_id"],
            category_name=row["category_name"],
            payee_rewrite=row["payee_rewrite"],
            note=row["note"],
        )

    def _rules(self):
        with self._cache_lock:
            if self._compiled is None:
                rows = self.conn.execute(
                    "SELECT id, pattern, category_id, payee_rewrite FROM rules ORDER BY id DESC"
                ).fetchall()
                self._compiled = [
                    (row["id"], compile_pattern(row["pattern"]), row["category_id"], row["payee_rewrite"])
                    for row in rows
                ]
            return self._compiled

    def apply(self, payee: str, memo: Optional[str] = None) -> RuleMatch:
        """First match among rules, newest first; empty RuleMatch if none."""
        haystack = f"{payee} {memo}" if memo else payee
        for rule_id, regex, category_id, rewrite in self._rules():
            if regex.search(haystack):
                return RuleMatch(rule_id=rule_id, category_id=category_id, payee_rewrite=rewrite)
        return RuleMatch()

    def categorize(self, payee: str, memo: Optional[str] = None) -> Tuple[str, Optional[int]]:
        """Payee (rewritten when the matching rule says so) and category id."""
        match = self.apply(payee, memo)
        return match.payee_rewrite or payee, match.category_id

    def apply_to_existing(self, month: Optional[str] = None) -> int:
        """
        Categorize stored uncategorized transactions using the rules.

        Only the category is changed; payee rewrites apply at import time.

        Returns:
            Number of transactions recategorized
        """
        updated = 0
        with atomic(self.conn):
            for txn in self.ledger.list_transactions(month=month):
                if txn.category_id is not None:
                    continue
                match = self.apply(txn.payee, txn.memo)
                if match.category_id is not None:
                    self.ledger.recategorize(txn.id, match.category_id)
                    updated += 1
        logger.info(f"Rules categorized {updated} transaction(s)")
        return updated
