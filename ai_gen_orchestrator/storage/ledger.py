"""
Credit ledger gate.

Balances live on the users row; every movement is also appended to
ledger_entry in the same transaction. Deductions are a single conditional
UPDATE so concurrent attempts for one user serialize inside SQLite.
"""

import logging
import sqlite3
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import LEDGER_KINDS, LedgerEntry, from_units, to_units

logger = logging.getLogger(__name__)


class CreditLedger:
    """Check, deduct and add credits for users."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get_balance(self, user_id: str) -> Optional[Decimal]:
        """Current balance, or None for an unknown user."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT balance_units FROM users WHERE id = ?", (user_id,)
            ).fetchone()
            return from_units(row[0]) if row else None
        finally:
            conn.close()

    def check_credits(self, user_id: str, amount: Decimal) -> bool:
        """True iff the user's balance covers amount. Never mutates."""
        balance = self.get_balance(user_id)
        if balance is None:
            return False
        return to_units(balance) >= to_units(amount)

    def deduct_credits(
        self,
        user_id: str,
        amount: Decimal,
        reason: str,
        job_id: Optional[str] = None
    ) -> bool:
        """Atomically decrement the balance and append a usage entry.

        The decrement only applies when the balance covers the amount. Any
        storage error aborts the whole operation.

        Args:
            user_id: User to charge
            amount: Credits to deduct (must be >= 0)
            reason: Ledger description
            job_id: Job the charge belongs to, if any

        Returns:
            True if deducted, False for insufficient funds or storage failure

        Raises:
            ValueError: If amount is negative
        """
        units = to_units(amount)
        if units < 0:
            raise ValueError("amount must be >= 0")

        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.execute(
                """
                UPDATE users
                SET balance_units = balance_units - ?, updated_at = ?
                WHERE id = ? AND balance_units >= ?
                """,
                (units, datetime.now().isoformat(), user_id, units),
            )
            if cursor.rowcount != 1:
                conn.rollback()
                return False

            conn.execute(
                """
                INSERT INTO ledger_entry (user_id, amount_units, kind, description, job_id, timestamp)
                VALUES (?, ?, 'usage', ?, ?, ?)
                """,
                (user_id, -units, reason, job_id, datetime.now().isoformat()),
            )
            conn.commit()
            return True
        except sqlite3.Error:
            conn.rollback()
            logger.error("Credit deduction aborted for user %s (%s credits)", user_id, amount, exc_info=True)
            return False
        finally:
            conn.close()

    def add_credits(
        self,
        user_id: str,
        amount: Decimal,
        reason: str,
        kind: str = "topup",
        job_id: Optional[str] = None
    ) -> None:
        """Unconditionally credit a user, creating the account if needed.

        Raises:
            ValueError: If amount is negative or kind is unknown
            sqlite3.Error: If the write fails
        """
        units = to_units(amount)
        if units < 0:
            raise ValueError("amount must be >= 0")
        if kind not in LEDGER_KINDS or kind == "usage":
            raise ValueError(f"kind must be one of: {[k for k in LEDGER_KINDS if k != 'usage']}")

        now = datetime.now().isoformat()
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                """
                INSERT INTO users (id, balance_units, created_at, updated_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    balance_units = balance_units + excluded.balance_units,
                    updated_at = excluded.updated_at
                """,
                (user_id, units, now, now),
            )
            conn.execute(
                """
                INSERT INTO ledger_entry (user_id, amount_units, kind, description, job_id, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, units, kind, reason, job_id, now),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_user(self, user_id: str) -> None:
        """Create a zero-balance account if the user has none."""
        now = datetime.now().isoformat()
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT OR IGNORE INTO users (id, balance_units, created_at, updated_at) VALUES (?, 0, ?, ?)",
                (user_id, now, now),
            )
            conn.commit()
        finally:
            conn.close()

    def fetch_ledger_entries(self, user_id: str, limit: int = 100) -> List[LedgerEntry]:
        """Fetch a user's ledger entries, newest first."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                """
                SELECT id, user_id, amount_units, kind, description, job_id, timestamp
                FROM ledger_entry
                WHERE user_id = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                (user_id, limit),
            )
            return [
                LedgerEntry(
                    id=row[0],
                    user_id=row[1],
                    amount=from_units(row[2]),
                    kind=row[3],
                    description=row[4],
                    job_id=row[5],
                    timestamp=datetime.fromisoformat(row[6]),
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()
