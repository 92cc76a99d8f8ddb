"""Per-user USDT balance ledger."""

from __future__ import annotations

import structlog

from confluence.storage.database import Database

log = structlog.get_logger(__name__)


class BalanceLedger:
    """Credits and debits are single SQL statements.

    ``debit`` is a conditional UPDATE, so concurrent callers can never drive a
    balance below zero: whichever statement runs second sees the reduced
    balance and matches no row.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    def get_balance(self, user_id: str) -> float:
        with self.database.transaction() as conn:
            row = conn.execute(
                "SELECT balance_usdt FROM user_balances WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return float(row["balance_usdt"]) if row is not None else 0.0

    def credit(self, user_id: str, amount: float) -> float:
        if amount <= 0:
            raise ValueError("credit amount must be positive")
        with self.database.transaction() as conn:
            conn.execute(
                """
                INSERT INTO user_balances (user_id, balance_usdt, updated_at)
                VALUES (?, ?, datetime('now'))
                ON CONFLICT(user_id) DO UPDATE SET
                    balance_usdt = balance_usdt + excluded.balance_usdt,
                    updated_at = excluded.updated_at
                """,
                (user_id, amount),
            )
            row = conn.execute(
                "SELECT balance_usdt FROM user_balances WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return float(row["balance_usdt"])

    def debit(self, user_id: str, amount: float) -> bool:
        """Subtract ``amount`` if the balance covers it. Returns False otherwise."""
        if amount <= 0:
            raise ValueError("debit amount must be positive")
        with self.database.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE user_balances
                SET balance_usdt = balance_usdt - ?, updated_at = datetime('now')
                WHERE user_id = ? AND balance_usdt >= ?
                """,
                (amount, user_id, amount),
            )
            applied = cursor.rowcount == 1
        if not applied:
            log.info("balance_debit_rejected", user_id=user_id, amount=amount)
        return applied
