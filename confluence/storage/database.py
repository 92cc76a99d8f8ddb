"""SQLite database handle shared by the key/value and balance stores."""

from __future__ import annotations

import sqlite3
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Iterator

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS settings (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_balances (
        user_id TEXT PRIMARY KEY,
        balance_usdt REAL NOT NULL DEFAULT 0 CHECK (balance_usdt >= 0),
        updated_at TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
)


class Database:
    """Opens one short-lived connection per operation.

    Connections are never shared between threads, so stores built on this
    class can be called from ``asyncio.to_thread`` workers concurrently.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _open_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout=30000")
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection; commit on success, roll back on error."""
        with closing(self._open_connection()) as conn:
            with conn:
                yield conn

    def _init_db(self) -> None:
        with closing(self._open_connection()) as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            with conn:
                for statement in SCHEMA:
                    conn.execute(statement)
