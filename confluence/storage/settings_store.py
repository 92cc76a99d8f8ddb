"""Process-wide key/value settings persisted in SQLite."""

from __future__ import annotations

from typing import Protocol

from confluence.storage.database import Database


class KeyValueStore(Protocol):
    def get_setting(self, key: str) -> str | None: ...

    def set_setting(self, key: str, value: str) -> None: ...


class SettingsStore:
    """String values keyed by name; ``set_setting`` upserts."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def get_setting(self, key: str) -> str | None:
        with self.database.transaction() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return row["value"] if row is not None else None

    def set_setting(self, key: str, value: str) -> None:
        with self.database.transaction() as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value, updated_at)
                VALUES (?, ?, datetime('now'))
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value),
            )

    def delete_setting(self, key: str) -> None:
        with self.database.transaction() as conn:
            conn.execute("DELETE FROM settings WHERE key = ?", (key,))


class InMemorySettingsStore:
    """Dict-backed store for tests and ephemeral runs."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    def get_setting(self, key: str) -> str | None:
        return self._values.get(key)

    def set_setting(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete_setting(self, key: str) -> None:
        self._values.pop(key, None)
