"""Persistence: SQLite key/value settings, balances and session recovery."""

from confluence.storage.balances import BalanceLedger
from confluence.storage.credentials import CredentialStore
from confluence.storage.database import Database
from confluence.storage.sessions import SessionStore
from confluence.storage.settings_store import InMemorySettingsStore, KeyValueStore, SettingsStore

__all__ = [
    "BalanceLedger",
    "CredentialStore",
    "Database",
    "InMemorySettingsStore",
    "KeyValueStore",
    "SessionStore",
    "SettingsStore",
]
