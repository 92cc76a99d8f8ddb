"""Persist active auto-trade sessions to survive process restarts."""

from __future__ import annotations

import orjson
import structlog
from pydantic import ValidationError

from confluence.models import AutoTradeSessionConfig, PersistedSession, PersistedSessions
from confluence.storage.settings_store import KeyValueStore

log = structlog.get_logger(__name__)

SESSIONS_KEY = "auto_trade_sessions"


class SessionStore:
    """One entry per user; saving a user replaces their previous entry."""

    def __init__(self, store: KeyValueStore, key: str = SESSIONS_KEY) -> None:
        self.store = store
        self.key = key

    def save(self, user_id: str, config: AutoTradeSessionConfig) -> None:
        sessions = [s for s in self._load_all() if s.user_id != user_id]
        sessions.append(PersistedSession(user_id=user_id, config=config))
        self._save_all(sessions)

    def remove(self, user_id: str) -> None:
        sessions = self._load_all()
        remaining = [s for s in sessions if s.user_id != user_id]
        if len(remaining) != len(sessions):
            self._save_all(remaining)

    def load_all(self) -> list[PersistedSession]:
        """Load persisted sessions on startup. Unreadable data yields none."""
        return self._load_all()

    def clear(self) -> None:
        self._save_all([])

    def _load_all(self) -> list[PersistedSession]:
        raw = self.store.get_setting(self.key)
        if not raw:
            return []
        try:
            envelope = PersistedSessions.model_validate(orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError) as exc:
            log.warning("persisted_sessions_unreadable", key=self.key, error=str(exc))
            return []
        return envelope.sessions

    def _save_all(self, sessions: list[PersistedSession]) -> None:
        envelope = PersistedSessions(sessions=sessions)
        self.store.set_setting(self.key, orjson.dumps(envelope.model_dump(mode="json")).decode())
