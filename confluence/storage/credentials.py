"""Provider API key resolution."""

from __future__ import annotations

from typing import Literal

from confluence.config.settings import Settings
from confluence.storage.settings_store import KeyValueStore

Provider = Literal["openai", "claude"]

KEY_SETTINGS: dict[str, str] = {
    "openai": "external_ai_openai_api_key",
    "claude": "external_ai_anthropic_api_key",
}


class CredentialStore:
    """Admin-stored keys win over environment keys; a missing key is normal."""

    def __init__(self, store: KeyValueStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings

    def get_api_key(self, provider: Provider) -> str | None:
        stored = self.store.get_setting(KEY_SETTINGS[provider])
        if stored and stored.strip():
            return stored.strip()
        if self.settings is None:
            return None
        env_key = self.settings.openai_api_key if provider == "openai" else self.settings.anthropic_api_key
        return env_key.strip() or None

    def set_api_key(self, provider: Provider, api_key: str) -> None:
        self.store.set_setting(KEY_SETTINGS[provider], api_key.strip())

    def has_key(self, provider: Provider) -> bool:
        return self.get_api_key(provider) is not None
