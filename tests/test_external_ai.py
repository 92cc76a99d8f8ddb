from __future__ import annotations

import asyncio
import threading
from typing import Any

import httpx
import orjson
import pytest

from confluence.analysis.models import Direction
from confluence.config.settings import ExternalAiSettings, Settings
from confluence.connectors.external_ai import (
    CONFIG_KEY,
    AiRequest,
    ExternalAiConfigStore,
    ExternalAiGate,
    build_prompt,
    parse_probability,
)
from confluence.storage.credentials import CredentialStore
from confluence.storage.settings_store import InMemorySettingsStore

REQUEST = AiRequest(symbol="BTCUSDT", direction=Direction.LONG, confidence=0.74, risk_reward=2.0)


class RecordingJudge:
    def __init__(self, reply: str = "0.5", delay: float = 0.0, error: Exception | None = None) -> None:
        self.reply = reply
        self.delay = delay
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def complete(self, client: httpx.AsyncClient, api_key: str, model: str, prompt: str) -> str:
        self.calls.append({"api_key": api_key, "model": model, "prompt": prompt})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


def _gate(
    store: InMemorySettingsStore,
    judges: dict[str, Any] | None = None,
    http: httpx.AsyncClient | None = None,
    settings: ExternalAiSettings | None = None,
) -> ExternalAiGate:
    return ExternalAiGate(
        ExternalAiConfigStore(store),
        CredentialStore(store),
        settings or ExternalAiSettings(),
        http=http,
        judges=judges,
    )


def _enabled_store(**config: Any) -> InMemorySettingsStore:
    store = InMemorySettingsStore()
    ExternalAiConfigStore(store).update({"enabled": True, **config})
    return store


def test_parse_probability() -> None:
    assert parse_probability("0.65") == 0.65
    assert parse_probability("Probability: 0.3.") == 0.3
    assert parse_probability("1.7") == 1.0
    assert parse_probability("-0.2") == 0.0
    assert parse_probability("no idea") is None
    assert parse_probability("") is None


def test_prompt_mentions_trade_details() -> None:
    prompt = build_prompt(REQUEST)
    assert "LONG BTCUSDT" in prompt
    assert "74%" in prompt
    assert "2.00" in prompt
    assert "0.0 and 1.0" in prompt


@pytest.mark.asyncio
async def test_disabled_gate_makes_no_call() -> None:
    store = InMemorySettingsStore()
    CredentialStore(store).set_api_key("openai", "sk-test")
    judge = RecordingJudge("0.9")
    verdict = await _gate(store, {"openai": judge}).evaluate_signal(REQUEST)
    assert verdict.score is None
    assert verdict.reason == "disabled"
    assert verdict.passes is True
    assert judge.calls == []


@pytest.mark.asyncio
async def test_missing_credentials_makes_no_call() -> None:
    store = _enabled_store()
    judge = RecordingJudge("0.9")
    verdict = await _gate(store, {"openai": judge}).evaluate_signal(REQUEST)
    assert verdict.available is False
    assert verdict.reason == "no_credentials"
    assert judge.calls == []


@pytest.mark.asyncio
async def test_openai_request_and_score() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"choices": [{"message": {"content": "0.72"}}]})

    store = _enabled_store(min_score=0.6)
    CredentialStore(store).set_api_key("openai", "sk-test")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        verdict = await _gate(store, http=client).evaluate_signal(REQUEST)

    assert verdict.score == pytest.approx(0.72)
    assert verdict.passes is True
    assert verdict.providers == ("openai",)
    assert seen[0].url == "https://api.openai.com/v1/chat/completions"
    assert seen[0].headers["Authorization"] == "Bearer sk-test"
    body = orjson.loads(seen[0].content)
    assert body["model"] == "gpt-5.2"
    assert body["max_tokens"] == 20


@pytest.mark.asyncio
async def test_claude_request_headers() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"content": [{"type": "text", "text": "0.4"}]})

    store = _enabled_store(provider="claude", min_score=0.5)
    CredentialStore(store).set_api_key("claude", "ak-test")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        verdict = await _gate(store, http=client).evaluate_signal(REQUEST)

    assert verdict.score == pytest.approx(0.4)
    assert verdict.passes is False
    assert seen[0].headers["x-api-key"] == "ak-test"
    assert seen[0].headers["anthropic-version"] == "2023-06-01"


@pytest.mark.asyncio
async def test_http_error_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "boom"})

    store = _enabled_store()
    CredentialStore(store).set_api_key("openai", "sk-test")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        verdict = await _gate(store, http=client).evaluate_signal(REQUEST)
    assert verdict.score is None
    assert verdict.reason == "provider_unavailable"
    assert verdict.passes is True


@pytest.mark.asyncio
async def test_unparseable_reply_is_unavailable() -> None:
    store = _enabled_store()
    CredentialStore(store).set_api_key("openai", "sk-test")
    verdict = await _gate(store, {"openai": RecordingJudge("I cannot say")}).evaluate_signal(REQUEST)
    assert verdict.score is None


@pytest.mark.asyncio
async def test_reply_is_clamped() -> None:
    store = _enabled_store()
    CredentialStore(store).set_api_key("openai", "sk-test")
    verdict = await _gate(store, {"openai": RecordingJudge("1.7")}).evaluate_signal(REQUEST)
    assert verdict.score == 1.0


@pytest.mark.asyncio
async def test_timeout_is_unavailable() -> None:
    store = _enabled_store()
    CredentialStore(store).set_api_key("openai", "sk-test")
    settings = ExternalAiSettings.model_construct(request_timeout_sec=0.05)
    judge = RecordingJudge("0.9", delay=5.0)
    verdict = await _gate(store, {"openai": judge}, settings=settings).evaluate_signal(REQUEST)
    assert verdict.score is None
    assert len(judge.calls) == 1


@pytest.mark.asyncio
async def test_judge_exception_is_unavailable() -> None:
    store = _enabled_store()
    CredentialStore(store).set_api_key("openai", "sk-test")
    judge = RecordingJudge(error=KeyError("choices"))
    verdict = await _gate(store, {"openai": judge}).evaluate_signal(REQUEST)
    assert verdict.score is None


@pytest.mark.asyncio
async def test_all_providers_are_averaged() -> None:
    store = _enabled_store(use_all_providers=True)
    creds = CredentialStore(store)
    creds.set_api_key("openai", "sk-test")
    creds.set_api_key("claude", "ak-test")
    judges = {"openai": RecordingJudge("0.8"), "claude": RecordingJudge("0.4")}
    verdict = await _gate(store, judges).evaluate_signal(REQUEST)
    assert verdict.score == pytest.approx(0.6)
    assert set(verdict.providers) == {"openai", "claude"}


@pytest.mark.asyncio
async def test_all_providers_ignores_failed_provider() -> None:
    store = _enabled_store(use_all_providers=True)
    creds = CredentialStore(store)
    creds.set_api_key("openai", "sk-test")
    creds.set_api_key("claude", "ak-test")
    judges = {"openai": RecordingJudge("garbage"), "claude": RecordingJudge("0.4")}
    verdict = await _gate(store, judges).evaluate_signal(REQUEST)
    assert verdict.score == pytest.approx(0.4)
    assert verdict.providers == ("claude",)


@pytest.mark.asyncio
async def test_config_edits_apply_to_next_evaluation() -> None:
    store = _enabled_store()
    CredentialStore(store).set_api_key("openai", "sk-test")
    judge = RecordingJudge("0.7")
    gate = _gate(store, {"openai": judge})
    assert (await gate.evaluate_signal(REQUEST)).available is True
    ExternalAiConfigStore(store).update({"enabled": False})
    assert (await gate.evaluate_signal(REQUEST)).available is False
    assert len(judge.calls) == 1


class ThreadRecordingStore(InMemorySettingsStore):
    def __init__(self) -> None:
        super().__init__()
        self.read_threads: list[int] = []

    def get_setting(self, key: str) -> str | None:
        self.read_threads.append(threading.get_ident())
        return super().get_setting(key)


@pytest.mark.asyncio
async def test_settings_reads_stay_off_the_event_loop() -> None:
    store = ThreadRecordingStore()
    ExternalAiConfigStore(store).update({"enabled": True})
    CredentialStore(store).set_api_key("openai", "sk-test")
    gate = _gate(store, {"openai": RecordingJudge("0.7")})
    store.read_threads.clear()

    verdict = await gate.evaluate_signal(REQUEST)

    assert verdict.available is True
    assert len(store.read_threads) == 2
    assert threading.get_ident() not in store.read_threads


def test_config_store_defaults_on_malformed_data() -> None:
    store = InMemorySettingsStore({CONFIG_KEY: "{not json"})
    config = ExternalAiConfigStore(store).load()
    assert config.enabled is False
    assert config.provider == "openai"
    assert config.min_score == 0.6


def test_config_store_clamps_min_score() -> None:
    store = InMemorySettingsStore({CONFIG_KEY: '{"enabled": true, "min_score": -3}'})
    assert ExternalAiConfigStore(store).load().min_score == 0.0
    updated = ExternalAiConfigStore(store).update({"min_score": 1.7})
    assert updated.min_score == 1.0
    assert updated.enabled is True


def test_stored_key_wins_over_environment() -> None:
    store = InMemorySettingsStore()
    settings = Settings(openai_api_key="env-key", anthropic_api_key="")
    creds = CredentialStore(store, settings)
    assert creds.get_api_key("openai") == "env-key"
    assert creds.get_api_key("claude") is None
    creds.set_api_key("openai", "stored-key")
    assert creds.get_api_key("openai") == "stored-key"
