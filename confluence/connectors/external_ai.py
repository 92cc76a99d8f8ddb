"""External AI judge: an optional, fail-open probability filter for trade signals."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import httpx
import orjson
import structlog
from pydantic import BaseModel, Field, ValidationError

from confluence.analysis.models import Direction, _clamp
from confluence.config.settings import ExternalAiSettings
from confluence.monitoring.metrics import Metrics
from confluence.storage.credentials import CredentialStore, Provider
from confluence.storage.settings_store import KeyValueStore

log = structlog.get_logger(__name__)

CONFIG_KEY = "external_ai_config"
PROVIDERS: tuple[Provider, ...] = ("openai", "claude")
_NUMBER = re.compile(r"-?\d+(?:\.\d+)?|-?\.\d+")


class ExternalAiConfig(BaseModel):
    """Admin-editable judge configuration; re-read on every evaluation."""

    version: Literal[1] = 1
    enabled: bool = False
    provider: Provider = "openai"
    use_all_providers: bool = False
    min_score: float = Field(default=0.6, ge=0.0, le=1.0)
    openai_model: str | None = None
    claude_model: str | None = None


class ExternalAiConfigStore:
    """Reads and writes ``ExternalAiConfig`` in the key/value store.

    Unreadable stored data falls back to defaults and ``min_score`` is clamped
    to [0, 1] rather than rejected.
    """

    def __init__(self, store: KeyValueStore, key: str = CONFIG_KEY) -> None:
        self.store = store
        self.key = key

    def load(self) -> ExternalAiConfig:
        raw = self.store.get_setting(self.key)
        if not raw:
            return ExternalAiConfig()
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError:
            log.warning("external_ai_config_unreadable", key=self.key)
            return ExternalAiConfig()
        return self._coerce(data)

    def update(self, patch: dict[str, Any]) -> ExternalAiConfig:
        merged = {**self.load().model_dump(), **patch}
        config = ExternalAiConfig.model_validate(self._clamped(merged))
        self.store.set_setting(self.key, orjson.dumps(config.model_dump(mode="json")).decode())
        return config

    def _coerce(self, data: Any) -> ExternalAiConfig:
        if not isinstance(data, dict):
            return ExternalAiConfig()
        try:
            return ExternalAiConfig.model_validate(self._clamped(data))
        except ValidationError as exc:
            log.warning("external_ai_config_invalid", key=self.key, error=str(exc))
            return ExternalAiConfig()

    @staticmethod
    def _clamped(data: dict[str, Any]) -> dict[str, Any]:
        result = dict(data)
        min_score = result.get("min_score")
        if isinstance(min_score, (int, float)) and not isinstance(min_score, bool):
            result["min_score"] = _clamp(float(min_score), 0.0, 1.0)
        return result


@dataclass(frozen=True)
class AiRequest:
    symbol: str
    direction: Direction
    confidence: float
    risk_reward: float | None = None


@dataclass(frozen=True)
class AiVerdict:
    """Judge outcome. ``score`` is None when the judge was not used or failed."""

    score: float | None
    providers: tuple[str, ...] = ()
    reason: str | None = None
    min_score: float = 0.0

    @property
    def available(self) -> bool:
        return self.score is not None

    @property
    def passes(self) -> bool:
        """An unavailable verdict never blocks a trade."""
        return self.score is None or self.score >= self.min_score


@dataclass
class _ProviderCall:
    provider: Provider
    api_key: str
    model: str


class Judge(Protocol):
    async def complete(self, client: httpx.AsyncClient, api_key: str, model: str, prompt: str) -> str: ...


class OpenAiJudge:
    def __init__(self, settings: ExternalAiSettings) -> None:
        self.settings = settings

    async def complete(self, client: httpx.AsyncClient, api_key: str, model: str, prompt: str) -> str:
        response = await client.post(
            self.settings.openai_url,
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            json={
                "model": model,
                "messages": [{"role": "user", "content": prompt}],
                "max_tokens": self.settings.max_tokens,
                "temperature": self.settings.temperature,
            },
        )
        response.raise_for_status()
        data = response.json()
        return str(data["choices"][0]["message"]["content"] or "")


class ClaudeJudge:
    def __init__(self, settings: ExternalAiSettings) -> None:
        self.settings = settings

    async def complete(self, client: httpx.AsyncClient, api_key: str, model: str, prompt: str) -> str:
        response = await client.post(
            self.settings.anthropic_url,
            headers={
                "x-api-key": api_key,
                "anthropic-version": self.settings.anthropic_version,
                "Content-Type": "application/json",
            },
            json={
                "model": model,
                "max_tokens": self.settings.max_tokens,
                "temperature": self.settings.temperature,
                "messages": [{"role": "user", "content": prompt}],
            },
        )
        response.raise_for_status()
        data = response.json()
        blocks = data.get("content") or []
        texts = [b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type", "text") == "text"]
        return "".join(texts)


def parse_probability(text: str) -> float | None:
    """First numeric token of ``text`` clamped to [0, 1]; None if there is none."""
    match = _NUMBER.search(text or "")
    if match is None:
        return None
    return _clamp(float(match.group(0)), 0.0, 1.0)


def build_prompt(request: AiRequest, context: str | None = None) -> str:
    rr = f"{request.risk_reward:.2f}" if request.risk_reward is not None else "unknown"
    lines = [
        "You are a risk filter for a crypto futures trading bot.",
        f"Proposed trade: {request.direction.value} {request.symbol}.",
        f"Signal confidence: {request.confidence * 100:.0f}%.",
        f"Risk/reward: {rr}.",
    ]
    if context:
        lines.append(f"Context: {context}")
    lines.append(
        "Reply with ONLY one number between 0.0 and 1.0: the probability this trade is profitable."
    )
    return "\n".join(lines)


class ExternalAiGate:
    """Ask the configured provider(s) for a win probability.

    Every failure mode (no credential, HTTP error, timeout, unparseable reply)
    produces an unavailable verdict instead of an exception.
    """

    def __init__(
        self,
        config_store: ExternalAiConfigStore,
        credentials: CredentialStore,
        settings: ExternalAiSettings | None = None,
        http: httpx.AsyncClient | None = None,
        judges: dict[str, Judge] | None = None,
        metrics: Metrics | None = None,
    ) -> None:
        self.config_store = config_store
        self.credentials = credentials
        self.settings = settings or ExternalAiSettings()
        self.http = http
        self.judges: dict[str, Judge] = judges or {
            "openai": OpenAiJudge(self.settings),
            "claude": ClaudeJudge(self.settings),
        }
        self.metrics = metrics

    async def evaluate_signal(self, request: AiRequest, context: str | None = None) -> AiVerdict:
        try:
            config, calls = await asyncio.to_thread(self._resolve)
        except Exception as exc:
            log.warning("external_ai_config_load_failed", error=str(exc))
            return AiVerdict(score=None, reason="config_unavailable")
        if not config.enabled:
            return AiVerdict(score=None, reason="disabled", min_score=config.min_score)

        if not calls:
            return AiVerdict(score=None, reason="no_credentials", min_score=config.min_score)

        prompt = build_prompt(request, context)
        if self.http is not None:
            scores = await self._run_all(self.http, calls, prompt)
        else:
            async with httpx.AsyncClient() as client:
                scores = await self._run_all(client, calls, prompt)

        answered = [(call.provider, s) for call, s in zip(calls, scores) if s is not None]
        if not answered:
            return AiVerdict(
                score=None,
                providers=tuple(c.provider for c in calls),
                reason="provider_unavailable",
                min_score=config.min_score,
            )
        score = sum(s for _, s in answered) / len(answered)
        log.info(
            "external_ai_scored",
            symbol=request.symbol,
            direction=request.direction.value,
            score=score,
            providers=[p for p, _ in answered],
        )
        return AiVerdict(
            score=score,
            providers=tuple(p for p, _ in answered),
            min_score=config.min_score,
        )

    def _resolve(self) -> tuple[ExternalAiConfig, list[_ProviderCall]]:
        # Both reads hit SQLite; the caller runs this off the event loop.
        config = self.config_store.load()
        return config, self._provider_calls(config) if config.enabled else []

    def _provider_calls(self, config: ExternalAiConfig) -> list[_ProviderCall]:
        providers = PROVIDERS if config.use_all_providers else (config.provider,)
        calls = []
        for provider in providers:
            api_key = self.credentials.get_api_key(provider)
            if not api_key:
                continue
            if provider == "openai":
                model = config.openai_model or self.settings.default_openai_model
            else:
                model = config.claude_model or self.settings.default_claude_model
            calls.append(_ProviderCall(provider=provider, api_key=api_key, model=model))
        return calls

    async def _run_all(
        self,
        client: httpx.AsyncClient,
        calls: list[_ProviderCall],
        prompt: str,
    ) -> list[float | None]:
        return list(await asyncio.gather(*(self._ask(client, call, prompt) for call in calls)))

    async def _ask(self, client: httpx.AsyncClient, call: _ProviderCall, prompt: str) -> float | None:
        judge = self.judges[call.provider]
        try:
            text = await asyncio.wait_for(
                judge.complete(client, call.api_key, call.model, prompt),
                timeout=self.settings.request_timeout_sec,
            )
        except asyncio.TimeoutError:
            log.warning("external_ai_timeout", provider=call.provider, timeout_sec=self.settings.request_timeout_sec)
            self._record(call.provider, "timeout")
            return None
        except Exception as exc:
            log.warning("external_ai_failed", provider=call.provider, error=str(exc))
            self._record(call.provider, "error")
            return None

        score = parse_probability(text)
        if score is None:
            log.warning("external_ai_unparseable", provider=call.provider, reply=text[:80])
            self._record(call.provider, "unparseable")
            return None
        self._record(call.provider, "ok")
        return score

    def _record(self, provider: str, result: str) -> None:
        if self.metrics is not None:
            self.metrics.record_external_ai(provider, result)
