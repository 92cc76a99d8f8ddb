"""Shared data models for auto-trade sessions."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

MAX_SYMBOLS = 5

Timeframe = Literal["1m", "3m", "5m", "15m", "30m", "1h", "2h", "4h"]
TradingMode = Literal["standard", "scalping"]


def normalize_symbol(symbol: str) -> str:
    """'btc-usdt', 'BTC/USDT' and 'BTCUSDT' all map to 'BTCUSDT'."""
    return symbol.replace("-", "").replace("/", "").replace("_", "").strip().upper()


class AutoTradeSessionConfig(BaseModel):
    """Per-user auto-trade configuration, validated at the boundary."""

    symbols: list[str] = Field(default_factory=lambda: ["BTCUSDT"], min_length=1, max_length=MAX_SYMBOLS)
    timeframe: Timeframe = "5m"
    trading_mode: TradingMode = "standard"
    interval_ms: int = Field(default=60_000, ge=10_000, le=300_000)
    execute_orders: bool = False
    use_testnet: bool = True
    max_positions: int = Field(default=2, ge=1, le=10)
    size_percent: float = Field(default=25.0, ge=1.0, le=50.0)
    size_mode: Literal["percent", "risk"] = "percent"
    risk_pct: float = Field(default=0.02, ge=0.01, le=0.03)
    leverage: int = Field(default=25, ge=1, le=125)
    tp_multiplier: float = Field(default=1.0, ge=0.5, le=1.0)
    min_ai_prob: float = Field(default=0.0, ge=0.0, le=1.0)
    full_auto: bool = False

    @field_validator("symbols")
    @classmethod
    def _normalize_symbols(cls, v: list[str]) -> list[str]:
        normalized: list[str] = []
        for symbol in v:
            cleaned = normalize_symbol(symbol)
            if not cleaned:
                raise ValueError("empty symbol")
            if cleaned not in normalized:
                normalized.append(cleaned)
        return normalized

    @property
    def interval_sec(self) -> float:
        return self.interval_ms / 1000


class PersistedSession(BaseModel):
    user_id: str
    config: AutoTradeSessionConfig


class PersistedSessions(BaseModel):
    """Versioned envelope for the recovery hint written to the key/value store."""

    version: Literal[1] = 1
    sessions: list[PersistedSession] = Field(default_factory=list)


@dataclass(frozen=True)
class ExecutionOutcome:
    """Result of the most recent cycle for one user."""

    last_error: str | None = None
    last_skip_reason: str | None = None
    last_order_id: str | None = None
    symbol: str | None = None
    use_testnet: bool | None = None
    last_ai_prob: float | None = None
    last_effective_ai_prob: float | None = None
    last_external_ai_score: float | None = None
    last_external_ai_used: bool | None = None
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["at"] = self.at.isoformat()
        return payload
