"""
Configuration management with Pydantic validation.

Loads settings from YAML config file and environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class MarketDataConfig(BaseModel):
    """Public market data endpoints (Binance USD-M futures)."""

    base_url: str = "https://fapi.binance.com"
    testnet_base_url: str = "https://testnet.binancefuture.com"
    request_timeout_sec: float = Field(default=10.0, ge=1.0, le=60.0)
    order_book_limit: int = Field(default=50, ge=5, le=1000)
    trades_limit: int = Field(default=200, ge=10, le=1000)
    candle_limit: int = Field(default=100, ge=20, le=1500)


class AnalysisConfig(BaseModel):
    """Microstructure analyzer parameters."""

    order_book_levels: int = Field(default=5, ge=1, le=20)
    imbalance_threshold: float = Field(default=0.15, ge=0.01, le=0.9)
    score_gain: float = Field(default=1.5, ge=0.1, le=10.0)
    min_candles: int = Field(default=20, ge=5, le=500)
    short_window: int = Field(default=10, ge=2, le=100)
    compression_threshold: float = Field(default=1.1, ge=0.1, le=3.0)
    efficiency_max: float = Field(default=0.35, ge=0.05, le=1.0)
    max_drift_atr: float = Field(default=2.0, ge=0.5, le=10.0)
    ema_fast: int = Field(default=8, ge=2, le=50)
    ema_slow: int = Field(default=21, ge=5, le=100)
    atr_period: int = Field(default=14, ge=2, le=50)

    @field_validator("short_window")
    @classmethod
    def _short_window_below_min(cls, v: int, info) -> int:
        min_candles = info.data.get("min_candles")
        if min_candles is not None and v > min_candles:
            raise ValueError("short_window must not exceed min_candles")
        return v


class SignalConfig(BaseModel):
    """Gates applied to an aggregated signal before it can trade."""

    min_confidence: float = Field(default=0.62, ge=0.0, le=1.0)
    max_spread_pct: float = Field(default=0.15, ge=0.01, le=5.0)
    skip_when_consolidating: bool = True


class RiskConfig(BaseModel):
    """Position sizing and protective order configuration."""

    risk_pct: float = Field(default=0.02, ge=0.001, le=0.03)
    max_asset_pct: float = Field(default=0.25, ge=0.01, le=1.0)
    fallback_pct: float = Field(default=0.05, ge=0.001, le=0.5)
    atr_stop_multiplier: float = Field(default=1.5, ge=0.5, le=5.0)
    reward_ratio: float = Field(default=2.0, ge=0.5, le=10.0)
    min_notional_usd: float = Field(default=5.0, ge=0.0, le=1000.0)
    balance_reserve_pct: float = Field(default=0.02, ge=0.0, le=0.5)


class ExternalAiSettings(BaseModel):
    """Transport settings for the external probabilistic judge."""

    request_timeout_sec: float = Field(default=15.0, ge=1.0, le=120.0)
    openai_url: str = "https://api.openai.com/v1/chat/completions"
    anthropic_url: str = "https://api.anthropic.com/v1/messages"
    anthropic_version: str = "2023-06-01"
    default_openai_model: str = "gpt-5.2"
    default_claude_model: str = "claude-3-5-haiku-20241022"
    max_tokens: int = Field(default=20, ge=1, le=500)
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)


class SchedulerConfig(BaseModel):
    """Auto-trade scheduler lifecycle."""

    recover_on_start: bool = True
    shutdown_grace_sec: float = Field(default=5.0, ge=0.0, le=60.0)


class PaperConfig(BaseModel):
    """Paper execution gateway configuration."""

    fee_pct: float = Field(default=0.04, ge=0.0, le=1.0)


class StorageConfig(BaseModel):
    """Storage paths configuration."""

    database_path: str = "./data/confluence.db"
    logs_path: str = "./logs"


class MonitoringConfig(BaseModel):
    """Monitoring and logging configuration."""

    metrics_port: int = Field(default=9090, ge=1024, le=65535)
    api_port: int = Field(default=8000, ge=1024, le=65535)
    api_host: str = "127.0.0.1"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    decision_log_enabled: bool = True
    error_log_max_bytes: int = Field(default=5_000_000, ge=100_000, le=50_000_000)
    error_log_backup_count: int = Field(default=3, ge=1, le=20)


class Settings(BaseSettings):
    """Main application settings."""

    environment: Literal["testnet", "production"] = "testnet"

    # Provider credentials from environment
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    anthropic_api_key: str = Field(default="", alias="ANTHROPIC_API_KEY")

    market_data: MarketDataConfig = Field(default_factory=MarketDataConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    signal: SignalConfig = Field(default_factory=SignalConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    external_ai: ExternalAiSettings = Field(default_factory=ExternalAiSettings)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    paper: PaperConfig = Field(default_factory=PaperConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "env_nested_delimiter": "__",
        "populate_by_name": True,
    }

    @property
    def market_data_base_url(self) -> str:
        """Get the market data base URL for the configured environment."""
        if self.environment == "testnet":
            return self.market_data.testnet_base_url
        return self.market_data.base_url


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings from YAML config file and environment variables.

    Priority (highest to lowest):
    1. Config file values
    2. Environment variables (and ``.env`` beside the config file)
    3. Default values

    Provider API keys are only read from the environment.
    """
    config_data = {}

    if config_path is None:
        config_path = os.environ.get("CONFIG_PATH", "config.yaml")

    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file) as f:
            config_data = yaml.safe_load(f) or {}

    env_path = config_file.parent / ".env"
    return Settings(**config_data, _env_file=env_path)


def create_default_config(path: str | Path = "config.yaml") -> None:
    """Create a default configuration file."""
    default_config = {
        "environment": "testnet",
        "market_data": {
            "base_url": "https://fapi.binance.com",
            "request_timeout_sec": 10.0,
            "order_book_limit": 50,
            "trades_limit": 200,
            "candle_limit": 100,
        },
        "analysis": {
            "order_book_levels": 5,
            "imbalance_threshold": 0.15,
            "min_candles": 20,
            "short_window": 10,
            "compression_threshold": 1.1,
            "efficiency_max": 0.35,
        },
        "signal": {
            "min_confidence": 0.62,
            "max_spread_pct": 0.15,
            "skip_when_consolidating": True,
        },
        "risk": {
            "risk_pct": 0.02,
            "max_asset_pct": 0.25,
            "fallback_pct": 0.05,
            "atr_stop_multiplier": 1.5,
            "reward_ratio": 2.0,
            "min_notional_usd": 5.0,
        },
        "external_ai": {
            "request_timeout_sec": 15.0,
            "max_tokens": 20,
            "temperature": 0.3,
        },
        "scheduler": {
            "recover_on_start": True,
            "shutdown_grace_sec": 5.0,
        },
        "storage": {
            "database_path": "./data/confluence.db",
            "logs_path": "./logs",
        },
        "monitoring": {
            "metrics_port": 9090,
            "api_port": 8000,
            "log_level": "INFO",
            "error_log_max_bytes": 5000000,
            "error_log_backup_count": 3,
        },
    }

    with open(path, "w") as f:
        yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)
