"""Market data and external AI connectors."""

from confluence.connectors.external_ai import (
    AiRequest,
    AiVerdict,
    ExternalAiConfig,
    ExternalAiConfigStore,
    ExternalAiGate,
)
from confluence.connectors.market_data import BinanceMarketData, MarketDataSource

__all__ = [
    "AiRequest",
    "AiVerdict",
    "BinanceMarketData",
    "ExternalAiConfig",
    "ExternalAiConfigStore",
    "ExternalAiGate",
    "MarketDataSource",
]
