"""Async Binance USD-M Futures public market data client."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Protocol

import httpx
import structlog

from confluence.analysis.models import Candle, OrderBookSnapshot, Trade
from confluence.config.settings import Settings
from confluence.models import normalize_symbol

RETRY_STATUS = {429, 418, 500, 502, 503}


class MarketDataSource(Protocol):
    async def get_order_book(self, symbol: str) -> OrderBookSnapshot: ...

    async def get_trades(self, symbol: str) -> list[Trade]: ...

    async def get_candles(self, symbol: str, timeframe: str) -> list[Candle]: ...


class BinanceMarketData:
    """Unsigned market data requests; no API key is ever sent."""

    def __init__(
        self,
        settings: Settings,
        http: httpx.AsyncClient | None = None,
        max_attempts: int = 3,
    ) -> None:
        self.config = settings.market_data
        self.base_url = settings.market_data_base_url
        self.http = http or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.config.request_timeout_sec,
        )
        self.max_attempts = max_attempts
        self.log = structlog.get_logger(__name__)

    async def close(self) -> None:
        await self.http.aclose()

    async def get_order_book(self, symbol: str) -> OrderBookSnapshot:
        data = await self._request(
            "/fapi/v1/depth",
            {"symbol": normalize_symbol(symbol), "limit": self.config.order_book_limit},
        )
        bids = [(float(p), float(q)) for p, q in data.get("bids", [])]
        asks = [(float(p), float(q)) for p, q in data.get("asks", [])]
        bids.sort(key=lambda level: level[0], reverse=True)
        asks.sort(key=lambda level: level[0])
        return OrderBookSnapshot(bids=bids, asks=asks)

    async def get_trades(self, symbol: str) -> list[Trade]:
        data = await self._request(
            "/fapi/v1/aggTrades",
            {"symbol": normalize_symbol(symbol), "limit": self.config.trades_limit},
        )
        trades = []
        for row in data:
            price = float(row["p"])
            amount = float(row["q"])
            trades.append(
                Trade(
                    price=price,
                    amount=amount,
                    quote_quantity=price * amount,
                    time=int(row["T"]),
                    # m=True means the buyer was the maker, i.e. the aggressor sold.
                    is_buy=not bool(row["m"]),
                )
            )
        return trades

    async def get_candles(self, symbol: str, timeframe: str) -> list[Candle]:
        data = await self._request(
            "/fapi/v1/klines",
            {
                "symbol": normalize_symbol(symbol),
                "interval": timeframe,
                "limit": self.config.candle_limit,
            },
        )
        return [
            Candle(
                time=int(row[0]),
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5]),
            )
            for row in data
        ]

    async def get_price(self, symbol: str) -> float:
        data = await self._request("/fapi/v1/ticker/price", {"symbol": normalize_symbol(symbol)})
        return float(data["price"])

    async def _request(self, path: str, params: dict[str, Any]) -> Any:
        for attempt in range(self.max_attempts):
            start = time.perf_counter()
            try:
                response = await self.http.get(path, params=params)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as exc:
                latency_ms = (time.perf_counter() - start) * 1000
                retryable = exc.response.status_code in RETRY_STATUS
                if retryable and attempt < self.max_attempts - 1:
                    self.log.warning(
                        "market_data_http_error_retrying",
                        path=path,
                        status_code=exc.response.status_code,
                        latency_ms=round(latency_ms, 2),
                        attempt=attempt + 1,
                    )
                    await asyncio.sleep(0.5 * 2**attempt)
                    continue
                self.log.error(
                    "market_data_http_error",
                    path=path,
                    status_code=exc.response.status_code,
                    latency_ms=round(latency_ms, 2),
                )
                raise
            except httpx.RequestError as exc:
                if attempt < self.max_attempts - 1:
                    self.log.warning(
                        "market_data_request_error_retrying",
                        path=path,
                        error=str(exc),
                        attempt=attempt + 1,
                    )
                    await asyncio.sleep(0.5 * 2**attempt)
                    continue
                raise
        raise RuntimeError(f"market data request exhausted retries: {path}")
