from __future__ import annotations

import httpx
import pytest

from confluence.config.settings import Settings
from confluence.connectors.market_data import BinanceMarketData


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url="https://fapi.test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_order_book_is_parsed_and_sorted() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"bids": [["99.0", "2"], ["100.0", "1"]], "asks": [["101.5", "3"], ["101.0", "4"]]},
        )

    market = BinanceMarketData(Settings(), http=_client(handler))
    book = await market.get_order_book("btc-usdt")
    await market.close()

    assert book.bids == [(100.0, 1.0), (99.0, 2.0)]
    assert book.asks == [(101.0, 4.0), (101.5, 3.0)]
    assert seen[0].url.path == "/fapi/v1/depth"
    assert seen[0].url.params["symbol"] == "BTCUSDT"
    assert "X-MBX-APIKEY" not in seen[0].headers


@pytest.mark.asyncio
async def test_agg_trades_use_maker_flag_for_side() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=[
                {"p": "100.0", "q": "2", "T": 1, "m": False},
                {"p": "100.5", "q": "1", "T": 2, "m": True},
            ],
        )

    market = BinanceMarketData(Settings(), http=_client(handler))
    trades = await market.get_trades("BTCUSDT")

    assert [t.is_buy for t in trades] == [True, False]
    assert trades[0].notional == pytest.approx(200.0)
    assert trades[1].time == 2


@pytest.mark.asyncio
async def test_klines_are_parsed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["interval"] == "15m"
        return httpx.Response(200, json=[[60000, "1", "2", "0.5", "1.5", "10", 119999]])

    market = BinanceMarketData(Settings(), http=_client(handler))
    candles = await market.get_candles("ETHUSDT", "15m")

    assert len(candles) == 1
    assert candles[0].time == 60000
    assert candles[0].close == 1.5
    assert candles[0].volume == 10.0


@pytest.mark.asyncio
async def test_retryable_status_is_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            return httpx.Response(503)
        return httpx.Response(200, json={"symbol": "BTCUSDT", "price": "64000.5"})

    market = BinanceMarketData(Settings(), http=_client(handler), max_attempts=2)
    assert await market.get_price("BTCUSDT") == 64000.5
    assert calls == 2


@pytest.mark.asyncio
async def test_client_error_is_not_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(400, json={"code": -1121, "msg": "Invalid symbol."})

    market = BinanceMarketData(Settings(), http=_client(handler))
    with pytest.raises(httpx.HTTPStatusError):
        await market.get_order_book("NOPE")
    assert calls == 1


def test_testnet_environment_selects_testnet_url() -> None:
    assert Settings(environment="testnet").market_data_base_url == "https://testnet.binancefuture.com"
    assert Settings(environment="production").market_data_base_url == "https://fapi.binance.com"
