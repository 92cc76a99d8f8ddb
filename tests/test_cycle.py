from __future__ import annotations

from pathlib import Path

import httpx
import orjson
import pytest

from confluence.analysis.models import Candle, OrderBookSnapshot, Trade
from confluence.config.settings import Settings
from confluence.connectors.external_ai import ExternalAiConfigStore, ExternalAiGate
from confluence.execution.gateway import OrderRequest, OrderResult
from confluence.models import AutoTradeSessionConfig
from confluence.monitoring.decision_log import DecisionLogger
from confluence.scheduler import TradeCycle
from confluence.storage.credentials import CredentialStore
from confluence.storage.settings_store import InMemorySettingsStore


def _bullish_book() -> OrderBookSnapshot:
    bids = [(129.9 - 0.1 * i, 10.0) for i in range(5)]
    asks = [(130.0 + 0.1 * i, 1.0) for i in range(5)]
    return OrderBookSnapshot(bids=bids, asks=asks)


def _flat_book() -> OrderBookSnapshot:
    bids = [(99.9 - 0.1 * i, 5.0) for i in range(5)]
    asks = [(100.0 + 0.1 * i, 5.0) for i in range(5)]
    return OrderBookSnapshot(bids=bids, asks=asks)


def _buy_tape(count: int = 30) -> list[Trade]:
    return [Trade(price=129.9 + 0.001 * i, amount=1.0, time=i, is_buy=True) for i in range(count)]


def _mixed_tape(count: int = 30) -> list[Trade]:
    return [Trade(price=100.0, amount=1.0, time=i, is_buy=i % 2 == 0) for i in range(count)]


def _uptrend(count: int = 60, step: float = 0.5) -> list[Candle]:
    return [
        Candle(time=i * 60_000, open=c, high=c + 0.3, low=c - 0.3, close=c, volume=10.0)
        for i, c in ((i, 100.0 + step * i) for i in range(count))
    ]


def _flat_candles(count: int = 60) -> list[Candle]:
    return [Candle(time=i, open=100.0, high=100.3, low=99.7, close=100.0) for i in range(count)]


class FakeMarketData:
    def __init__(self) -> None:
        self.books: dict[str, OrderBookSnapshot] = {}
        self.trades: dict[str, list[Trade]] = {}
        self.candles: dict[str, list[Candle]] = {}
        self.failing: set[str] = set()

    def bullish(self, symbol: str, candles: list[Candle] | None = None) -> None:
        self.books[symbol] = _bullish_book()
        self.trades[symbol] = _buy_tape()
        self.candles[symbol] = _uptrend() if candles is None else candles

    def flat(self, symbol: str) -> None:
        self.books[symbol] = _flat_book()
        self.trades[symbol] = _mixed_tape()
        self.candles[symbol] = _flat_candles()

    async def get_order_book(self, symbol: str) -> OrderBookSnapshot:
        if symbol in self.failing:
            raise httpx.ConnectError("connection refused")
        return self.books[symbol]

    async def get_trades(self, symbol: str) -> list[Trade]:
        return self.trades[symbol]

    async def get_candles(self, symbol: str, timeframe: str) -> list[Candle]:
        return self.candles[symbol]


class FakeGateway:
    def __init__(self, balance: float = 1000.0, open_positions: int = 0, reject: str | None = None) -> None:
        self.balance = balance
        self.open_positions = open_positions
        self.reject = reject
        self.orders: list[OrderRequest] = []

    async def get_balance(self, user_id: str, use_testnet: bool) -> float:
        return self.balance

    async def open_position_count(self, user_id: str, use_testnet: bool) -> int:
        return self.open_positions

    async def submit(self, order: OrderRequest) -> OrderResult:
        if self.reject:
            return OrderResult(accepted=False, reason=self.reject)
        self.orders.append(order)
        return OrderResult(accepted=True, order_id=f"paper-{len(self.orders)}")


class FixedJudge:
    def __init__(self, reply: str) -> None:
        self.reply = reply

    async def complete(self, client, api_key: str, model: str, prompt: str) -> str:
        return self.reply


class PerSymbolJudge:
    def __init__(self, replies: dict[str, str], default: str) -> None:
        self.replies = replies
        self.default = default

    async def complete(self, client, api_key: str, model: str, prompt: str) -> str:
        for symbol, reply in self.replies.items():
            if symbol in prompt:
                return reply
        return self.default


def _cycle(
    market: FakeMarketData,
    gateway: FakeGateway,
    ai_reply: str | None = None,
    min_score: float = 0.6,
    decision_log: DecisionLogger | None = None,
    judge: FixedJudge | PerSymbolJudge | None = None,
) -> TradeCycle:
    store = InMemorySettingsStore()
    if ai_reply is not None:
        ExternalAiConfigStore(store).update({"enabled": True, "min_score": min_score})
        CredentialStore(store).set_api_key("openai", "sk-test")
    gate = ExternalAiGate(
        ExternalAiConfigStore(store),
        CredentialStore(store),
        judges={"openai": judge or FixedJudge(ai_reply or "0.5")},
    )
    return TradeCycle(Settings(), market, gateway, gate, decision_log=decision_log)


@pytest.mark.asyncio
async def test_signal_only_when_orders_disabled() -> None:
    market = FakeMarketData()
    market.bullish("BTCUSDT")
    gateway = FakeGateway()
    outcome = await _cycle(market, gateway).run("alice", AutoTradeSessionConfig(symbols=["BTCUSDT"]))

    assert outcome.last_skip_reason == "execute_orders_disabled"
    assert outcome.symbol == "BTCUSDT"
    assert outcome.last_ai_prob is not None and outcome.last_ai_prob >= 0.62
    assert outcome.last_effective_ai_prob == outcome.last_ai_prob
    assert outcome.last_external_ai_used is False
    assert gateway.orders == []


@pytest.mark.asyncio
async def test_order_submitted_with_protective_prices() -> None:
    market = FakeMarketData()
    market.bullish("BTCUSDT")
    gateway = FakeGateway(balance=1000.0)
    config = AutoTradeSessionConfig(symbols=["BTCUSDT"], execute_orders=True, leverage=5, size_percent=10)
    outcome = await _cycle(market, gateway).run("alice", config)

    assert outcome.last_order_id == "paper-1"
    assert outcome.last_error is None
    order = gateway.orders[0]
    assert order.direction.value == "LONG"
    assert order.entry_price == pytest.approx(129.95)
    assert order.stop_price < order.entry_price < order.take_profit
    assert order.leverage == 5
    # 10% of the balance after the 2% reserve, at 5x.
    assert order.notional == pytest.approx(490.0)


@pytest.mark.asyncio
async def test_max_positions_reached_is_a_skip() -> None:
    market = FakeMarketData()
    market.bullish("BTCUSDT")
    gateway = FakeGateway(open_positions=2)
    config = AutoTradeSessionConfig(symbols=["BTCUSDT"], execute_orders=True, max_positions=2)
    outcome = await _cycle(market, gateway).run("alice", config)

    assert outcome.last_skip_reason == "max_positions_reached"
    assert outcome.last_error is None
    assert gateway.orders == []


@pytest.mark.asyncio
async def test_neutral_market_is_skipped() -> None:
    market = FakeMarketData()
    market.flat("BTCUSDT")
    outcome = await _cycle(market, FakeGateway()).run("alice", AutoTradeSessionConfig(symbols=["BTCUSDT"]))
    assert outcome.last_skip_reason == "neutral_signal"


@pytest.mark.asyncio
async def test_multiple_rejections_collapse_to_generic_reason() -> None:
    market = FakeMarketData()
    market.flat("BTCUSDT")
    market.flat("ETHUSDT")
    config = AutoTradeSessionConfig(symbols=["BTCUSDT", "ETHUSDT"])
    outcome = await _cycle(market, FakeGateway()).run("alice", config)
    assert outcome.last_skip_reason == "no_qualifying_signal"


@pytest.mark.asyncio
async def test_market_data_failure_is_a_skip() -> None:
    market = FakeMarketData()
    market.bullish("BTCUSDT")
    market.failing.add("BTCUSDT")
    outcome = await _cycle(market, FakeGateway()).run("alice", AutoTradeSessionConfig(symbols=["BTCUSDT"]))
    assert outcome.last_skip_reason == "market_data_unavailable"
    assert outcome.last_error is None


@pytest.mark.asyncio
async def test_full_auto_picks_single_best_candidate() -> None:
    market = FakeMarketData()
    market.bullish("BTCUSDT")
    market.bullish("ETHUSDT", candles=_uptrend(step=0.05))
    gateway = FakeGateway(balance=5000.0)
    config = AutoTradeSessionConfig(
        symbols=["ETHUSDT", "BTCUSDT"],
        execute_orders=True,
        max_positions=2,
        full_auto=True,
    )
    outcome = await _cycle(market, gateway).run("alice", config)

    assert [o.symbol for o in gateway.orders] == ["BTCUSDT"]
    assert outcome.symbol == "BTCUSDT"


@pytest.mark.asyncio
async def test_full_auto_does_not_fall_back_when_best_is_rejected() -> None:
    market = FakeMarketData()
    market.bullish("BTCUSDT")
    market.bullish("ETHUSDT", candles=_uptrend(step=0.05))
    gateway = FakeGateway(balance=5000.0)
    config = AutoTradeSessionConfig(
        symbols=["ETHUSDT", "BTCUSDT"],
        execute_orders=True,
        max_positions=2,
        full_auto=True,
    )
    judge = PerSymbolJudge({"BTCUSDT": "0.1"}, default="0.95")
    outcome = await _cycle(market, gateway, ai_reply="0.95", min_score=0.6, judge=judge).run("alice", config)

    assert gateway.orders == []
    assert outcome.symbol == "BTCUSDT"
    assert outcome.last_skip_reason == "external_ai_below_min_score"
    assert outcome.last_external_ai_score == pytest.approx(0.1)


@pytest.mark.asyncio
async def test_without_full_auto_fills_free_slots() -> None:
    market = FakeMarketData()
    market.bullish("BTCUSDT")
    market.bullish("ETHUSDT", candles=_uptrend(step=0.05))
    gateway = FakeGateway(balance=5000.0)
    config = AutoTradeSessionConfig(symbols=["ETHUSDT", "BTCUSDT"], execute_orders=True, max_positions=2)
    await _cycle(market, gateway).run("alice", config)

    assert [o.symbol for o in gateway.orders] == ["BTCUSDT", "ETHUSDT"]


@pytest.mark.asyncio
async def test_external_ai_below_min_score_blocks() -> None:
    market = FakeMarketData()
    market.bullish("BTCUSDT")
    gateway = FakeGateway()
    config = AutoTradeSessionConfig(symbols=["BTCUSDT"], execute_orders=True)
    outcome = await _cycle(market, gateway, ai_reply="0.5", min_score=0.8).run("alice", config)

    assert outcome.last_skip_reason == "external_ai_below_min_score"
    assert outcome.last_external_ai_used is True
    assert outcome.last_external_ai_score == pytest.approx(0.5)
    assert outcome.last_effective_ai_prob == pytest.approx((outcome.last_ai_prob + 0.5) / 2)
    assert gateway.orders == []


@pytest.mark.asyncio
async def test_effective_probability_below_user_minimum_blocks() -> None:
    market = FakeMarketData()
    market.bullish("BTCUSDT")
    gateway = FakeGateway()
    config = AutoTradeSessionConfig(symbols=["BTCUSDT"], execute_orders=True, min_ai_prob=0.6)
    outcome = await _cycle(market, gateway, ai_reply="0.0", min_score=0.0).run("alice", config)

    assert outcome.last_skip_reason == "ai_prob_below_min"
    assert outcome.last_effective_ai_prob <= 0.5
    assert gateway.orders == []


@pytest.mark.asyncio
async def test_inactive_session_never_submits() -> None:
    market = FakeMarketData()
    market.bullish("BTCUSDT")
    gateway = FakeGateway()
    config = AutoTradeSessionConfig(symbols=["BTCUSDT"], execute_orders=True)
    outcome = await _cycle(market, gateway).run("alice", config, is_current=lambda: False)

    assert outcome.last_skip_reason == "session_inactive"
    assert gateway.orders == []


@pytest.mark.asyncio
async def test_small_balance_is_below_min_notional() -> None:
    market = FakeMarketData()
    market.bullish("BTCUSDT")
    gateway = FakeGateway(balance=1.0)
    config = AutoTradeSessionConfig(symbols=["BTCUSDT"], execute_orders=True, leverage=1, size_percent=1)
    outcome = await _cycle(market, gateway).run("alice", config)
    assert outcome.last_skip_reason == "below_min_notional"


@pytest.mark.asyncio
async def test_gateway_rejection_is_an_error() -> None:
    market = FakeMarketData()
    market.bullish("BTCUSDT")
    gateway = FakeGateway(reject="insufficient_balance")
    config = AutoTradeSessionConfig(symbols=["BTCUSDT"], execute_orders=True)
    outcome = await _cycle(market, gateway).run("alice", config)
    assert outcome.last_error == "insufficient_balance"
    assert outcome.last_order_id is None


@pytest.mark.asyncio
async def test_decision_log_records_both_stages(workspace_tmp_path: Path) -> None:
    market = FakeMarketData()
    market.bullish("BTCUSDT")
    market.flat("ETHUSDT")
    log_path = workspace_tmp_path / "decisions.jsonl"
    cycle = _cycle(market, FakeGateway(), decision_log=DecisionLogger(log_path))
    await cycle.run("alice", AutoTradeSessionConfig(symbols=["BTCUSDT", "ETHUSDT"]))

    records = [orjson.loads(line) for line in log_path.read_bytes().splitlines()]
    by_stage = {(r["symbol"], r["stage"]): r for r in records}
    assert by_stage[("ETHUSDT", "pre_ai")]["rejected_by"] == "neutral_signal"
    assert by_stage[("BTCUSDT", "pre_ai")]["rejected_by"] is None
    assert by_stage[("BTCUSDT", "post_ai")]["effective_ai_prob"] is not None
    assert set(by_stage[("BTCUSDT", "pre_ai")]["components"]) == {"candles", "order_book", "tape"}
