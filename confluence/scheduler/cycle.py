"""One auto-trade evaluation: market data to signal to gates to order."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Sequence

import httpx
import structlog

from confluence.analysis.aggregator import SignalAggregator
from confluence.analysis.candles import CandleTrendAnalyzer
from confluence.analysis.consolidation import ConsolidationDetector
from confluence.analysis.models import (
    CandleTrendScore,
    Direction,
    OrderBookScore,
    PriceLevel,
    Signal,
)
from confluence.analysis.orderbook import OrderBookAnalyzer
from confluence.analysis.tape import TapeAnalyzer
from confluence.config.settings import Settings
from confluence.connectors.external_ai import AiRequest, AiVerdict, ExternalAiGate
from confluence.connectors.market_data import MarketDataSource
from confluence.execution.gateway import ExecutionGateway, OrderRequest
from confluence.models import AutoTradeSessionConfig, ExecutionOutcome
from confluence.monitoring.decision_log import DecisionLogger
from confluence.monitoring.metrics import Metrics
from confluence.risk.sizing import PositionSizer, ProtectivePrices

log = structlog.get_logger(__name__)

RANK_CONFIDENCE_WEIGHT = 0.5
RANK_REWARD_WEIGHT = 0.35
RANK_CONFLUENCE_WEIGHT = 0.15
RANK_REWARD_CAP = 3.0


@dataclass(frozen=True)
class Candidate:
    """A symbol whose signal passed every pre-AI gate."""

    symbol: str
    signal: Signal
    entry_price: float
    protective: ProtectivePrices
    spread_pct: float

    @property
    def rank_score(self) -> float:
        reward = min(self.protective.risk_reward / RANK_REWARD_CAP, 1.0)
        bonus = 1.0 if self.signal.confluence else 0.0
        return (
            self.signal.confidence * RANK_CONFIDENCE_WEIGHT
            + reward * RANK_REWARD_WEIGHT
            + bonus * RANK_CONFLUENCE_WEIGHT
        )


@dataclass(frozen=True)
class Rejection:
    symbol: str
    reason: str


class TradeCycle:
    """Evaluate a user's symbols and submit at most ``max_positions`` orders."""

    def __init__(
        self,
        settings: Settings,
        market_data: MarketDataSource,
        gateway: ExecutionGateway,
        ai_gate: ExternalAiGate,
        metrics: Metrics | None = None,
        decision_log: DecisionLogger | None = None,
    ) -> None:
        self.settings = settings
        self.market_data = market_data
        self.gateway = gateway
        self.ai_gate = ai_gate
        self.metrics = metrics
        self.decision_log = decision_log
        self.order_book = OrderBookAnalyzer(settings.analysis)
        self.tape = TapeAnalyzer(settings.analysis)
        self.consolidation = ConsolidationDetector(settings.analysis)
        self.candles = CandleTrendAnalyzer(settings.analysis)
        self.aggregator = SignalAggregator()
        self.sizer = PositionSizer(settings.risk)

    async def run(
        self,
        user_id: str,
        config: AutoTradeSessionConfig,
        is_current: Callable[[], bool] = lambda: True,
    ) -> ExecutionOutcome:
        evaluations = await asyncio.gather(
            *(self.evaluate_symbol(user_id, symbol, config) for symbol in config.symbols)
        )
        candidates = sorted(
            (e for e in evaluations if isinstance(e, Candidate)),
            key=lambda c: c.rank_score,
            reverse=True,
        )
        if not candidates:
            rejections = [e for e in evaluations if isinstance(e, Rejection)]
            reason = rejections[0].reason if len(rejections) == 1 else "no_qualifying_signal"
            return ExecutionOutcome(last_skip_reason=reason, use_testnet=config.use_testnet)

        open_count = await self.gateway.open_position_count(user_id, config.use_testnet)
        slots = config.max_positions - open_count
        if slots <= 0:
            return ExecutionOutcome(
                last_skip_reason="max_positions_reached",
                symbol=candidates[0].symbol,
                use_testnet=config.use_testnet,
            )
        if config.full_auto:
            # Only the top-ranked symbol is eligible; a rejection ends the cycle.
            return await self._execute_candidate(user_id, candidates[0], config, is_current)

        outcome: ExecutionOutcome | None = None
        submitted = 0
        for candidate in candidates:
            if submitted >= slots:
                break
            result = await self._execute_candidate(user_id, candidate, config, is_current)
            if result.last_order_id:
                submitted += 1
                outcome = result
            elif outcome is None or not outcome.last_order_id:
                outcome = result
            if result.last_skip_reason == "session_inactive":
                return result
        return outcome or ExecutionOutcome(last_skip_reason="no_qualifying_signal", use_testnet=config.use_testnet)

    async def evaluate_symbol(
        self,
        user_id: str,
        symbol: str,
        config: AutoTradeSessionConfig,
    ) -> Candidate | Rejection:
        try:
            book, trades, candles = await asyncio.gather(
                self.market_data.get_order_book(symbol),
                self.market_data.get_trades(symbol),
                self.market_data.get_candles(symbol, config.timeframe),
            )
        except (httpx.HTTPError, KeyError, ValueError, TypeError) as exc:
            log.warning("market_data_unavailable", user_id=user_id, symbol=symbol, error=str(exc))
            return Rejection(symbol, "market_data_unavailable")

        book_score: OrderBookScore = self.order_book.analyze(book.bids, book.asks)
        tape_score = self.tape.analyze(trades)
        trend: CandleTrendScore = self.candles.analyze(candles)
        consolidation = self.consolidation.detect(candles)
        signal = self.aggregator.compute_signal(
            {"candles": trend, "order_book": book_score, "tape": tape_score},
            config.trading_mode,
        )
        if self.metrics is not None:
            self.metrics.signal_confidence.observe(signal.confidence)

        reason = self._pre_ai_rejection(signal, book_score, consolidation.is_consolidating)
        protective = None
        entry_price = 0.0
        if reason is None:
            entry_price = self._entry_price(book.bids, book.asks, trend.last_close)
            protective = self.sizer.protective_prices(
                signal.direction, entry_price, trend.atr, config.tp_multiplier
            )
            if protective is None:
                reason = "no_stop_distance"

        if self.decision_log is not None:
            self.decision_log.log_candidate(
                user_id=user_id,
                symbol=symbol,
                signal=signal,
                spread_pct=book_score.spread_pct,
                consolidating=consolidation.is_consolidating,
                rejected_by=reason,
            )
        if reason is not None or protective is None:
            log.debug("candidate_rejected", user_id=user_id, symbol=symbol, reason=reason)
            return Rejection(symbol, reason or "no_stop_distance")
        return Candidate(
            symbol=symbol,
            signal=signal,
            entry_price=entry_price,
            protective=protective,
            spread_pct=book_score.spread_pct,
        )

    def _pre_ai_rejection(
        self,
        signal: Signal,
        book: OrderBookScore,
        consolidating: bool,
    ) -> str | None:
        gates = self.settings.signal
        if signal.direction == Direction.NEUTRAL:
            return "neutral_signal"
        if signal.confidence < gates.min_confidence:
            return "low_confidence"
        if book.spread_pct > gates.max_spread_pct:
            return "spread_too_wide"
        if consolidating and gates.skip_when_consolidating:
            return "consolidating"
        return None

    @staticmethod
    def _entry_price(
        bids: Sequence[PriceLevel],
        asks: Sequence[PriceLevel],
        last_close: float,
    ) -> float:
        if bids and asks and bids[0][0] > 0 and asks[0][0] > 0:
            return (bids[0][0] + asks[0][0]) / 2
        return last_close

    async def _execute_candidate(
        self,
        user_id: str,
        candidate: Candidate,
        config: AutoTradeSessionConfig,
        is_current: Callable[[], bool],
    ) -> ExecutionOutcome:
        signal = candidate.signal
        ai_prob = signal.confidence
        verdict: AiVerdict = await self.ai_gate.evaluate_signal(
            AiRequest(
                symbol=candidate.symbol,
                direction=signal.direction,
                confidence=signal.confidence,
                risk_reward=candidate.protective.risk_reward,
            )
        )
        effective = (ai_prob + verdict.score) / 2 if verdict.available else ai_prob
        base = dict(
            symbol=candidate.symbol,
            use_testnet=config.use_testnet,
            last_ai_prob=ai_prob,
            last_effective_ai_prob=effective,
            last_external_ai_score=verdict.score,
            last_external_ai_used=verdict.available,
        )

        rejected_by = None
        if not verdict.passes:
            rejected_by = "external_ai_below_min_score"
        elif effective < config.min_ai_prob:
            rejected_by = "ai_prob_below_min"
        if self.decision_log is not None:
            self.decision_log.log_candidate(
                user_id=user_id,
                symbol=candidate.symbol,
                signal=signal,
                spread_pct=candidate.spread_pct,
                consolidating=False,
                ai_prob=ai_prob,
                external_ai_score=verdict.score,
                effective_ai_prob=effective,
                rejected_by=rejected_by,
                stage="post_ai",
            )
        if rejected_by is not None:
            return ExecutionOutcome(last_skip_reason=rejected_by, **base)
        if not config.execute_orders:
            log.info(
                "auto_trade_signal_only",
                user_id=user_id,
                symbol=candidate.symbol,
                direction=signal.direction.value,
                confidence=round(signal.confidence, 4),
            )
            return ExecutionOutcome(last_skip_reason="execute_orders_disabled", **base)

        balance = await self.gateway.get_balance(user_id, config.use_testnet)
        plan = self.sizer.plan(
            balance=balance,
            entry_price=candidate.entry_price,
            stop_price=candidate.protective.stop_price,
            leverage=config.leverage,
            size_mode=config.size_mode,
            size_percent=config.size_percent,
            risk_pct=config.risk_pct,
        )
        if plan is None:
            return ExecutionOutcome(last_skip_reason="below_min_notional", **base)
        if not is_current():
            return ExecutionOutcome(last_skip_reason="session_inactive", **base)

        result = await self.gateway.submit(
            OrderRequest(
                user_id=user_id,
                symbol=candidate.symbol,
                direction=signal.direction,
                quantity=plan.quantity,
                entry_price=candidate.entry_price,
                stop_price=candidate.protective.stop_price,
                take_profit=candidate.protective.take_profit,
                leverage=plan.leverage,
                use_testnet=config.use_testnet,
            )
        )
        if not result.accepted:
            log.warning(
                "auto_trade_order_rejected",
                user_id=user_id,
                symbol=candidate.symbol,
                reason=result.reason,
            )
            return ExecutionOutcome(last_error=result.reason or "order_rejected", **base)
        if self.metrics is not None:
            self.metrics.orders_submitted.labels(mode="testnet" if config.use_testnet else "live").inc()
        log.info(
            "auto_trade_order_submitted",
            user_id=user_id,
            symbol=candidate.symbol,
            direction=signal.direction.value,
            notional=round(plan.notional, 4),
            order_id=result.order_id,
        )
        return ExecutionOutcome(last_order_id=result.order_id, **base)
