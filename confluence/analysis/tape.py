"""Trade tape (aggressor flow) analysis."""

from __future__ import annotations

from typing import Sequence

from confluence.analysis.models import Direction, TapeScore, Trade, direction_from_imbalance
from confluence.config.settings import AnalysisConfig

MIN_RECENCY_WEIGHT = 0.5


def _recency_weights(count: int) -> list[float]:
    if count == 1:
        return [1.0]
    step = (1.0 - MIN_RECENCY_WEIGHT) / (count - 1)
    return [MIN_RECENCY_WEIGHT + i * step for i in range(count)]


class TapeAnalyzer:
    """Score buy versus sell aggression, weighting recent trades more.

    Weights rise linearly from 0.5 on the oldest trade to 1.0 on the newest.
    """

    def __init__(self, config: AnalysisConfig | None = None) -> None:
        config = config or AnalysisConfig()
        self.threshold = config.imbalance_threshold
        self.gain = config.score_gain

    def analyze(self, trades: Sequence[Trade]) -> TapeScore:
        if not trades:
            return TapeScore(direction=Direction.NEUTRAL, score=0.0)

        ordered = sorted(trades, key=lambda t: t.time)
        weights = _recency_weights(len(ordered))

        weighted_buy = 0.0
        weighted_sell = 0.0
        delta = 0.0
        for trade, weight in zip(ordered, weights):
            notional = trade.notional
            if notional <= 0:
                continue
            if trade.is_buy:
                weighted_buy += notional * weight
                delta += notional
            else:
                weighted_sell += notional * weight
                delta -= notional

        recent = ordered[-max(1, len(ordered) // 3):]
        recent_delta = sum(t.notional if t.is_buy else -t.notional for t in recent if t.notional > 0)

        price_move = ordered[-1].price - ordered[0].price
        cvd_divergence = (price_move > 0 and delta < 0) or (price_move < 0 and delta > 0)

        total = weighted_buy + weighted_sell
        if total <= 0:
            return TapeScore(direction=Direction.NEUTRAL, score=0.0, trade_count=len(ordered))

        imbalance = (weighted_buy - weighted_sell) / total
        direction, score = direction_from_imbalance(imbalance, self.threshold, self.gain)
        return TapeScore(
            direction=direction,
            score=score,
            imbalance=imbalance,
            delta=delta,
            recent_delta=recent_delta,
            cvd_divergence=cvd_divergence,
            trade_count=len(ordered),
        )


_default_analyzer = TapeAnalyzer()


def analyze_tape(trades: Sequence[Trade]) -> TapeScore:
    """Analyze a trade window with the default parameters."""
    return _default_analyzer.analyze(trades)
