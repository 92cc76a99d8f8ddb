"""Order book depth imbalance analysis."""

from __future__ import annotations

from typing import Sequence

from confluence.analysis.models import (
    SPREAD_CAUTION_PCT,
    SPREAD_GOOD_PCT,
    SPREAD_UNKNOWN,
    Direction,
    OrderBookScore,
    PriceLevel,
    SpreadQuality,
    direction_from_imbalance,
)
from confluence.config.settings import AnalysisConfig


def classify_spread(spread_pct: float) -> SpreadQuality:
    if spread_pct >= SPREAD_UNKNOWN:
        return SpreadQuality.UNKNOWN
    if spread_pct <= SPREAD_GOOD_PCT:
        return SpreadQuality.GOOD
    if spread_pct <= SPREAD_CAUTION_PCT:
        return SpreadQuality.CAUTION
    return SpreadQuality.WIDE


def _weighted_depth(levels: Sequence[PriceLevel], k: int) -> float:
    depth = 0.0
    for i, (price, size) in enumerate(levels[:k]):
        if price <= 0 or size <= 0:
            continue
        depth += price * size * (1 - i / k)
    return depth


def _spread_pct(bids: Sequence[PriceLevel], asks: Sequence[PriceLevel]) -> float:
    if not bids or not asks:
        return SPREAD_UNKNOWN
    best_bid = bids[0][0]
    best_ask = asks[0][0]
    if best_bid <= 0 or best_ask <= 0:
        return SPREAD_UNKNOWN
    return (best_ask - best_bid) / best_bid * 100


class OrderBookAnalyzer:
    """Score resting liquidity imbalance near the top of the book.

    Levels closer to the touch carry more weight: level i of k is weighted
    (1 - i/k). Bids must be sorted descending and asks ascending.
    """

    def __init__(self, config: AnalysisConfig | None = None) -> None:
        config = config or AnalysisConfig()
        self.levels = config.order_book_levels
        self.threshold = config.imbalance_threshold
        self.gain = config.score_gain

    def analyze(
        self,
        bids: Sequence[PriceLevel],
        asks: Sequence[PriceLevel],
    ) -> OrderBookScore:
        spread_pct = _spread_pct(bids, asks)
        quality = classify_spread(spread_pct)
        bid_depth = _weighted_depth(bids, self.levels)
        ask_depth = _weighted_depth(asks, self.levels)
        total = bid_depth + ask_depth
        if total <= 0:
            return OrderBookScore(
                direction=Direction.NEUTRAL,
                score=0.0,
                spread_pct=SPREAD_UNKNOWN,
                spread_quality=SpreadQuality.UNKNOWN,
            )

        dom_score = (bid_depth - ask_depth) / total
        direction, score = direction_from_imbalance(dom_score, self.threshold, self.gain)
        return OrderBookScore(
            direction=direction,
            score=score,
            dom_score=dom_score,
            spread_pct=spread_pct,
            spread_quality=quality,
            bid_depth=bid_depth,
            ask_depth=ask_depth,
        )


_default_analyzer = OrderBookAnalyzer()


def analyze_order_book(
    bids: Sequence[PriceLevel],
    asks: Sequence[PriceLevel],
) -> OrderBookScore:
    """Analyze a book with the default parameters."""
    return _default_analyzer.analyze(bids, asks)
