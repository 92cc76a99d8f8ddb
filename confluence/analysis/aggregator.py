"""Fuse component scores into a single directional signal."""

from __future__ import annotations

from typing import Mapping

import structlog

from confluence.analysis.models import (
    MAX_SCORE,
    SPREAD_CAUTION_PCT,
    Direction,
    DirectionalScore,
    OrderBookScore,
    Signal,
    _clamp,
)

log = structlog.get_logger(__name__)

MODE_WEIGHTS: dict[str, dict[str, float]] = {
    "standard": {"candles": 0.5, "order_book": 0.25, "tape": 0.25},
    "scalping": {"candles": 0.2, "order_book": 0.4, "tape": 0.4},
}
DEFAULT_MODE = "standard"
MIN_SIGNIFICANCE = 0.1
# Disagreeing components: confidence is scaled down, then capped.
CONFLICT_PENALTY = 0.5
CONFLICT_CEILING = 0.65
WIDE_SPREAD_DAMPING = 0.85


class SignalAggregator:
    """Weighted vote of the candle, order book and tape components.

    Each component contributes ``sign * min(score / 10, 1)`` scaled by its
    mode weight; the sum is normalised by the weights of the components that
    actually voted, so silent components neither dilute nor count.
    """

    def __init__(self, mode_weights: Mapping[str, Mapping[str, float]] | None = None) -> None:
        self.mode_weights = mode_weights or MODE_WEIGHTS

    def weights_for(self, trading_mode: str) -> Mapping[str, float]:
        weights = self.mode_weights.get(trading_mode)
        if weights is None:
            log.debug("unknown_trading_mode", trading_mode=trading_mode)
            weights = self.mode_weights[DEFAULT_MODE]
        return weights

    def compute_signal(
        self,
        inputs: Mapping[str, DirectionalScore],
        trading_mode: str = DEFAULT_MODE,
    ) -> Signal:
        weights = self.weights_for(trading_mode)
        mode = trading_mode if trading_mode in self.mode_weights else DEFAULT_MODE
        components = {name: inputs[name] for name in weights if name in inputs}

        weighted_sum = 0.0
        active_weight = 0.0
        directions: set[Direction] = set()
        for name, component in components.items():
            if component.direction == Direction.NEUTRAL:
                continue
            weight = weights[name]
            strength = min(component.score / MAX_SCORE, 1.0)
            weighted_sum += weight * component.direction.sign * strength
            active_weight += weight
            directions.add(component.direction)

        if active_weight <= 0:
            return Signal(
                direction=Direction.NEUTRAL,
                confidence=0.0,
                confluence=False,
                trading_mode=mode,
                components=components,
                weights=dict(weights),
            )

        combined = _clamp(weighted_sum / active_weight, -1.0, 1.0)
        confluence = len(directions) == 1
        confidence = _clamp(abs(combined), 0.0, 1.0)
        if not confluence:
            confidence = min(confidence * CONFLICT_PENALTY, CONFLICT_CEILING)

        order_book = components.get("order_book")
        if isinstance(order_book, OrderBookScore) and order_book.spread_pct > SPREAD_CAUTION_PCT:
            confidence *= WIDE_SPREAD_DAMPING

        if abs(combined) < MIN_SIGNIFICANCE:
            direction = Direction.NEUTRAL
            confidence = 0.0
            confluence = False
        else:
            direction = Direction.LONG if combined > 0 else Direction.SHORT

        return Signal(
            direction=direction,
            confidence=confidence,
            confluence=confluence,
            combined=combined,
            trading_mode=mode,
            components=components,
            weights=dict(weights),
        )


_default_aggregator = SignalAggregator()


def compute_signal(
    inputs: Mapping[str, DirectionalScore],
    options: Mapping[str, str] | None = None,
) -> Signal:
    """Aggregate with the fixed mode weight tables.

    ``options`` accepts ``trading_mode`` ("standard" or "scalping").
    """
    trading_mode = (options or {}).get("trading_mode", DEFAULT_MODE)
    return _default_aggregator.compute_signal(inputs, trading_mode)
