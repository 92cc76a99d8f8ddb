"""Data models shared by the microstructure analyzers and the aggregator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Sequence

MAX_SCORE = 10.0
IMBALANCE_THRESHOLD = 0.15
SCORE_GAIN = 1.5
SPREAD_GOOD_PCT = 0.05
SPREAD_CAUTION_PCT = 0.15
# Reported when the spread cannot be measured (empty or one-sided book).
SPREAD_UNKNOWN = 999.0

PriceLevel = tuple[float, float]


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"
    NEUTRAL = "NEUTRAL"

    @property
    def sign(self) -> int:
        if self is Direction.LONG:
            return 1
        if self is Direction.SHORT:
            return -1
        return 0


class SpreadQuality(str, Enum):
    GOOD = "good"
    CAUTION = "caution"
    WIDE = "wide"
    UNKNOWN = "unknown"


def _clamp(value: float, min_val: float, max_val: float) -> float:
    return max(min_val, min(max_val, value))


@dataclass(frozen=True)
class Trade:
    """A single aggressor trade from the tape."""

    price: float
    amount: float
    time: int
    is_buy: bool
    quote_quantity: float = 0.0

    @property
    def notional(self) -> float:
        if self.quote_quantity > 0:
            return self.quote_quantity
        return self.price * self.amount


@dataclass(frozen=True)
class Candle:
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class OrderBookSnapshot:
    bids: Sequence[PriceLevel]
    asks: Sequence[PriceLevel]


@dataclass(frozen=True)
class DirectionalScore:
    """Direction plus a non-negative strength on a 0-10 scale.

    A NEUTRAL direction always carries a score of exactly 0.
    """

    direction: Direction
    score: float

    def __post_init__(self) -> None:
        if self.score < 0:
            raise ValueError("score must be non-negative")
        if self.direction == Direction.NEUTRAL and self.score != 0:
            raise ValueError("neutral score must be zero")
        if self.direction != Direction.NEUTRAL and self.score == 0:
            raise ValueError("directional score must be positive")


@dataclass(frozen=True)
class OrderBookScore(DirectionalScore):
    dom_score: float = 0.0
    spread_pct: float = SPREAD_UNKNOWN
    spread_quality: SpreadQuality = SpreadQuality.UNKNOWN
    bid_depth: float = 0.0
    ask_depth: float = 0.0


@dataclass(frozen=True)
class TapeScore(DirectionalScore):
    imbalance: float = 0.0
    delta: float = 0.0
    recent_delta: float = 0.0
    cvd_divergence: bool = False
    trade_count: int = 0


@dataclass(frozen=True)
class CandleTrendScore(DirectionalScore):
    ema_fast: float = 0.0
    ema_slow: float = 0.0
    atr: float = 0.0
    last_close: float = 0.0


@dataclass(frozen=True)
class ConsolidationResult:
    is_consolidating: bool
    compression_ratio: float
    efficiency_ratio: float = 1.0


@dataclass(frozen=True)
class Signal:
    """Aggregated decision built once per evaluation and never mutated."""

    direction: Direction
    confidence: float
    confluence: bool
    combined: float = 0.0
    trading_mode: str = "standard"
    components: Mapping[str, DirectionalScore] = field(default_factory=dict)
    weights: Mapping[str, float] = field(default_factory=dict)

    @classmethod
    def neutral(cls, trading_mode: str = "standard") -> "Signal":
        return cls(
            direction=Direction.NEUTRAL,
            confidence=0.0,
            confluence=False,
            trading_mode=trading_mode,
        )


def direction_from_imbalance(
    imbalance: float,
    threshold: float = IMBALANCE_THRESHOLD,
    gain: float = SCORE_GAIN,
) -> tuple[Direction, float]:
    """Map a signed imbalance in [-1, 1] to a direction and a 0-10 score."""
    if abs(imbalance) < threshold:
        return Direction.NEUTRAL, 0.0
    score = min(MAX_SCORE, abs(imbalance) * MAX_SCORE * gain)
    if score <= 0:
        return Direction.NEUTRAL, 0.0
    direction = Direction.LONG if imbalance > 0 else Direction.SHORT
    return direction, score
