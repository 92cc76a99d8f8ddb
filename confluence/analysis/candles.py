"""Candle trend scoring from EMA alignment and slope."""

from __future__ import annotations

from typing import Sequence

from confluence.analysis.indicators import calculate_atr, calculate_ema, candles_to_frame
from confluence.analysis.models import (
    MAX_SCORE,
    Candle,
    CandleTrendScore,
    Direction,
    _clamp,
)
from confluence.config.settings import AnalysisConfig

SLOPE_LOOKBACK = 3
# Minimum trend strength (0-1) before the candles count as directional.
MIN_TREND_STRENGTH = 0.3


def _normalize(value: float, min_val: float, max_val: float) -> float:
    if max_val == min_val:
        return 0.0
    return _clamp((value - min_val) / (max_val - min_val), 0.0, 1.0)


class CandleTrendAnalyzer:
    """Directional read of recent candles.

    Strength blends EMA alignment (0.5), fast-EMA slope in ATR units (0.3)
    and where the last close sits against the slow EMA (0.2).
    """

    def __init__(self, config: AnalysisConfig | None = None) -> None:
        config = config or AnalysisConfig()
        self.ema_fast = config.ema_fast
        self.ema_slow = config.ema_slow
        self.atr_period = config.atr_period

    def analyze(self, candles: Sequence[Candle]) -> CandleTrendScore:
        if len(candles) < self.ema_slow:
            return CandleTrendScore(direction=Direction.NEUTRAL, score=0.0)

        df = candles_to_frame(candles)
        close = df["close"]
        ema_fast = calculate_ema(close, self.ema_fast)
        ema_slow = calculate_ema(close, self.ema_slow)
        atr = calculate_atr(df, self.atr_period)

        fast_now = float(ema_fast.iloc[-1])
        slow_now = float(ema_slow.iloc[-1])
        fast_prev = float(ema_fast.iloc[-1 - SLOPE_LOOKBACK])
        atr_now = float(atr.iloc[-1])
        last_close = float(close.iloc[-1])

        if fast_now > slow_now:
            candidate = Direction.LONG
        elif fast_now < slow_now:
            candidate = Direction.SHORT
        else:
            candidate = Direction.NEUTRAL

        extras = {
            "ema_fast": fast_now,
            "ema_slow": slow_now,
            "atr": atr_now,
            "last_close": last_close,
        }
        if candidate == Direction.NEUTRAL:
            return CandleTrendScore(direction=Direction.NEUTRAL, score=0.0, **extras)

        slope = (fast_now - fast_prev) * candidate.sign
        slope_strength = _normalize(slope / atr_now, 0, 0.5) if atr_now > 0 else 0.0
        if candidate == Direction.LONG:
            price_position = 1.0 if last_close > slow_now else 0.0
        else:
            price_position = 1.0 if last_close < slow_now else 0.0

        strength = 0.5 + slope_strength * 0.3 + price_position * 0.2
        # Alignment without slope or price confirmation is a stale cross.
        if slope_strength == 0.0 and price_position == 0.0:
            strength = 0.0
        if strength < MIN_TREND_STRENGTH:
            return CandleTrendScore(direction=Direction.NEUTRAL, score=0.0, **extras)
        return CandleTrendScore(direction=candidate, score=strength * MAX_SCORE, **extras)


_default_analyzer = CandleTrendAnalyzer()


def analyze_candles(candles: Sequence[Candle]) -> CandleTrendScore:
    """Score candle trend with the default parameters."""
    return _default_analyzer.analyze(candles)
