"""Range-compression (consolidation) detection on candles."""

from __future__ import annotations

from typing import Sequence

from confluence.analysis.indicators import (
    calculate_efficiency_ratio,
    calculate_true_range,
    candles_to_frame,
)
from confluence.analysis.models import Candle, ConsolidationResult
from confluence.config.settings import AnalysisConfig


class ConsolidationDetector:
    """Flag markets that are ranging rather than trending.

    The short-window mean true range is compared with the mean over the whole
    window. Compression alone is not enough: a window whose closes drift
    efficiently in one direction, or move more than ``max_drift_atr`` reference
    ATRs net, is treated as trending.
    """

    def __init__(self, config: AnalysisConfig | None = None) -> None:
        config = config or AnalysisConfig()
        self.min_candles = config.min_candles
        self.short_window = config.short_window
        self.compression_threshold = config.compression_threshold
        self.efficiency_max = config.efficiency_max
        self.max_drift_atr = config.max_drift_atr

    def detect(self, candles: Sequence[Candle]) -> ConsolidationResult:
        if len(candles) < self.min_candles:
            return ConsolidationResult(is_consolidating=False, compression_ratio=1.0)

        df = candles_to_frame(candles)
        true_range = calculate_true_range(df)
        reference_atr = float(true_range.mean())
        short_atr = float(true_range.tail(self.short_window).mean())
        if reference_atr <= 0:
            compression_ratio = 0.0
        else:
            compression_ratio = short_atr / reference_atr

        closes = df["close"]
        efficiency = calculate_efficiency_ratio(closes)
        net_drift = abs(float(closes.iloc[-1]) - float(closes.iloc[0]))
        drift_atr = net_drift / reference_atr if reference_atr > 0 else 0.0

        trending = efficiency >= self.efficiency_max or drift_atr > self.max_drift_atr
        is_consolidating = compression_ratio <= self.compression_threshold and not trending
        return ConsolidationResult(
            is_consolidating=is_consolidating,
            compression_ratio=compression_ratio,
            efficiency_ratio=efficiency,
        )


_default_detector = ConsolidationDetector()


def detect_consolidation(candles: Sequence[Candle]) -> ConsolidationResult:
    """Detect consolidation with the default parameters."""
    return _default_detector.detect(candles)
