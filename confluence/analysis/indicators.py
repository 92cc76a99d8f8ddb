"""Technical indicator calculations on candle frames."""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd

from confluence.analysis.models import Candle


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """Build an OHLCV frame ordered oldest to newest."""
    frame = pd.DataFrame(
        {
            "time": [c.time for c in candles],
            "open": [c.open for c in candles],
            "high": [c.high for c in candles],
            "low": [c.low for c in candles],
            "close": [c.close for c in candles],
            "volume": [c.volume for c in candles],
        }
    )
    return frame.sort_values("time").reset_index(drop=True)


def calculate_ema(series: pd.Series, period: int) -> pd.Series:
    """Exponential moving average."""
    return series.ewm(span=period, adjust=False).mean()


def calculate_true_range(df: pd.DataFrame) -> pd.Series:
    """True range; the first bar falls back to its high-low range."""
    high = df["high"]
    low = df["low"]
    prev_close = df["close"].shift(1)
    return pd.concat(
        [
            (high - low).abs(),
            (high - prev_close).abs(),
            (low - prev_close).abs(),
        ],
        axis=1,
    ).max(axis=1)


def calculate_atr(df: pd.DataFrame, period: int) -> pd.Series:
    """Average True Range."""
    return calculate_true_range(df).rolling(window=period, min_periods=1).mean()


def calculate_efficiency_ratio(closes: pd.Series) -> float:
    """Kaufman efficiency ratio: net move over the sum of absolute moves.

    1.0 is a straight line, values near 0 are back-and-forth chop.
    """
    if len(closes) < 2:
        return 0.0
    net = abs(float(closes.iloc[-1]) - float(closes.iloc[0]))
    path = float(np.abs(np.diff(closes.to_numpy(dtype=float))).sum())
    if path <= 0:
        return 0.0
    return min(1.0, net / path)
