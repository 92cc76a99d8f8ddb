"""Market microstructure analyzers and signal aggregation."""

from confluence.analysis.aggregator import SignalAggregator, compute_signal
from confluence.analysis.candles import CandleTrendAnalyzer, analyze_candles
from confluence.analysis.consolidation import ConsolidationDetector, detect_consolidation
from confluence.analysis.models import Direction, Signal
from confluence.analysis.orderbook import OrderBookAnalyzer, analyze_order_book
from confluence.analysis.tape import TapeAnalyzer, analyze_tape

__all__ = [
    "CandleTrendAnalyzer",
    "ConsolidationDetector",
    "Direction",
    "OrderBookAnalyzer",
    "Signal",
    "SignalAggregator",
    "TapeAnalyzer",
    "analyze_candles",
    "analyze_order_book",
    "analyze_tape",
    "compute_signal",
    "detect_consolidation",
]
