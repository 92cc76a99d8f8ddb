"""Auto-trade scheduling."""

from confluence.scheduler.cycle import TradeCycle
from confluence.scheduler.scheduler import AutoTradeScheduler, SessionStatus

__all__ = ["AutoTradeScheduler", "SessionStatus", "TradeCycle"]
