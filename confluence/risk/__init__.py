"""Risk management module."""

from confluence.risk.sizing import OrderPlan, PositionSizer, get_position_size

__all__ = ["OrderPlan", "PositionSizer", "get_position_size"]
