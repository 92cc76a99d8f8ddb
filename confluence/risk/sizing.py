"""Position sizing utilities."""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Literal

from confluence.analysis.models import Direction
from confluence.config.settings import RiskConfig

RISK_PCT_DEFAULT = 0.02
# Hard ceiling on risk per trade; configuration cannot raise it.
RISK_MAX_PCT = 0.03
RISK_MIN_PCT = 0.01
MAX_SINGLE_ASSET_PCT = 0.25
FALLBACK_PCT = 0.05

SizeMode = Literal["percent", "risk"]


def get_position_size(
    balance: float,
    entry_price: float,
    stop_price: float,
    risk_pct: float = RISK_PCT_DEFAULT,
    max_asset_pct: float = MAX_SINGLE_ASSET_PCT,
    fallback_pct: float = FALLBACK_PCT,
) -> float:
    """Return the position notional (USD) risking ``risk_pct`` of balance to the stop.

    Degenerate inputs (no stop distance, non-finite values, oversize results) fall
    back to ``balance * fallback_pct``. The result never exceeds balance.
    """
    if not math.isfinite(balance) or balance <= 0:
        return 0.0
    fallback = balance * fallback_pct
    finite = all(math.isfinite(v) for v in (entry_price, stop_price, risk_pct, max_asset_pct))
    if not finite or entry_price <= 0:
        return min(fallback, balance)

    risk_usd = balance * min(risk_pct, RISK_MAX_PCT)
    stop_pct = abs(entry_price - stop_price) / entry_price
    if stop_pct <= 0:
        return min(fallback, balance)

    size = min(risk_usd / stop_pct, balance * max_asset_pct)
    if size <= 0 or size > balance:
        return min(fallback, balance)
    return size


def _round_step(value: float, step: float) -> float:
    if step <= 0:
        return value
    precision = abs(Decimal(str(step)).as_tuple().exponent)
    quant = Decimal(str(step))
    rounded = (Decimal(str(value)) / quant).to_integral_value(rounding=ROUND_DOWN) * quant
    return float(round(rounded, precision))


@dataclass(frozen=True)
class ProtectivePrices:
    stop_price: float
    take_profit: float
    risk_reward: float


@dataclass(frozen=True)
class OrderPlan:
    notional: float
    margin: float
    quantity: float
    leverage: int


class PositionSizer:
    """Plan order notional and margin from balance, leverage and size mode."""

    def __init__(self, config: RiskConfig | None = None, quantity_step: float = 0.0) -> None:
        self.config = config or RiskConfig()
        self.quantity_step = quantity_step

    def protective_prices(
        self,
        direction: Direction,
        entry_price: float,
        atr: float,
        tp_multiplier: float = 1.0,
    ) -> ProtectivePrices | None:
        if direction == Direction.NEUTRAL or entry_price <= 0 or atr <= 0:
            return None
        stop_distance = atr * self.config.atr_stop_multiplier
        risk_reward = self.config.reward_ratio * tp_multiplier
        tp_distance = stop_distance * risk_reward
        if direction == Direction.LONG:
            stop_price = entry_price - stop_distance
            take_profit = entry_price + tp_distance
        else:
            stop_price = entry_price + stop_distance
            take_profit = entry_price - tp_distance
        if stop_price <= 0 or take_profit <= 0:
            return None
        return ProtectivePrices(stop_price=stop_price, take_profit=take_profit, risk_reward=risk_reward)

    def plan(
        self,
        balance: float,
        entry_price: float,
        stop_price: float,
        leverage: int,
        size_mode: SizeMode = "percent",
        size_percent: float = 25.0,
        risk_pct: float | None = None,
    ) -> OrderPlan | None:
        """Return the order plan, or None when it falls under the minimum notional."""
        if balance <= 0 or entry_price <= 0 or leverage < 1:
            return None
        usable = balance * (1 - self.config.balance_reserve_pct)

        if size_mode == "risk":
            effective_risk = min(max(risk_pct or self.config.risk_pct, RISK_MIN_PCT), RISK_MAX_PCT)
            notional = get_position_size(
                usable,
                entry_price,
                stop_price,
                risk_pct=effective_risk,
                max_asset_pct=self.config.max_asset_pct,
                fallback_pct=self.config.fallback_pct,
            )
            notional = min(notional, usable * self.config.max_asset_pct * leverage)
        else:
            notional = usable * size_percent / 100 * leverage

        quantity = _round_step(notional / entry_price, self.quantity_step)
        if quantity <= 0:
            return None
        notional = quantity * entry_price
        if notional < self.config.min_notional_usd:
            return None
        return OrderPlan(
            notional=notional,
            margin=notional / leverage,
            quantity=quantity,
            leverage=leverage,
        )
