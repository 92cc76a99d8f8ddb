"""Execution gateway interface and a ledger-backed paper implementation."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol
from uuid import uuid4

import structlog

from confluence.analysis.models import Direction
from confluence.config.settings import PaperConfig
from confluence.storage.balances import BalanceLedger

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OrderRequest:
    user_id: str
    symbol: str
    direction: Direction
    quantity: float
    entry_price: float
    stop_price: float
    take_profit: float
    leverage: int
    use_testnet: bool = True

    @property
    def notional(self) -> float:
        return self.quantity * self.entry_price

    @property
    def margin(self) -> float:
        return self.notional / self.leverage


@dataclass(frozen=True)
class OrderResult:
    accepted: bool
    order_id: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class PaperPosition:
    order_id: str
    symbol: str
    direction: Direction
    quantity: float
    entry_price: float
    stop_price: float
    take_profit: float
    leverage: int
    margin: float
    opened_at: datetime


class ExecutionGateway(Protocol):
    async def get_balance(self, user_id: str, use_testnet: bool) -> float: ...

    async def open_position_count(self, user_id: str, use_testnet: bool) -> int: ...

    async def submit(self, order: OrderRequest) -> OrderResult: ...


class PaperExecutionGateway:
    """Fills at the requested entry price and reserves margin plus fees.

    The margin debit goes through ``BalanceLedger.debit`` so two orders racing
    for the same balance cannot both be accepted.
    """

    def __init__(self, ledger: BalanceLedger, config: PaperConfig | None = None) -> None:
        self.ledger = ledger
        self.config = config or PaperConfig()
        self._positions: dict[str, dict[str, PaperPosition]] = {}

    async def get_balance(self, user_id: str, use_testnet: bool) -> float:
        return await asyncio.to_thread(self.ledger.get_balance, user_id)

    async def open_position_count(self, user_id: str, use_testnet: bool) -> int:
        return len(self._positions.get(user_id, {}))

    def positions(self, user_id: str) -> list[PaperPosition]:
        return list(self._positions.get(user_id, {}).values())

    async def submit(self, order: OrderRequest) -> OrderResult:
        if order.direction == Direction.NEUTRAL or order.quantity <= 0:
            return OrderResult(accepted=False, reason="invalid_order")
        if order.symbol in self._positions.get(order.user_id, {}):
            return OrderResult(accepted=False, reason="position_already_open")

        fee = order.notional * self.config.fee_pct / 100
        cost = order.margin + fee
        debited = await asyncio.to_thread(self.ledger.debit, order.user_id, cost)
        if not debited:
            return OrderResult(accepted=False, reason="insufficient_balance")

        order_id = f"paper-{uuid4().hex[:16]}"
        self._positions.setdefault(order.user_id, {})[order.symbol] = PaperPosition(
            order_id=order_id,
            symbol=order.symbol,
            direction=order.direction,
            quantity=order.quantity,
            entry_price=order.entry_price,
            stop_price=order.stop_price,
            take_profit=order.take_profit,
            leverage=order.leverage,
            margin=order.margin,
            opened_at=datetime.now(timezone.utc),
        )
        log.info(
            "paper_order_filled",
            user_id=order.user_id,
            symbol=order.symbol,
            direction=order.direction.value,
            quantity=order.quantity,
            entry_price=order.entry_price,
            margin=round(order.margin, 4),
            fee=round(fee, 4),
            order_id=order_id,
        )
        return OrderResult(accepted=True, order_id=order_id)

    async def close_position(self, user_id: str, symbol: str, exit_price: float) -> float | None:
        """Close at ``exit_price`` and credit margin plus PnL. Returns realized PnL."""
        position = self._positions.get(user_id, {}).pop(symbol, None)
        if position is None:
            return None
        pnl = (exit_price - position.entry_price) * position.quantity * position.direction.sign
        fee = exit_price * position.quantity * self.config.fee_pct / 100
        payout = position.margin + pnl - fee
        if payout > 0:
            await asyncio.to_thread(self.ledger.credit, user_id, payout)
        log.info(
            "paper_position_closed",
            user_id=user_id,
            symbol=symbol,
            exit_price=exit_price,
            pnl=round(pnl, 4),
            order_id=position.order_id,
        )
        return pnl
