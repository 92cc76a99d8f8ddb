"""Per-user recurring auto-trade cycles with crash-recoverable configuration."""

from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol

import structlog

from confluence.config.settings import SchedulerConfig
from confluence.models import AutoTradeSessionConfig, ExecutionOutcome
from confluence.monitoring.decision_log import DecisionLogger
from confluence.monitoring.metrics import Metrics
from confluence.storage.sessions import SessionStore

log = structlog.get_logger(__name__)


class CycleRunner(Protocol):
    async def run(
        self,
        user_id: str,
        config: AutoTradeSessionConfig,
        is_current: Callable[[], bool],
    ) -> ExecutionOutcome: ...


@dataclass
class _Session:
    config: AutoTradeSessionConfig
    generation: int
    ticker: asyncio.Task | None = None
    inflight: asyncio.Task | None = None
    last_cycle_at: datetime | None = None

    @property
    def busy(self) -> bool:
        return self.inflight is not None and not self.inflight.done()


@dataclass(frozen=True)
class SessionStatus:
    user_id: str
    config: AutoTradeSessionConfig
    busy: bool
    last_cycle_at: datetime | None

    def to_payload(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "running": True,
            "busy": self.busy,
            "last_cycle_at": self.last_cycle_at.isoformat() if self.last_cycle_at else None,
            "interval_ms": self.config.interval_ms,
            "config": self.config.model_dump(mode="json"),
        }


class AutoTradeScheduler:
    """Owns at most one ticker per user.

    Every ``start`` bumps a generation number. A cycle only records its
    outcome (and only submits orders) while its generation is still the
    user's current one, so results from a stopped or replaced session are
    dropped. A tick that fires while the user's previous cycle is still
    running is skipped rather than overlapped.
    """

    def __init__(
        self,
        cycle: CycleRunner,
        session_store: SessionStore,
        config: SchedulerConfig | None = None,
        metrics: Metrics | None = None,
        decision_log: DecisionLogger | None = None,
    ) -> None:
        self.cycle = cycle
        self.session_store = session_store
        self.config = config or SchedulerConfig()
        self.metrics = metrics
        self.decision_log = decision_log
        self._sessions: dict[str, _Session] = {}
        self._outcomes: dict[str, ExecutionOutcome] = {}
        self._generations = itertools.count(1)
        self._lock = asyncio.Lock()

    async def init(self) -> int:
        """Restart every persisted session. Returns how many were recovered."""
        if not self.config.recover_on_start:
            return 0
        try:
            persisted = await asyncio.to_thread(self.session_store.load_all)
        except Exception as exc:
            log.warning("auto_trade_recover_failed", error=str(exc))
            return 0
        for entry in persisted:
            await self.start(entry.user_id, entry.config)
        log.info("auto_trade_recovered", sessions=len(persisted))
        return len(persisted)

    async def start(self, user_id: str, config: AutoTradeSessionConfig) -> None:
        async with self._lock:
            replaced = self._teardown_locked(user_id)
            if replaced is not None:
                await asyncio.wait({replaced})
            generation = next(self._generations)
            session = _Session(config=config, generation=generation)
            self._sessions[user_id] = session
            session.ticker = asyncio.create_task(
                self._ticker(user_id, generation),
                name=f"auto-trade:{user_id}",
            )
            self._update_active()
            await self._persist("save", self.session_store.save, user_id, config)
        log.info(
            "auto_trade_started",
            user_id=user_id,
            generation=generation,
            interval_ms=config.interval_ms,
            symbols=config.symbols,
            execute_orders=config.execute_orders,
            replaced=replaced is not None,
        )

    async def stop(self, user_id: str) -> bool:
        async with self._lock:
            ticker = self._teardown_locked(user_id)
            if ticker is not None:
                await asyncio.wait({ticker})
            self._update_active()
            await self._persist("remove", self.session_store.remove, user_id)
        if ticker is not None:
            log.info("auto_trade_stopped", user_id=user_id)
        return ticker is not None

    async def stop_all(self) -> int:
        async with self._lock:
            tickers = [t for t in (self._teardown_locked(u) for u in list(self._sessions)) if t]
            if tickers:
                await asyncio.wait(tickers)
            self._update_active()
            await self._persist("clear", self.session_store.clear)
        log.info("auto_trade_stopped_all", sessions=len(tickers))
        return len(tickers)

    async def shutdown(self) -> None:
        """Stop every ticker without touching persisted sessions."""
        async with self._lock:
            inflight = [s.inflight for s in self._sessions.values() if s.busy]
            tickers = [t for t in (self._teardown_locked(u) for u in list(self._sessions)) if t]
            if tickers:
                await asyncio.wait(tickers)
            self._update_active()
        if inflight:
            _, pending = await asyncio.wait(inflight, timeout=self.config.shutdown_grace_sec)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.wait(pending)
        log.info("auto_trade_shutdown", sessions=len(tickers))

    def status(self, user_id: str | None = None) -> list[SessionStatus]:
        sessions = self._sessions.items()
        if user_id is not None:
            sessions = [(u, s) for u, s in sessions if u == user_id]
        return [
            SessionStatus(
                user_id=uid,
                config=session.config,
                busy=session.busy,
                last_cycle_at=session.last_cycle_at,
            )
            for uid, session in sessions
        ]

    def is_running(self, user_id: str) -> bool:
        return user_id in self._sessions

    def last_execution(self, user_id: str) -> ExecutionOutcome | None:
        return self._outcomes.get(user_id)

    def trigger(self, user_id: str) -> bool:
        """Run a cycle now unless one is already in flight."""
        session = self._sessions.get(user_id)
        if session is None:
            return False
        return self._tick(user_id, session.generation)

    def _teardown_locked(self, user_id: str) -> asyncio.Task | None:
        session = self._sessions.pop(user_id, None)
        if session is None or session.ticker is None:
            return None
        # The in-flight cycle is left to finish; its generation is now stale.
        session.ticker.cancel()
        return session.ticker

    def _is_current(self, user_id: str, generation: int) -> bool:
        session = self._sessions.get(user_id)
        return session is not None and session.generation == generation

    async def _ticker(self, user_id: str, generation: int) -> None:
        session = self._sessions.get(user_id)
        if session is None:
            return
        interval = session.config.interval_sec
        while self._is_current(user_id, generation):
            self._tick(user_id, generation)
            await asyncio.sleep(interval)

    def _tick(self, user_id: str, generation: int) -> bool:
        session = self._sessions.get(user_id)
        if session is None or session.generation != generation:
            return False
        if session.busy:
            log.info("auto_trade_tick_skipped_busy", user_id=user_id, generation=generation)
            if self.metrics is not None:
                self.metrics.cycles_skipped_busy.inc()
            return False
        session.inflight = asyncio.create_task(
            self._run_cycle(user_id, generation, session.config),
            name=f"auto-trade-cycle:{user_id}:{generation}",
        )
        return True

    async def _run_cycle(self, user_id: str, generation: int, config: AutoTradeSessionConfig) -> None:
        # Runs in its own task, so the binding stays local to this cycle.
        structlog.contextvars.bind_contextvars(user_id=user_id, generation=generation)
        start = time.perf_counter()
        try:
            outcome = await self.cycle.run(
                user_id,
                config,
                lambda: self._is_current(user_id, generation),
            )
        except Exception as exc:
            log.warning("auto_trade_cycle_failed", user_id=user_id, error=str(exc) or type(exc).__name__)
            outcome = ExecutionOutcome(
                last_error=str(exc) or type(exc).__name__,
                use_testnet=config.use_testnet,
            )
        latency_ms = (time.perf_counter() - start) * 1000

        if not self._is_current(user_id, generation):
            log.info("auto_trade_cycle_discarded_stale", user_id=user_id, generation=generation)
            if self.metrics is not None:
                self.metrics.cycles_discarded_stale.inc()
            return

        self._outcomes[user_id] = outcome
        self._sessions[user_id].last_cycle_at = outcome.at
        label = "error" if outcome.last_error else "order" if outcome.last_order_id else "skip"
        if self.metrics is not None:
            self.metrics.record_cycle(label, latency_ms)
        if self.decision_log is not None:
            self.decision_log.log_outcome(user_id, outcome.to_payload())
        log.info(
            "auto_trade_cycle_completed",
            user_id=user_id,
            outcome=label,
            skip_reason=outcome.last_skip_reason,
            order_id=outcome.last_order_id,
            latency_ms=round(latency_ms, 2),
        )

    async def _persist(self, action: str, fn: Callable[..., None], *args: Any) -> None:
        try:
            await asyncio.to_thread(fn, *args)
        except Exception as exc:
            log.warning("auto_trade_persist_failed", action=action, error=str(exc))

    def _update_active(self) -> None:
        if self.metrics is not None:
            self.metrics.active_sessions.set(len(self._sessions))
