"""Operator API for controlling auto-trade sessions and the external AI judge."""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, Literal

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field, ValidationError

from confluence.connectors.external_ai import ExternalAiConfigStore
from confluence.execution.gateway import PaperExecutionGateway
from confluence.models import AutoTradeSessionConfig
from confluence.scheduler.scheduler import AutoTradeScheduler
from confluence.storage.balances import BalanceLedger
from confluence.storage.credentials import CredentialStore


class ApiKeyUpdate(BaseModel):
    api_key: str = Field(min_length=1)


class CreditRequest(BaseModel):
    amount: float = Field(gt=0)


class ClosePositionRequest(BaseModel):
    exit_price: float = Field(gt=0)


def create_app(
    scheduler: AutoTradeScheduler,
    ai_config_store: ExternalAiConfigStore,
    credentials: CredentialStore,
    ledger: BalanceLedger,
    gateway: PaperExecutionGateway | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    start_time = time.time()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> Any:
        nonlocal start_time
        start_time = time.time()
        yield

    app = FastAPI(
        title="Confluence Operator API",
        description="Start, stop and inspect auto-trade sessions",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "uptime_sec": round(time.time() - start_time, 1),
            "active_sessions": len(scheduler.status()),
        }

    @app.post("/auto-trade/stop-all")
    async def stop_all() -> dict[str, Any]:
        stopped = await scheduler.stop_all()
        return {"stopped": stopped}

    @app.get("/auto-trade/status")
    async def status_all() -> dict[str, Any]:
        sessions = scheduler.status()
        return {"running": bool(sessions), "sessions": [s.to_payload() for s in sessions]}

    @app.post("/auto-trade/{user_id}/start")
    async def start(user_id: str, config: AutoTradeSessionConfig) -> dict[str, Any]:
        await scheduler.start(user_id, config)
        return {"user_id": user_id, "running": True, "config": config.model_dump(mode="json")}

    @app.post("/auto-trade/{user_id}/stop")
    async def stop(user_id: str) -> dict[str, Any]:
        was_running = await scheduler.stop(user_id)
        return {"user_id": user_id, "running": False, "was_running": was_running}

    @app.post("/auto-trade/{user_id}/run")
    async def run_now(user_id: str) -> dict[str, Any]:
        if not scheduler.is_running(user_id):
            raise HTTPException(status_code=404, detail="auto-trade not running for user")
        return {"user_id": user_id, "started": scheduler.trigger(user_id)}

    @app.get("/auto-trade/{user_id}/status")
    async def status_user(user_id: str) -> dict[str, Any]:
        sessions = scheduler.status(user_id)
        if not sessions:
            return {"user_id": user_id, "running": False}
        return sessions[0].to_payload()

    @app.get("/auto-trade/{user_id}/last-execution")
    async def last_execution(user_id: str) -> dict[str, Any]:
        outcome = scheduler.last_execution(user_id)
        return {"user_id": user_id, "last_execution": outcome.to_payload() if outcome else None}

    @app.get("/admin/external-ai")
    async def get_external_ai() -> dict[str, Any]:
        config = await asyncio.to_thread(ai_config_store.load)
        return {
            **config.model_dump(mode="json"),
            "has_openai_key": await asyncio.to_thread(credentials.has_key, "openai"),
            "has_claude_key": await asyncio.to_thread(credentials.has_key, "claude"),
        }

    @app.put("/admin/external-ai")
    async def put_external_ai(patch: dict[str, Any]) -> dict[str, Any]:
        try:
            config = await asyncio.to_thread(ai_config_store.update, patch)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=exc.errors(include_url=False)) from exc
        return config.model_dump(mode="json")

    @app.put("/admin/external-ai/keys/{provider}")
    async def put_api_key(provider: Literal["openai", "claude"], body: ApiKeyUpdate) -> dict[str, Any]:
        await asyncio.to_thread(credentials.set_api_key, provider, body.api_key)
        return {"provider": provider, "configured": True}

    @app.get("/balances/{user_id}")
    async def get_balance(user_id: str) -> dict[str, Any]:
        balance = await asyncio.to_thread(ledger.get_balance, user_id)
        return {"user_id": user_id, "balance_usdt": balance}

    @app.post("/balances/{user_id}/credit")
    async def credit(user_id: str, body: CreditRequest) -> dict[str, Any]:
        balance = await asyncio.to_thread(ledger.credit, user_id, body.amount)
        return {"user_id": user_id, "balance_usdt": balance}

    if gateway is not None:

        @app.get("/positions/{user_id}")
        async def positions(user_id: str) -> dict[str, Any]:
            return {
                "user_id": user_id,
                "positions": [
                    {
                        "order_id": p.order_id,
                        "symbol": p.symbol,
                        "direction": p.direction.value,
                        "quantity": p.quantity,
                        "entry_price": p.entry_price,
                        "stop_price": p.stop_price,
                        "take_profit": p.take_profit,
                        "leverage": p.leverage,
                        "margin": p.margin,
                        "opened_at": p.opened_at.isoformat(),
                    }
                    for p in gateway.positions(user_id)
                ],
            }

        @app.post("/positions/{user_id}/{symbol}/close")
        async def close_position(user_id: str, symbol: str, body: ClosePositionRequest) -> dict[str, Any]:
            pnl = await gateway.close_position(user_id, symbol.upper(), body.exit_price)
            if pnl is None:
                raise HTTPException(status_code=404, detail="no open position")
            return {"user_id": user_id, "symbol": symbol.upper(), "realized_pnl": pnl}

    return app
