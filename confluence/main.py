"""Runtime entry point: wire the decision engine, scheduler and operator API."""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog
import uvicorn

from confluence.api.operator import create_app
from confluence.config.settings import Settings, load_settings
from confluence.connectors.external_ai import ExternalAiConfigStore, ExternalAiGate
from confluence.connectors.market_data import BinanceMarketData
from confluence.execution.gateway import PaperExecutionGateway
from confluence.monitoring import DecisionLogger, Metrics, configure_logging
from confluence.scheduler import AutoTradeScheduler, TradeCycle
from confluence.storage import (
    BalanceLedger,
    CredentialStore,
    Database,
    SessionStore,
    SettingsStore,
)

log = structlog.get_logger(__name__)


async def main_async(settings: Settings | None = None) -> None:
    settings = settings or load_settings()
    configure_logging(settings.monitoring.log_level, settings.storage.logs_path, settings.monitoring)

    database = Database(settings.storage.database_path)
    kv_store = SettingsStore(database)
    ledger = BalanceLedger(database)
    credentials = CredentialStore(kv_store, settings)
    ai_config_store = ExternalAiConfigStore(kv_store)

    metrics = Metrics()
    try:
        metrics.start(settings.monitoring.metrics_port)
    except OSError as exc:
        log.warning("metrics_start_failed", error=str(exc))

    decision_log = None
    if settings.monitoring.decision_log_enabled:
        decision_log = DecisionLogger(Path(settings.storage.logs_path) / "decisions.jsonl")

    market_data = BinanceMarketData(settings)
    gateway = PaperExecutionGateway(ledger, settings.paper)
    ai_gate = ExternalAiGate(
        ai_config_store,
        credentials,
        settings.external_ai,
        metrics=metrics,
    )
    cycle = TradeCycle(
        settings,
        market_data,
        gateway,
        ai_gate,
        metrics=metrics,
        decision_log=decision_log,
    )
    scheduler = AutoTradeScheduler(
        cycle,
        SessionStore(kv_store),
        settings.scheduler,
        metrics=metrics,
        decision_log=decision_log,
    )

    log.info(
        "bot_started",
        environment=settings.environment,
        market_data_url=settings.market_data_base_url,
        database_path=settings.storage.database_path,
    )
    recovered = await scheduler.init()
    log.info("auto_trade_sessions_recovered", count=recovered)

    app = create_app(scheduler, ai_config_store, credentials, ledger, gateway)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=settings.monitoring.api_host,
            port=settings.monitoring.api_port,
            log_level="info",
        )
    )
    try:
        await server.serve()
    finally:
        await scheduler.shutdown()
        await market_data.close()
        log.info("bot_stopped")


def main() -> None:
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
