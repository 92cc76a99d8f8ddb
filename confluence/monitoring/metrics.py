"""Prometheus metrics definitions."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server
from prometheus_client import REGISTRY


class Metrics:
    """Expose scheduler and decision-engine metrics for monitoring."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or REGISTRY
        self.active_sessions = Gauge(
            "auto_trade_active_sessions",
            "Number of users with a running auto-trade ticker",
            registry=self.registry,
        )
        self.cycles_total = Counter(
            "auto_trade_cycles_total",
            "Completed auto-trade cycles by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.cycles_skipped_busy = Counter(
            "auto_trade_cycles_skipped_busy_total",
            "Ticks skipped because the previous cycle was still running",
            registry=self.registry,
        )
        self.cycles_discarded_stale = Counter(
            "auto_trade_cycles_discarded_stale_total",
            "Cycle results dropped because the session was stopped or restarted",
            registry=self.registry,
        )
        self.cycle_latency_ms = Histogram(
            "auto_trade_cycle_latency_ms",
            "Auto-trade cycle latency (ms)",
            buckets=(50, 100, 250, 500, 1000, 2500, 5000, 10000, 20000, 60000),
            registry=self.registry,
        )
        self.external_ai_calls = Counter(
            "external_ai_calls_total",
            "External AI judge evaluations by result",
            ["provider", "result"],
            registry=self.registry,
        )
        self.orders_submitted = Counter(
            "auto_trade_orders_submitted_total",
            "Orders submitted by the scheduler",
            ["mode"],
            registry=self.registry,
        )
        self.signal_confidence = Histogram(
            "signal_confidence",
            "Aggregated signal confidence",
            buckets=(0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0),
            registry=self.registry,
        )

    def start(self, port: int) -> None:
        start_http_server(port, registry=self.registry)

    def record_cycle(self, outcome: str, latency_ms: float) -> None:
        self.cycles_total.labels(outcome=outcome).inc()
        self.cycle_latency_ms.observe(latency_ms)

    def record_external_ai(self, provider: str, result: str) -> None:
        self.external_ai_calls.labels(provider=provider, result=result).inc()
