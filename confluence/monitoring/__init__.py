"""Monitoring utilities."""

from confluence.monitoring.decision_log import DecisionLogger
from confluence.monitoring.logging import configure_logging
from confluence.monitoring.metrics import Metrics

__all__ = [
    "configure_logging",
    "DecisionLogger",
    "Metrics",
]
