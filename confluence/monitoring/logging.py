"""Structured logging configuration."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

from confluence.config.settings import MonitoringConfig

REDACTED = "***"
SECRET_FIELDS = frozenset({"api_key", "authorization", "x-api-key", "openai_api_key", "anthropic_api_key"})
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def redact_secrets(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Mask provider credentials if a caller ever passes one as a log field."""
    for key in event_dict.keys() & SECRET_FIELDS:
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def _error_file_handler(logs_path: str | Path, monitoring: MonitoringConfig) -> RotatingFileHandler:
    log_dir = Path(logs_path)
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_dir / "errors.log",
        maxBytes=monitoring.error_log_max_bytes,
        backupCount=monitoring.error_log_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(logging.ERROR)
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def configure_logging(
    log_level: str = "INFO",
    logs_path: str | Path | None = None,
    monitoring: MonitoringConfig | None = None,
) -> None:
    """Render events as JSON through stdlib logging.

    Everything goes to stdout; ERROR events also land in a rotating
    ``errors.log`` under ``logs_path``.

    Values bound with ``structlog.contextvars`` (the scheduler binds
    ``user_id`` per cycle) are merged into every event.
    """
    monitoring = monitoring or MonitoringConfig()
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    if logs_path:
        logging.getLogger().addHandler(_error_file_handler(logs_path, monitoring))
    # Provider requests carry API keys in headers; keep wire traces out of the logs.
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
