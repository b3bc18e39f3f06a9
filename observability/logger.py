"""
observability/logger.py — ClawCord Logging

structlog on top of stdlib logging. Every line goes to data/logs/clawcord.log
as JSON; the console gets the same line as JSON or, with json_format off, a
coloured dev rendering.

While a gateway session is READY its id and the bot's user id ride along on
every line (bind_gateway_session / clear_gateway_session).

    setup_logging(level="INFO", log_dir="./data/logs")
    log = get_logger(__name__)
    log.info("gateway.hello", heartbeat_interval=41250)
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

import structlog

LOG_FILE_NAME = "clawcord.log"

# Third-party loggers and the lowest level they may emit at.
# websockets logs every frame at DEBUG.
_QUIET_LOGGERS = {
    "websockets": logging.INFO,
    "httpx": logging.WARNING,
}

_GATEWAY_CONTEXT_KEYS = ("gateway_session_id", "self_id")


# ─────────────────────────────────────────────────────────────────────────────
# Setup
# ─────────────────────────────────────────────────────────────────────────────

def _build_handlers(
    log_dir: Path, level: int, console_output: bool, max_bytes: int, backup_count: int
) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            filename=log_dir / LOG_FILE_NAME,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    ]
    if console_output:
        handlers.append(logging.StreamHandler(sys.stdout))
    for handler in handlers:
        handler.setLevel(level)
    return handlers


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path = "./data/logs",
    json_format: bool = True,
    console_output: bool = True,
    max_bytes: int = 100 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Route structlog through stdlib logging. main.bootstrap() calls this once
    with the values from the `logging` config section; calling it again
    replaces the previous handlers.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    handlers = _build_handlers(log_dir, numeric_level, console_output, max_bytes, backup_count)
    logging.basicConfig(format="%(message)s", level=numeric_level, handlers=handlers, force=True)
    for name, floor in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(numeric_level, floor))

    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_format
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )
    for handler in handlers:
        handler.setFormatter(formatter)


# ─────────────────────────────────────────────────────────────────────────────
# Loggers and gateway context
# ─────────────────────────────────────────────────────────────────────────────

def get_logger(name: str = "clawcord", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """Module logger, optionally pre-bound with context (e.g. component="sender")."""
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


def bind_gateway_session(session_id: str, self_id: str) -> None:
    """Tag every line logged from this async context with the gateway session."""
    structlog.contextvars.bind_contextvars(gateway_session_id=session_id, self_id=self_id)


def clear_gateway_session() -> None:
    structlog.contextvars.unbind_contextvars(*_GATEWAY_CONTEXT_KEYS)
