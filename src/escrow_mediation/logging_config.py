"""structlog setup for the mediation service.

Development gets a colored console, every other environment gets one JSON
object per line. Context bound with structlog.contextvars (request_id on
HTTP requests, connection_id and user_id on sockets) is merged into every
entry, so one transition can be followed from the call that triggered it
to the realtime events it pushed.

Usage:
    from escrow_mediation.logging_config import setup_logging, get_logger
    setup_logging(log_level="INFO", json_logs=True)
    logger = get_logger(__name__)
    logger.info("mediation.transition", mediation_id=..., new_status="EscrowFunded")
"""

from __future__ import annotations

import logging
import sys
import uuid
from decimal import Decimal
from typing import Any

import structlog

# Libraries that log every statement or request at INFO.
_CHATTY_LOGGERS = (
    "uvicorn.access",
    "sqlalchemy.engine",
    "aiosqlite",
    "asyncpg",
    "websockets",
    "httpx",
    "httpcore",
)


def _stringify_ids_and_money(
    _logger: Any, _method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Render UUIDs and Decimals as plain strings so JSON output stays exact."""
    for key, value in event_dict.items():
        if isinstance(value, (uuid.UUID, Decimal)):
            event_dict[key] = str(value)
    return event_dict


def setup_logging(log_level: str = "DEBUG", json_logs: bool = False) -> None:
    """Route both structlog and stdlib logging through one stdout handler.

    Args:
        log_level: Level name for the root logger (DEBUG, INFO, ...).
        json_logs: JSON lines when True, colored console otherwise.
    """
    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _stringify_ids_and_money,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.getLevelNamesMapping().get(log_level.upper(), logging.INFO))

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
