"""
Structured logging setup for the outreach client.
Provides JSON-formatted logs with consistent fields for stores and streams.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structured logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Render JSON lines when True, human-readable console output otherwise
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_user_context,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("psycopg.pool").setLevel(logging.WARNING)


def _add_user_context(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Truncate user ids so full identifiers never land in shared log sinks."""
    user_id = event_dict.get("user_id")
    if isinstance(user_id, str) and len(user_id) > 12:
        event_dict["user_id"] = user_id[:12] + "..."
    return event_dict


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def log_store_write(
    operation: str,
    user_id: str | None,
    ok: bool,
    duration_ms: float,
    error: str = None,
    **fields: Any,
):
    """Log a persisted store mutation with consistent fields."""
    logger = get_logger("store")

    log_data = {
        "operation": operation,
        "user_id": user_id,
        "ok": ok,
        "duration_ms": round(duration_ms, 2),
        **fields,
    }

    if error:
        log_data["error"] = error

    if ok:
        logger.info("Store write completed", **log_data)
    else:
        logger.error("Store write failed", **log_data)
