"""Structured logging configuration for mail triage.

Uses structlog for JSON-formatted logs to stdout. Supports a correlation ID
(batch_id) via contextvars for tracing a batch through the pipeline.

Usage:
    from mailtriage.core.logging import get_logger, set_correlation_id

    logger = get_logger(__name__)

    # In the throughput governor:
    set_correlation_id(str(uuid.uuid4()))

    # Log with automatic correlation ID inclusion:
    logger.info("classification_complete", message_id="abc123", priority="high")
"""

import logging
import sys
from contextvars import ContextVar
from typing import Any, TextIO

import structlog

# Context variable for correlation ID (batch_id)
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the correlation ID for the current context.

    Call this at the start of each batch with a new UUID. All subsequent
    log entries in this context will include the ID.

    Args:
        correlation_id: UUID string for this batch, or None to clear
    """
    _correlation_id.set(correlation_id)


def get_correlation_id() -> str | None:
    """Get the current correlation ID, if set."""
    return _correlation_id.get()


def add_correlation_id(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Structlog processor to add correlation ID to log entries."""
    correlation_id = _correlation_id.get()
    if correlation_id is not None:
        event_dict["batch_id"] = correlation_id
    return event_dict


def configure_logging(
    log_level: str = "INFO", json_output: bool = True, stream: TextIO = sys.stdout
) -> None:
    """Configure structlog for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output JSON; if False, output human-readable format
        stream: Where log lines are written
    """
    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=getattr(logging, log_level.upper()),
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        add_correlation_id,
    ]

    if json_output:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        A structlog BoundLogger instance configured for this application

    Example:
        logger = get_logger(__name__)
        logger.info("batch_complete", duration_ms=42, messages=100)
    """
    return structlog.get_logger(name)


def sender_domain(sender: str) -> str:
    """Return the domain part of a free-form sender for logging.

    Avoids putting full addresses in logs. "Alice <alice@corp.com>" -> "corp.com".
    """
    address = sender.rsplit("<", 1)[-1].rstrip("> ").strip()
    if "@" not in address:
        return "unknown"
    return address.rsplit("@", 1)[-1].lower()
