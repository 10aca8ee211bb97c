"""Structured logging configuration.

Provides structlog setup with:
- Context variables merged into every event (account_id during a sync pass)
- ISO timestamps and log levels
- JSON output for production or colored console output for development
"""

from __future__ import annotations

import logging

import structlog

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(json_format: bool = False, log_level: str = "INFO") -> None:
    """Configure structlog for the sync engine.

    Args:
        json_format: Whether to output logs as JSON.
        log_level: The logging level to use.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if json_format:
        processors: list[structlog.types.Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger for a specific module.

    Args:
        name: Module name (will be prefixed with mailsync).

    Returns:
        Bound structlog logger.
    """
    if not name.startswith("mailsync"):
        name = f"mailsync.{name}"
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
