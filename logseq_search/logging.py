"""
Logging configuration module for Logseq Search MCP Server.

Configures structlog with appropriate processors for development.
"""

import logging
import sys

import structlog

from .config import settings


def configure_logging(level: str | None = None) -> None:
    """Configure structlog for the application.

    Uses ConsoleRenderer for readable colored output in development.
    Output goes to stderr: stdout carries the MCP stdio protocol.
    """
    log_level = logging.getLevelName((level or settings.log_level).upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Get a configured structlog logger.

    Args:
        name: Optional logger name (typically __name__)

    Returns:
        A bound structlog logger
    """
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()
