"""
Structured logging setup (structlog, JSON lines to stdout)
"""
import logging
from typing import Optional, TextIO

import structlog


def configure_logging(level: str = "INFO", file: Optional[TextIO] = None) -> None:
    """
    Configure structlog for the process.

    Args:
        level: Standard level name ("DEBUG", "INFO", ...)
        file: Output stream, stdout when omitted
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=file),
        cache_logger_on_first_use=True,
    )
