"""Structured logging setup shared by the API process and the shop core."""

import logging
import os

import structlog


def configure_logging(level: str = None, renderer: str = None) -> None:
    """
    Configure structlog once per process.

    LOG_LEVEL picks the threshold; LOG_FORMAT=console switches from JSON lines
    to the coloured development renderer.
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    renderer = (renderer or os.getenv("LOG_FORMAT", "json")).lower()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=True) if renderer == "console"
            else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level, logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
