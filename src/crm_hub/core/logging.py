"""structlog configuration.

Structured JSON logging in production and human-readable console output
everywhere else. Call configure_structlog() once at process start; modules
obtain loggers with structlog.get_logger(__name__).
"""

from __future__ import annotations

import logging

import structlog

from src.crm_hub.config import Environment, Settings, get_settings


def configure_structlog(settings: Settings | None = None) -> None:
    """Configure structlog processors based on environment."""
    settings = settings or get_settings()

    logging.basicConfig(format="%(message)s", level=settings.LOG_LEVEL.upper())

    shared_processors: list = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.ENVIRONMENT == Environment.production:
        shared_processors.append(structlog.processors.JSONRenderer())
    else:
        shared_processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
