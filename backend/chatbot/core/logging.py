"""structlog configuration."""

import logging

import structlog

from chatbot.config import settings


def configure_logging() -> None:
    """Console output in development, JSON lines everywhere else."""
    level = logging.DEBUG if settings.app_debug else logging.INFO
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_json or settings.app_env != "development"
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
