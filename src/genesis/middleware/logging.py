"""Structured logging for the stage service.

Every module logs through ``structlog.get_logger()`` with event-style keys
(``stage_begun``, ``players_eliminated`` ...). This module wires the
processors once at startup.
"""

import logging

import structlog

from genesis.config import Settings

# Libraries that are chatty at INFO and only interesting while debugging.
_NOISY_LOGGERS = ("sqlalchemy.engine", "redis", "websockets")


def _renderer(settings: Settings) -> structlog.types.Processor:
    if settings.log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=settings.debug)


def setup_logging(settings: Settings) -> None:
    """Configure structlog and the stdlib root logger."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _renderer(settings),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if settings.debug else max(level, logging.WARNING))

    structlog.contextvars.bind_contextvars(service="genesis", environment=settings.environment)
