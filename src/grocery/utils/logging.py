"""Logging configuration for the grocery engine.

structlog owns the format for both its own loggers and plain ``logging``
records (protean, httpx, uvicorn), so everything reaches the same handlers
as one stream. Production and staging render JSON lines; every other
environment gets the console renderer.
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path

import structlog

from grocery.config import Settings, get_settings

LEVELS_BY_ENVIRONMENT = {
    "production": "INFO",
    "staging": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}

JSON_ENVIRONMENTS = ("production", "staging")

QUIET_LOGGERS = ("protean", "httpx", "httpcore", "asyncio")


def environment() -> str:
    return os.getenv("PROTEAN_ENV", "development").lower()


def resolve_log_level(settings: Settings | None = None) -> str:
    """Explicit ``GROCERY_LOG_LEVEL`` first, then the environment's default."""
    settings = settings or get_settings()
    if settings.log_level:
        return settings.log_level.upper()
    return LEVELS_BY_ENVIRONMENT.get(environment(), "INFO")


def _renderer():
    if environment() in JSON_ENVIRONMENTS:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def _handlers(settings: Settings, formatter: logging.Formatter) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_dir:
        log_path = Path(settings.log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                filename=log_path / "grocery.log",
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
        )
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def configure_logging(settings: Settings | None = None) -> None:
    """Route structlog and stdlib logging through one set of handlers."""
    settings = settings or get_settings()
    level = resolve_log_level(settings)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if environment() in JSON_ENVIRONMENTS:
        shared_processors.append(structlog.processors.format_exc_info)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(),
        ],
    )

    root_logger = logging.getLogger()
    root_logger.handlers = _handlers(settings, formatter)
    root_logger.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
