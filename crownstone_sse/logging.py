"""Structlog configuration used by the client and its CLI."""

from __future__ import annotations

import logging
import logging.config
import sys

import structlog

from crownstone_sse.settings import settings

_SECRET_KEYS = ("access_token", "accessToken", "password", "hub_token", "token")


def _redact_secrets(
    logger: logging.Logger | None, name: str, event_dict: dict
) -> dict:
    """Mask credential values that slipped into a log call.

    Args:
        logger: Logging.Logger instance (unused by this processor).
        name: Logger name passed by structlog.
        event_dict: Structlog event dict to scrub.
    """
    for key in _SECRET_KEYS:
        if event_dict.get(key):
            event_dict[key] = "***"
    return event_dict


def configure_logging() -> None:
    """Configure structlog + stdlib logging using env-driven settings."""
    log_level_name = settings.log_level()
    log_level = getattr(logging, log_level_name, logging.INFO)
    log_format = settings.log_format()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _redact_secrets,
    ]

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors
        + [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    # Events go to stdout in the CLI, so logs go to stderr.
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"()": lambda: formatter}},
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "stream": sys.stderr,
                }
            },
            "root": {"handlers": ["default"], "level": log_level},
            "loggers": {
                "aiohttp": {"handlers": ["default"], "level": logging.WARNING, "propagate": False},
                "httpx": {"handlers": ["default"], "level": logging.WARNING, "propagate": False},
            },
        }
    )
