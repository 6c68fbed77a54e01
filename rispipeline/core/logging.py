"""Structured logging configuration — structlog + stdlib logging.

Component loggers live under the ``rispipeline`` namespace
(``rispipeline.collector``, ``rispipeline.webhook`` ...).  Operator actions
that change shared state without going through the normal pipeline (lock
force-clear, collection reset) are additionally written to the
``rispipeline.audit`` logger, which is never filtered below INFO.
"""

from __future__ import annotations

import logging
import logging.config
import os

import structlog

AUDIT_LOGGER = "rispipeline.audit"


def audit_logger() -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(AUDIT_LOGGER)


def _build_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def setup_logging() -> None:
    """Configure structlog and stdlib logging.

    Reads from environment variables:
        RIS_LOG_LEVEL  — pipeline log level (default: INFO)
        RIS_LOG_FORMAT — console | json (default: console)
        RIS_SQL_ECHO   — "1" to surface SQLAlchemy statements at INFO
    """
    log_level = os.environ.get("RIS_LOG_LEVEL", "INFO").upper()
    log_format = os.environ.get("RIS_LOG_FORMAT", "console").lower()
    sql_level = "INFO" if os.environ.get("RIS_SQL_ECHO") == "1" else "WARNING"

    shared_processors = _build_processors()

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structlog": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "foreign_pre_chain": shared_processors,
                    "processors": [
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        renderer,
                    ],
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stdout",
                    "formatter": "structlog",
                },
            },
            "root": {
                "handlers": ["default"],
                "level": log_level,
            },
            "loggers": {
                "rispipeline": {"level": log_level},
                AUDIT_LOGGER: {"level": "INFO"},
                "uvicorn.access": {"level": "WARNING"},
                "uvicorn.error": {"level": "INFO"},
                "sqlalchemy.engine": {"level": sql_level},
                "asyncpg": {"level": "WARNING"},
                "httpx": {"level": "WARNING"},
            },
        }
    )
