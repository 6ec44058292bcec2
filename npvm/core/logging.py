"""structlog over stdlib logging, writing to stderr so stdout stays machine-readable."""

from __future__ import annotations

import logging
import logging.config
import os
import sys

import structlog

# Chatty transport loggers that only matter when debugging npvm itself.
_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def setup_logging(level: str | None = None) -> None:
    """Configure structlog and stdlib logging for the CLI.

    Environment:
        NPVM_LOG_LEVEL   npvm's own level, default WARNING; *level* wins when given
        NPVM_LOG_FORMAT  console | json, default console
    """
    npvm_level = (level or os.environ.get("NPVM_LOG_LEVEL", "WARNING")).upper()
    log_format = os.environ.get("NPVM_LOG_FORMAT", "console").lower()
    debugging = npvm_level == "DEBUG"

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    loggers: dict[str, dict[str, str]] = {"npvm": {"level": npvm_level}}
    for name in _QUIET_LOGGERS:
        loggers[name] = {"level": "DEBUG" if debugging else "WARNING"}

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structlog": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "foreign_pre_chain": pre_chain,
                    "processors": [
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        _renderer(log_format),
                    ],
                },
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stderr",
                    "formatter": "structlog",
                },
            },
            "root": {"handlers": ["stderr"], "level": "WARNING"},
            "loggers": loggers,
        }
    )
