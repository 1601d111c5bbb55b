"""Structured logging for the series engine.

Events are key/value pairs rendered by structlog on top of stdlib logging:
JSON lines in production, a console renderer for local runs. Tenant and
template identifiers bound with :func:`bind_request_context` are merged
into every line of the current task.
"""

import logging
import sys
from datetime import date
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from arq_cashflow.config.settings import Settings, get_settings

# Libraries that log every statement below WARNING.
_QUIET_LOGGERS = ("aiosqlite",)


def stringify_values(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Render ids, amounts and dates as plain strings."""
    for key, value in event_dict.items():
        if isinstance(value, (UUID, Decimal)):
            event_dict[key] = str(value)
        elif isinstance(value, date):
            event_dict[key] = value.isoformat()
    return event_dict


def _renderers(log_format: str) -> list[Processor]:
    if log_format == "json":
        return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    return [
        structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )
    ]


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
    format: Literal["json", "console"] | None = None,
    settings: Settings | None = None,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level. Defaults to ``LOG_LEVEL``.
        format: ``json`` or ``console``. Defaults to ``LOG_FORMAT``.
        settings: Settings to take the defaults from.
    """
    settings = settings or get_settings()
    log_level = getattr(logging, level or settings.log_level)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            stringify_values,
            *_renderers(format or settings.log_format),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_request_context(**values: Any) -> None:
    """Bind tenant/request identifiers to every log line of the current task.

    Values are stored in structlog's contextvars, so they follow the current
    asyncio task and are merged by ``merge_contextvars``.
    """
    structlog.contextvars.bind_contextvars(
        **{key: str(value) for key, value in values.items() if value is not None}
    )


def clear_request_context() -> None:
    """Drop every value bound with :func:`bind_request_context`."""
    structlog.contextvars.clear_contextvars()
