"""
structlog setup shared by the API process and the Celery worker.

Each event is stamped with the correlation id of the HTTP request or task
that produced it and, when bound, the actor (customer, admin, cron or
payment gateway). Ledger movements and order transitions log through here
so a balance change can be traced back to its caller.
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, Optional
from uuid import uuid4

import structlog
from structlog.types import EventDict, Processor

from printshop.core.config import get_settings

_request_id: ContextVar[str] = ContextVar("request_id", default="")
_actor: ContextVar[Optional[str]] = ContextVar("actor", default=None)

SLOW_OPERATION_MS = 500

_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "httpx": logging.WARNING,
    "celery": logging.INFO,
}


def _bind_correlation(_, __, event_dict: EventDict) -> EventDict:
    """Copy the bound request id and actor into the event."""
    request_id = _request_id.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)
    actor = _actor.get()
    if actor:
        event_dict.setdefault("actor", actor)
    return event_dict


def _renderer(development: bool) -> Processor:
    if development:
        return structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        )
    return structlog.processors.JSONRenderer()


def configure_logging() -> None:
    """
    Configure structlog and the stdlib root logger.

    Console output in development, one JSON object per line elsewhere.
    Calling it twice is harmless.
    """
    settings = get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
            structlog.stdlib.add_logger_name,
            _bind_correlation,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _renderer(settings.is_development),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    for name, level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a correlation id, generating one when none is given."""
    value = request_id or str(uuid4())
    _request_id.set(value)
    return value


def get_request_id() -> str:
    return _request_id.get()


def set_actor(actor: Optional[str]) -> None:
    _actor.set(actor)


def clear_context() -> None:
    """Reset correlation state at the end of a request or task."""
    _request_id.set("")
    _actor.set(None)


@contextmanager
def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    **context: Any,
) -> Iterator[None]:
    """
    Time a block and log its duration.

    Failures are logged with the exception type and re-raised. Blocks
    slower than SLOW_OPERATION_MS are logged as warnings.

    Example:
        >>> with log_performance(logger, "tracking_sync", shipments=12):
        ...     await service.sync_active_shipments()
    """
    started = time.perf_counter()
    logger.debug("Operation started", operation=operation, **context)

    try:
        yield
    except Exception as e:
        logger.error(
            "Operation failed",
            operation=operation,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            error_type=type(e).__name__,
            **context,
        )
        raise

    duration_ms = round((time.perf_counter() - started) * 1000, 2)
    emit = logger.warning if duration_ms > SLOW_OPERATION_MS else logger.info
    emit("Operation completed", operation=operation, duration_ms=duration_ms, **context)
