"""Structured logging with correlation IDs.

Every record emitted while a request is being served carries that request's
correlation ID, so the stages of one upload (spool, probe, remux, transfer,
commit) can be followed across log lines. Upload context fields such as
``video_id`` and ``stage`` are lifted to the top level of JSON records.
"""

import json
import logging
import sys
import traceback
import uuid
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Optional, TextIO

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Fields promoted out of "extra" in JSON output
CONTEXT_FIELDS = ("video_id", "user_id", "stage", "kind")

_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName", "correlation_id",
})

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "botocore", "boto3", "s3transfer")


def get_correlation_id() -> str:
    """Return the current correlation ID, generating one if none is bound."""
    cid = correlation_id_var.get()
    if cid is None:
        cid = uuid.uuid4().hex
        correlation_id_var.set(cid)
    return cid


def bind_correlation_id(correlation_id: str) -> Token:
    """Bind ``correlation_id`` to the current context.

    Returns:
        Token to pass to :func:`reset_correlation_id`
    """
    return correlation_id_var.set(correlation_id)


def reset_correlation_id(token: Token) -> None:
    correlation_id_var.reset(token)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self, service: str = "tubely", include_stack_trace: bool = True):
        super().__init__()
        self.service = service
        self.include_stack_trace = include_stack_trace

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
            "source": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        extra_fields: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            target = log_data if key in CONTEXT_FIELDS else extra_fields
            target[key] = _jsonable(value)
        if extra_fields:
            log_data["extra"] = extra_fields

        if record.exc_info and record.exc_info[1] is not None:
            exc_type, exc, tb = record.exc_info
            log_data["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc),
            }
            if exc.__cause__ is not None:
                log_data["exception"]["cause"] = repr(exc.__cause__)
            if self.include_stack_trace and tb is not None:
                log_data["exception"]["stack_trace"] = traceback.format_exception(exc_type, exc, tb)

        return json.dumps(log_data, default=str)


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class CorrelationIdFilter(logging.Filter):
    """Stamp the bound correlation ID on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_stack_trace: bool = True,
    stream: Optional[TextIO] = None,
) -> None:
    """Configure the root logger for the service.

    Args:
        level: Log level name
        json_format: Emit JSON records instead of plain text
        include_stack_trace: Include stack traces in JSON error records
        stream: Output stream, stdout when omitted
    """
    numeric_level = getattr(logging, level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(numeric_level)
    handler.addFilter(CorrelationIdFilter())
    if json_format:
        handler.setFormatter(StructuredFormatter(include_stack_trace=include_stack_trace))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"
        ))
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _log(
    logger: logging.Logger,
    level: int,
    message: str,
    exception: Optional[BaseException] = None,
    **fields: Any,
) -> None:
    fields["correlation_id"] = get_correlation_id()
    logger.log(level, message, exc_info=exception, extra=fields)


def log_error(
    logger: logging.Logger,
    message: str,
    exception: Optional[BaseException] = None,
    **fields: Any,
) -> None:
    """Log an error with correlation ID and optional exception.

    Args:
        logger: Logger instance
        message: Error message
        exception: Exception whose traceback is attached
        **fields: Context fields, e.g. ``video_id`` or ``stage``
    """
    _log(logger, logging.ERROR, message, exception, **fields)


def log_warning(logger: logging.Logger, message: str, **fields: Any) -> None:
    _log(logger, logging.WARNING, message, **fields)


def log_info(logger: logging.Logger, message: str, **fields: Any) -> None:
    _log(logger, logging.INFO, message, **fields)
