"""
Logging, correlation IDs and timing for the sync pipeline and the API.

Every sync run logs under its own correlation ID (the first 8 characters of
the sync id) with the sync id and type attached to each record; every HTTP
request logs under the X-Request-ID it arrived with, or a fresh one.

Usage:
    from salesboard.observability import setup_logging, get_logger, sync_run_context

    setup_logging()                      # LOG_LEVEL / LOG_FORMAT from env
    logger = get_logger(__name__)

    with sync_run_context(entry.id, entry.sync_type):
        logger.info("Page committed", extra={"page": 1})
"""
import asyncio
import functools
import json
import logging
import os
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, Optional

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})

# LogRecord attributes that are not "extra" fields
_STANDARD_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "asctime", "taskName",
})

NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler", "uvicorn.access")


# ═══════════════════════════════════════════════════════════════════════════════
# CORRELATION
# ═══════════════════════════════════════════════════════════════════════════════

def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id.set(correlation_id)


def generate_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


class correlation_context:
    """Set the correlation ID for a block, restoring the previous one afterwards."""

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or generate_correlation_id()
        self.token = None

    def __enter__(self) -> str:
        self.token = _correlation_id.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, *args) -> None:
        _correlation_id.reset(self.token)


def add_log_context(**kwargs) -> None:
    """Attach fields to every record logged from the current context."""
    _log_context.set({**_log_context.get(), **kwargs})


def clear_log_context() -> None:
    _log_context.set({})


@contextmanager
def sync_run_context(sync_id: str, sync_type: str) -> Iterator[str]:
    """
    Correlation ID and log fields for one sync run.

    Yields the correlation ID; both context variables are restored on exit,
    including when the run raises.
    """
    token = _log_context.set({**_log_context.get(), "sync_id": sync_id, "sync_type": sync_type})
    try:
        with correlation_context(sync_id[:8]) as correlation_id:
            yield correlation_id
    finally:
        _log_context.reset(token)


# ═══════════════════════════════════════════════════════════════════════════════
# FORMATTERS
# ═══════════════════════════════════════════════════════════════════════════════

def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Log context merged with the record's own extra fields (extras win)."""
    fields = dict(_log_context.get())
    fields.update(
        (k, v) for k, v in record.__dict__.items()
        if k not in _STANDARD_ATTRS and not k.startswith("_")
    )
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, correlation_id, fields."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, timezone.utc)
        payload = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        correlation_id = get_correlation_id()
        if correlation_id:
            payload["correlation_id"] = correlation_id
        payload.update(_record_fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Console format for development.

    2025-06-01 12:00:00 INFO     salesboard.sync_service [1a2b3c4d] Page 1 committed page=1
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, timezone.utc)
        correlation_id = get_correlation_id()
        line = (
            f"{created:%Y-%m-%d %H:%M:%S} {record.levelname:8} {record.name}"
            f"{f' [{correlation_id}]' if correlation_id else ''} {record.getMessage()}"
        )
        fields = _record_fields(record)
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: Optional[str] = None,
    json_format: Optional[bool] = None,
    include_libs: bool = False,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name (defaults to LOG_LEVEL, then INFO)
        json_format: JSON lines instead of console format (defaults to LOG_FORMAT=json)
        include_libs: Keep httpx/apscheduler/uvicorn access logs at the root level
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_format is None:
        json_format = os.getenv("LOG_FORMAT", "text").lower() == "json"

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    if not include_libs:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


# ═══════════════════════════════════════════════════════════════════════════════
# TIMING
# ═══════════════════════════════════════════════════════════════════════════════

def _log_duration(
    logger: logging.Logger,
    name: str,
    elapsed_ms: float,
    slow_ms: float,
    failed: bool,
) -> None:
    if failed:
        level = logging.WARNING
    else:
        level = logging.WARNING if elapsed_ms > slow_ms else logging.DEBUG
    logger.log(
        level,
        f"{name} {'failed' if failed else 'completed'}",
        extra={"duration_ms": round(elapsed_ms, 2)},
    )


class Timer:
    """
    Time a block; logs when a logger is given (WARNING past slow_ms or on error).

    Usage:
        with Timer("oneup_invoices", logger) as t:
            response = await client.get("invoices")
        t.elapsed_ms
    """

    def __init__(self, name: str, logger: Optional[logging.Logger] = None, slow_ms: float = 1000):
        self.name = name
        self.logger = logger
        self.slow_ms = slow_ms
        self.start_time: float = 0
        self.elapsed_ms: float = 0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000
        if self.logger:
            _log_duration(self.logger, self.name, self.elapsed_ms, self.slow_ms, exc_type is not None)


def timed(name: Optional[str] = None, slow_ms: float = 1000):
    """Decorator form of Timer for sync and async functions, logged to the function's module logger."""
    def decorator(func: Callable) -> Callable:
        operation = name or func.__name__
        func_logger = get_logger(func.__module__)

        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                with Timer(operation, func_logger, slow_ms):
                    return await func(*args, **kwargs)
            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            with Timer(operation, func_logger, slow_ms):
                return func(*args, **kwargs)
        return sync_wrapper

    return decorator
