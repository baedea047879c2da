"""
Logging for dvirsync.

JSON lines (python-json-logger) when LOG_FORMAT is "json", plain text
otherwise. Every line written while a sync run is active carries that run's
id, taken from ``sync_run_id_var``.
"""

from __future__ import annotations

import logging
import os
import sys
import time
from collections.abc import Callable
from contextvars import ContextVar
from datetime import datetime, UTC
from functools import wraps
from typing import Any, Optional, TypeVar, TYPE_CHECKING

from pythonjsonlogger import jsonlogger

from dvirsync.core.config import settings as default_settings

if TYPE_CHECKING:
    from dvirsync.core.config import Settings

sync_run_id_var: ContextVar[Optional[str]] = ContextVar("sync_run_id", default=None)

F = TypeVar("F", bound=Callable[..., Any])

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
JSON_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS: dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``data`` without None values, nested dicts included."""
    cleaned = {}
    for key, value in data.items():
        if value is None:
            continue
        cleaned[key] = _drop_none(value) if isinstance(value, dict) else value
    return cleaned


def _error_fields(exc_info: Any, format_exception: Callable[[Any], str]) -> dict[str, Any]:
    exc_type, exc_value, _ = exc_info
    error: dict[str, Any] = {
        "type": exc_type.__name__,
        "message": str(exc_value),
        "stack_trace": format_exception(exc_info),
    }
    cause = exc_value.__cause__
    if cause is not None:
        error["cause"] = {"type": type(cause).__name__, "message": str(cause)}
    return error


class StructuredJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding service, source location and sync-run fields."""

    def __init__(self, *args, service_name: str = "dvirsync", environment: str = "development", **kwargs):
        super().__init__(*args, **kwargs)
        self._service = {"name": service_name, "environment": environment, "pid": os.getpid()}

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record.update(
            timestamp=datetime.now(UTC).isoformat(),
            level=record.levelname,
            level_num=record.levelno,
            logger=record.name,
            service=dict(self._service),
            source={"module": record.module, "function": record.funcName, "line": record.lineno},
            sync_run_id=sync_run_id_var.get(),
        )
        if record.exc_info and record.exc_info[0] is not None:
            log_record["error"] = _error_fields(record.exc_info, self.formatException)

        cleaned = _drop_none(log_record)
        log_record.clear()
        log_record.update(cleaned)


class PerformanceLogger:
    """
    Times a block and logs the duration on exit.

    Failures log at WARNING with the exception type, slow runs (at or above
    ``warn_threshold_ms``) at WARNING, everything else at DEBUG.

        with PerformanceLogger("sync_run", from_date=...):
            ...

        @PerformanceLogger.track("load_foundation")
        async def load_foundation(...): ...
    """

    def __init__(
        self,
        operation_name: str,
        logger_name: str = "dvirsync.performance",
        warn_threshold_ms: float = 30000.0,
        **extra_fields: Any,
    ):
        self.operation_name = operation_name
        self.logger = get_logger(logger_name)
        self.warn_threshold_ms = warn_threshold_ms
        self.extra_fields = extra_fields
        self.start_time: float | None = None
        self.duration_ms: float = 0.0

    def __enter__(self) -> PerformanceLogger:
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is not None:
            self.duration_ms = (time.monotonic() - self.start_time) * 1000

        fields = {
            "event": "performance_metric",
            "operation": self.operation_name,
            "duration_ms": round(self.duration_ms, 2),
            "success": exc_type is None,
            **self.extra_fields,
        }
        if exc_type is not None:
            fields["error_type"] = exc_type.__name__
            self.logger.warning(f"{self.operation_name} failed", extra=fields)
        elif self.duration_ms >= self.warn_threshold_ms:
            self.logger.warning(f"{self.operation_name} slow", extra=fields)
        else:
            self.logger.debug(f"{self.operation_name} took {fields['duration_ms']} ms", extra=fields)

    @classmethod
    def track(cls, operation_name: str) -> Callable[[F], F]:
        """Decorator form for coroutines."""
        def decorator(func: F) -> F:
            @wraps(func)
            async def wrapper(*args, **kwargs):
                with cls(operation_name):
                    return await func(*args, **kwargs)

            return wrapper  # type: ignore

        return decorator


def setup_logging(config: Settings | None = None) -> None:
    """Replace the root handlers with one stderr handler in the configured format."""
    config = config or default_settings

    if config.LOG_FORMAT == "json":
        formatter: logging.Formatter = StructuredJsonFormatter(
            JSON_FORMAT,
            service_name=config.PROJECT_NAME,
            environment=config.ENVIRONMENT,
        )
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))
    root.handlers = [handler]

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    message: str,
    **extra_fields: Any,
) -> None:
    """Log ``message`` tagged with ``event`` and any extra fields."""
    logger.log(level, message, extra={"event": event, **extra_fields})


def log_external_api_call(
    service: str,
    method: str,
    duration_ms: float,
    status_code: int | None = None,
    calls: int = 1,
    success: bool = True,
    error: str | None = None,
) -> None:
    """One line per HTTP request; ``calls`` is the number of RPC operations it carried."""
    fields: dict[str, Any] = {
        "event": "external_api_call",
        "service": service,
        "method": method,
        "status_code": status_code,
        "calls": calls,
        "duration_ms": round(duration_ms, 2),
        "success": success,
    }
    logger = get_logger("dvirsync.external_api")
    if error:
        logger.warning(f"{service} {method} failed: {error}", extra={**fields, "error": error})
    else:
        logger.debug(f"{service} {method} ok in {fields['duration_ms']} ms", extra=fields)
