# Structured JSON logging plus a request-local log context.
# The middleware records one log line per request with latency,
# route, tenant and request_id for traceability.

from __future__ import annotations

import json
import logging
import os
from contextvars import ContextVar
from datetime import datetime, timezone
from time import monotonic
from typing import Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


_STANDARD_ATTRS = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "taskName",
    "thread",
    "threadName",
}

_ALWAYS_FIELDS = {
    "request_id",
    "tenant_id",
    "route",
    "method",
    "status_code",
    "duration_ms",
    "trace_id",
}

# Persistent key/value context attached to every record emitted in the
# current request (or task/thread). Never shared across requests.
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def bind_log_context(**fields: Any) -> None:
    current = dict(_log_context.get())
    current.update(fields)
    _log_context.set(current)


def unbind_log_context(*keys: str) -> None:
    current = dict(_log_context.get())
    for key in keys:
        current.pop(key, None)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    return dict(_log_context.get())


def clear_log_context() -> None:
    _log_context.set({})


class LogContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS:
                continue
            if value is None and key not in _ALWAYS_FIELDS:
                continue
            payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, default=str)


def _json_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(LogContextFilter())
    return handler


def get_structured_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.addHandler(_json_handler())
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    logger.propagate = False
    return logger


def configure_logging(level: str | None = None) -> None:
    """
    Route the `tracker` logger hierarchy through the JSON formatter.
    """
    root = logging.getLogger("tracker")
    if not any(isinstance(h.formatter, JsonLogFormatter) for h in root.handlers):
        root.addHandler(_json_handler())
    root.setLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())


logger = get_structured_logger("api_logger")


def _request_fields(request: Request, start: float, status_code: int) -> dict[str, Any]:
    # tracing imports this module, so resolve it late.
    from tracker.core.tracing import get_trace_id

    route = request.scope.get("route")
    resolution = getattr(request.state, "tenant_resolution", None)
    tenant = getattr(resolution, "tenant", None)
    return {
        "request_id": getattr(request.state, "request_id", None),
        "tenant_id": getattr(tenant, "id", None),
        "route": getattr(route, "path", None) or request.url.path,
        "path": request.url.path,
        "method": request.method,
        "status_code": status_code,
        "duration_ms": round((monotonic() - start) * 1000.0, 2),
        "trace_id": get_trace_id(),
    }


class APILoggingMiddleware(BaseHTTPMiddleware):
    """One record per request, written after the response or the crash."""

    async def dispatch(self, request: Request, call_next):
        start = monotonic()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("request.failed", extra=_request_fields(request, start, 500))
            raise
        logger.info("request.completed", extra=_request_fields(request, start, response.status_code))
        return response
