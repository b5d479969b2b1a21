"""
Trace ids correlate log lines that belong to one request or one poll batch.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from time import monotonic
from uuid import uuid4

from tracker.core.logging import get_structured_logger


_trace_id: ContextVar[str | None] = ContextVar("trace_id", default=None)

logger = get_structured_logger("trace")


def set_trace_id(value: str | None) -> None:
    if value:
        _trace_id.set(value)


def get_trace_id() -> str | None:
    return _trace_id.get()


def new_trace_id() -> str:
    return uuid4().hex


@contextmanager
def timed_call(name: str, **fields):
    """
    Log how long an outbound call took. Failures are logged with the
    exception class and re-raised; callers decide the severity.
    """
    start = monotonic()
    outcome = "ok"
    try:
        yield
    except Exception as exc:
        outcome = type(exc).__name__
        raise
    finally:
        logger.debug(
            "call.finished",
            extra={
                "trace_id": get_trace_id(),
                "call": name,
                "outcome": outcome,
                "duration_ms": round((monotonic() - start) * 1000.0, 2),
                **fields,
            },
        )
