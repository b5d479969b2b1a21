"""
Append-only audit sink for security-sensitive tenancy events.

Sinks never get to block the caller: `emit_audit_event` logs a warning
and carries on when the sink raises.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from tracker.core.logging import get_log_context


logger = logging.getLogger(__name__)

TENANT_OVERRIDE_EVENT = "tenant.override"
TENANT_INACTIVE_EVENT = "tenant.inactive"
TENANT_SCOPE_BYPASS_EVENT = "tenant_scope.bypassed"


@dataclass(frozen=True)
class AuditEvent:
    event: str
    tenant_id: Optional[str] = None
    actor_user_id: Optional[int] = None
    actor_email: Optional[str] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None:
        ...


class LoggingAuditSink:
    def __init__(self, audit_logger: logging.Logger | None = None) -> None:
        self._logger = audit_logger or logging.getLogger("tracker.audit")

    def record(self, event: AuditEvent) -> None:
        self._logger.info(
            event.event,
            extra={
                "audit_tenant_id": event.tenant_id,
                "actor_user_id": event.actor_user_id,
                "actor_email": event.actor_email,
                "client_ip": event.client_ip,
                "user_agent": event.user_agent,
                "details": event.details,
                "request_id": get_log_context().get("request_id"),
            },
        )


class DatabaseAuditSink:
    """
    Writes each event to `audit_logs` in its own short-lived session so
    an audit row never rides on (or rolls back with) the caller's
    transaction.
    """

    def __init__(self, session_factory: Callable[[], Any]) -> None:
        self._session_factory = session_factory
        self._log_sink = LoggingAuditSink()

    def record(self, event: AuditEvent) -> None:
        from tracker.crud.audit import create_audit_log

        self._log_sink.record(event)
        db = self._session_factory()
        try:
            create_audit_log(
                db,
                event.event,
                tenant_id=event.tenant_id,
                actor_user_id=event.actor_user_id,
                actor_email=event.actor_email,
                client_ip=event.client_ip,
                user_agent=event.user_agent,
                details=event.details,
            )
        finally:
            db.close()


class MemoryAuditSink:
    """Collects events in a list; used by tests and dry runs."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def record(self, event: AuditEvent) -> None:
        self.events.append(event)


_DEFAULT_SINK: AuditSink = LoggingAuditSink()


def configure_audit_sink(sink: AuditSink) -> None:
    global _DEFAULT_SINK
    _DEFAULT_SINK = sink


def get_audit_sink() -> AuditSink:
    return _DEFAULT_SINK


def emit_audit_event(event: AuditEvent, sink: AuditSink | None = None) -> bool:
    target = sink or get_audit_sink()
    try:
        target.record(event)
    except Exception:
        logger.warning(
            "audit.sink_failed",
            exc_info=True,
            extra={"audit_event": event.event, "audit_tenant_id": event.tenant_id},
        )
        return False
    return True
