"""
Request-scoped tenant binding.

The bound tenant lives in a ContextVar, so every request (thread or
asyncio task) sees only its own binding. Nothing here is process-global.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Iterator, Optional

from tracker.core.logging import bind_log_context, unbind_log_context
from tracker.tenancy.audit import (
    TENANT_SCOPE_BYPASS_EVENT,
    AuditEvent,
    AuditSink,
    emit_audit_event,
)
from tracker.tenancy.errors import TenantInactive, TenantNotResolved
from tracker.tenancy.records import TenantRecord


logger = logging.getLogger(__name__)

_current_tenant: ContextVar[Optional[TenantRecord]] = ContextVar("current_tenant", default=None)
_scope_bypass: ContextVar[Optional[str]] = ContextVar("tenant_scope_bypass", default=None)


@dataclass
class RequestContext:
    """
    Captures the caller's tenant context for downstream checks.
    """

    request_id: str
    tenant: TenantRecord
    user_id: Optional[int]
    email: Optional[str]
    source: Optional[str]

    @property
    def tenant_id(self) -> str:
        return self.tenant.id


def bind_tenant(tenant: TenantRecord) -> None:
    """
    Bind `tenant` for the current context, replacing any previous binding.
    """
    if not tenant.is_usable():
        raise TenantInactive(f"Tenant {tenant.id} is not active")
    _current_tenant.set(tenant)
    bind_log_context(tenant_id=tenant.id)
    logger.debug("tenant.bound", extra={"tenant_id": tenant.id})


def clear_tenant() -> None:
    """
    Drop the binding. Only `tenant_id` leaves the log context; request_id
    and the other fields stay.
    """
    previous = _current_tenant.get()
    if previous is None:
        return
    _current_tenant.set(None)
    unbind_log_context("tenant_id")
    logger.debug("tenant.cleared", extra={"cleared_tenant_id": previous.id})


def get_current_tenant() -> Optional[TenantRecord]:
    return _current_tenant.get()


def get_current_tenant_id() -> Optional[str]:
    tenant = _current_tenant.get()
    return tenant.id if tenant else None


def require_current_tenant() -> TenantRecord:
    tenant = _current_tenant.get()
    if tenant is None:
        raise TenantNotResolved("No tenant is bound to the current context")
    return tenant


@contextmanager
def tenant_scope(tenant: TenantRecord) -> Iterator[TenantRecord]:
    """
    Bind `tenant` for the enclosed block and restore whatever was bound
    before, including the log context.
    """
    previous = _current_tenant.get()
    bind_tenant(tenant)
    try:
        yield tenant
    finally:
        if previous is None:
            clear_tenant()
        else:
            _current_tenant.set(previous)
            bind_log_context(tenant_id=previous.id)


def scope_bypass_reason() -> Optional[str]:
    return _scope_bypass.get()


def is_scope_bypassed() -> bool:
    return _scope_bypass.get() is not None


@contextmanager
def without_tenant_scope(
    reason: str,
    *,
    actor: Optional[str] = None,
    audit_sink: AuditSink | None = None,
) -> Iterator[None]:
    """
    Lift tenant scoping for the enclosed block, in this context only.

    For cross-tenant platform tooling (status polling, admin reports).
    Every entry is logged at WARNING and written to the audit sink.
    """
    if not reason or not reason.strip():
        raise ValueError("A reason is required to bypass tenant scope")
    bound_id = get_current_tenant_id()
    logger.warning(
        TENANT_SCOPE_BYPASS_EVENT,
        extra={"reason": reason, "actor": actor, "bound_tenant_id": bound_id},
    )
    emit_audit_event(
        AuditEvent(
            event=TENANT_SCOPE_BYPASS_EVENT,
            tenant_id=bound_id,
            details={"reason": reason, "actor": actor},
        ),
        audit_sink,
    )
    token = _scope_bypass.set(reason)
    try:
        yield
    finally:
        _scope_bypass.reset(token)
